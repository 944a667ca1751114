"""Status enums for patch operations."""

from enum import Enum


class StageEnum(str, Enum):
    """Lifecycle stages of a foreground operation.

    State transitions for an update:
    idle → checking → syncingLauncher → patching → verifyingAsset → success
                ↓             ↓              ↓              ↓
              failed ←───────────────────────────────────────

    Install and repair use: idle → downloading → installing → success.
    """

    IDLE = "idle"
    CHECKING = "checking"
    SYNCING_LAUNCHER = "syncingLauncher"
    PATCHING = "patching"
    VERIFYING_ASSET = "verifyingAsset"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"
    SUCCESS = "success"
    FAILED = "failed"


class OperationState(str, Enum):
    """Busy token held by the state manager."""

    IDLE = "idle"
    BUSY = "busy"
