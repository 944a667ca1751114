"""Per-operation scratch directories."""

import logging
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional


@contextmanager
def scratch_dir(prefix: str, parent: Optional[Path] = None) -> Iterator[Path]:
    """Create a temporary directory removed on every exit path.

    Args:
        prefix: Directory name prefix, e.g. "LauncherPatch_"
        parent: Where to create it (system temp dir if None)
    """
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=parent))
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logging.getLogger("patcher.scratch").warning(
                f"Failed to remove scratch directory {path}: {e}"
            )
