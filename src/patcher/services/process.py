"""External process boundary used by download and unpack strategies."""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass
class ProcessResult:
    """Exit status and captured output of a finished process."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessTimeoutError(Exception):
    """Process exceeded its timeout and was killed."""

    def __init__(self, program: str, timeout: float):
        super().__init__(f"{program} timed out after {timeout:.0f}s")
        self.program = program
        self.timeout = timeout


class ProcessManager:
    """Starts external tools and awaits them with a bounded timeout."""

    def __init__(self, kill_grace: float = 10.0):
        """Initialize process manager.

        Args:
            kill_grace: Seconds to wait for a killed process to exit
        """
        self.logger = logging.getLogger("patcher.process")
        self.kill_grace = kill_grace

    @staticmethod
    def which(program: str) -> Optional[str]:
        return shutil.which(program)

    async def run(self, args: Sequence[str], timeout: float) -> ProcessResult:
        """Run a program and capture its output.

        Args:
            args: Program followed by its arguments
            timeout: Seconds before the process is killed

        Returns:
            ProcessResult with exit code, stdout and stderr

        Raises:
            FileNotFoundError: If the program does not exist
            ProcessTimeoutError: If the timeout elapsed
        """
        program = args[0]
        self.logger.debug(f"Starting {program} (timeout={timeout:.0f}s)")

        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            self.logger.warning(f"{program} timed out, killing pid {process.pid}")
            await self._kill(process)
            raise ProcessTimeoutError(program, timeout)
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        result = ProcessResult(
            returncode=process.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        self.logger.debug(f"{program} exited with code {result.returncode}")
        return result

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), self.kill_grace)
        except asyncio.TimeoutError:
            self.logger.error(f"Process {process.pid} did not exit after kill")
