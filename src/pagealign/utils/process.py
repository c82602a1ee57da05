"""Subprocess helpers for llvm-objdump and the Gradle wrapper."""

import asyncio
import logging
import subprocess
from dataclasses import dataclass

from pagealign.exceptions import ProcessError

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Captured outcome of one external command."""

    command: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


def run_tool(
    command: list[str],
    *,
    check: bool = True,
    timeout: float | None = None,
    cwd: str | None = None,
) -> ProcessResult:
    """Run a command to completion with stdout and stderr captured as text.

    Args:
        command: Executable followed by its arguments.
        check: Raise on a non-zero exit status.
        timeout: Seconds before the process is killed.
        cwd: Working directory.

    Raises:
        ProcessError: The command could not start, timed out (``timed_out``
            is set), or exited non-zero while ``check`` is on.
    """
    logger.debug("Running %s", " ".join(command))
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired as e:
        raise ProcessError(
            command, -1, f"Timed out after {timeout}s", timed_out=True
        ) from e
    except OSError as e:
        # Covers a missing executable as well as permission problems
        raise ProcessError(command, -1, f"Cannot execute {command[0]}: {e}") from e

    result = ProcessResult(command, completed.returncode, completed.stdout, completed.stderr)
    if check and not result.success:
        raise ProcessError(command, result.returncode, result.stderr)
    return result


async def run_tool_async(
    command: list[str],
    *,
    check: bool = True,
    timeout: float | None = None,
    cwd: str | None = None,
) -> ProcessResult:
    """:func:`run_tool` on a worker thread, so the event loop keeps going."""
    return await asyncio.to_thread(
        run_tool, command, check=check, timeout=timeout, cwd=cwd
    )
