"""External command adapter.

The engine reaches every external tool (build tools, container builders,
scanners) through ``CommandAdapter.execute``. It only looks at the exit
code; stdout and stderr are captured for the step record and for
collaborators that define their own parsing contract (command gate
signals).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shlex
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field

from .exceptions import TimeoutFailure

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    """Exit status and captured output of one command."""

    exit_code: int = Field(default=0, description="Process exit code")
    stdout: str = Field(default="", description="Standard output")
    stderr: str = Field(default="", description="Standard error")

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class CommandAdapter(ABC):
    """Boundary to external processes. Tests substitute a scripted fake."""

    @abstractmethod
    async def execute(
        self,
        command: str,
        working_dir: str,
        env: Mapping[str, str],
        *,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run ``command`` and capture its result.

        Args:
            command: Command line
            working_dir: Working directory (empty = current directory)
            env: Fully resolved environment for the process
            timeout: Optional bound in seconds

        Returns:
            CommandResult (a non-zero exit code is a result, not an exception)

        Raises:
            TimeoutFailure: If the command exceeds ``timeout``
            FileNotFoundError: If the working directory does not exist
        """
        pass


class SubprocessCommandAdapter(CommandAdapter):
    """
    Runs commands as asyncio subprocesses.

    Features:
    - Shell or direct (shlex-split) execution
    - Timeout support (process killed on timeout)
    - Process killed when the awaiting task is cancelled
    - Optional inheritance of the engine's own process environment
    """

    def __init__(self, *, shell: bool = True, inherit_environ: bool = True):
        self.shell = shell
        self.inherit_environ = inherit_environ

    async def execute(
        self,
        command: str,
        working_dir: str,
        env: Mapping[str, str],
        *,
        timeout: float | None = None,
    ) -> CommandResult:
        cwd = Path(working_dir) if working_dir else Path.cwd()
        if not cwd.exists():
            raise FileNotFoundError(f"Working directory does not exist: {cwd}")

        process_env = dict(os.environ) if self.inherit_environ else {}
        process_env.update(env)

        if self.shell:
            # Execute via shell (supports pipes, redirects, $VAR expansion)
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=process_env,
            )
        else:
            args = shlex.split(command)
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=process_env,
            )
        logger.debug(f"Started pid {process.pid}: {command}")

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except TimeoutError:
            await _kill(process)
            raise TimeoutFailure(f"Command '{command}'", timeout or 0)
        except asyncio.CancelledError:
            await _kill(process)
            logger.debug(f"Killed pid {process.pid} after cancellation")
            raise

        return CommandResult(
            exit_code=process.returncode or 0,
            stdout=stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else "",
            stderr=stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else "",
        )


async def _kill(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await process.wait()


__all__ = ["CommandAdapter", "CommandResult", "SubprocessCommandAdapter"]
