"""
Command Executor - runs external programs (npm, pm2, nginx, psql, ufw)

Every call returns a CommandResult; a missing program, a timeout or an OS
error is reported through the result, never raised.
"""

import asyncio
import os
import shlex
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, List, Sequence, Union

from vbs.logging_config import logger


@dataclass
class CommandResult:
    """Result of a command execution"""
    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration: float
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """stdout followed by stderr, as a build log would show them"""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


def is_root() -> bool:
    """True when the process runs with elevated privilege"""
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0


class CommandExecutor:
    """Executes external commands asynchronously"""

    def __init__(self, default_timeout: float = 600.0):
        self.default_timeout = default_timeout
        self.command_history: List[CommandResult] = []

    async def run(
        self,
        args: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """Execute ``args`` without a shell"""
        command = " ".join(shlex.quote(str(a)) for a in args)
        timeout = timeout or self.default_timeout
        start_time = time.time()
        timed_out = False

        full_env = None
        if env:
            full_env = {**os.environ, **env}

        try:
            process = await asyncio.create_subprocess_exec(
                *[str(a) for a in args],
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
                env=full_env,
            )

            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(),
                    timeout=timeout
                )
                exit_code = process.returncode
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                stdout, stderr = b"", f"Command timed out after {timeout}s".encode()
                exit_code = -1
                timed_out = True

            result = CommandResult(
                command=command,
                exit_code=exit_code,
                stdout=stdout.decode('utf-8', errors='replace') if stdout else "",
                stderr=stderr.decode('utf-8', errors='replace') if stderr else "",
                duration=time.time() - start_time,
                timed_out=timed_out,
            )

        except FileNotFoundError:
            result = CommandResult(
                command=command,
                exit_code=127,
                stdout="",
                stderr=f"{args[0]}: command not found",
                duration=time.time() - start_time,
            )
        except OSError as e:
            result = CommandResult(
                command=command,
                exit_code=-1,
                stdout="",
                stderr=str(e),
                duration=time.time() - start_time,
            )

        logger.log_command(result.command, result.exit_code, result.duration * 1000,
                           cwd=str(cwd) if cwd else None)
        self.command_history.append(result)
        return result

    async def shell(
        self,
        command: str,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Execute a bash command line"""
        return await self.run(["/bin/bash", "-c", command], cwd=cwd, timeout=timeout)

    def which(self, program: str) -> bool:
        """True when ``program`` is on PATH"""
        return shutil.which(program) is not None
