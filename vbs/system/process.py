"""
Process Manager - pm2 lifecycle for generated services

Start is attempted directly first; if pm2 rejects the derived arguments an
ecosystem.config.js is written next to the project and started instead.
"""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Union

import aiofiles

from vbs.executor import CommandExecutor
from vbs.logging_config import logger
from vbs.ui.presenter import Presenter


ECOSYSTEM_FILE = "ecosystem.config.js"

Diagnoser = Callable[[str, str], Awaitable[str]]


def build_start_args(start_command: str, name: str, cwd: Union[str, Path]) -> List[str]:
    """pm2 arguments for a start command such as ``npm start`` or ``node src/index.js``"""
    parts = start_command.split() or ["node", "src/index.js"]

    if parts[0] == "npm":
        return ["pm2", "start", "npm", "--name", name, "--cwd", str(cwd), "--", *parts[1:]]
    if parts[0] == "node":
        script = " ".join(parts[1:]) or "src/index.js"
        return ["pm2", "start", script, "--name", name, "--cwd", str(cwd)]
    return ["pm2", "start", parts[0], "--name", name, "--cwd", str(cwd)]


def render_ecosystem_config(name: str, start_command: str, cwd: Union[str, Path]) -> str:
    parts = start_command.strip().split()
    script = " ".join(parts[1:]) if len(parts) > 1 else (parts[0] if parts else "src/index.js")
    cwd = str(cwd)

    return f"""module.exports = {{
  apps: [
    {{
      name:               '{name}',
      script:             '{script}',
      cwd:                '{cwd}',
      instances:          1,
      autorestart:        true,
      watch:              false,
      max_memory_restart: '512M',
      env: {{
        NODE_ENV: 'production',
      }},
      error_file: '{cwd}/logs/error.log',
      out_file:   '{cwd}/logs/out.log',
      log_file:   '{cwd}/logs/combined.log',
      time:       true,
    }},
  ],
}};
"""


@dataclass
class LaunchResult:
    """Outcome of starting one pm2 process"""
    name: str
    started: bool
    online: bool
    used_ecosystem: bool = False
    logs: str = ""
    diagnosis: Optional[str] = None


class ProcessManager:
    """Thin async wrapper around the pm2 CLI"""

    def __init__(self, executor: CommandExecutor, presenter: Presenter, settle_seconds: float = 2.5):
        self.executor = executor
        self.presenter = presenter
        self.settle_seconds = settle_seconds

    async def ensure_deleted(self, name: str) -> None:
        # pm2 exits non-zero for unknown names; that is the expected case
        await self.executor.run(["pm2", "delete", name])

    async def start(self, start_command: str, name: str, cwd: Union[str, Path]) -> Optional[bool]:
        """Start ``name``.

        Returns:
            False for a direct start, True when the ecosystem fallback was used,
            None when neither worked
        """
        direct = await self.executor.run(build_start_args(start_command, name, cwd))
        if direct.success:
            return False

        logger.warning(f"pm2 direct start failed for {name}, writing {ECOSYSTEM_FILE}",
                       extra={"event_type": "pm2_fallback", "stderr": direct.stderr[:300]})
        config_path = Path(cwd) / ECOSYSTEM_FILE
        try:
            async with aiofiles.open(config_path, "w", encoding="utf-8") as f:
                await f.write(render_ecosystem_config(name, start_command, cwd))
        except OSError as e:
            logger.log_error_with_context(e, "ecosystem config write")
            return None

        eco = await self.executor.run(["pm2", "start", str(config_path)])
        return True if eco.success else None

    async def is_online(self, name: str) -> bool:
        result = await self.executor.run(["pm2", "jlist"])
        if not result.success or not result.stdout.strip():
            return False
        try:
            processes = json.loads(result.stdout)
        except json.JSONDecodeError:
            text = await self.executor.run(["pm2", "list", "--no-color"])
            return name in text.stdout and "online" in text.stdout

        for proc in processes:
            if isinstance(proc, dict) and proc.get("name") == name:
                return (proc.get("pm2_env") or {}).get("status") == "online"
        return False

    async def recent_logs(self, name: str, lines: int = 30) -> str:
        result = await self.executor.run(["pm2", "logs", name, "--lines", str(lines), "--nostream"])
        return result.output.strip()

    async def restart(self, name: str) -> bool:
        result = await self.executor.run(["pm2", "restart", name])
        if not result.success:
            logger.warning(f"pm2 restart {name} failed: {result.stderr[:200]}")
        return result.success

    async def launch(
        self,
        start_command: str,
        name: str,
        cwd: Union[str, Path],
        diagnose: Optional[Diagnoser] = None,
    ) -> LaunchResult:
        """Delete, start, settle, then confirm the process is online.

        When it is not, recent logs are fetched and handed to ``diagnose``;
        the diagnosis is reported, never raised.
        """
        await self.ensure_deleted(name)

        with self.presenter.status(f"Starting with pm2: {name}...") as status:
            mode = await self.start(start_command, name, cwd)
            if mode is None:
                status.fail(f"Could not start {name}, check logs manually")
                logger.log_phase_event("launch", "start_failed", process_name=name)
                return LaunchResult(name=name, started=False, online=False)
            if mode:
                status.update(f"Started {name} from {ECOSYSTEM_FILE}, waiting...")

            await asyncio.sleep(self.settle_seconds)

            if await self.is_online(name):
                status.succeed(f"{name} is ONLINE")
                logger.log_phase_event("launch", "online", process_name=name, ecosystem=mode)
                return LaunchResult(name=name, started=True, online=True, used_ecosystem=mode)

            status.warn(f"{name} may not have started, fetching logs...")

        logs = await self.recent_logs(name)
        result = LaunchResult(name=name, started=True, online=False, used_ecosystem=mode, logs=logs)
        logger.log_phase_event("launch", "not_online", process_name=name)

        if logs:
            tail = "\n".join(logs.splitlines()[-15:])
            self.presenter.show_notes("Recent Logs", tail)
            if diagnose is not None:
                with self.presenter.status("AI diagnosing startup issue...") as status:
                    try:
                        result.diagnosis = await diagnose(logs, name)
                    except Exception as e:
                        logger.log_error_with_context(e, "launch diagnosis")
                        status.warn(f"Diagnosis unavailable: {e}")
                    else:
                        status.succeed("Diagnosis ready")
                if result.diagnosis:
                    self.presenter.show_notes("AI Diagnosis", result.diagnosis)
        return result
