"""
Firewall - opens TCP ports with ufw when it is available
"""

from typing import Iterable, List

from vbs.executor import CommandExecutor
from vbs.ui.presenter import Presenter


def ports_to_open(project_type: str, answers: dict) -> List[int]:
    """api: its own port; fullstack: backend port and 80; frontend: 80"""
    if project_type == "api":
        return [int(answers["port"])]
    if project_type == "fullstack":
        return [int(answers["backendPort"]), 80]
    return [80]


class FirewallManager:
    def __init__(self, executor: CommandExecutor, presenter: Presenter):
        self.executor = executor
        self.presenter = presenter

    async def open_port(self, port: int) -> bool:
        with self.presenter.status(f"Opening port {port}/tcp in firewall (ufw)...") as status:
            if not self.executor.which("ufw"):
                status.warn(f"ufw not found, skipping firewall setup (open port {port} manually)")
                return False

            result = await self.executor.run(["ufw", "allow", f"{port}/tcp"])
            if result.success:
                status.succeed(f"Port {port}/tcp opened")
                return True

            status.fail(f"Failed to open port {port}: {result.stderr[:80]}")
            return False

    async def open_ports(self, ports: Iterable[int]) -> bool:
        results = [await self.open_port(port) for port in ports]
        return all(results)
