"""
Prerequisites - Node.js, npm, pm2, nginx and PostgreSQL on the host

Missing tools are installed only with elevated privilege; otherwise the
check reports a warning and the run continues.
"""

import re
import secrets
import string
from dataclasses import dataclass
from typing import Optional

from vbs.executor import CommandExecutor
from vbs.logging_config import logger
from vbs.ui.presenter import Presenter


MIN_NODE_MAJOR = 18
PASSWORD_ALPHABET = string.ascii_letters + string.digits


def generate_password(length: int = 20) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _sql_identifier(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


@dataclass(frozen=True)
class DatabaseCredentials:
    name: str
    user: str
    password: str
    host: str = "localhost"
    port: int = 5432

    @classmethod
    def for_project(cls, slug: str) -> "DatabaseCredentials":
        base = slug.replace("-", "_")
        return cls(name=f"{base}_db", user=f"{base}_user", password=generate_password())

    @property
    def url(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"

    def as_answers(self) -> dict:
        return {
            "db_name": self.name,
            "db_user": self.user,
            "db_password": self.password,
            "db_host": self.host,
            "db_port": self.port,
            "database_url": self.url,
        }


class SystemPreparation:
    """Checks (and where allowed, installs) what a deployment needs"""

    def __init__(self, executor: CommandExecutor, presenter: Presenter, is_root: bool = False):
        self.executor = executor
        self.presenter = presenter
        self.is_root = is_root

    async def check_node(self) -> Optional[str]:
        with self.presenter.status("Checking Node.js version...") as status:
            result = await self.executor.run(["node", "--version"])
            if not result.success:
                status.fail("Node.js not found, please install Node.js 18+")
                return None

            version = result.stdout.strip()
            match = re.match(r"v?(\d+)", version)
            major = int(match.group(1)) if match else 0
            if major < MIN_NODE_MAJOR:
                status.warn(f"Node.js {version} detected, upgrade to v20+ is recommended")
            else:
                status.succeed(f"Node.js {version}")
            return version

    async def check_npm(self) -> Optional[str]:
        with self.presenter.status("Checking npm...") as status:
            result = await self.executor.run(["npm", "--version"])
            if not result.success:
                status.fail("npm not found")
                return None
            version = result.stdout.strip()
            status.succeed(f"npm v{version}")
            return version

    async def check_pm2(self) -> bool:
        with self.presenter.status("Checking pm2...") as status:
            result = await self.executor.run(["pm2", "--version"])
            if result.success:
                status.succeed(f"pm2 v{result.stdout.strip()}")
                return True

            if not self.is_root:
                status.warn("pm2 not found, skipping install (not root). Install manually: npm install -g pm2")
                return False

            status.update("Installing pm2 globally...")
            install = await self.executor.run(["npm", "install", "-g", "pm2"])
            if not install.success:
                status.fail(f"Failed to install pm2: {install.stderr[:80]}")
                return False
            status.succeed("pm2 installed globally")
            return True

    async def check_nginx(self) -> bool:
        with self.presenter.status("Checking nginx...") as status:
            check = await self.executor.run(["nginx", "-v"])
            # nginx -v prints its version on stderr
            if check.success or "nginx version" in check.stderr:
                version = (check.stderr or check.stdout).splitlines()[0].strip()
                status.succeed(f"nginx installed, {version}")
                return True

            if not self.is_root:
                status.warn("nginx not found, skipping install (not root). Install manually: apt install nginx")
                return False

            status.update("nginx not found, installing...")
            install = await self.executor.run(
                ["apt-get", "install", "-y", "nginx"], env={"DEBIAN_FRONTEND": "noninteractive"}
            )
            if not install.success:
                status.fail(f"Failed to install nginx: {install.stderr[:120]}")
                return False
            status.succeed("nginx installed")
            return True

    async def check_postgres(self) -> bool:
        with self.presenter.status("Checking PostgreSQL...") as status:
            if not self.executor.which("psql"):
                if not self.is_root:
                    status.warn("PostgreSQL not found, skipping install (not root)")
                    return False

                status.update("PostgreSQL not found, installing via apt...")
                install = await self.executor.run(
                    ["apt-get", "install", "-y", "postgresql", "postgresql-contrib"],
                    env={"DEBIAN_FRONTEND": "noninteractive"},
                )
                if not install.success:
                    status.fail("Failed to install PostgreSQL, install it manually")
                    return False
                status.succeed("PostgreSQL installed")
            else:
                status.succeed("PostgreSQL found")

        active = await self.executor.run(["systemctl", "is-active", "postgresql"])
        if active.stdout.strip() != "active":
            self.presenter.warning("PostgreSQL service not active, attempting to start...")
            await self.executor.run(["systemctl", "start", "postgresql"])
            recheck = await self.executor.run(["systemctl", "is-active", "postgresql"])
            if recheck.stdout.strip() != "active":
                self.presenter.error("Could not start PostgreSQL, start it manually: systemctl start postgresql")
                return False
            self.presenter.success("PostgreSQL service started")
        return True

    async def _psql(self, sql: str) -> str:
        """Run one statement as the postgres user: "ok", "exists" or "failed" """
        result = await self.executor.run(["sudo", "-u", "postgres", "psql", "-c", sql])
        if result.success:
            return "ok"
        if "already exists" in result.stderr:
            logger.debug(f"psql: {result.stderr.strip()}")
            return "exists"
        logger.warning(f"psql failed: {result.stderr.strip()[:200]}")
        return "failed"

    async def setup_database(self, credentials: DatabaseCredentials) -> bool:
        """Create role and database; existing ones are reused"""
        with self.presenter.status(f'Setting up PostgreSQL database "{credentials.name}"...') as status:
            user = _sql_identifier(credentials.user)
            database = _sql_identifier(credentials.name)
            password = _sql_literal(credentials.password)

            outcomes = [await self._psql(f"CREATE USER {user} WITH PASSWORD {password};")]
            if outcomes[0] == "exists":
                # Keep the generated .env valid for a role left over from an earlier run
                outcomes.append(await self._psql(f"ALTER USER {user} WITH PASSWORD {password};"))
            outcomes.append(await self._psql(f"CREATE DATABASE {database} OWNER {user};"))
            outcomes.append(await self._psql(f"GRANT ALL PRIVILEGES ON DATABASE {database} TO {user};"))

            if "failed" not in outcomes:
                status.succeed(f'Database "{credentials.name}" ready (user: {credentials.user})')
                return True
            status.warn(f'Database "{credentials.name}" setup incomplete, check the log')
            return False
