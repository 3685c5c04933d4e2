"""
nginx - reverse proxy and static site configuration

One site file per project under sites-available, symlinked into
sites-enabled, validated with ``nginx -t`` and then reloaded.
"""

from pathlib import Path
from typing import Optional, Union

import aiofiles

from vbs.executor import CommandExecutor
from vbs.logging_config import logger
from vbs.ui.presenter import Presenter


SITES_AVAILABLE = Path("/etc/nginx/sites-available")
SITES_ENABLED = Path("/etc/nginx/sites-enabled")

_PROXY_HEADERS = """        proxy_http_version 1.1;
        proxy_set_header   Upgrade $http_upgrade;
        proxy_set_header   Connection 'upgrade';
        proxy_set_header   Host $host;
        proxy_set_header   X-Real-IP $remote_addr;
        proxy_set_header   X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_cache_bypass $http_upgrade;"""

_STATIC_BLOCK = """    root {build_dir};
    index index.html;

    # Client-side routing fallback
    location / {{
        try_files $uri $uri/ /index.html;
    }}

    location ~* \\.(js|css|png|jpg|jpeg|gif|svg|ico|woff2?)$ {{
        expires 1y;
        add_header Cache-Control "public, immutable";
    }}"""


def render_api_proxy(name: str, port: int, domain: str = "_") -> str:
    return f"""# VBS - {name} API proxy
server {{
    listen 80;
    server_name {domain};

    location / {{
        proxy_pass         http://127.0.0.1:{port};
{_PROXY_HEADERS}
    }}
}}
"""


def render_static_site(name: str, build_dir: Union[str, Path], domain: str = "_") -> str:
    return f"""# VBS - {name} frontend (static)
server {{
    listen 80;
    server_name {domain};

{_STATIC_BLOCK.format(build_dir=build_dir)}
}}
"""


def render_fullstack(
    name: str,
    backend_port: int,
    frontend_mode: str,
    build_dir: Union[str, Path] = "",
    frontend_port: int = 3000,
    domain: str = "_",
) -> str:
    """/api/* goes to the backend; everything else to static files or the frontend process"""
    if frontend_mode == "static":
        frontend_block = _STATIC_BLOCK.format(build_dir=build_dir)
    else:
        frontend_block = f"""    location / {{
        proxy_pass         http://127.0.0.1:{frontend_port};
{_PROXY_HEADERS}
    }}"""

    return f"""# VBS - {name} fullstack (API + Frontend)
server {{
    listen 80;
    server_name {domain};

    location /api/ {{
        proxy_pass         http://127.0.0.1:{backend_port}/;
{_PROXY_HEADERS}
    }}

{frontend_block}
}}
"""


class NginxConfigurator:
    """Writes, enables, validates and reloads site files"""

    def __init__(
        self,
        executor: CommandExecutor,
        presenter: Presenter,
        sites_available: Path = SITES_AVAILABLE,
        sites_enabled: Path = SITES_ENABLED,
    ):
        self.executor = executor
        self.presenter = presenter
        self.sites_available = Path(sites_available)
        self.sites_enabled = Path(sites_enabled)

    async def configure_api_proxy(self, name: str, port: int, domain: str = "_") -> Optional[str]:
        return await self._apply(
            name, render_api_proxy(name, port, domain),
            f"Configuring nginx proxy → localhost:{port}...",
            f"nginx configured, proxying port 80 → {port}",
        )

    async def configure_static(self, name: str, build_dir: Union[str, Path], domain: str = "_") -> Optional[str]:
        return await self._apply(
            name, render_static_site(name, build_dir, domain),
            "Configuring nginx → serving static frontend...",
            f"nginx configured, serving {build_dir} on port 80",
        )

    async def configure_fullstack(
        self,
        name: str,
        backend_port: int,
        frontend_mode: str,
        build_dir: Union[str, Path] = "",
        frontend_port: int = 3000,
        domain: str = "_",
    ) -> Optional[str]:
        return await self._apply(
            name,
            render_fullstack(name, backend_port, frontend_mode, build_dir, frontend_port, domain),
            "Configuring nginx fullstack proxy (API + Frontend)...",
            f"nginx fullstack config applied (/api → :{backend_port}, / → frontend)",
        )

    async def _apply(self, name: str, content: str, message: str, done: str) -> Optional[str]:
        """Returns the site file path, or None when any step failed"""
        available = self.sites_available / name
        enabled = self.sites_enabled / name

        with self.presenter.status(message) as status:
            try:
                async with aiofiles.open(available, "w", encoding="utf-8") as f:
                    await f.write(content)
            except OSError as e:
                logger.log_error_with_context(e, "nginx config write")
                status.fail(f"nginx config failed: {e}")
                return None

            link = await self.executor.run(["ln", "-sf", str(available), str(enabled)])
            if not link.success:
                status.fail(f"nginx site enable failed: {link.stderr[:120]}")
                return None

            test = await self.executor.run(["nginx", "-t"])
            if not test.success:
                status.fail(f"nginx config test failed: {test.stderr.strip()[:200]}")
                return None

            reload = await self.executor.run(["systemctl", "reload", "nginx"])
            if not reload.success:
                status.fail(f"nginx reload failed: {reload.stderr[:120]}")
                return None

            status.succeed(done)
            return str(available)
