"""
Deployment summary - plaintext report written to the project and the cwd
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple, Union

import aiofiles
import httpx

from vbs import __version__
from vbs.executor import CommandExecutor
from vbs.logging_config import logger
from vbs.schemas import BODY_METHODS, Endpoint, ProjectConfig


SUMMARY_FILE = "summary.txt"
PUBLIC_IP_URL = "https://ifconfig.me"
PUBLIC_IP_TIMEOUT = 3.0
UNKNOWN_IP = "YOUR_SERVER_IP"
RULE = "═" * 55


# ==================== Server address ====================

async def resolve_server_ip(
    supplied: Optional[str] = None,
    executor: Optional[CommandExecutor] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """SERVER_IPV4, then ``supplied``, then ifconfig.me, then ``hostname -I``"""
    environ = os.environ if environ is None else environ
    configured = (environ.get("SERVER_IPV4") or "").strip()
    if configured:
        return configured
    if supplied:
        return supplied

    try:
        async with httpx.AsyncClient(timeout=PUBLIC_IP_TIMEOUT, transport=transport) as client:
            response = await client.get(PUBLIC_IP_URL, headers={"Accept": "text/plain"})
        candidate = response.text.strip().splitlines()[0].strip() if response.text.strip() else ""
        if response.status_code == 200 and candidate and " " not in candidate:
            return candidate
    except httpx.HTTPError as e:
        logger.debug(f"Public IP lookup failed: {e}")

    if executor is not None:
        result = await executor.run(["hostname", "-I"], timeout=5)
        if result.success and result.stdout.split():
            return result.stdout.split()[0]

    return UNKNOWN_IP


# ==================== Sections ====================

def _body(ep: Endpoint) -> str:
    return json.dumps(ep.example_body, ensure_ascii=False)


def endpoints_section(endpoints: Sequence[Endpoint], base: str) -> str:
    if not endpoints:
        return ""

    public = [e for e in endpoints if not e.requires_auth]
    protected = [e for e in endpoints if e.requires_auth]
    out = ["ENDPOINTS", f"  Base URL: {base}", ""]

    if public:
        out.append("  [PUBLIC]")
        for ep in public:
            out.append(f"  {ep.method:<6} {base}{ep.path}")
            out.append(f"         → {ep.description}")
            if ep.example_body is not None:
                out.append(f"         Body: {_body(ep)}")
            out.append("")

    if protected:
        out.append("  [PROTECTED - Bearer Token Required]")
        for ep in protected:
            out.append(f"  {ep.method:<6} {base}{ep.path}")
            out.append("         Headers: Authorization: Bearer {token}")
            out.append(f"         → {ep.description}")
            if ep.example_body is not None:
                out.append(f"         Body: {_body(ep)}")
            out.append("")

    return "\n".join(out) + "\n"


def curl_section(endpoints: Sequence[Endpoint], base: str) -> str:
    if not endpoints:
        return "CURL EXAMPLES\n  (no endpoints)\n"

    out = ["CURL EXAMPLES"]
    for ep in endpoints:
        out.append("")
        out.append(f"  # {ep.description}:")
        auth = ' \\\n    -H "Authorization: Bearer $TOKEN"' if ep.requires_auth else ""
        if ep.method in BODY_METHODS:
            command = f'  curl -X {ep.method} {base}{ep.path} \\\n    -H "Content-Type: application/json"{auth}'
            if ep.example_body is not None:
                command += f" \\\n    -d '{_body(ep)}'"
        elif ep.method == "GET":
            command = f"  curl {base}{ep.path}{auth}"
        else:
            command = f"  curl -X {ep.method} {base}{ep.path}{auth}"
        out.append(command)
    return "\n".join(out) + "\n"


def test_section(results: Sequence) -> str:
    if not results:
        return "TEST RESULTS\n  No test results recorded.\n"

    passed = sum(1 for r in results if r.passed)
    total = len(results)
    out = [
        "TEST RESULTS",
        f"  Total:  {total}",
        f"  Passed: {passed}/{total} {'✔' if passed == total else '⚠'}",
        "",
    ]
    for r in results:
        mark = "✔" if r.passed else "✖"
        status = str(r.status or "ERR")
        out.append(f"  {mark}  {r.method:<6} {r.path:<32} → {status:<4} ({r.elapsed_ms}ms)  {r.note}")
    return "\n".join(out) + "\n"


def warnings_section(warnings: Sequence) -> str:
    if not warnings:
        return "WARNINGS\n  None, every phase completed.\n"
    out = ["WARNINGS"]
    for w in warnings:
        out.append(f"  [{w.phase}] {w.message}")
    return "\n".join(out) + "\n"


def response_bodies_section(results: Sequence) -> str:
    out = ["RESPONSE BODIES"]
    for r in results:
        out.append(f"  {r.method} {r.path} → {r.status or 'ERR'}")
        out.append(f"    {(r.body or '(empty)').strip()}")
    return "\n".join(out) + "\n"


def server_section(config: ProjectConfig, project_dir: str, server_ip: str) -> str:
    nginx = config.server.nginx
    if config.type == "api" and config.backend:
        name, port = config.backend.pm2_name, config.backend.port
        return "\n".join([
            "SERVER",
            f"  Port:       {port}",
            f"  Process:    pm2 (name: {name})",
            f"  URL:        http://{server_ip}:{port}",
            "",
            f"  pm2 stop:     pm2 stop {name}",
            f"  pm2 restart:  pm2 restart {name}",
            f"  pm2 logs:     pm2 logs {name}",
        ])

    frontend = config.frontend
    framework = (frontend.framework if frontend else None) or "react"
    front_pm2 = frontend.pm2_name if frontend else None

    if config.type == "frontend":
        lines = ["SERVER", f"  Type:       Frontend ({framework})"]
        if nginx:
            lines += [f"  nginx:      {nginx}", f"  URL:        http://{server_ip}"]
        elif frontend and frontend.port:
            lines.append(f"  Port:       {frontend.port}")
        lines.append("")
        if frontend and frontend.build_command:
            lines.append(f"  Build:      {frontend.build_command}")
        if front_pm2:
            lines += [f"  pm2 restart:  pm2 restart {front_pm2}", f"  pm2 logs:     pm2 logs {front_pm2}"]
        else:
            lines.append("  nginx serves the build output")
        return "\n".join(lines)

    backend = config.backend
    lines = ["SERVER", f"  Type:       Full-Stack (Express + {framework})"]
    if backend:
        lines.append(f"  Backend:    port {backend.port}  ·  pm2: {backend.pm2_name}")
    if front_pm2:
        lines.append(f"  Frontend:   port {frontend.port}  ·  pm2: {front_pm2}")
    else:
        lines.append("  Frontend:   nginx (static build)")
    if nginx and backend:
        lines += [f"  nginx:      {nginx}",
                  f"  URL:        http://{server_ip}  (/api → :{backend.port}, / → frontend)"]
    elif backend:
        lines.append(f"  Backend URL:  http://{server_ip}:{backend.port}")
    lines.append("")
    if backend:
        lines += [f"  pm2 restart:  pm2 restart {backend.pm2_name}", f"  pm2 logs:     pm2 logs {backend.pm2_name}"]
    if front_pm2:
        lines.append(f"  pm2 restart frontend: pm2 restart {front_pm2}")
    lines.append(f"  Rebuild frontend:     cd {project_dir}/frontend && npm run build")
    return "\n".join(lines)


def env_var_names(answers: Mapping[str, object]) -> List[str]:
    """Names only; values stay in the project's .env"""
    names = ["PORT", "NODE_ENV"]
    keys = {k.lower() for k in answers}
    if keys & {"db_name", "database_name", "database_url"}:
        names += ["DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD", "DATABASE_URL"]
    if any("jwt" in k for k in keys):
        names.append("JWT_SECRET")
    return names


# ==================== Document ====================

def generate_summary(
    config: ProjectConfig,
    project_dir: Union[str, Path],
    server_ip: str,
    test_results: Sequence = (),
    ai_notes: str = "",
    extended: bool = False,
    warnings: Sequence = (),
    version: str = __version__,
) -> str:
    """Plaintext deployment report.

    Every form has project, server, endpoints, curl examples, tests and the
    AI notes; ``extended`` adds the phase warnings and the test response bodies.
    """
    project_dir = str(project_dir)
    generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    api_port = config.backend.port if config.backend else config.port
    base = f"http://{server_ip}:{api_port}"
    has_api = config.type != "frontend"

    parts = [
        RULE,
        "  VBS - Virtual Based Scenography  |  Deployment Summary",
        f"  Generated: {generated}",
        f"  Version:   v{version}",
        RULE,
        "",
        "PROJECT",
        f"  Name:       {config.name}",
        f"  Type:       {config.type}",
        f"  Directory:  {project_dir}",
        f"  Stack:      {', '.join(config.stack)}",
        "",
        server_section(config, project_dir, server_ip),
        "",
    ]

    if has_api:
        section = endpoints_section(config.endpoints, base)
        if section:
            parts.append(section)
        parts.append(curl_section(config.endpoints, base))

    parts.append(test_section(test_results))

    notes = (ai_notes or "No notes available.").strip()
    parts += ["AI NOTES", "  " + notes.replace("\n", "\n  "), ""]

    if extended:
        parts.append(warnings_section(warnings))
        if test_results:
            parts.append(response_bodies_section(test_results))

    parts += [
        "ENVIRONMENT",
        f"  {project_dir}/.env  ← DO NOT commit this file!",
        f"  Variables: {', '.join(env_var_names(config.answers))}",
        "",
        "CONFIG",
        f"  {project_dir}/config.vbs  ← Project config (safe to commit)",
        f"  Load project: vbs open {config.name}",
        f"  Modify:       vbs modify {config.name} prompt='...'",
        "",
        RULE,
        f"  Created with VBS - Virtual Based Scenography v{version}",
        RULE,
        "",
    ]
    return "\n".join(parts)


async def write_summary_files(
    summary: str,
    project_dir: Union[str, Path],
    cwd: Optional[Union[str, Path]] = None,
) -> Tuple[List[Path], List[Tuple[Path, str]]]:
    """Write ``summary.txt`` into the project directory and ``cwd``.

    Each target is written on its own; returns ``(written, failed)`` where
    ``failed`` pairs a path with its error.
    """
    targets = [Path(project_dir) / SUMMARY_FILE]
    cwd_target = Path(cwd or os.getcwd()) / SUMMARY_FILE
    if cwd_target.resolve() != targets[0].resolve():
        targets.append(cwd_target)

    written: List[Path] = []
    failed: List[Tuple[Path, str]] = []
    for target in targets:
        try:
            async with aiofiles.open(target, "w", encoding="utf-8") as f:
                await f.write(summary)
        except OSError as e:
            logger.log_error_with_context(e, f"summary write {target}")
            failed.append((target, str(e)))
        else:
            written.append(target)
    return written, failed
