"""
Presenter - everything VBS shows on the terminal

The orchestrator talks to a Presenter and never prints directly. The rich
implementation renders panels, tables and spinners; the silent one records
events so tests (and --quiet callers) can inspect them.
"""

import os
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rich.box import ROUNDED
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text


TYPE_STYLES = {
    "api": "cyan",
    "frontend": "magenta",
    "fullstack": "green",
}

TYPE_LABELS = {
    "api": "REST API",
    "frontend": "Frontend",
    "fullstack": "Full-Stack",
}

COMPLEXITY_STYLES = {
    "simple": "green",
    "medium": "yellow",
    "complex": "red",
}

SENSITIVE_MARKERS = ("password", "secret", "token", "api_key", "apikey")

TITLE_ART = "\n".join([
    "██╗   ██╗██████╗ ███████╗",
    "██║   ██║██╔══██╗██╔════╝",
    "██║   ██║██████╔╝███████╗",
    "╚██╗ ██╔╝██╔══██╗╚════██║",
    " ╚████╔╝ ██████╔╝███████║",
    "  ╚═══╝  ╚═════╝ ╚══════╝",
])


def is_sensitive(key: str) -> bool:
    key = key.lower()
    return any(marker in key for marker in SENSITIVE_MARKERS)


def truncate(value: str, width: int) -> str:
    return value if len(value) <= width else value[:width - 1] + "…"


class StatusHandle:
    """Spinner-like progress line; finished exactly once"""

    def __init__(self, presenter: "Presenter", message: str):
        self.presenter = presenter
        self.message = message
        self.finished = False

    def __enter__(self) -> "StatusHandle":
        self._start()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self.finished:
            if exc is not None:
                self.fail(f"{self.message} ({type(exc).__name__})")
            else:
                self.succeed(self.message)
        return False

    def _start(self) -> None:
        pass

    def _stop(self) -> None:
        pass

    def update(self, message: str) -> None:
        self.message = message

    def succeed(self, message: Optional[str] = None) -> None:
        self._finish("success", message)

    def fail(self, message: Optional[str] = None) -> None:
        self._finish("error", message)

    def warn(self, message: Optional[str] = None) -> None:
        self._finish("warning", message)

    def _finish(self, level: str, message: Optional[str]) -> None:
        if self.finished:
            return
        self.finished = True
        self._stop()
        getattr(self.presenter, level)(message or self.message)


class Presenter:
    """Interface; every method is a no-op here"""

    def title(self, version: str) -> None:
        pass

    def phase(self, number: int, title: str) -> None:
        pass

    def step(self, message: str) -> None:
        pass

    def info(self, message: str) -> None:
        pass

    def success(self, message: str) -> None:
        pass

    def warning(self, message: str) -> None:
        pass

    def error(self, message: str) -> None:
        pass

    def status(self, message: str) -> StatusHandle:
        return StatusHandle(self, message)

    def show_analysis(self, analysis, project_type: str) -> None:
        pass

    def show_answers(self, questions, answers: Dict[str, Any]) -> None:
        pass

    def show_files_written(self, count: int, total_lines: int, rejected: Sequence[str] = ()) -> None:
        pass

    def show_test_results(self, results) -> None:
        pass

    def show_notes(self, title: str, text: str) -> None:
        pass

    def show_success(self, report) -> None:
        pass

    def show_warnings(self, warnings) -> None:
        pass

    def show_projects(self, records) -> None:
        pass

    def show_project_info(self, record, config, dir_exists: bool) -> None:
        pass

    def show_modification_plan(self, result, line_counts: Dict[str, Tuple[Optional[int], int]]) -> None:
        pass

    def show_error(self, title: str, message: str, hint: Optional[str] = None) -> None:
        pass


class SilentPresenter(Presenter):
    """Records what would have been shown"""

    def __init__(self):
        self.events: List[Tuple[str, Any]] = []

    def _record(self, kind: str, payload: Any = None) -> None:
        self.events.append((kind, payload))

    def messages(self, kind: str) -> List[Any]:
        return [payload for k, payload in self.events if k == kind]

    def phase(self, number, title):
        self._record("phase", (number, title))

    def step(self, message):
        self._record("step", message)

    def info(self, message):
        self._record("info", message)

    def success(self, message):
        self._record("success", message)

    def warning(self, message):
        self._record("warning", message)

    def error(self, message):
        self._record("error", message)

    def show_analysis(self, analysis, project_type):
        self._record("analysis", analysis)

    def show_answers(self, questions, answers):
        self._record("answers", dict(answers))

    def show_test_results(self, results):
        self._record("test_results", list(results))

    def show_notes(self, title, text):
        self._record("notes", (title, text))

    def show_success(self, report):
        self._record("report", report)

    def show_warnings(self, warnings):
        self._record("warnings", list(warnings))

    def show_projects(self, records):
        self._record("projects", list(records))

    def show_project_info(self, record, config, dir_exists):
        self._record("project_info", (record, config, dir_exists))

    def show_modification_plan(self, result, line_counts):
        self._record("modification_plan", (result, dict(line_counts)))

    def show_error(self, title, message, hint=None):
        self._record("error_box", (title, message))


class RichStatusHandle(StatusHandle):
    def _start(self) -> None:
        self._status = self.presenter.console.status(self.message, spinner="dots")
        self._status.start()

    def _stop(self) -> None:
        self._status.stop()

    def update(self, message: str) -> None:
        super().update(message)
        self._status.update(message)


class ConsolePresenter(Presenter):
    """rich-backed terminal output"""

    ICONS = {
        "info": ("◆", "cyan"),
        "step": ("◆", "cyan"),
        "success": ("✓", "green"),
        "error": ("✗", "red"),
        "warning": ("⚠", "yellow"),
    }

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def _log(self, level: str, message: str) -> None:
        icon, style = self.ICONS[level]
        stamp = time.strftime("%H:%M:%S")
        line = Text("  ")
        line.append(icon, style=style)
        line.append(f" [{stamp}] ", style="dim")
        line.append(message)
        self.console.print(line)

    def title(self, version: str) -> None:
        inner = Text(TITLE_ART, style="bold cyan")
        inner.append(f"\n\n       Virtual Based Scenography  v{version}\n", style="bold white")
        inner.append("      AI-powered deployment  ·  API · Frontend · Full-Stack", style="dim")
        self.console.print(Panel(inner, border_style="cyan", expand=False, padding=(1, 2)))

    def phase(self, number: int, title: str) -> None:
        self.console.print()
        self.console.print(Rule(f"[bold white]PHASE {number}  ─  {title}[/]", style="cyan"))

    def step(self, message: str) -> None:
        self._log("step", message)

    def info(self, message: str) -> None:
        self._log("info", message)

    def success(self, message: str) -> None:
        self._log("success", message)

    def warning(self, message: str) -> None:
        self._log("warning", message)

    def error(self, message: str) -> None:
        self._log("error", message)

    def status(self, message: str) -> StatusHandle:
        return RichStatusHandle(self, message)

    # ==================== Build ====================

    def show_analysis(self, analysis, project_type: str) -> None:
        type_style = TYPE_STYLES.get(project_type, "cyan")
        framework = f"  ·  [magenta]{analysis.frontend_framework}[/]" if analysis.frontend_framework else ""
        complexity_style = COMPLEXITY_STYLES.get(analysis.complexity, "white")

        body = (
            f"[bold]Build Type:[/]   [{type_style}]{TYPE_LABELS.get(project_type, project_type)}[/]{framework}\n"
            f"[bold]Stack:[/]        [cyan]{', '.join(analysis.detected_stack)}[/]\n"
            f"[bold]Complexity:[/]   [{complexity_style}]{analysis.complexity}[/]\n"
            f"[bold]Files (~):[/]    {analysis.estimated_files}\n"
            f"[bold]Name:[/]         [magenta]{analysis.suggested_project_name}[/]\n\n"
            f"[dim]{analysis.summary}[/]"
        )
        self.console.print(Panel(body, title="[bold cyan] Analysis Result [/]", border_style="cyan",
                                 box=ROUNDED, padding=(1, 2)))

    def show_answers(self, questions, answers: Dict[str, Any]) -> None:
        table = Table(title="Configuration Summary", title_style="bold cyan", border_style="dim")
        table.add_column("Setting", style="dim", max_width=32)
        table.add_column("Value", max_width=40)

        for q in questions:
            if q.id not in answers:
                continue
            value = "[set]" if is_sensitive(q.id) else truncate(str(answers[q.id]), 37)
            table.add_row(truncate(q.message, 30), value)
        self.console.print(table)

    def show_files_written(self, count: int, total_lines: int, rejected: Sequence[str] = ()) -> None:
        self.success(f"{count} files written ({total_lines} total lines)")
        for path in rejected:
            self.warning(f"Rejected unsafe path: {path}")

    def show_test_results(self, results) -> None:
        results = list(results)
        table = Table(border_style="dim")
        table.add_column("Method", style="cyan")
        table.add_column("Endpoint", max_width=28)
        table.add_column("Status")
        table.add_column("Time", style="dim")
        table.add_column("Result")

        for r in results:
            ok_status = 200 <= (r.status or 0) < 400
            status = Text(str(r.status) if r.status else "ERR", style="green" if ok_status else "red")
            verdict = Text(f"{'✓' if r.passed else '✗'} {r.note}", style="green" if r.passed else "red")
            table.add_row(r.method, r.path, status, f"{r.elapsed_ms}ms", verdict)
        self.console.print(table)

        passed = sum(1 for r in results if r.passed)
        if passed == len(results):
            self.console.print(f"  [bold green]✓ All {len(results)} endpoints passed[/]")
        else:
            self.console.print(f"  [yellow]⚠ {passed}/{len(results)} passed[/]")

    def show_notes(self, title: str, text: str) -> None:
        self.console.print(Panel(text, title=f"[bold cyan] {title} [/]", border_style="cyan", box=ROUNDED))

    def show_success(self, report) -> None:
        ip = report.server_ip if report.show_host and report.server_ip else None
        lines = [f"[bold green]✓ Successfully Deployed![/]", ""]
        lines.append(f"[bold]Name:[/]     [cyan]{report.project_name}[/]")
        lines.append(f"[bold]Type:[/]     [{TYPE_STYLES.get(report.project_type, 'cyan')}]{report.project_type}[/]")
        lines.append(f"[bold]Dir:[/]      [dim]{report.project_dir}[/]")
        lines.append("")

        if report.project_type == "api":
            lines.append(f"[bold]Port:[/]     [cyan]{report.port}[/]")
            lines.append(f"[bold]pm2:[/]      [magenta]{report.backend_pm2}[/]")
            if ip:
                lines.append(f"[bold]URL:[/]      [cyan]http://{ip}:{report.port}[/]")
            lines.append(f"[dim]Logs:[/]     [cyan]pm2 logs {report.backend_pm2}[/]")
        elif report.project_type == "frontend":
            if report.nginx_config:
                lines.append(f"[bold]nginx:[/]    [dim]{report.nginx_config}[/]")
                if ip:
                    lines.append(f"[bold]URL:[/]      [cyan]http://{ip}[/]")
            else:
                lines.append(f"[bold]Port:[/]     [cyan]{report.port}[/]")
            if report.frontend_pm2:
                lines.append(f"[dim]Logs:[/]     [cyan]pm2 logs {report.frontend_pm2}[/]")
        else:
            lines.append(f"[bold]Backend:[/]  port [cyan]{report.backend_port}[/]  ·  pm2: [magenta]{report.backend_pm2}[/]")
            if report.frontend_pm2:
                lines.append(f"[bold]Frontend:[/] port [cyan]{report.frontend_port}[/]  ·  pm2: [magenta]{report.frontend_pm2}[/]")
            else:
                lines.append("[bold]Frontend:[/] nginx serving the build output")
            if report.nginx_config:
                if ip:
                    lines.append(f"[bold]URL:[/]      [cyan]http://{ip}[/]  [dim](/api → backend, / → frontend)[/]")
                lines.append(f"[bold]nginx:[/]    [dim]{report.nginx_config}[/]")
            lines.append(f"[dim]API logs:[/] [cyan]pm2 logs {report.backend_pm2}[/]")

        lines.append("")
        lines.append("[dim]Summary:[/]  [cyan]summary.txt[/]  [dim](current dir)[/]")
        lines.append(f"[dim]Config:[/]   [cyan]{os.path.join(report.project_dir, 'config.vbs')}[/]")
        lines.append("")
        lines.append("[dim]vbs list                    ← all projects[/]")
        lines.append(f"[dim]vbs open {report.project_name[:14]:<18} ← project info[/]")
        lines.append(f"[dim]vbs modify {report.project_name[:13]:<16} ← modify with AI[/]")

        self.console.print(Panel("\n".join(lines), border_style="green", box=ROUNDED, padding=(1, 2)))
        self.show_warnings(report.warnings)

    def show_warnings(self, warnings) -> None:
        warnings = list(warnings)
        if not warnings:
            return
        self.console.print(f"  [yellow]⚠ Completed with {len(warnings)} warning(s):[/]")
        for w in warnings:
            self.console.print(f"    [yellow]•[/] [bold]{w.phase}[/]: {w.message}")

    # ==================== Projects ====================

    def show_projects(self, records) -> None:
        records = list(records)
        if not records:
            self.console.print(Panel(
                "[dim]No projects saved yet.\n\nBuild your first:[/]\n"
                "[cyan]  vbs -h -s prompt='My first API'[/]",
                border_style="dim", box=ROUNDED, padding=(1, 2),
            ))
            return

        table = Table(title="Saved VBS Projects", title_style="bold white", border_style="dim")
        for column in ("#", "Name", "Type", "Stack", "Port", "Directory", "Created"):
            table.add_column(column, header_style="bold cyan")

        for index, record in enumerate(records, start=1):
            style = TYPE_STYLES.get(record.type, "white")
            stack = ", ".join(record.stack) if record.stack else "—"
            exists = os.path.isdir(record.dir)
            table.add_row(
                str(index),
                Text(record.name, style=f"bold {style}"),
                Text(record.type or "api", style=style),
                truncate(stack, 25),
                str(record.port or "—"),
                Text(record.dir if exists else f"{record.dir} ✖", style="dim" if exists else "red"),
                (record.created_at or "—")[:10],
            )
        self.console.print(table)
        self.console.print("  [cyan]vbs open <name>[/]   [dim]— show project details[/]")
        self.console.print("  [cyan]vbs modify <name>[/] [dim]— modify a project with AI[/]")

    def show_project_info(self, record, config, dir_exists: bool) -> None:
        project_type = (config.type if config else None) or record.type or "api"
        style = TYPE_STYLES.get(project_type, "cyan")
        lines = [f"[bold white]Project: [{style}]{record.name}[/][/]", ""]
        lines.append(f"[bold]Type:[/]      [{style}]{project_type}[/]")
        directory = f"[dim]{record.dir}[/]" if dir_exists else f"[red]{record.dir}  ✖ missing[/]"
        lines.append(f"[bold]Directory:[/] {directory}")
        lines.append(f"[bold]Created:[/]   [dim]{_format_time(config.created_at if config else record.created_at)}[/]")
        lines.append(f"[bold]Updated:[/]   [dim]{_format_time(config.updated_at if config else None)}[/]")
        lines.append("")

        if config and config.prompt:
            lines.append(f"[bold]Prompt:[/]    [dim]{truncate(config.prompt, 91)}[/]")
            lines.append("")

        stack = (config.stack if config else None) or record.stack
        if stack:
            lines.append(f"[bold]Stack:[/]     [cyan]{', '.join(stack)}[/]")

        if config and config.backend:
            lines.append(f"[bold]Backend:[/]   port [cyan]{config.backend.port}[/]  •  pm2: [magenta]{config.backend.pm2_name}[/]")
        elif record.port:
            lines.append(f"[bold]Port:[/]      [cyan]{record.port}[/]")
        if config and config.frontend:
            lines.append(
                f"[bold]Frontend:[/]  [magenta]{config.frontend.framework or '—'}[/]  •  "
                f"pm2: [magenta]{config.frontend.pm2_name or '—'}[/]"
            )

        if config and config.server.ip:
            ip = config.server.ip
            if config.type == "fullstack":
                lines.append(f"[bold]URLs:[/]      API: [cyan]http://{ip}:{config.port}[/]  Front: [cyan]http://{ip}[/]")
            elif config.type == "frontend":
                port = config.frontend.port if config.frontend and config.frontend.port else None
                suffix = f":{port}" if port and not config.server.nginx else ""
                lines.append(f"[bold]URL:[/]       [cyan]http://{ip}{suffix}[/]")
            else:
                lines.append(f"[bold]URL:[/]       [cyan]http://{ip}:{config.port}[/]")

        lines.append("")
        names = (config.pm2_names if config else []) or [record.name]
        lines.append("[bold]Quick commands:[/]")
        for name in names:
            lines.append(f"[dim]pm2 logs {name:<20} ← tail logs[/]")
            lines.append(f"[dim]pm2 restart {name:<17} ← restart[/]")
        lines.append("")
        lines.append(f"[dim]{os.path.join(record.dir, 'config.vbs')}  ← full project config[/]")

        if config and config.endpoints:
            lines.append("")
            lines.append(f"[bold]Endpoints:[/] [dim]({len(config.endpoints)} total)[/]")
            for ep in config.endpoints[:6]:
                lock = " [yellow]🔒[/]" if ep.requires_auth else ""
                lines.append(f"[cyan]{ep.method:<7}[/] {ep.path}{lock}  [dim]{ep.description}[/]")
            if len(config.endpoints) > 6:
                lines.append(f"[dim]… and {len(config.endpoints) - 6} more[/]")

        self.console.print(Panel("\n".join(lines), title="[bold cyan] Project Info [/]",
                                 border_style="cyan", box=ROUNDED, padding=(0, 2)))
        self.console.print(f"  [dim]Modify this project:[/] [cyan]vbs modify {record.name} prompt='what to change'[/]")

    def show_modification_plan(self, result, line_counts: Dict[str, Tuple[Optional[int], int]]) -> None:
        lines = [f"[bold]{result.summary}[/]", ""]
        for path, (before, after) in line_counts.items():
            if before is None:
                delta = f"[green]new, {after} lines[/]"
            else:
                diff = after - before
                sign = "+" if diff >= 0 else ""
                delta = f"[dim]{before} → {after} lines ({sign}{diff})[/]"
            lines.append(f"  [cyan]{path}[/]  {delta}")
        if result.notes:
            lines.append("")
            lines.append(f"[dim]{result.notes}[/]")
        self.console.print(Panel("\n".join(lines), title="[bold cyan] Planned Changes [/]",
                                 border_style="cyan", box=ROUNDED, padding=(1, 2)))

    def show_error(self, title: str, message: str, hint: Optional[str] = None) -> None:
        body = f"[red]{message}[/]"
        if hint:
            body += f"\n\n[dim]{hint}[/]"
        self.console.print(Panel(body, title=f"[bold red] ✗ {title} [/]", border_style="red",
                                 box=ROUNDED, padding=(1, 2)))


def _format_time(value: Optional[str]) -> str:
    if not value:
        return "—"
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return value
