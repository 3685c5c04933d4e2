"""
Modify Flow - ``vbs modify <name> [change]``

A reduced build pipeline over an existing project: resolve it, ask the
Modifier for the changed files, write them, reinstall/rebuild where needed,
restart its processes and append to the modification history.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiofiles

from vbs.agents import FixerAgent, ModifierAgent
from vbs.config import VBSConfig
from vbs.exceptions import ProjectConfigError, ProjectNotFoundError, UnsafePathError
from vbs.executor import CommandExecutor
from vbs.llm.client import LLMGateway
from vbs.logging_config import logger, set_project
from vbs.orchestrator.context import PhaseWarning
from vbs.projects.config_store import ConfigStore, resolve_project
from vbs.projects.registry import ProjectRegistry
from vbs.schemas import ModificationEntry, ModificationResult, ProjectConfig
from vbs.system.build import BuildFixLoop, DependencyInstaller
from vbs.system.process import ProcessManager
from vbs.system.writer import clean_relative_path, resolve_inside, write_project_files
from vbs.ui.presenter import Presenter
from vbs.ui.prompts import AnswerProvider


MIN_REQUEST_CHARS = 4


@dataclass
class ModificationOutcome:
    name: str
    applied: bool
    summary: str = ""
    written: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    restarted: List[str] = field(default_factory=list)
    warnings: List[PhaseWarning] = field(default_factory=list)


def count_lines(text: str) -> int:
    return len(text.split("\n"))


async def _existing_line_count(path: Path) -> Optional[int]:
    if not path.is_file():
        return None
    async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
        return count_lines(await f.read())


async def plan_line_counts(project_dir: Path, result: ModificationResult) -> Dict[str, Tuple[Optional[int], int]]:
    """{path: (lines before or None for a new file, lines after)} for every safe path"""
    counts = {}
    for record in result.files:
        try:
            target = resolve_inside(project_dir, record.path)
        except UnsafePathError:
            continue
        counts[clean_relative_path(record.path)] = (await _existing_line_count(target), count_lines(record.content))
    return counts


def install_dirs(project_dir: Path, written: List[str]) -> List[Path]:
    """Directories whose package.json changed, in first-seen order"""
    dirs: List[Path] = []
    for path in written:
        if Path(path).name == "package.json":
            directory = (project_dir / path).parent
            if directory not in dirs:
                dirs.append(directory)
    return dirs


class ModifyFlow:
    """Applies one modification request to a registered project"""

    def __init__(
        self,
        config: VBSConfig,
        gateway: LLMGateway,
        presenter: Presenter,
        answers: AnswerProvider,
        executor: Optional[CommandExecutor] = None,
        registry: Optional[ProjectRegistry] = None,
        store: Optional[ConfigStore] = None,
    ):
        self.config = config
        self.presenter = presenter
        self.answer_provider = answers
        self.executor = executor or CommandExecutor()
        self.registry = registry or ProjectRegistry(config.registry_path)
        self.store = store or ConfigStore()

        self.modifier = ModifierAgent(gateway, config)
        self.fixer = FixerAgent(gateway, config)
        self.installer = DependencyInstaller(self.executor, presenter)
        self.build_loop = BuildFixLoop(self.executor, self.fixer, presenter, config)
        self.processes = ProcessManager(self.executor, presenter, settle_seconds=config.launch_settle_seconds)

    async def load(self, name: str) -> Tuple[Path, ProjectConfig]:
        record = await resolve_project(name, self.registry, self.store)
        project_dir = Path(record.dir)
        if not project_dir.is_dir():
            raise ProjectNotFoundError(name, reason=f"directory is missing: {record.dir}")
        try:
            config = await self.store.read(project_dir)
        except ProjectConfigError:
            self.presenter.info(f"Run 'vbs open {name}' to diagnose.")
            raise
        return project_dir, config

    async def run(self, name: str, change_request: Optional[str] = None) -> ModificationOutcome:
        project_dir, config = await self.load(name)
        set_project(config.name)

        self.presenter.success(f"Found project: {config.name}  {project_dir}")
        self.presenter.info(f"Type: {config.type}  Stack: {', '.join(config.stack) or '-'}")

        request = (change_request or "").strip()
        if len(request) < MIN_REQUEST_CHARS:
            request = await self.answer_provider.ask_text(
                "What would you like to change or add?", min_length=MIN_REQUEST_CHARS, default=request or None,
            )
        self.presenter.step(f'Modification: "{request}"')
        logger.log_phase_event("modify", "start", request_chars=len(request))

        # ==================== Generate ====================
        self.presenter.phase(1, "GENERATING MODIFICATIONS")
        with self.presenter.status("AI analyzing project and generating changes...") as status:
            result = await self.modifier.generate(config, request)
            status.succeed(f"{len(result.files)} file(s) to update")

        before = await plan_line_counts(project_dir, result)
        self.presenter.show_modification_plan(result, before)

        if not await self.answer_provider.confirm(f"Apply {len(result.files)} file change(s)?", default=True):
            self.presenter.warning("Modification cancelled.")
            return ModificationOutcome(name=config.name, applied=False, summary=result.summary)

        outcome = ModificationOutcome(name=config.name, applied=True, summary=result.summary)

        # ==================== Write ====================
        self.presenter.phase(2, "WRITING CHANGES")
        outcome.written, outcome.rejected = await write_project_files(project_dir, result.files)
        for path in outcome.written:
            old, new = before.get(path, (None, 0))
            if old is None:
                self.presenter.success(f"{path}  +{new} lines (new file)")
            else:
                self.presenter.success(f"{path}  {new - old:+d} lines")
        for path in outcome.rejected:
            self.presenter.warning(f"Rejected unsafe path: {path}")
            outcome.warnings.append(PhaseWarning("write", f"Rejected {path}"))

        # ==================== Dependencies & build ====================
        dirs = install_dirs(project_dir, outcome.written)
        if dirs or (result.rebuild_required and config.frontend):
            self.presenter.phase(3, "DEPENDENCIES & BUILD")
        for directory in dirs:
            if not await self.installer.install(directory, label=directory.name):
                outcome.warnings.append(PhaseWarning("install", f"npm install failed in {directory}"))

        if result.rebuild_required and config.frontend:
            build_dir = project_dir / "frontend" if config.type == "fullstack" else project_dir
            if build_dir.is_dir():
                build = await self.build_loop.run(
                    build_dir,
                    config.frontend.build_command or "npm run build",
                    config.name,
                    model=self.modifier.pick_model(config.complexity),
                )
                if not build.success:
                    outcome.warnings.append(PhaseWarning("build", "Frontend build still failing"))

        # ==================== Restart ====================
        if result.restart_required:
            names = config.pm2_names
            if names:
                self.presenter.phase(4, "RESTARTING")
            else:
                self.presenter.info("No pm2 processes to restart (served by nginx)")
            for pm2_name in names:
                with self.presenter.status(f"Restarting pm2 process: {pm2_name}...") as status:
                    if await self.processes.restart(pm2_name):
                        outcome.restarted.append(pm2_name)
                        status.succeed(f"{pm2_name} restarted")
                    else:
                        status.fail(f"Could not restart {pm2_name}, it may not be running")
                        outcome.warnings.append(PhaseWarning("restart", f"{pm2_name} not restarted"))

        # ==================== History ====================
        entry = ModificationEntry(request=request, files=outcome.written, summary=result.summary)
        files = list(dict.fromkeys(list(config.files) + outcome.written))
        try:
            await self.store.append_history(project_dir, entry, files=files)
        except (OSError, ProjectConfigError) as e:
            logger.log_error_with_context(e, "modification history")
            self.presenter.warning(f"config.vbs not updated: {e}")
            outcome.warnings.append(PhaseWarning("persist", "config.vbs not updated"))

        self.presenter.success(f"Modification applied: {len(outcome.written)} file(s) changed")
        if result.notes:
            self.presenter.show_notes("Notes", result.notes)
        self.presenter.show_warnings(outcome.warnings)
        logger.log_phase_event("modify", "done", files=len(outcome.written), warnings=len(outcome.warnings))
        return outcome
