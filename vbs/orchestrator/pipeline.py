"""
Build Pipeline - the phase sequence behind ``vbs prompt='...'``

    analyze → configure → prepare system → generate → install & build
            → launch → verify → persist

Phases run strictly one after another. Generator and parse errors propagate
out of ``run`` and abort the build; everything else a phase can fail at is
recorded as a PhaseWarning and the run carries on.
"""

import asyncio
import os
from dataclasses import replace
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from vbs.agents import (
    AnalyzerAgent,
    CodeGeneratorAgent,
    DiagnosticsAgent,
    FixerAgent,
    QuestionerAgent,
)
from vbs.config import VBSConfig
from vbs.exceptions import VBSError
from vbs.executor import CommandExecutor, is_root
from vbs.llm.client import LLMGateway
from vbs.logging_config import logger, set_project
from vbs.orchestrator.context import BuildRequest, DeploymentReport, RunContext, derive_answers
from vbs.projects.config_store import ConfigStore, redact_answers
from vbs.projects.registry import ProjectRegistry
from vbs.schemas import BackendConfig, FrontendConfig, ProjectConfig, ProjectRecord, ServerConfig
from vbs.summary import UNKNOWN_IP, generate_summary, resolve_server_ip, write_summary_files
from vbs.system.build import BuildFixLoop, DependencyInstaller
from vbs.system.endpoint_tester import EndpointVerifier
from vbs.system.firewall import FirewallManager, ports_to_open
from vbs.system.nginx import NginxConfigurator
from vbs.system.prerequisites import DatabaseCredentials, SystemPreparation
from vbs.system.process import ProcessManager
from vbs.system.writer import write_project_files
from vbs.ui.presenter import Presenter
from vbs.ui.prompts import AnswerProvider


Phase = Callable[[RunContext], Awaitable[RunContext]]

NO_NOTES = "No notes available."


def is_nextjs(framework: Optional[str]) -> bool:
    return "next" in (framework or "").lower()


def static_root(directory: Path) -> Path:
    """Directory nginx should serve: the build output if there is one"""
    for candidate in ("dist", "build", "out"):
        if (directory / candidate).is_dir():
            return directory / candidate
    return directory


class BuildPipeline:
    """Runs one build request end to end"""

    def __init__(
        self,
        config: VBSConfig,
        gateway: LLMGateway,
        presenter: Presenter,
        answers: AnswerProvider,
        executor: Optional[CommandExecutor] = None,
        registry: Optional[ProjectRegistry] = None,
        store: Optional[ConfigStore] = None,
        verifier: Optional[EndpointVerifier] = None,
        nginx: Optional[NginxConfigurator] = None,
        privileged: Optional[bool] = None,
        cwd: Optional[str] = None,
    ):
        self.config = config
        self.presenter = presenter
        self.answer_provider = answers
        self.executor = executor or CommandExecutor()
        self.registry = registry or ProjectRegistry(config.registry_path)
        self.store = store or ConfigStore()
        self.verifier = verifier or EndpointVerifier(
            timeout=config.endpoint_timeout_seconds, delay=config.endpoint_delay_seconds
        )
        self.privileged = is_root() if privileged is None else privileged
        self.cwd = cwd or os.getcwd()

        self.analyzer = AnalyzerAgent(gateway, config)
        self.questioner = QuestionerAgent(gateway, config)
        self.codegen = CodeGeneratorAgent(gateway, config)
        self.fixer = FixerAgent(gateway, config)
        self.diagnostics = DiagnosticsAgent(gateway, config)

        self.system = SystemPreparation(self.executor, presenter, is_root=self.privileged)
        self.firewall = FirewallManager(self.executor, presenter)
        self.installer = DependencyInstaller(self.executor, presenter)
        self.build_loop = BuildFixLoop(self.executor, self.fixer, presenter, config)
        self.processes = ProcessManager(self.executor, presenter, settle_seconds=config.launch_settle_seconds)
        self.nginx = nginx or NginxConfigurator(self.executor, presenter)

    @property
    def phases(self) -> List[Phase]:
        return [
            self.analyze,
            self.configure,
            self.prepare_system,
            self.generate,
            self.install_and_build,
            self.launch,
            self.verify,
            self.persist,
        ]

    async def run(self, request: BuildRequest) -> DeploymentReport:
        ctx = RunContext(request=request, server_ip=self.config.server_ip)
        logger.info(f"Build started: type={request.project_type}",
                    extra={"event_type": "build_start", "prompt_chars": len(request.prompt)})

        for phase in self.phases:
            logger.log_phase_event(phase.__name__, "start")
            ctx = await phase(ctx)
            logger.log_phase_event(phase.__name__, "done", warnings=len(ctx.warnings))

        report = DeploymentReport.from_context(ctx)
        self.presenter.show_success(report)
        return report

    # ==================== Phase 1: Analyze ====================

    async def analyze(self, ctx: RunContext) -> RunContext:
        self.presenter.phase(1, "ANALYZING REQUEST")
        with self.presenter.status("AI analyzing your request...") as status:
            analysis = await self.analyzer.analyze(ctx.request.prompt, ctx.project_type)
            status.succeed(f"Analysis complete: {analysis.complexity} {ctx.project_type} project")
        self.presenter.show_analysis(analysis, ctx.project_type)
        return ctx.evolve(analysis=analysis)

    # ==================== Phase 2: Configure ====================

    async def configure(self, ctx: RunContext) -> RunContext:
        self.presenter.phase(2, "CONFIGURATION")
        with self.presenter.status("AI generating configuration questions...") as status:
            questions = await self.questioner.generate(ctx.analysis, ctx.request.prompt, ctx.project_type)
            status.succeed(f"{len(questions)} configuration questions ready")

        raw = {}
        for index, question in enumerate(questions, start=1):
            raw[question.id] = await self.answer_provider.ask(question, index, len(questions))

        name_hint = derive_answers(raw, ctx.project_type, ctx.analysis, "")["projectName"]
        project_dir = await self.answer_provider.choose_directory(name_hint)
        answers = derive_answers(raw, ctx.project_type, ctx.analysis, project_dir)

        set_project(answers["projectName"])
        self.presenter.show_answers(questions, answers)
        return ctx.evolve(questions=tuple(questions), answers=answers, project_dir=project_dir)

    # ==================== Phase 3: System ====================

    async def prepare_system(self, ctx: RunContext) -> RunContext:
        self.presenter.phase(3, "SYSTEM CHECK & SETUP")
        analysis = ctx.analysis
        answers = dict(ctx.answers)

        if await self.system.check_node() is None:
            ctx = ctx.warn("system", "Node.js not found")
        if await self.system.check_npm() is None:
            ctx = ctx.warn("system", "npm not found")

        framework = answers.get("frontend_framework") or analysis.frontend_framework
        if ctx.project_type != "frontend" or is_nextjs(framework):
            if not await self.system.check_pm2():
                ctx = ctx.warn("system", "pm2 unavailable")
        if ctx.project_type in ("frontend", "fullstack"):
            if not await self.system.check_nginx():
                ctx = ctx.warn("system", "nginx unavailable")

        ports = ports_to_open(ctx.project_type, answers)
        if self.privileged:
            if not await self.firewall.open_ports(ports):
                ctx = ctx.warn("firewall", f"Could not open ports {ports}")
        else:
            ports_text = ", ".join(f"{p}/tcp" for p in ports)
            self.presenter.warning(f"Not root, skipping firewall. Run manually: ufw allow {ports_text}")
            ctx = ctx.warn("firewall", "Skipped (not root)")

        if analysis.needs_postgres:
            defaults = DatabaseCredentials.for_project(answers["projectName"])
            credentials = replace(
                defaults,
                name=answers.get("database_name") or defaults.name,
                user=answers.get("database_user") or defaults.user,
                password=answers.get("database_password") or defaults.password,
            )
            answers.update(credentials.as_answers())

            if not self.privileged:
                self.presenter.warning(
                    f"PostgreSQL setup requires root, skipping. Create database "
                    f"{credentials.name} for user {credentials.user} manually."
                )
                ctx = ctx.warn("database", "Skipped (not root)")
            elif not await self.system.check_postgres():
                ctx = ctx.warn("database", "PostgreSQL unavailable")
            elif not await self.system.setup_database(credentials):
                ctx = ctx.warn("database", f"Database {credentials.name} setup incomplete")

        with self.presenter.status(f"Creating project directory: {ctx.project_dir}...") as status:
            Path(ctx.project_dir).mkdir(parents=True, exist_ok=True)
            status.succeed(f"Directory ready: {ctx.project_dir}")

        return ctx.evolve(answers=answers)

    # ==================== Phase 4: Generate ====================

    async def generate(self, ctx: RunContext) -> RunContext:
        self.presenter.phase(4, "CODE GENERATION")
        labels = {
            "fullstack": "Generating full-stack project (backend + frontend)...",
            "frontend": "Generating frontend app...",
        }
        with self.presenter.status(labels.get(ctx.project_type, "Generating REST API...")) as status:
            progress = {}

            def on_progress(label: str, chars: int) -> None:
                progress[label] = chars
                parts = "  ".join(f"{k}: {v:,} chars" for k, v in progress.items())
                status.update(f"AI writing code... {parts}")

            project = await self.codegen.generate(
                ctx.analysis,
                ctx.answers,
                ctx.request.prompt,
                ctx.project_type,
                server_ip=ctx.server_ip,
                on_progress=on_progress,
            )
            status.succeed(f"Generated {len(project.files)} files")

        written, rejected = await write_project_files(ctx.project_dir, project.files)
        total_lines = sum(f.content.count("\n") + 1 for f in project.files if f.path in written)
        self.presenter.show_files_written(len(written), total_lines, rejected)

        ctx = ctx.evolve(project=project, written_files=tuple(written))
        if rejected:
            ctx = ctx.warn("generate", f"Rejected {len(rejected)} unsafe path(s)")
        return ctx

    # ==================== Phase 5: Install & Build ====================

    async def install_and_build(self, ctx: RunContext) -> RunContext:
        self.presenter.phase(5, "INSTALL & BUILD")
        root = Path(ctx.project_dir)

        if ctx.project_type == "fullstack":
            results = await self.installer.install_many([root / "backend", root / "frontend"])
            build_dir = root / "frontend"
        else:
            results = [await self.installer.install(root)]
            build_dir = root if ctx.project_type == "frontend" else None

        if not all(results):
            ctx = ctx.warn("install", "npm install had errors")

        build_command = ctx.project.build_command
        if build_dir is None or not build_command or not (build_dir / "package.json").exists():
            return ctx

        outcome = await self.build_loop.run(
            build_dir,
            build_command,
            ctx.project_name,
            model=self.codegen.pick_model(ctx.analysis.complexity),
        )
        if not outcome.success:
            self.presenter.warning("Build still failing after auto-fix, continuing. Check it manually.")
            ctx = ctx.warn("build", f"Build failed after {outcome.attempts} attempt(s)")
        return ctx.evolve(build_succeeded=outcome.success)

    # ==================== Phase 6: Launch ====================

    def _framework(self, ctx: RunContext) -> str:
        return (
            ctx.project.frontend_framework
            or ctx.answers.get("frontend_framework")
            or ctx.analysis.frontend_framework
            or "react"
        )

    async def _launch(self, ctx: RunContext, start_command: str, name: str, cwd: Path) -> RunContext:
        result = await self.processes.launch(
            start_command, name, cwd, diagnose=self.diagnostics.diagnose_failure
        )
        ctx = ctx.evolve(launches=ctx.launches + (result,))
        if not result.online:
            ctx = ctx.warn("launch", f"{name} is not online")
        return ctx

    async def _configure_nginx(self, ctx: RunContext, configure: Callable[[], Awaitable[Optional[str]]]) -> RunContext:
        if not self.privileged:
            self.presenter.warning("Not root, skipping nginx setup. Configure it manually.")
            return ctx.warn("nginx", "Skipped (not root)")
        path = await configure()
        if path is None:
            return ctx.warn("nginx", "nginx configuration failed")
        return ctx.evolve(nginx_config=path)

    async def launch(self, ctx: RunContext) -> RunContext:
        self.presenter.phase(6, "LAUNCHING")
        project = ctx.project
        root = Path(ctx.project_dir)
        name = ctx.project_name
        answers = ctx.answers

        if ctx.project_type == "api":
            return await self._launch(ctx, project.start_command, project.pm2_name, root)

        framework = self._framework(ctx)

        if ctx.project_type == "frontend":
            if is_nextjs(framework) and not ctx.analysis.is_static:
                ctx = await self._launch(ctx, project.start_command, project.pm2_name, root)
                return await self._configure_nginx(
                    ctx, lambda: self.nginx.configure_api_proxy(name, answers["port"])
                )
            return await self._configure_nginx(
                ctx, lambda: self.nginx.configure_static(name, static_root(root))
            )

        backend_dir = root / "backend"
        frontend_dir = root / "frontend"
        ctx = await self._launch(ctx, project.backend_start_command, project.backend_pm2_name, backend_dir)

        if is_nextjs(framework):
            ctx = await self._launch(ctx, project.frontend_start_command, project.frontend_pm2_name, frontend_dir)
            return await self._configure_nginx(ctx, lambda: self.nginx.configure_fullstack(
                name, answers["backendPort"], "nextjs", frontend_port=answers["frontendPort"],
            ))
        return await self._configure_nginx(ctx, lambda: self.nginx.configure_fullstack(
            name, answers["backendPort"], "static", build_dir=static_root(frontend_dir),
        ))

    # ==================== Phase 7: Verify ====================

    async def verify(self, ctx: RunContext) -> RunContext:
        if ctx.project_type == "frontend":
            return ctx

        self.presenter.phase(7, "TESTING ENDPOINTS")
        port = ctx.answers.get("backendPort") or ctx.answers["port"]
        base_url = f"http://localhost:{port}"
        endpoints = ctx.project.all_endpoints

        if not endpoints:
            self.presenter.warning("No endpoints defined, skipping tests")
            return ctx.warn("verify", "No endpoints declared")

        self.presenter.step(f"Testing {len(endpoints)} endpoint(s) at {base_url}...")
        await self._warmup()
        results = await self.verifier.test_all(base_url, endpoints)
        self.presenter.show_test_results(results)

        failed = [r for r in results if not r.passed]
        if failed:
            ctx = ctx.warn("verify", f"{len(failed)}/{len(results)} endpoint(s) failed")

        notes = NO_NOTES
        with self.presenter.status("AI analyzing test results...") as status:
            try:
                notes = await self.diagnostics.analyze_test_results(results, ctx.project_name) or NO_NOTES
            except VBSError as e:
                logger.log_error_with_context(e, "test notes")
                status.warn(f"AI notes unavailable: {e.message}")
            else:
                status.succeed("Analysis complete")
        if notes != NO_NOTES:
            self.presenter.show_notes("AI Notes", notes)

        return ctx.evolve(test_results=tuple(results), ai_notes=notes)

    async def _warmup(self) -> None:
        await asyncio.sleep(self.config.test_warmup_seconds)

    # ==================== Phase 8: Persist ====================

    def build_project_config(self, ctx: RunContext) -> ProjectConfig:
        project = ctx.project
        answers = ctx.answers
        framework = self._framework(ctx)
        backend = frontend = None

        if ctx.project_type == "api":
            backend = BackendConfig(port=answers["port"], framework="express",
                                    start_command=project.start_command, pm2_name=project.pm2_name)
        elif ctx.project_type == "frontend":
            runs_pm2 = is_nextjs(framework) and not ctx.analysis.is_static
            frontend = FrontendConfig(
                port=answers["port"],
                framework="static" if ctx.analysis.is_static else framework,
                pm2_name=project.pm2_name if runs_pm2 else None,
                build_command=project.build_command,
            )
        else:
            backend = BackendConfig(port=answers["backendPort"], framework="express",
                                    start_command=project.backend_start_command,
                                    pm2_name=project.backend_pm2_name)
            frontend = FrontendConfig(
                port=answers["frontendPort"],
                framework=framework,
                pm2_name=project.frontend_pm2_name if is_nextjs(framework) else None,
                build_command=project.build_command,
            )

        stored_answers = redact_answers({k: v for k, v in answers.items() if k != "projectDir"})
        return ProjectConfig(
            name=ctx.project_name,
            type=ctx.project_type,
            is_static=ctx.analysis.is_static,
            complexity=ctx.analysis.complexity,
            prompt=ctx.request.prompt.strip(),
            stack=list(ctx.analysis.detected_stack),
            backend=backend,
            frontend=frontend,
            server=ServerConfig(ip=ctx.server_ip, nginx=ctx.nginx_config),
            answers=stored_answers,
            endpoints=list(project.all_endpoints),
            files=list(ctx.written_files),
        )

    async def persist(self, ctx: RunContext) -> RunContext:
        self.presenter.phase(8, "SAVING PROJECT & SUMMARY")

        server_ip = await resolve_server_ip(ctx.server_ip, self.executor)
        ctx = ctx.evolve(server_ip=None if server_ip == UNKNOWN_IP else server_ip)
        config = self.build_project_config(ctx)
        ctx = ctx.evolve(project_config=config)

        with self.presenter.status("Writing config.vbs...") as status:
            try:
                path = await self.store.write(ctx.project_dir, config)
            except OSError as e:
                logger.log_error_with_context(e, "config.vbs write")
                status.fail(f"config.vbs write failed: {e}")
                ctx = ctx.warn("persist", "config.vbs not written")
            else:
                status.succeed(f"config.vbs saved → {path}")

        try:
            await self.registry.register(ProjectRecord(
                name=config.name,
                dir=str(Path(ctx.project_dir).resolve()),
                type=config.type,
                stack=config.stack,
                port=config.port,
                created_at=config.created_at,
            ))
        except OSError as e:
            logger.log_error_with_context(e, "registry write")
            self.presenter.warning(f"Could not register project: {e}")
            ctx = ctx.warn("persist", "Project not registered")
        else:
            self.presenter.success(f"Registered in {self.registry.path}")

        with self.presenter.status("Generating summary.txt...") as status:
            summary = generate_summary(
                config,
                ctx.project_dir,
                server_ip,
                test_results=ctx.test_results,
                ai_notes=ctx.ai_notes,
                extended=ctx.request.extended_summary,
                warnings=ctx.warnings,
            )
            paths, failed = await write_summary_files(summary, ctx.project_dir, self.cwd)
            if failed and not paths:
                status.fail(f"summary.txt write failed: {failed[0][1]}")
            elif failed:
                status.warn(f"summary.txt written to {paths[0]}, not to {failed[0][0]}")
            else:
                status.succeed(f"summary.txt written ({len(paths)} location(s))")

        for path, _ in failed:
            ctx = ctx.warn("persist", f"summary.txt not written to {path}")
        return ctx.evolve(summary_paths=tuple(str(p) for p in paths))
