"""
Run context - the immutable record threaded through the build phases

Each phase receives a RunContext and returns a new one via ``evolve``; nothing
is mutated in place, so any phase can be exercised on a recorded context.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple

from vbs.schemas import Analysis, ConfigQuestion, GeneratedProject, ProjectConfig, slugify


@dataclass(frozen=True)
class BuildRequest:
    """What the user asked for; fixed once the run starts"""
    prompt: str
    project_type: str = "api"
    show_host: bool = False
    extended_summary: bool = False
    debug: bool = False
    assume_yes: bool = False
    base_dir: Optional[str] = None


@dataclass(frozen=True)
class PhaseWarning:
    """A phase-local failure reported in the final summary"""
    phase: str
    message: str


@dataclass(frozen=True)
class RunContext:
    request: BuildRequest
    analysis: Optional[Analysis] = None
    questions: Tuple[ConfigQuestion, ...] = ()
    answers: Dict[str, Any] = field(default_factory=dict)
    project_dir: Optional[str] = None
    project: Optional[GeneratedProject] = None
    written_files: Tuple[str, ...] = ()
    build_succeeded: Optional[bool] = None
    launches: Tuple[Any, ...] = ()
    nginx_config: Optional[str] = None
    test_results: Tuple[Any, ...] = ()
    ai_notes: str = ""
    server_ip: Optional[str] = None
    project_config: Optional[ProjectConfig] = None
    summary_paths: Tuple[str, ...] = ()
    warnings: Tuple[PhaseWarning, ...] = ()

    def evolve(self, **changes: Any) -> "RunContext":
        return replace(self, **changes)

    def warn(self, phase: str, message: str) -> "RunContext":
        return replace(self, warnings=self.warnings + (PhaseWarning(phase, message),))

    @property
    def project_name(self) -> str:
        return self.answers.get("projectName") or (
            self.analysis.suggested_project_name if self.analysis else "project"
        )

    @property
    def project_type(self) -> str:
        return self.request.project_type


def _port(value: Any, default: int) -> int:
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return port if 1 <= port <= 65535 else default


def derive_answers(
    answers: Dict[str, Any],
    project_type: str,
    analysis: Analysis,
    project_dir: str,
) -> Dict[str, Any]:
    """Answers plus the fields the later phases rely on.

    api: ``port`` (3000); fullstack: ``backendPort`` (3001), ``frontendPort``
    (3000) and ``port`` equal to the backend port; frontend: ``port`` (3000).
    """
    derived = dict(answers)
    derived["projectName"] = slugify(
        str(answers.get("project_name") or analysis.suggested_project_name),
        fallback=analysis.suggested_project_name,
    )
    derived["projectDir"] = project_dir

    if project_type == "fullstack":
        backend = _port(answers.get("backend_port") or answers.get("port"), 3001)
        derived["backendPort"] = backend
        derived["frontendPort"] = _port(answers.get("frontend_port"), 3000)
        derived["port"] = backend
    elif project_type == "frontend":
        derived["port"] = _port(answers.get("port") or answers.get("frontend_port"), 3000)
    else:
        derived["port"] = _port(answers.get("port") or answers.get("backend_port"), 3000)
    return derived


@dataclass
class DeploymentReport:
    """What the final success panel shows"""
    project_name: str
    project_type: str
    project_dir: str
    port: Optional[int] = None
    backend_port: Optional[int] = None
    frontend_port: Optional[int] = None
    server_ip: Optional[str] = None
    show_host: bool = False
    backend_pm2: Optional[str] = None
    frontend_pm2: Optional[str] = None
    nginx_config: Optional[str] = None
    processes_online: Dict[str, bool] = field(default_factory=dict)
    tests_passed: int = 0
    tests_total: int = 0
    summary_paths: Tuple[str, ...] = ()
    warnings: Tuple[PhaseWarning, ...] = ()

    @property
    def success(self) -> bool:
        return not self.warnings

    @classmethod
    def from_context(cls, ctx: RunContext) -> "DeploymentReport":
        config = ctx.project_config
        answers = ctx.answers
        return cls(
            project_name=ctx.project_name,
            project_type=ctx.project_type,
            project_dir=ctx.project_dir or "",
            port=answers.get("port"),
            backend_port=answers.get("backendPort"),
            frontend_port=answers.get("frontendPort"),
            server_ip=ctx.server_ip,
            show_host=ctx.request.show_host,
            backend_pm2=config.backend.pm2_name if config and config.backend else None,
            frontend_pm2=config.frontend.pm2_name if config and config.frontend else None,
            nginx_config=ctx.nginx_config,
            processes_online={launch.name: launch.online for launch in ctx.launches},
            tests_passed=sum(1 for r in ctx.test_results if r.passed),
            tests_total=len(ctx.test_results),
            summary_paths=ctx.summary_paths,
            warnings=ctx.warnings,
        )
