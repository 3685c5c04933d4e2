from vbs.orchestrator.context import BuildRequest, DeploymentReport, PhaseWarning, RunContext
from vbs.orchestrator.pipeline import BuildPipeline
from vbs.orchestrator.modify import ModifyFlow, ModificationOutcome
from vbs.orchestrator.commands import list_projects, open_project

__all__ = [
    "BuildRequest",
    "DeploymentReport",
    "PhaseWarning",
    "RunContext",
    "BuildPipeline",
    "ModifyFlow",
    "ModificationOutcome",
    "list_projects",
    "open_project",
]
