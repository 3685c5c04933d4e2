"""
Project commands - ``vbs list`` and ``vbs open <name>``
"""

from pathlib import Path
from typing import List, Optional

from vbs.exceptions import ProjectConfigError
from vbs.logging_config import logger
from vbs.projects.config_store import ConfigStore, resolve_project
from vbs.projects.registry import ProjectRegistry
from vbs.schemas import ProjectConfig, ProjectRecord
from vbs.ui.presenter import Presenter


async def list_projects(registry: ProjectRegistry, presenter: Presenter) -> List[ProjectRecord]:
    records = await registry.list_projects()
    presenter.show_projects(records)
    return records


async def open_project(
    name: str,
    registry: ProjectRegistry,
    store: ConfigStore,
    presenter: Presenter,
) -> Optional[ProjectConfig]:
    """Show a project's info panel.

    An unknown name raises ProjectNotFoundError; a missing or broken
    config.vbs only degrades the panel to the registry entry.
    """
    record = await resolve_project(name, registry, store)
    dir_exists = Path(record.dir).is_dir()

    config = None
    if dir_exists and store.exists(record.dir):
        try:
            config = await store.read(record.dir)
        except ProjectConfigError as e:
            logger.warning(e.message)
            presenter.warning(f"config.vbs could not be read: {e.message}")
    elif dir_exists:
        presenter.warning(f"No config.vbs in {record.dir}")

    presenter.show_project_info(record, config, dir_exists)
    return config
