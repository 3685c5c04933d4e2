"""
Config Store - per-project config.vbs

config.vbs lives in the project directory and carries everything needed to
come back to a project later: prompt, stack, processes, endpoints, files and
the modification history.
"""

import json
from pathlib import Path
from typing import Any, Dict, Union

import aiofiles
from pydantic import ValidationError

from vbs.exceptions import ProjectConfigError, ProjectNotFoundError
from vbs.logging_config import logger
from vbs.projects.registry import ProjectRegistry, atomic_write_json
from vbs.schemas import ModificationEntry, ProjectConfig, ProjectRecord, utc_now


CONFIG_FILE = "config.vbs"
MAX_HISTORY = 10
REDACTED = "[set]"

SECRET_MARKERS = ("password", "secret", "token", "api_key", "apikey", "database_url")


def redact_answers(answers: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``answers`` with secret values replaced by a marker"""
    redacted = {}
    for key, value in answers.items():
        if any(marker in key.lower() for marker in SECRET_MARKERS):
            if value not in (None, ""):
                redacted[key] = REDACTED
            continue
        redacted[key] = value
    return redacted


class ConfigStore:
    """Reads and writes config.vbs documents"""

    @staticmethod
    def path_for(project_dir: Union[str, Path]) -> Path:
        return Path(project_dir) / CONFIG_FILE

    def exists(self, project_dir: Union[str, Path]) -> bool:
        return self.path_for(project_dir).is_file()

    async def read(self, project_dir: Union[str, Path]) -> ProjectConfig:
        path = self.path_for(project_dir)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                data = json.loads(await f.read())
        except FileNotFoundError as e:
            raise ProjectConfigError(str(path), "missing") from e
        except (OSError, json.JSONDecodeError) as e:
            raise ProjectConfigError(str(path), f"unreadable ({e})") from e

        try:
            return ProjectConfig.model_validate(data)
        except ValidationError as e:
            raise ProjectConfigError(str(path), "not a valid project configuration") from e

    async def write(self, project_dir: Union[str, Path], config: ProjectConfig) -> Path:
        path = self.path_for(project_dir)
        await atomic_write_json(path, config.to_json_dict())
        logger.debug(f"Wrote {path}")
        return path

    async def update(self, project_dir: Union[str, Path], **changes: Any) -> ProjectConfig:
        """Merge ``changes`` into the stored config and bump ``updatedAt``"""
        existing = await self.read(project_dir)
        merged = {**existing.to_json_dict(), **changes, "updatedAt": utc_now()}
        config = ProjectConfig.model_validate(merged)
        await self.write(project_dir, config)
        return config

    async def append_history(
        self,
        project_dir: Union[str, Path],
        entry: ModificationEntry,
        **changes: Any,
    ) -> ProjectConfig:
        """Record ``entry`` newest first (at most MAX_HISTORY kept) along with ``changes``"""
        existing = await self.read(project_dir)
        history = [entry] + list(existing.modification_history)
        return await self.update(
            project_dir,
            modificationHistory=[h.to_json_dict() for h in history[:MAX_HISTORY]],
            **changes,
        )


async def resolve_project(name: str, registry: ProjectRegistry, store: ConfigStore) -> ProjectRecord:
    """Registry entry for ``name``, or a record built from a directory named ``name``.

    Raises:
        ProjectNotFoundError: neither the registry nor the filesystem knows it
    """
    record = await registry.find(name)
    if record is not None:
        return record

    directory = Path(name).expanduser()
    if directory.is_dir() and store.exists(directory):
        try:
            config = await store.read(directory)
        except ProjectConfigError as e:
            raise ProjectNotFoundError(name, reason=f"has an invalid {CONFIG_FILE}") from e
        logger.info(f"Resolved {name} through its directory", extra={"event_type": "registry"})
        return ProjectRecord(
            name=config.name,
            dir=str(directory.resolve()),
            type=config.type,
            stack=config.stack,
            port=config.port,
            created_at=config.created_at,
        )

    raise ProjectNotFoundError(name)
