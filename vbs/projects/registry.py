"""
Project Registry - process-wide index of built projects (~/.vbs/projects.json)

The registry is a cache: a project directory with a valid config.vbs is the
source of truth. The document is loaded, mutated and written back whole.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiofiles
from pydantic import ValidationError

from vbs.logging_config import logger
from vbs.schemas import ProjectRecord


async def atomic_write_json(path: Union[str, Path], data: Any) -> None:
    """Write ``data`` to a temp file beside ``path`` and rename it into place"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    os.close(fd)
    try:
        async with aiofiles.open(tmp_name, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, ensure_ascii=False))
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class ProjectRegistry:
    """Repository over the registry document ``{"projects": [...]}``"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    async def _load_raw(self) -> List[Dict[str, Any]]:
        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                data = json.loads(await f.read())
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Registry {self.path} unreadable, treating as empty: {e}")
            return []

        projects = data.get("projects") if isinstance(data, dict) else None
        return projects if isinstance(projects, list) else []

    async def load(self) -> List[ProjectRecord]:
        """Valid entries, most recently registered first; malformed entries are skipped"""
        records = []
        for entry in await self._load_raw():
            try:
                records.append(ProjectRecord.model_validate(entry))
            except ValidationError:
                logger.warning(f"Skipping malformed registry entry: {str(entry)[:120]}")
        return records

    async def save(self, records: List[ProjectRecord]) -> None:
        await atomic_write_json(self.path, {"projects": [r.to_json_dict() for r in records]})

    async def register(self, record: ProjectRecord) -> None:
        """Insert ``record`` first, replacing any entry with the same name"""
        records = [r for r in await self.load() if r.name != record.name]
        records.insert(0, record)
        await self.save(records)
        logger.info(f"Registered project {record.name} -> {record.dir}",
                    extra={"event_type": "registry", "project_dir": record.dir})

    async def list_projects(self) -> List[ProjectRecord]:
        return await self.load()

    async def find(self, name: str) -> Optional[ProjectRecord]:
        for record in await self.load():
            if record.name == name:
                return record
        return None

    async def remove(self, name: str) -> bool:
        records = await self.load()
        kept = [r for r in records if r.name != name]
        if len(kept) == len(records):
            return False
        await self.save(kept)
        return True
