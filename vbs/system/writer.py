"""
File Writer - materializes generated files under a project root

Every path is confined to the root: absolute paths and paths that climb out
of it are refused, never written.
"""

from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, List, Optional, Tuple, Union

import aiofiles

from vbs.exceptions import UnsafePathError
from vbs.logging_config import logger
from vbs.schemas import FileRecord


SUBPROJECT_DIRS = ("backend", "frontend")


def clean_relative_path(path: str) -> str:
    """Forward slashes, no leading ``./`` segments"""
    path = (path or "").strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


def resolve_inside(root: Union[str, Path], rel_path: str) -> Path:
    """Resolve ``rel_path`` under ``root`` or raise UnsafePathError"""
    cleaned = clean_relative_path(rel_path)
    if not cleaned or cleaned.startswith("/") or PurePosixPath(cleaned).is_absolute():
        raise UnsafePathError(rel_path)
    # Windows drive letters
    if len(cleaned) > 1 and cleaned[1] == ":":
        raise UnsafePathError(rel_path)

    root_path = Path(root).resolve()
    target = (root_path / cleaned).resolve()
    if target == root_path or not target.is_relative_to(root_path):
        raise UnsafePathError(rel_path)
    return target


def normalize_patch_path(path: str, base_dir_name: str) -> str:
    """Strip a redundant ``backend/`` or ``frontend/`` prefix.

    Patches for a build running inside ``<root>/frontend`` sometimes come back
    as ``frontend/src/App.jsx``; written relative to the build directory that
    would create ``frontend/frontend/src/App.jsx``.
    """
    cleaned = clean_relative_path(path)
    if base_dir_name in SUBPROJECT_DIRS and cleaned.startswith(base_dir_name + "/"):
        return cleaned[len(base_dir_name) + 1:]
    return cleaned


async def write_file(root: Union[str, Path], record: FileRecord) -> Path:
    target = resolve_inside(root, record.path)
    target.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(target, "w", encoding="utf-8") as f:
        await f.write(record.content)
    return target


async def write_project_files(
    root: Union[str, Path],
    files: Iterable[FileRecord],
    on_progress: Optional[Callable[[int, int, str], None]] = None,
) -> Tuple[List[str], List[str]]:
    """Write every file under ``root``.

    Returns:
        (written relative paths, rejected paths)
    """
    files = list(files)
    written: List[str] = []
    rejected: List[str] = []

    Path(root).mkdir(parents=True, exist_ok=True)
    for index, record in enumerate(files, start=1):
        try:
            await write_file(root, record)
        except UnsafePathError as e:
            logger.warning(e.message, extra={"event_type": "unsafe_path", "path": record.path})
            rejected.append(record.path)
            continue
        written.append(clean_relative_path(record.path))
        if on_progress:
            on_progress(index, len(files), record.path)

    logger.info(f"Wrote {len(written)} files to {root} ({len(rejected)} rejected)")
    return written, rejected


async def apply_patches(base_dir: Union[str, Path], patches: Iterable[FileRecord]) -> List[str]:
    """Write fixer/modifier patches relative to ``base_dir``"""
    base = Path(base_dir)
    normalized = [
        FileRecord(path=normalize_patch_path(p.path, base.name), content=p.content)
        for p in patches
    ]
    written, _ = await write_project_files(base, normalized)
    return written
