"""
Install & Build - npm install plus the build-with-auto-fix loop

A failed build is handed to the Fixer together with a bounded snapshot of the
sources; its patches are written and the build is retried, up to a fixed
number of attempts. Neither a failed install nor a build that never passes
stops the run: the project stays on disk in its last state. Fixer errors
(timeout, unparseable or invalid output) are not caught here.
"""

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Union

import aiofiles

from vbs.agents.fixer import FixerAgent
from vbs.config import VBSConfig
from vbs.executor import CommandExecutor
from vbs.logging_config import logger
from vbs.schemas import FileRecord
from vbs.system.writer import apply_patches
from vbs.ui.presenter import Presenter


SKIP_DIRS = {"node_modules", "dist", "build", ".next", ".git", "coverage", "logs", ".cache"}
SKIP_FILES = {"package-lock.json", "yarn.lock", "pnpm-lock.yaml", ".env"}
SOURCE_EXTENSIONS = {
    ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".json",
    ".css", ".scss", ".html", ".vue",
}
PRIMARY_SOURCE_DIR = "src"

INSTALL_TIMEOUT = 900.0
BUILD_TIMEOUT = 900.0


def _iter_source_paths(root: Path) -> List[Path]:
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for filename in sorted(filenames):
            if filename in SKIP_FILES:
                continue
            if Path(filename).suffix.lower() in SOURCE_EXTENSIONS:
                found.append(Path(dirpath) / filename)
    return found


async def collect_source_snapshot(root: Union[str, Path], max_chars: int) -> List[FileRecord]:
    """Source files under ``root`` for the Fixer, ``src/`` first, capped at ``max_chars``.

    The last file that crosses the cap is truncated; nothing after it is read.
    """
    root = Path(root)
    paths = _iter_source_paths(root)
    primary = [p for p in paths if p.relative_to(root).parts[0] == PRIMARY_SOURCE_DIR]
    others = [p for p in paths if p.relative_to(root).parts[0] != PRIMARY_SOURCE_DIR]

    snapshot: List[FileRecord] = []
    remaining = max_chars
    for path in primary + others:
        if remaining <= 0:
            break
        try:
            async with aiofiles.open(path, "r", encoding="utf-8", errors="replace") as f:
                content = await f.read()
        except OSError as e:
            logger.debug(f"Skipping unreadable {path}: {e}")
            continue
        content = content[:remaining]
        remaining -= len(content)
        snapshot.append(FileRecord(path=path.relative_to(root).as_posix(), content=content))
    return snapshot


@dataclass
class BuildOutcome:
    """Result of the auto-fix loop"""
    success: bool
    attempts: int
    fixes_applied: List[str] = field(default_factory=list)
    last_error: str = ""
    skipped: bool = False


class DependencyInstaller:
    """npm install with one relaxed retry"""

    def __init__(self, executor: CommandExecutor, presenter: Presenter):
        self.executor = executor
        self.presenter = presenter

    async def _npm_install(self, directory: Path) -> Optional[str]:
        """None on success, otherwise the last error text"""
        first = await self.executor.run(["npm", "install", "--prefer-offline"], cwd=directory,
                                        timeout=INSTALL_TIMEOUT)
        if first.success:
            return None
        logger.warning(f"npm install failed in {directory}, retrying with --legacy-peer-deps")
        second = await self.executor.run(["npm", "install", "--legacy-peer-deps"], cwd=directory,
                                         timeout=INSTALL_TIMEOUT)
        if second.success:
            return None
        return (second.stderr or second.stdout).strip()

    async def install(self, directory: Union[str, Path], label: str = "") -> bool:
        directory = Path(directory)
        prefix = f"{label} " if label else ""
        if not (directory / "package.json").exists():
            self.presenter.info(f"No package.json in {directory}, skipping {prefix}install")
            return True

        with self.presenter.status(f"Running npm install {prefix}...") as status:
            error = await self._npm_install(directory)
            if error is None:
                status.succeed(f"{prefix}dependencies installed")
                return True
            status.warn(f"npm install had errors {prefix}, continuing ({error[:80]})")
            logger.log_phase_event("install", "failed", directory=str(directory))
            return False

    async def install_many(self, directories: Sequence[Union[str, Path]]) -> List[bool]:
        """Install several disjoint directories concurrently"""
        targets = [Path(d) for d in directories if (Path(d) / "package.json").exists()]
        if not targets:
            return []

        labels = ", ".join(d.name for d in targets)
        with self.presenter.status(f"Running npm install ({labels})...") as status:
            errors = await asyncio.gather(*(self._npm_install(d) for d in targets))
            failed = [d.name for d, err in zip(targets, errors) if err is not None]
            if failed:
                status.warn(f"npm install had errors in {', '.join(failed)}, continuing")
            else:
                status.succeed(f"Dependencies installed ({labels})")
        for d in failed:
            logger.log_phase_event("install", "failed", directory=d)
        return [err is None for err in errors]


class BuildFixLoop:
    """
    Build, and on failure ask the Fixer for patches and build again.

    Attempt N+1 never starts before attempt N's patches are on disk.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        fixer: FixerAgent,
        presenter: Presenter,
        config: VBSConfig,
    ):
        self.executor = executor
        self.fixer = fixer
        self.presenter = presenter
        self.config = config

    async def run(
        self,
        build_dir: Union[str, Path],
        build_command: str,
        project_name: str,
        model: Optional[str] = None,
    ) -> BuildOutcome:
        build_dir = Path(build_dir)
        max_attempts = max(1, self.config.build_fix_attempts)
        fixes_applied: List[str] = []
        last_error = ""

        for attempt in range(1, max_attempts + 1):
            with self.presenter.status(
                f"Building ({attempt}/{max_attempts}): {build_command}"
            ) as status:
                result = await self.executor.shell(build_command, cwd=build_dir, timeout=BUILD_TIMEOUT)
                if result.success:
                    status.succeed(f"Build succeeded (attempt {attempt})")
                    logger.log_phase_event("build", "success", attempt=attempt)
                    return BuildOutcome(True, attempt, fixes_applied)
                status.fail(f"Build failed (attempt {attempt}/{max_attempts})")

            last_error = result.output
            logger.log_phase_event("build", "failed", attempt=attempt, exit_code=result.exit_code)
            if attempt == max_attempts:
                break

            patches = await self._request_fix(build_dir, last_error, project_name, model)
            if not patches:
                return BuildOutcome(False, attempt, fixes_applied, last_error)

            written = await apply_patches(build_dir, patches)
            fixes_applied.extend(written)
            self.presenter.success(f"Applied {len(written)} patch(es): {', '.join(written[:5])}")

        return BuildOutcome(False, max_attempts, fixes_applied, last_error)

    async def _request_fix(
        self,
        build_dir: Path,
        error_text: str,
        project_name: str,
        model: Optional[str],
    ) -> List[FileRecord]:
        snapshot = await collect_source_snapshot(build_dir, self.config.fix_snapshot_chars)

        with self.presenter.status(f"AI analyzing build errors ({len(snapshot)} files)...") as status:
            fix = await self.fixer.fix(
                error_text,
                snapshot,
                project_name,
                model=model,
                on_token=lambda n: status.update(f"AI fixing build errors... {n:,} chars"),
            )

            if not fix.patches:
                status.warn("Fixer returned no patches")
                return []
            status.succeed(fix.explanation or f"{len(fix.patches)} patch(es) proposed")
        return fix.patches
