"""
Fixer Agent - patches source files after a failed build
"""

from typing import List, Optional

from vbs.agents.base_agent import BaseAgent
from vbs.llm.client import TokenCallback
from vbs.schemas import FileRecord, FixResult


class FixerAgent(BaseAgent):
    """
    Fixer Agent (Auto Debugger)

    Responsibilities:
    - Read the build error log and a bounded source snapshot
    - Return complete corrected files for the reported errors only
    """

    name = "fixer"
    role = "Build error fixing"

    SYSTEM_PROMPT = """You are the VBS (Virtual Based Scenography) build error fixer.

You receive build error logs and the source files that caused them.
Return ONLY valid JSON (no markdown):

{
  "patches": [
    { "path": "relative/path/to/file", "content": "complete corrected file content" }
  ],
  "explanation": "what was wrong and what was fixed"
}

Rules:
- COMPLETE file contents, never diffs or fragments
- Only files that need changes
- Fix ONLY the reported errors: no refactoring, renaming or new features
- Missing import: add it. Type error: fix the annotation
- Wrong or missing dependency: fix package.json
- Broken config (tsconfig, vite.config, next.config): fix the config
- Paths are relative to the directory the build runs in"""

    async def fix(
        self,
        error_logs: str,
        source_files: List[FileRecord],
        project_name: str,
        model: Optional[str] = None,
        on_token: Optional[TokenCallback] = None,
    ) -> FixResult:
        files_dump = "\n\n".join(f"=== {f.path} ===\n{f.content}" for f in source_files)

        user_message = (
            f'Build failed for project "{project_name}".\n\n'
            f"=== BUILD ERROR LOG ===\n{error_logs[:self.config.fix_error_chars]}\n\n"
            f"=== SOURCE FILES ({len(source_files)} files) ===\n"
            f"{files_dump[:self.config.fix_snapshot_chars]}\n\n"
            f"Fix the build errors. Return patches for all files that need changes."
        )

        return await self._call_json(
            FixResult,
            model or self.config.reasoning_model,
            self.SYSTEM_PROMPT,
            user_message,
            max_tokens=16384,
            on_token=on_token,
        )
