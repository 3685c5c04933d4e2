"""
Modifier Agent - changes an existing project from its config.vbs
"""

import json

from vbs.agents.base_agent import BaseAgent
from vbs.schemas import ModificationResult, ProjectConfig


class ModifierAgent(BaseAgent):
    """Returns only the files a modification request touches"""

    name = "modifier"
    role = "Project modification"

    SYSTEM_PROMPT = """You are the VBS (Virtual Based Scenography) project modifier.
You receive the project context (config.vbs) and a modification request.
You return ONLY the files that need to be created or changed, not the entire project.

Return ONLY valid JSON (no markdown):
{
  "summary": "One sentence describing what was changed",
  "files": [
    { "path": "relative/path/from/project/root", "content": "complete file content" }
  ],
  "restartRequired": true,
  "rebuildRequired": false,
  "notes": "Anything the user should know"
}

Rules:
- Only files that actually change; never unchanged files
- Complete file contents, never diffs or fragments
- Paths are relative to the project root (full-stack projects keep their backend/ and frontend/ prefixes)
- New dependencies go into the matching package.json
- restartRequired: true if running processes must restart
- rebuildRequired: true if the frontend must be rebuilt"""

    async def generate(self, project_config: ProjectConfig, change_request: str) -> ModificationResult:
        context = project_config.to_json_dict()

        user_message = (
            f"Modify this existing VBS project.\n\n"
            f"MODIFICATION REQUEST:\n{change_request}\n\n"
            f"CURRENT PROJECT CONTEXT (config.vbs):\n{json.dumps(context, indent=2)}\n\n"
            f"Generate ONLY the files that need to change, with complete contents."
        )

        return await self._call_json(
            ModificationResult,
            self.pick_model(project_config.complexity),
            self.SYSTEM_PROMPT,
            user_message,
            max_tokens=8192,
        )
