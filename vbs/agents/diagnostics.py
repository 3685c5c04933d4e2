"""
Diagnostics Agent - plain-text notes on test results and launch failures
"""

from typing import Iterable

from vbs.agents.base_agent import BaseAgent


class DiagnosticsAgent(BaseAgent):
    """Short free-text feedback on the fast model"""

    name = "diagnostics"
    role = "Deployment feedback"

    TEST_NOTES_PROMPT = """You are the VBS deployment analyzer. Analyze HTTP endpoint test results and give brief, practical feedback.

Keep the response under 200 words. Be direct and actionable.
Mention: overall status, failing endpoints, security observations, quick tips."""

    DIAGNOSE_PROMPT = """You are the VBS deployment debugger. Analyze Node.js/pm2 startup logs and identify the root cause.

Be concise (under 150 words). State:
1. Root cause (one sentence)
2. Most likely fix (one or two steps)"""

    async def analyze_test_results(self, results: Iterable, project_name: str) -> str:
        lines = []
        for r in results:
            status = r.status or "ERR"
            verdict = "PASS" if r.passed else "FAIL"
            lines.append(f"{r.method} {r.path}: HTTP {status} ({r.elapsed_ms}ms) - {verdict} [{r.note}]")

        user_message = f'Project "{project_name}" endpoint test results:\n\n' + "\n".join(lines)
        text = await self._call_llm(self.config.fast_model, self.TEST_NOTES_PROMPT, user_message, 512)
        return text.strip()

    async def diagnose_failure(self, logs: str, process_name: str) -> str:
        user_message = f'pm2/node startup logs for "{process_name}":\n\n{logs[:3000]}'
        text = await self._call_llm(self.config.fast_model, self.DIAGNOSE_PROMPT, user_message, 512)
        return text.strip()
