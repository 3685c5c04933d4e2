"""
Analyzer Agent - turns the one-line request into a structured Analysis
"""

from vbs.agents.base_agent import BaseAgent
from vbs.schemas import Analysis


class AnalyzerAgent(BaseAgent):
    """
    Analyzer Agent

    Responsibilities:
    - Classify the stack and complexity of the request
    - Decide framework, static-ness and whether a build step is needed
    - Suggest a slug project name
    """

    name = "analyzer"
    role = "Request analysis"

    SYSTEM_PROMPT = """You are VBS (Virtual Based Scenography). You analyze requests to build projects on an Ubuntu VPS.

Return ONLY valid JSON (no markdown, no explanation):

{
  "projectType": string,
  "detectedStack": string[],
  "complexity": "simple" | "medium" | "complex",
  "estimatedFiles": number,
  "requiredSystemPackages": string[],
  "suggestedProjectName": string,
  "frontendFramework": "react" | "nextjs" | null,
  "isStatic": boolean,
  "buildRequired": boolean,
  "summary": string
}

Rules:
- Every key above must be present
- suggestedProjectName: lowercase with hyphens (e.g. "shop-api", "landing-page")
- requiredSystemPackages: system packages only (e.g. ["postgresql"]), never npm packages
- summary: 1-2 sentences
- isStatic: true only for plain HTML/CSS/JS with no build step
- buildRequired: true when "npm run build" is needed before deployment
- Only pick a frontend framework when the request asks for one or clearly needs client-side state; simple sites are static HTML"""

    TYPE_ADDONS = {
        "api": """
This is a REST API / backend service request.
- Default to Express.js unless another framework is named
- PostgreSQL for relational data, MongoDB for documents, SQLite for simple/local storage
- Use JWT for any authentication requirement
- isStatic: false, buildRequired: false""",

        "frontend": """
This is a FRONTEND request.
- Static HTML (isStatic: true, frontendFramework: null, buildRequired: false) for landing pages, portfolios and simple sites
- React (Vite SPA) when React, a dashboard, an admin panel or complex UI state is asked for (buildRequired: true)
- Next.js when Next.js, SSR/SSG or an SEO-heavy content site is asked for (buildRequired: true)
- requiredSystemPackages: ["nginx"]""",

        "fullstack": """
This is a FULL-STACK request.
- Backend: Express.js REST API in backend/
- Frontend: React (Vite) or Next.js in frontend/, never null
- requiredSystemPackages: ["nginx"], plus "postgresql" if a relational database is needed
- isStatic: false, buildRequired: true
- Use JWT for auth""",
    }

    async def analyze(self, prompt: str, project_type: str = "api") -> Analysis:
        """Analyze a user prompt. Runs before complexity is known, so always on the fast model."""
        addon = self.TYPE_ADDONS.get(project_type, self.TYPE_ADDONS["api"])
        system_prompt = self.SYSTEM_PROMPT + "\n" + addon

        return await self._call_json(
            Analysis,
            self.config.fast_model,
            system_prompt,
            prompt,
            max_tokens=1024,
        )
