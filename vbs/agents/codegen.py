"""
Code Generator Agent - produces the project files and run metadata

Static sites, APIs and frontends are one call each. Full-stack projects are
either one call, or (above "simple" complexity) two concurrent calls, one
for backend/ and one for frontend/, merged into the same shape.
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

from vbs.agents.base_agent import BaseAgent
from vbs.logging_config import logger
from vbs.schemas import Analysis, FileRecord, GeneratedProject, slugify
from vbs.system.writer import clean_relative_path


ProgressCallback = Callable[[str, int], None]

SPLIT_COMPLEXITIES = ("medium", "complex")

_ENDPOINT_SHAPE = """{
      "method": "GET",
      "path": "/health",
      "description": "Health check",
      "requiresAuth": false,
      "exampleBody": null
    }"""

_ENDPOINT_RULES = """- allEndpoints must list EVERY endpoint the API exposes
- Every endpoint has method, path, description, requiresAuth
- exampleBody: realistic payload for POST/PUT/PATCH, null otherwise
- requiresAuth: true if the endpoint requires a Bearer token"""


class CodeGeneratorAgent(BaseAgent):
    """
    Code Generator Agent

    Responsibilities:
    - Generate complete, runnable source trees
    - Declare start/build commands, process names and endpoints
    - Merge split backend/frontend generations into one GeneratedProject
    """

    name = "codegen"
    role = "Code generation"

    STATIC_SYSTEM = """You are the VBS (Virtual Based Scenography) code generator. Generate a complete static HTML/CSS/JS website.

Return ONLY valid JSON (no markdown) in exactly this structure:
{
  "files": [
    { "path": "relative/path/from/project/root", "content": "complete file content" }
  ],
  "startCommand": null,
  "pm2Name": null,
  "buildRequired": false,
  "allEndpoints": []
}

Rules:
- A real, polished website, not a skeleton
- Semantic HTML5, responsive CSS (flexbox or grid), vanilla JavaScript only
- No npm, no build tools, no framework
- index.html at the project root; multiple pages link with relative links
- Realistic content for every section, no placeholders"""

    API_SYSTEM = f"""You are the VBS (Virtual Based Scenography) code generator. Generate complete, production-ready Node.js REST API code.

Return ONLY valid JSON (no markdown) in exactly this structure:
{{
  "files": [
    {{ "path": "relative/path/from/project/root", "content": "complete file content" }}
  ],
  "startCommand": "node src/index.js",
  "pm2Name": "project-name",
  "healthEndpoint": "/health",
  "allEndpoints": [
    {_ENDPOINT_SHAPE}
  ]
}}

Rules:
- Complete, working code with no placeholders or TODOs
- package.json with exact dependency versions
- .env with every required variable filled in
- GET /health returns {{ "status": "ok", "uptime": process.uptime() }}
- Express.js unless another framework was requested
- PostgreSQL via "pg" with pooling, MongoDB via "mongoose", JWT via "jsonwebtoken" + "bcryptjs"
- CORS middleware, express.json(), and an error-handling middleware last in the chain
- The server listens on the configured port
{_ENDPOINT_RULES}
- pm2Name: lowercase with hyphens"""

    FRONTEND_SYSTEM = """You are the VBS (Virtual Based Scenography) code generator. Generate a complete, production-ready frontend application.

Return ONLY valid JSON (no markdown) in exactly this structure:
{
  "files": [
    { "path": "relative/path/from/project/root", "content": "complete file content" }
  ],
  "frontendFramework": "react" | "nextjs",
  "startCommand": "npm start",
  "buildCommand": "npm run build",
  "pm2Name": "project-name-front",
  "allEndpoints": []
}

React (Vite) rules:
- vite + @vitejs/plugin-react in devDependencies, vite.config.js included
- scripts: { "dev": "vite", "build": "vite build", "start": "vite preview" }
- index.html at the root, entry src/main.jsx, root component src/App.jsx

Next.js rules:
- App Router (v14+), src/app directory, next.config.js included
- scripts: { "dev": "next dev", "build": "next build", "start": "next start" }

General:
- Complete, working code with every config file it needs
- Real pages and components, not empty shells
- pm2Name: lowercase with hyphens"""

    BACKEND_SPLIT_SYSTEM = f"""You are the VBS (Virtual Based Scenography) code generator. Generate the BACKEND part of a full-stack application.

ALL file paths MUST start with "backend/".

Return ONLY valid JSON (no markdown) in exactly this structure:
{{
  "files": [
    {{ "path": "backend/src/index.js", "content": "..." }}
  ],
  "startCommand": "node src/index.js",
  "pm2Name": "project-api",
  "healthEndpoint": "/health",
  "allEndpoints": [
    {_ENDPOINT_SHAPE}
  ]
}}

Rules:
- Express.js REST API under backend/, with backend/package.json and backend/.env
- GET /health always included; all routes complete
- PostgreSQL via "pg" with pooling, JWT via "jsonwebtoken" + "bcryptjs", CORS allowing all origins
- nginx proxies /api/* to this backend
{_ENDPOINT_RULES}"""

    FRONTEND_SPLIT_SYSTEM = """You are the VBS (Virtual Based Scenography) code generator. Generate the FRONTEND part of a full-stack application.

ALL file paths MUST start with "frontend/".

Return ONLY valid JSON (no markdown) in exactly this structure:
{
  "files": [
    { "path": "frontend/src/App.jsx", "content": "..." }
  ],
  "frontendFramework": "react" | "nextjs",
  "startCommand": "npm start",
  "buildCommand": "npm run build",
  "pm2Name": "project-front"
}

Rules:
- All files under frontend/, with its own frontend/package.json
- Call the backend through relative /api/* paths (nginx proxies them); never hardcode the backend port
- React (Vite): scripts { "dev": "vite", "build": "vite build", "start": "vite preview" }
- Next.js: App Router (v14+), scripts { "dev": "next dev", "build": "next build", "start": "next start" }
- Real pages and components, not empty shells"""

    FULLSTACK_SYSTEM = f"""You are the VBS (Virtual Based Scenography) code generator. Generate a complete full-stack application.

Structure: backend/ (Express API) + frontend/ (React or Next.js)

Return ONLY valid JSON (no markdown) in exactly this structure:
{{
  "files": [
    {{ "path": "backend/src/index.js", "content": "..." }},
    {{ "path": "frontend/src/App.jsx", "content": "..." }}
  ],
  "frontendFramework": "react" | "nextjs",
  "backendStartCommand": "node src/index.js",
  "frontendStartCommand": "npm start",
  "buildCommand": "npm run build",
  "backendPm2Name": "project-api",
  "frontendPm2Name": "project-front",
  "healthEndpoint": "/health",
  "allEndpoints": [
    {_ENDPOINT_SHAPE}
  ]
}}

Rules:
- backend/ is an Express.js REST API with its own package.json and .env, GET /health always included
- frontend/ has its own package.json and calls the backend at /api/* (nginx proxies it)
- nginx routes /api/* to the backend port and everything else to the frontend
- Complete, working code with no placeholders
{_ENDPOINT_RULES}
- allEndpoints lists backend endpoints only"""

    async def generate(
        self,
        analysis: Analysis,
        answers: Dict[str, Any],
        prompt: str,
        project_type: str,
        server_ip: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GeneratedProject:
        model = self.pick_model(analysis.complexity)
        framework = self._framework(analysis, answers)

        if project_type == "frontend" and analysis.is_static:
            project = await self._single(
                model, self.STATIC_SYSTEM,
                self._static_message(analysis, answers, prompt, server_ip),
                16384, "static", on_progress,
            )
        elif project_type == "frontend":
            project = await self._single(
                model, self.FRONTEND_SYSTEM,
                self._frontend_message(analysis, answers, prompt, server_ip, framework),
                20480, "frontend", on_progress,
            )
        elif project_type == "fullstack" and analysis.complexity in SPLIT_COMPLEXITIES:
            project = await self._generate_fullstack_split(
                model, analysis, answers, prompt, server_ip, framework, on_progress
            )
        elif project_type == "fullstack":
            project = await self._single(
                model, self.FULLSTACK_SYSTEM,
                self._fullstack_message(analysis, answers, prompt, server_ip, framework),
                32768, "fullstack", on_progress,
            )
        else:
            project = await self._single(
                model, self.API_SYSTEM,
                self._api_message(analysis, answers, prompt, server_ip),
                20480, "api", on_progress,
            )

        return self._apply_defaults(project, analysis, answers, project_type, framework)

    # ==================== Calls ====================

    async def _single(
        self,
        model: str,
        system_prompt: str,
        user_message: str,
        max_tokens: int,
        label: str,
        on_progress: Optional[ProgressCallback],
    ) -> GeneratedProject:
        on_token = (lambda n: on_progress(label, n)) if on_progress else None
        return await self._call_json(
            GeneratedProject, model, system_prompt, user_message, max_tokens, on_token
        )

    async def _generate_fullstack_split(
        self,
        model: str,
        analysis: Analysis,
        answers: Dict[str, Any],
        prompt: str,
        server_ip: Optional[str],
        framework: str,
        on_progress: Optional[ProgressCallback],
    ) -> GeneratedProject:
        shared = self._shared_context(analysis, answers, prompt, server_ip)
        label = self._framework_label(framework)

        backend_message = (
            f"Generate the BACKEND part of a full-stack {label} + Express.js app.\n{shared}\n\n"
            f"Backend port: {answers.get('backendPort', 3001)}\n"
            f"The frontend is served at / by nginx and calls /api/*, proxied to this backend.\n"
            f'ALL file paths must start with "backend/".'
        )
        frontend_message = (
            f"Generate the FRONTEND part of a full-stack {label} + Express.js app.\n{shared}\n\n"
            f"Frontend framework: {label} ({framework})\n"
            f"Frontend port: {answers.get('frontendPort', 3000)}\n"
            f"The backend API is available at /api/* through the nginx proxy.\n"
            f'ALL file paths must start with "frontend/".'
        )

        logger.info("Generating backend and frontend concurrently")
        backend, frontend = await asyncio.gather(
            self._single(model, self.BACKEND_SPLIT_SYSTEM, backend_message, 20480, "backend", on_progress),
            self._single(model, self.FRONTEND_SPLIT_SYSTEM, frontend_message, 20480, "frontend", on_progress),
        )
        return merge_split_generation(backend, frontend)

    # ==================== Post-processing ====================

    def _apply_defaults(
        self,
        project: GeneratedProject,
        analysis: Analysis,
        answers: Dict[str, Any],
        project_type: str,
        framework: str,
    ) -> GeneratedProject:
        """Fill run metadata the model left out and drop duplicate paths"""
        name = slugify(answers.get("projectName") or analysis.suggested_project_name)
        updates: Dict[str, Any] = {"files": dedupe_files(project.files)}

        if project_type == "api":
            updates["pm2_name"] = slugify(project.pm2_name or name)
            updates["start_command"] = project.start_command or "node src/index.js"
        elif project_type == "frontend" and not analysis.is_static:
            updates["frontend_framework"] = project.frontend_framework or framework
            updates["pm2_name"] = slugify(project.pm2_name or f"{name}-front")
            updates["start_command"] = project.start_command or "npm start"
            updates["build_command"] = project.build_command or "npm run build"
        elif project_type == "fullstack":
            updates["frontend_framework"] = project.frontend_framework or framework
            updates["backend_pm2_name"] = slugify(project.backend_pm2_name or f"{name}-api")
            updates["frontend_pm2_name"] = slugify(project.frontend_pm2_name or f"{name}-front")
            updates["backend_start_command"] = project.backend_start_command or "node src/index.js"
            updates["frontend_start_command"] = project.frontend_start_command or "npm start"
            updates["build_command"] = project.build_command or "npm run build"

        return project.model_copy(update=updates)

    # ==================== Messages ====================

    def _framework(self, analysis: Analysis, answers: Dict[str, Any]) -> str:
        chosen = str(answers.get("frontend_framework") or "").lower()
        if "next" in chosen:
            return "nextjs"
        if "react" in chosen:
            return "react"
        return analysis.frontend_framework or "react"

    @staticmethod
    def _framework_label(framework: str) -> str:
        return "Next.js (App Router v14)" if framework == "nextjs" else "React (Vite SPA)"

    @staticmethod
    def _server_context(server_ip: Optional[str]) -> str:
        if not server_ip:
            return ""
        return f"\nServer IPv4: {server_ip} (use it for absolute URLs and example links)"

    def _shared_context(self, analysis: Analysis, answers: Dict[str, Any], prompt: str,
                        server_ip: Optional[str]) -> str:
        return (
            f"Project: {answers.get('projectName') or analysis.suggested_project_name}\n"
            f"Original request: {prompt}\n"
            f"Detected stack: {', '.join(analysis.detected_stack)}\n"
            f"Complexity: {analysis.complexity}\n"
            f"Page language: {answers.get('page_language') or 'English'}\n"
            f"User configuration:\n{_answers_json(answers)}"
            f"{self._server_context(server_ip)}"
        )

    def _api_message(self, analysis, answers, prompt, server_ip) -> str:
        return (
            f"Generate a complete REST API.\n\n{self._shared_context(analysis, answers, prompt, server_ip)}\n\n"
            f"Port: {answers.get('port', 3000)}\n"
            f"Generate every file needed for an immediately deployable REST API."
        )

    def _frontend_message(self, analysis, answers, prompt, server_ip, framework) -> str:
        label = self._framework_label(framework)
        language = answers.get("page_language") or "English"
        return (
            f"Generate a complete frontend app using {label}.\n\n"
            f"{self._shared_context(analysis, answers, prompt, server_ip)}\n\n"
            f"Framework: {framework}\n"
            f"Styling: {answers.get('styling') or 'Tailwind CSS'}\n"
            f"All visible text must be in {language}; set the html lang attribute accordingly.\n"
            f"Generate every file needed for an immediately deployable frontend app."
        )

    def _static_message(self, analysis, answers, prompt, server_ip) -> str:
        language = answers.get("page_language") or "English"
        title = answers.get("site_title") or answers.get("projectName") or analysis.suggested_project_name
        return (
            f"Generate a complete static HTML/CSS/JS website.\n\n"
            f"Original request: {prompt}\n"
            f"Site title: {title}\n"
            f"Color scheme: {answers.get('color_scheme') or 'Light & Clean'}\n"
            f"Contact form: {'yes' if answers.get('include_contact_form') else 'no'}\n"
            f"All visible text must be in {language}; set the html lang attribute accordingly."
            f"{self._server_context(server_ip)}"
        )

    def _fullstack_message(self, analysis, answers, prompt, server_ip, framework) -> str:
        return (
            f"Generate a complete full-stack app: Express.js backend + {self._framework_label(framework)} frontend.\n\n"
            f"{self._shared_context(analysis, answers, prompt, server_ip)}\n\n"
            f"Backend port: {answers.get('backendPort', 3001)}\n"
            f"Frontend port: {answers.get('frontendPort', 3000)}"
        )


def _answers_json(answers: Dict[str, Any]) -> str:
    return json.dumps({k: v for k, v in answers.items() if k != "projectDir"}, indent=2, default=str)


def _with_prefix(files: List[FileRecord], prefix: str) -> List[FileRecord]:
    result = []
    for f in files:
        path = clean_relative_path(f.path)
        if not path.startswith(prefix):
            path = prefix + path
        result.append(FileRecord(path=path, content=f.content))
    return result


def dedupe_files(files: List[FileRecord]) -> List[FileRecord]:
    """Keep one record per path; the later record wins, first position is kept"""
    order: List[str] = []
    by_path: Dict[str, FileRecord] = {}
    for f in files:
        if f.path not in by_path:
            order.append(f.path)
        by_path[f.path] = f
    return [by_path[p] for p in order]


def merge_split_generation(backend: GeneratedProject, frontend: GeneratedProject) -> GeneratedProject:
    """Combine the two halves into the single-call fullstack shape"""
    files = dedupe_files(
        _with_prefix(backend.files, "backend/") + _with_prefix(frontend.files, "frontend/")
    )
    return GeneratedProject(
        files=files,
        frontend_framework=frontend.frontend_framework,
        backend_start_command=backend.start_command or backend.backend_start_command,
        frontend_start_command=frontend.start_command or frontend.frontend_start_command,
        backend_pm2_name=backend.pm2_name or backend.backend_pm2_name,
        frontend_pm2_name=frontend.pm2_name or frontend.frontend_pm2_name,
        build_command=frontend.build_command,
        health_endpoint=backend.health_endpoint,
        all_endpoints=backend.all_endpoints,
    )
