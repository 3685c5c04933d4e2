"""
Questioner Agent - asks only what the generator needs to know
"""

import json
from typing import Dict, List, Tuple

from vbs.agents.base_agent import BaseAgent
from vbs.logging_config import logger
from vbs.schemas import Analysis, ConfigQuestion, QuestionSet


# Question text mentioning one of these needles is dropped unless the
# technology is in the detected stack
TECH_NEEDLES: Dict[str, Tuple[str, ...]] = {
    "postgres": ("postgres", "pg_", "psql"),
    "mysql": ("mysql", "mariadb"),
    "mongo": ("mongo",),
    "redis": ("redis",),
}

GENERIC_DB_NEEDLES = ("database", "db_", "_db")


def identity_questions(analysis: Analysis, project_type: str) -> List[ConfigQuestion]:
    """Project name and the ports this project type listens on"""
    questions = [
        ConfigQuestion(
            id="project_name",
            type="input",
            message="Project name",
            default=analysis.suggested_project_name,
        )
    ]
    if project_type == "fullstack":
        questions.append(ConfigQuestion(
            id="backend_port", type="input", message="Backend port",
            default="3001", validate_tag="port_number",
        ))
        questions.append(ConfigQuestion(
            id="frontend_port", type="input", message="Frontend port",
            default="3000", validate_tag="port_number",
        ))
    else:
        questions.append(ConfigQuestion(
            id="port", type="input", message="Port number",
            default="3000", validate_tag="port_number",
        ))
    return questions


def is_relevant(question: ConfigQuestion, analysis: Analysis) -> bool:
    text = f"{question.id} {question.message}".lower()
    for tech, needles in TECH_NEEDLES.items():
        if any(n in text for n in needles) and not analysis.stack_mentions(tech):
            return False
    if any(n in text for n in GENERIC_DB_NEEDLES) and not analysis.uses_database:
        return False
    return True


def finalize_questions(
    questions: List[ConfigQuestion], analysis: Analysis, project_type: str
) -> List[ConfigQuestion]:
    """Force identity questions first, drop duplicates and undetected technologies"""
    identity = identity_questions(analysis, project_type)
    identity_ids = {q.id for q in identity}

    # Keep the model's wording for identity questions when it asked them
    by_id = {q.id: q for q in questions}
    result = [by_id.get(q.id, q) for q in identity]
    for q in result:
        if q.id != "project_name" and not q.validate_tag:
            q.validate_tag = "port_number"

    seen = set(identity_ids)
    for q in questions:
        if q.id in seen:
            continue
        if not is_relevant(q, analysis):
            logger.debug(f"Dropping question '{q.id}': technology not in detected stack")
            continue
        seen.add(q.id)
        result.append(q)
    return result


class QuestionerAgent(BaseAgent):
    """Generates the configuration questionnaire"""

    name = "questioner"
    role = "Configuration questions"

    SYSTEM_PROMPT = """You are VBS (Virtual Based Scenography). Based on the analyzed request, generate 5-12 precise technical configuration questions.

Always include:
- Project name (id: "project_name")
- Port(s): "port" for a single service, "backend_port" and "frontend_port" for full-stack (validate: "port_number")

Include only if relevant to the DETECTED stack:
- Database name, user, password (only when a database is in the stack)
- JWT secret handling (auto-generate vs custom), type "list"
- CORS allowed origins (default "*")
- Rate limiting, type "confirm"
- Page language and styling for frontends
- Additional features mentioned in the request

Never ask about technologies that are not in the detected stack.

Return ONLY valid JSON (no markdown, no explanation):
{
  "questions": [
    {
      "id": "snake_case_identifier",
      "type": "input" | "list" | "confirm",
      "message": "Human-readable question?",
      "default": "default value or boolean",
      "choices": ["Option A", "Option B"],
      "validate": "port_number"
    }
  ]
}

Notes:
- "choices" only for type "list"
- "default" for "confirm" must be true or false
- "validate" is optional; only "port_number" is supported"""

    async def generate(self, analysis: Analysis, prompt: str, project_type: str) -> List[ConfigQuestion]:
        user_message = (
            f"Original request: {prompt}\n"
            f"Project type: {project_type}\n\n"
            f"Analysis:\n{json.dumps(analysis.to_json_dict(), indent=2)}\n\n"
            f"Generate precise technical configuration questions for this project."
        )

        question_set = await self._call_json(
            QuestionSet,
            self.pick_model(analysis.complexity),
            self.SYSTEM_PROMPT,
            user_message,
            max_tokens=2048,
        )
        return finalize_questions(question_set.questions, analysis, project_type)
