from vbs.agents.base_agent import BaseAgent
from vbs.agents.analyzer import AnalyzerAgent
from vbs.agents.questioner import QuestionerAgent
from vbs.agents.codegen import CodeGeneratorAgent
from vbs.agents.modifier import ModifierAgent
from vbs.agents.fixer import FixerAgent
from vbs.agents.diagnostics import DiagnosticsAgent

__all__ = [
    "BaseAgent",
    "AnalyzerAgent",
    "QuestionerAgent",
    "CodeGeneratorAgent",
    "ModifierAgent",
    "FixerAgent",
    "DiagnosticsAgent",
]
