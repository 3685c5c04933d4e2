from vbs.llm.client import LLMGateway
from vbs.llm.json_repair import extract_json

__all__ = ["LLMGateway", "extract_json"]
