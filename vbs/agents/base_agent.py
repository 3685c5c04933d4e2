from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel

from vbs.config import VBSConfig
from vbs.llm.client import LLMGateway, TokenCallback
from vbs.llm.json_repair import extract_json
from vbs.logging_config import logger
from vbs.schemas import validate_model


M = TypeVar("M", bound=BaseModel)


class BaseAgent:
    """Base class for all agents"""

    name = "agent"
    role = ""

    def __init__(self, gateway: LLMGateway, config: VBSConfig):
        self.gateway = gateway
        self.config = config

    def pick_model(self, complexity: Optional[str]) -> str:
        """Complex projects get the reasoning model, everything else the fast one"""
        if complexity == "complex":
            return self.config.reasoning_model
        return self.config.fast_model

    async def _call_llm(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 4096,
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        """Send one exchange and return raw text"""
        logger.debug(f"[{self.name}] calling {model} (max_tokens={max_tokens})")
        return await self.gateway.send(
            model, system_prompt, user_prompt, max_tokens=max_tokens, on_token=on_token
        )

    async def _call_json(
        self,
        schema: Type[M],
        model: str,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 4096,
        on_token: Optional[TokenCallback] = None,
    ) -> M:
        """Send one exchange, extract JSON and validate it against ``schema``"""
        text = await self._call_llm(model, system_prompt, user_prompt, max_tokens, on_token)
        data: Any = extract_json(text)
        result = validate_model(schema, data, label=f"{self.name}:{schema.__name__}")
        logger.info(
            f"[{self.name}] produced {schema.__name__}",
            extra={"event_type": "agent", "agent_name": self.name, "model": model}
        )
        return result
