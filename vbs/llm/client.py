"""
LLM Gateway - the single place where VBS talks to the Anthropic API.

Every call is bounded by a per-model wall-clock timeout, transient provider
errors are retried with exponential backoff, and a response that stops at
the token limit is re-requested with a doubled budget.
"""

import asyncio
import random
import time
from typing import Callable, Optional, Tuple

import httpx
from anthropic import AsyncAnthropic, APIStatusError, APIError, APIConnectionError, APITimeoutError

from vbs.config import VBSConfig
from vbs.exceptions import LLMError, LLMResponseError, LLMTimeoutError, MissingCredentialError
from vbs.logging_config import logger


RETRYABLE_ERRORS = ['overloaded_error', 'rate_limit_error', 'api_error']
RETRYABLE_STATUS = [429, 500, 502, 503, 529]
TRUNCATION_STOP_REASONS = ("max_tokens", "length")

TokenCallback = Callable[[int], None]


class LLMGateway:
    """Claude API wrapper used by every agent"""

    def __init__(self, config: VBSConfig, client: Optional[AsyncAnthropic] = None):
        self.config = config

        if client is None:
            if not config.api_key:
                raise MissingCredentialError("ANTHROPIC_API_KEY")

            client_kwargs = {"api_key": config.api_key}
            if config.base_url and config.base_url.strip():
                client_kwargs["base_url"] = config.base_url.strip()
                logger.info(f"Using custom Claude API base URL: {config.base_url}")

            # The SDK's own timeout must not undercut the per-model bound
            read_timeout = max(config.fast_model_timeout, config.reasoning_model_timeout)
            client_kwargs["timeout"] = httpx.Timeout(read_timeout, connect=30.0)
            client_kwargs["max_retries"] = 0
            client = AsyncAnthropic(**client_kwargs)

        self.client = client

    def _is_retryable_error(self, error: Exception) -> bool:
        """Check if an error is retryable (overload, rate limit, network issues)"""
        if isinstance(error, (APIConnectionError, APITimeoutError)):
            return True

        if isinstance(error, (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError)):
            return True

        if isinstance(error, (APIStatusError, APIError)):
            body = getattr(error, 'body', None)
            if isinstance(body, dict):
                error_type = body.get('error', {}).get('type', '')
                if error_type in RETRYABLE_ERRORS:
                    return True
            status_code = getattr(error, 'status_code', None)
            return status_code in RETRYABLE_STATUS

        return False

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay with exponential backoff and jitter"""
        delay = min(self.config.retry_base_delay * (2 ** attempt), self.config.retry_max_delay)
        # Add jitter (0-25% of delay)
        jitter = delay * random.uniform(0, 0.25)
        return delay + jitter

    async def send(
        self,
        model: str,
        system_prompt: str,
        user_message: str,
        max_tokens: int = 4096,
        on_token: Optional[TokenCallback] = None,
    ) -> str:
        """
        Send one system/user exchange and return the response text.

        When the provider stops at the token limit the request is repeated
        with double the budget (capped at the configured ceiling), at most
        ``max_truncation_retries`` times. The last attempt's text is returned
        even if it is still truncated; JSON repair downstream deals with it.

        Args:
            model: Provider model identifier
            system_prompt: System prompt
            user_message: User message
            max_tokens: Initial output token budget
            on_token: Called with the cumulative character count while streaming

        Raises:
            LLMTimeoutError: the per-model wall-clock bound elapsed
            LLMError: the provider failed after retries
        """
        budget = min(max_tokens, self.config.token_ceiling)
        attempts = self.config.max_truncation_retries + 1
        text = ""

        for attempt in range(attempts):
            text, stop_reason = await self._send_bounded(
                model, system_prompt, user_message, budget, on_token
            )
            if stop_reason not in TRUNCATION_STOP_REASONS:
                return text

            if attempt + 1 < attempts:
                new_budget = min(budget * 2, self.config.token_ceiling)
                logger.warning(
                    f"Response truncated at {budget} tokens, retrying with {new_budget}",
                    extra={
                        "event_type": "llm_truncated",
                        "model": model,
                        "attempt": attempt + 1,
                        "budget": budget,
                        "next_budget": new_budget,
                    }
                )
                budget = new_budget

        logger.warning(
            f"Response still truncated after {attempts} attempts; returning partial output",
            extra={"event_type": "llm_truncated_final", "model": model, "budget": budget}
        )
        return text

    async def _send_bounded(
        self,
        model: str,
        system_prompt: str,
        user_message: str,
        max_tokens: int,
        on_token: Optional[TokenCallback],
    ) -> Tuple[str, Optional[str]]:
        """One logical request: transient retries inside a wall-clock bound"""
        timeout = self.config.model_timeout(model)
        try:
            return await asyncio.wait_for(
                self._send_with_retries(model, system_prompt, user_message, max_tokens, on_token),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"No response from {model} within {timeout:.0f}s",
                extra={"event_type": "llm_timeout", "model": model, "timeout": timeout}
            )
            raise LLMTimeoutError(model, timeout)

    async def _send_with_retries(
        self,
        model: str,
        system_prompt: str,
        user_message: str,
        max_tokens: int,
        on_token: Optional[TokenCallback],
    ) -> Tuple[str, Optional[str]]:
        max_retries = self.config.max_api_retries

        for attempt in range(max_retries + 1):
            start_time = time.time()
            try:
                if on_token is not None:
                    text, stop_reason = await self._stream(
                        model, system_prompt, user_message, max_tokens, on_token
                    )
                else:
                    text, stop_reason = await self._create(
                        model, system_prompt, user_message, max_tokens
                    )
            except LLMError:
                raise
            except Exception as e:
                error_type = type(e).__name__
                if self._is_retryable_error(e) and attempt < max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(
                        f"Claude API error [{error_type}] (attempt {attempt + 1}/{max_retries + 1}), "
                        f"retrying in {delay:.1f}s...",
                        extra={
                            "event_type": "llm_retry",
                            "error_type": error_type,
                            "attempt": attempt + 1,
                            "retry_delay": delay
                        }
                    )
                    await asyncio.sleep(delay)
                    continue

                logger.error(
                    f"Claude API error (non-retryable or max retries exceeded): {error_type}: {e}",
                    extra={
                        "event_type": "llm_error",
                        "error_type": error_type,
                        "error_message": str(e),
                        "attempt": attempt + 1
                    }
                )
                raise LLMError(f"{error_type}: {e}", model=model) from e

            logger.log_llm_call(
                model, max_tokens, (time.time() - start_time) * 1000,
                stop_reason=stop_reason, output_chars=len(text)
            )
            return text, stop_reason

        raise LLMError("Claude API retries exhausted", model=model)

    async def _create(
        self, model: str, system_prompt: str, user_message: str, max_tokens: int
    ) -> Tuple[str, Optional[str]]:
        response = await self.client.messages.create(
            model=model,
            max_tokens=max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_message}],
        )
        blocks = getattr(response, "content", None) or []
        text = "".join(
            getattr(block, "text", "") for block in blocks
            if getattr(block, "type", "text") == "text"
        )
        if not blocks:
            raise LLMResponseError("Empty response from provider", model=model)
        return text, response.stop_reason

    async def _stream(
        self,
        model: str,
        system_prompt: str,
        user_message: str,
        max_tokens: int,
        on_token: TokenCallback,
    ) -> Tuple[str, Optional[str]]:
        collected_text = []
        total = 0
        async with self.client.messages.stream(
            model=model,
            max_tokens=max_tokens,
            system=system_prompt,
            messages=[{"role": "user", "content": user_message}],
        ) as stream:
            async for chunk in stream.text_stream:
                collected_text.append(chunk)
                total += len(chunk)
                on_token(total)

            final_message = await stream.get_final_message()

        return "".join(collected_text), final_message.stop_reason
