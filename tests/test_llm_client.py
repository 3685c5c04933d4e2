"""
Unit Tests for the LLM Gateway
Tests truncation retries, timeouts, transient retries and streaming
"""
import asyncio
from types import SimpleNamespace

import httpx
import pytest

from vbs.config import VBSConfig
from vbs.exceptions import LLMError, LLMTimeoutError, MissingCredentialError
from vbs.llm.client import LLMGateway


def message(text: str, stop_reason: str = "end_turn"):
    return SimpleNamespace(content=[SimpleNamespace(type="text", text=text)], stop_reason=stop_reason)


class FakeMessages:
    """Stand-in for ``AsyncAnthropic().messages``"""

    def __init__(self, replies=(), delay: float = 0.0, chunks=()):
        self.replies = list(replies)
        self.delay = delay
        self.chunks = list(chunks)
        self.budgets = []

    async def create(self, model, max_tokens, system, messages):
        self.budgets.append(max_tokens)
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def stream(self, model, max_tokens, system, messages):
        self.budgets.append(max_tokens)
        return FakeStream(self.chunks)


class FakeStream:
    def __init__(self, chunks):
        self.chunks = chunks

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @property
    def text_stream(self):
        async def gen():
            for chunk in self.chunks:
                yield chunk
        return gen()

    async def get_final_message(self):
        return SimpleNamespace(stop_reason="end_turn")


def make_gateway(config: VBSConfig, messages: FakeMessages) -> LLMGateway:
    return LLMGateway(config, client=SimpleNamespace(messages=messages))


class TestCredential:
    """Tests for the credential check"""

    def test_missing_key_raises(self, tmp_path):
        config = VBSConfig(api_key=None, config_dir=str(tmp_path))
        with pytest.raises(MissingCredentialError) as exc_info:
            LLMGateway(config)
        assert exc_info.value.code == "MISSING_CREDENTIAL"
        assert "ANTHROPIC_API_KEY" in exc_info.value.message


class TestTruncation:
    """Tests for the doubled-budget retry on max_tokens"""

    @pytest.mark.asyncio
    async def test_complete_response_single_call(self, config):
        messages = FakeMessages([message('{"a": 1}')])
        text = await make_gateway(config, messages).send("m", "sys", "user", max_tokens=1000)
        assert text == '{"a": 1}'
        assert messages.budgets == [1000]

    @pytest.mark.asyncio
    async def test_truncated_three_times_returns_last_partial(self, config):
        """Test three attempts with non-decreasing budgets and the partial text returned"""
        messages = FakeMessages([
            message('{"a"', "max_tokens"),
            message('{"a": 1, "b"', "max_tokens"),
            message('{"a": 1, "b": 2, "c"', "max_tokens"),
        ])
        text = await make_gateway(config, messages).send("m", "sys", "user", max_tokens=1000)

        assert text == '{"a": 1, "b": 2, "c"'
        assert len(messages.budgets) == 3
        assert messages.budgets == sorted(messages.budgets)
        assert messages.budgets == [1000, 2000, 4000]

    @pytest.mark.asyncio
    async def test_budget_capped_at_ceiling(self, config):
        config.token_ceiling = 3000
        messages = FakeMessages([message("x", "max_tokens")] * 3)
        await make_gateway(config, messages).send("m", "sys", "user", max_tokens=2000)
        assert messages.budgets == [2000, 3000, 3000]

    @pytest.mark.asyncio
    async def test_recovers_when_retry_completes(self, config):
        messages = FakeMessages([message("part", "max_tokens"), message("whole")])
        text = await make_gateway(config, messages).send("m", "sys", "user", max_tokens=500)
        assert text == "whole"
        assert messages.budgets == [500, 1000]


class TestTimeoutsAndRetries:
    """Tests for the per-model bound and transient retries"""

    @pytest.mark.asyncio
    async def test_timeout_raises_no_response_error(self, config):
        config.fast_model_timeout = 0.05
        messages = FakeMessages([message("late")], delay=1.0)
        with pytest.raises(LLMTimeoutError) as exc_info:
            await make_gateway(config, messages).send(config.fast_model, "sys", "user")
        assert exc_info.value.code == "LLM_NO_RESPONSE"

    @pytest.mark.asyncio
    async def test_transient_network_error_retried(self, config):
        messages = FakeMessages([httpx.ConnectError("refused"), message("ok")])
        text = await make_gateway(config, messages).send("m", "sys", "user")
        assert text == "ok"
        assert len(messages.budgets) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_wrapped(self, config):
        messages = FakeMessages([ValueError("bad request")])
        with pytest.raises(LLMError):
            await make_gateway(config, messages).send("m", "sys", "user")
        assert len(messages.budgets) == 1


class TestStreaming:
    """Tests for streamed calls with a progress callback"""

    @pytest.mark.asyncio
    async def test_stream_collects_text_and_reports_progress(self, config):
        messages = FakeMessages(chunks=['{"a"', ": 1", "}"])
        seen = []
        text = await make_gateway(config, messages).send("m", "sys", "user", on_token=seen.append)

        assert text == '{"a": 1}'
        assert seen == [4, 7, 8]
