"""
Tests for the generation backend adapters. No network: Ollama runs against
an httpx.MockTransport and Gemini against a mocked SDK client.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from core.exceptions import BackendUnavailable
from services.generation_backend import (
    DisabledBackend,
    GeminiBackend,
    OllamaBackend,
    build_backend,
)
from services.session_memory import SPEAKER_COACH, SPEAKER_USER, Turn

NOW = datetime(2026, 3, 4, tzinfo=timezone.utc)
HISTORY = [
    Turn(speaker=SPEAKER_USER, text="we matched on an app", timestamp=NOW),
    Turn(speaker=SPEAKER_COACH, text="nice, what did they say?", timestamp=NOW),
]


def _ollama(handler):
    return OllamaBackend(base_url="http://ollama.test", model="llama3.1", transport=httpx.MockTransport(handler))


class TestOllamaBackend:
    @pytest.mark.asyncio
    async def test_sends_system_history_and_message(self):
        seen = {}

        def handler(request: httpx.Request):
            import json

            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"message": {"role": "assistant", "content": '{"reply": "hi"}'}})

        text = await _ollama(handler).generate("SYSTEM", HISTORY, "latest")

        assert text == '{"reply": "hi"}'
        assert seen["path"] == "/api/chat"
        roles = [m["role"] for m in seen["body"]["messages"]]
        assert roles == ["system", "user", "assistant", "user"]
        assert seen["body"]["messages"][-1]["content"] == "latest"
        assert seen["body"]["stream"] is False

    @pytest.mark.asyncio
    async def test_non_success_status(self):
        backend = _ollama(lambda request: httpx.Response(503, text="overloaded"))
        with pytest.raises(BackendUnavailable):
            await backend.generate("S", [], "m")

    @pytest.mark.asyncio
    async def test_empty_body(self):
        backend = _ollama(lambda request: httpx.Response(200, json={"message": {"content": "   "}}))
        with pytest.raises(BackendUnavailable):
            await backend.generate("S", [], "m")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(BackendUnavailable):
            await _ollama(handler).generate("S", [], "m")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{"message": "x"}, ["list"], "text", {"message": {"content": 7}}])
    async def test_unexpected_body_shape(self, body):
        backend = _ollama(lambda request: httpx.Response(200, json=body))
        with pytest.raises(BackendUnavailable):
            await backend.generate("S", [], "m")


class TestGeminiBackend:
    @pytest.mark.asyncio
    async def test_returns_text_and_maps_roles(self):
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(return_value=MagicMock(text='{"reply": "ok"}'))

        text = await GeminiBackend(client=client, model="gemini-test").generate("SYSTEM", HISTORY, "latest")

        assert text == '{"reply": "ok"}'
        kwargs = client.aio.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert [c.role for c in kwargs["contents"]] == ["user", "model", "user"]
        assert kwargs["config"].system_instruction == "SYSTEM"

    @pytest.mark.asyncio
    async def test_sdk_error_is_unavailable(self):
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(side_effect=RuntimeError("quota"))
        with pytest.raises(BackendUnavailable):
            await GeminiBackend(client=client).generate("S", [], "m")

    @pytest.mark.asyncio
    async def test_empty_text_is_unavailable(self):
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(return_value=MagicMock(text=None))
        with pytest.raises(BackendUnavailable):
            await GeminiBackend(client=client).generate("S", [], "m")

    @pytest.mark.asyncio
    async def test_missing_key_is_unavailable(self, monkeypatch):
        from core.config import settings

        monkeypatch.setattr(settings, "GEMINI_API_KEY", None)
        with pytest.raises(BackendUnavailable):
            await GeminiBackend().generate("S", [], "m")


class TestFactory:
    def test_selects_by_provider(self):
        assert isinstance(build_backend("ollama"), OllamaBackend)
        assert isinstance(build_backend("disabled"), DisabledBackend)
        assert isinstance(build_backend("nonsense"), DisabledBackend)

    @pytest.mark.asyncio
    async def test_disabled_always_unavailable(self):
        with pytest.raises(BackendUnavailable):
            await DisabledBackend().generate("S", [], "m")
