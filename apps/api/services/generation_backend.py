"""
Generation Backend Client

Adapters that send a system instruction, bounded prior turns and the latest
message to a text-generation service and return the raw completion text.

Providers:
- gemini: Google GenAI SDK (default)
- ollama: local Ollama server over HTTP (/api/chat)
- disabled: always unavailable, so every request takes the fallback path

Every failure mode (transport error, non-success status, timeout, empty body)
surfaces as BackendUnavailable.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

import httpx
from google import genai
from google.genai import types as genai_types

from core.config import settings
from core.exceptions import BackendUnavailable
from services.session_memory import SPEAKER_USER, Turn

logger = logging.getLogger(__name__)


class GenerationBackend(Protocol):
    name: str

    async def generate(self, system: str, history: Sequence[Turn], message: str) -> str:
        ...


class GeminiBackend:
    """Gemini via google-genai (async client surface)."""

    name = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[genai.Client] = None,
    ):
        self.model = model or settings.GEMINI_MODEL
        self.client = client
        if self.client is None:
            key = api_key or settings.GEMINI_API_KEY
            if key:
                self.client = genai.Client(api_key=key)
                logger.info(f"Gemini client initialized: model={self.model}")

    @staticmethod
    def _contents(history: Sequence[Turn], message: str) -> List[genai_types.Content]:
        contents = []
        for turn in history:
            role = "user" if turn.speaker == SPEAKER_USER else "model"
            contents.append(genai_types.Content(role=role, parts=[genai_types.Part(text=turn.text)]))
        contents.append(genai_types.Content(role="user", parts=[genai_types.Part(text=message)]))
        return contents

    async def generate(self, system: str, history: Sequence[Turn], message: str) -> str:
        if self.client is None:
            raise BackendUnavailable("Gemini API key not configured")

        config = genai_types.GenerateContentConfig(
            system_instruction=system,
            max_output_tokens=settings.GENERATION_MAX_OUTPUT_TOKENS,
            temperature=settings.GENERATION_TEMPERATURE,
            response_mime_type="application/json",
        )
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=self._contents(history, message),
                config=config,
            )
        except Exception as e:
            raise BackendUnavailable(f"Gemini request failed: {type(e).__name__}") from e

        text = getattr(response, "text", None)
        if not isinstance(text, str) or not text.strip():
            raise BackendUnavailable("Gemini returned an empty response")
        return text


class OllamaBackend:
    """Local Ollama chat endpoint."""

    name = "ollama"

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.OLLAMA_URL).rstrip("/")
        self.model = model or settings.OLLAMA_MODEL
        self.transport = transport

    def _messages(self, system: str, history: Sequence[Turn], message: str) -> List[dict]:
        messages = [{"role": "system", "content": system}]
        for turn in history:
            role = "user" if turn.speaker == SPEAKER_USER else "assistant"
            messages.append({"role": role, "content": turn.text})
        messages.append({"role": "user", "content": message})
        return messages

    async def generate(self, system: str, history: Sequence[Turn], message: str) -> str:
        body = {
            "model": self.model,
            "messages": self._messages(system, history, message),
            "stream": False,
            "format": "json",
            "options": {"temperature": settings.GENERATION_TEMPERATURE},
        }
        try:
            async with httpx.AsyncClient(base_url=self.base_url, transport=self.transport) as client:
                resp = await client.post("/api/chat", json=body, timeout=settings.GENERATION_TIMEOUT_S)
        except httpx.HTTPError as e:
            raise BackendUnavailable(f"Ollama request failed: {type(e).__name__}") from e

        if resp.status_code >= 300:
            raise BackendUnavailable(f"Ollama returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise BackendUnavailable("Ollama returned a non-JSON body") from e

        message_obj = data.get("message") if isinstance(data, dict) else None
        text = message_obj.get("content") if isinstance(message_obj, dict) else None
        if not isinstance(text, str):
            raise BackendUnavailable("Ollama returned an unexpected body shape")
        if not text.strip():
            raise BackendUnavailable("Ollama returned an empty response")
        return text


class DisabledBackend:
    name = "disabled"

    async def generate(self, system: str, history: Sequence[Turn], message: str) -> str:
        raise BackendUnavailable("Generation disabled")


async def generate_with_timeout(
    backend: GenerationBackend,
    system: str,
    history: Sequence[Turn],
    message: str,
    timeout_s: Optional[float] = None,
) -> str:
    """Run one backend call bounded by the configured timeout."""
    timeout_s = settings.GENERATION_TIMEOUT_S if timeout_s is None else timeout_s
    try:
        return await asyncio.wait_for(backend.generate(system, history, message), timeout=timeout_s)
    except asyncio.TimeoutError as e:
        raise BackendUnavailable(f"{backend.name} timed out after {timeout_s}s") from e


def build_backend(provider: Optional[str] = None) -> GenerationBackend:
    provider = (provider or settings.GENERATION_PROVIDER or "").strip().lower()
    if provider == "gemini":
        return GeminiBackend()
    if provider == "ollama":
        return OllamaBackend()
    if provider != "disabled":
        logger.warning(f"Unknown GENERATION_PROVIDER '{provider}', generation disabled")
    return DisabledBackend()
