"""
Coach turn contract.

The generation backend is asked for a single JSON object:

    {"reply": str, "draft_texts": [str], "questions": [str], "next_steps": [str]}

`parse_coach_turn` accepts the whole response as JSON or, failing that, the
first embedded JSON object in the text. Validation is strict: every field is
required and typed. `check_quality` then rejects replies that are too short or
that are just a stock filler phrase.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from core.config import settings
from core.exceptions import InvalidGeneration

# Replies consisting only of one of these are rejected.
DEGENERATE_REPLIES = frozenset({
    "that's real",
    "thats real",
    "aight",
    "say less",
    "bet",
    "tell me one sentence",
    "tell me more",
    "i hear you",
    "ok",
    "okay",
})

_JSON_DECODER = json.JSONDecoder()
_PUNCT = re.compile(r"[^\w\s']+")


class CoachTurnResult(BaseModel):
    """Structured coach reply returned to clients under `coach`."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        strict=True,
    )

    reply: str
    draft_texts: List[str]
    questions: List[str]
    next_steps: List[str]

    @field_validator("reply")
    @classmethod
    def _strip_reply(cls, v: str) -> str:
        return v.strip()

    @field_validator("draft_texts", "questions", "next_steps")
    @classmethod
    def _drop_blank_items(cls, v: List[str]) -> List[str]:
        return [item.strip() for item in v if item and item.strip()]

    def to_client(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def _first_embedded_object(text: str) -> Optional[Dict[str, Any]]:
    idx = text.find("{")
    while idx != -1:
        try:
            obj, _ = _JSON_DECODER.raw_decode(text, idx)
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict):
            return obj
        idx = text.find("{", idx + 1)
    return None


def extract_json_object(raw: str) -> Dict[str, Any]:
    """Whole text as JSON, else the first embedded object. Raises InvalidGeneration."""
    text = (raw or "").strip()
    if not text:
        raise InvalidGeneration("empty response")

    try:
        obj = json.loads(text)
        if isinstance(obj, dict):
            return obj
    except json.JSONDecodeError:
        pass

    obj = _first_embedded_object(text)
    if obj is None:
        raise InvalidGeneration("no JSON object in response")
    return obj


def parse_coach_turn(raw: str) -> CoachTurnResult:
    obj = extract_json_object(raw)
    try:
        return CoachTurnResult.model_validate(obj)
    except ValidationError as e:
        raise InvalidGeneration(f"schema mismatch: {e.error_count()} error(s)") from e


def _normalize_phrase(text: str) -> str:
    return " ".join(_PUNCT.sub(" ", text.lower().replace("’", "'")).split())


def check_quality(result: CoachTurnResult, min_chars: Optional[int] = None) -> None:
    """Raise InvalidGeneration if the reply is too short or a stock filler phrase."""
    min_chars = settings.MIN_REPLY_CHARS if min_chars is None else min_chars
    if len(result.reply) < min_chars:
        raise InvalidGeneration(f"reply shorter than {min_chars} chars")
    if _normalize_phrase(result.reply) in DEGENERATE_REPLIES:
        raise InvalidGeneration("degenerate reply")


def validate_generation(raw: str, min_chars: Optional[int] = None) -> CoachTurnResult:
    result = parse_coach_turn(raw)
    check_quality(result, min_chars=min_chars)
    return result
