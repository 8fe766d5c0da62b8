"""
Intent Classifier

Maps a user message to one coaching intent using an ordered keyword table.
Rules are evaluated top to bottom and the first rule with any matching phrase
wins, so overlaps resolve toward the earlier (more specific) intent.

Short tokens are matched only in compound forms ("my ex", "dm her", "slide
in"). As bare substrings "ex", "dm" and "slide" hit "text", "next", "admit"
and "random", so a message like "what should I text him" now lands in
GENERAL rather than BREAKUP. This is a deliberate departure from the older
phrase table.

Intents:
- CHEATING, GHOSTED, BREAKUP, JEALOUSY, ANXIOUS_ATTACHMENT,
  STRESS_DEPRESSION, CONFIDENCE, RIZZ, UNCLEAR_SIGNALS
- GENERAL: nothing matched
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Tuple


class Intent(str, Enum):
    """Closed set of coaching intents."""
    CHEATING = "cheating"
    GHOSTED = "ghosted"
    BREAKUP = "breakup"
    JEALOUSY = "jealousy"
    ANXIOUS_ATTACHMENT = "anxious_attachment"
    STRESS_DEPRESSION = "stress_depression"
    CONFIDENCE = "confidence"
    RIZZ = "rizz"
    UNCLEAR_SIGNALS = "unclear_signals"
    GENERAL = "general"


CHEATING_PHRASES = (
    "cheat",
    "cheated",
    "unfaithful",
    "lied about",
    "caught",
)

GHOSTED_PHRASES = (
    "ghost",
    "left on read",
    "no response",
    "stopped replying",
    "ignored",
)

# Bare "ex" would match "text", "next" and "sexy"; only the possessive and
# compound forms are listed. Same for bare "dm" ("admit", "random")
# in the rizz table.
BREAKUP_PHRASES = (
    "break up",
    "breakup",
    "broke up",
    "ended it",
    "my ex",
    "an ex",
    "the ex",
    "ex-boyfriend",
    "ex boyfriend",
    "ex-girlfriend",
    "ex girlfriend",
    "no contact",
    "closure",
)

JEALOUSY_PHRASES = (
    "jealous",
    "insecure",
    "likes his pics",
    "likes her pics",
    "other guys",
    "other girls",
)

ANXIOUS_ATTACHMENT_PHRASES = (
    "anxious",
    "attached",
    "overthink",
    "spiral",
    "double text",
    "need reassurance",
)

STRESS_DEPRESSION_PHRASES = (
    "depress",
    "depression",
    "hopeless",
    "worthless",
    "panic",
    "anxiety",
    "stressed",
    "can't sleep",
    "cant sleep",
)

CONFIDENCE_PHRASES = (
    "confidence",
    "self-esteem",
    "self esteem",
    "feel ugly",
    "not enough",
    "rejected",
    "insecure about me",
)

RIZZ_PHRASES = (
    "rizz",
    "flirt",
    "dm her",
    "dm him",
    "dm them",
    "dms",
    "slide in",
    "pickup",
    "pick up line",
    "what do i say",
    "how do i text",
    "reply to",
)

UNCLEAR_SIGNALS_PHRASES = (
    "mixed signals",
    "hot and cold",
    "confusing",
    "dry",
    "breadcrumbs",
    "breadcrumbing",
    "situationship",
)


# Order matters: first match wins.
INTENT_RULES: Tuple[Tuple[Intent, Tuple[str, ...]], ...] = (
    (Intent.CHEATING, CHEATING_PHRASES),
    (Intent.GHOSTED, GHOSTED_PHRASES),
    (Intent.BREAKUP, BREAKUP_PHRASES),
    (Intent.JEALOUSY, JEALOUSY_PHRASES),
    (Intent.ANXIOUS_ATTACHMENT, ANXIOUS_ATTACHMENT_PHRASES),
    (Intent.STRESS_DEPRESSION, STRESS_DEPRESSION_PHRASES),
    (Intent.CONFIDENCE, CONFIDENCE_PHRASES),
    (Intent.RIZZ, RIZZ_PHRASES),
    (Intent.UNCLEAR_SIGNALS, UNCLEAR_SIGNALS_PHRASES),
)

_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Lowercase, collapse runs of whitespace and trim."""
    return _WHITESPACE.sub(" ", (text or "").lower()).strip()


def classify(text: str) -> Intent:
    """
    Classify a message into exactly one intent.

    Deterministic and total: empty or unmatched input yields GENERAL.
    """
    normalized = normalize(text)
    if not normalized:
        return Intent.GENERAL

    for intent, phrases in INTENT_RULES:
        if any(p in normalized for p in phrases):
            return intent
    return Intent.GENERAL
