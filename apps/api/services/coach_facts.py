"""
Lightweight fact inference from user messages.

Keyword heuristics only; each returns None when it has nothing to say so the
session merge leaves earlier facts in place.
"""

from __future__ import annotations

from typing import Optional

from services.intent_classifier import normalize
from services.session_memory import DerivedFacts

USER_ENDED = ("i broke up", "i ended it", "i dumped", "i left him", "i left her", "i called it off")
THEY_ENDED = ("broke up with me", "dumped me", "ended it with me", "left me", "they ended it", "he ended it", "she ended it")
REASON_MARKERS = (" because ", " since ", " cause ", " bc ")
CLOSURE_YES = ("closure", "want answers", "need answers", "understand why")
CLOSURE_NO = ("don't need closure", "dont need closure", "don't want closure", "dont want closure", "moved on")

GOALS = (
    ("get back together", ("get back together", "get them back", "get him back", "get her back", "win back")),
    ("move on", ("move on", "get over", "let go")),
    ("get a date", ("ask out", "get a date", "ask them out", "ask her out", "ask him out")),
    ("get clarity", ("where we stand", "what we are", "define the relationship", "dtr")),
    ("rebuild trust", ("trust again", "rebuild trust", "work it out")),
)


def infer_who_ended_it(text: str) -> Optional[str]:
    t = normalize(text)
    if any(p in t for p in THEY_ENDED):
        return "them"
    if any(p in t for p in USER_ENDED):
        return "user"
    return None


def infer_why(text: str) -> Optional[str]:
    t = f" {normalize(text)} "
    for marker in REASON_MARKERS:
        idx = t.find(marker)
        if idx != -1:
            reason = t[idx + len(marker):].strip(" .!?")
            if reason:
                return reason[:200]
    return None


def infer_wants_closure(text: str) -> Optional[bool]:
    t = normalize(text)
    if any(p in t for p in CLOSURE_NO):
        return False
    if any(p in t for p in CLOSURE_YES):
        return True
    return None


def infer_user_goal(text: str) -> Optional[str]:
    t = normalize(text)
    for goal, phrases in GOALS:
        if any(p in t for p in phrases):
            return goal
    return None


def rolling_summary(previous: Optional[str], message: str, max_chars: int) -> str:
    """Append the message to the running summary, keeping the newest `max_chars`."""
    combined = f"{previous}\n{message.strip()}" if previous else message.strip()
    return combined[-max_chars:]


def infer_facts(message: str, previous: DerivedFacts, max_summary_chars: int) -> DerivedFacts:
    return DerivedFacts(
        who_ended_it=infer_who_ended_it(message),
        why=infer_why(message),
        what_happened=rolling_summary(previous.what_happened, message, max_summary_chars),
        user_goal=infer_user_goal(message),
        wants_closure=infer_wants_closure(message),
    )
