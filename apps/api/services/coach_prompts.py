"""
Prompt assembly for the coach.

System instruction = persona/style + intent focus + mode note + known facts.
User payload = latest message + the JSON answer contract (+ repair note on retry).
Prior turns travel separately as conversation history.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from services.intent_classifier import Intent
from services.session_memory import DerivedFacts


class Mode(str, Enum):
    ADVICE = "advice"
    RIZZ = "rizz"
    STRATEGY = "strategy"


MODE_ALIASES = {
    "advice": Mode.ADVICE,
    "dating": Mode.ADVICE,
    "dating_advice": Mode.ADVICE,
    "rizz": Mode.RIZZ,
    "strategy": Mode.STRATEGY,
}


def normalize_mode(raw: Optional[str]) -> Mode:
    """Unknown or missing modes fall back to advice."""
    return MODE_ALIASES.get((raw or "").strip().lower(), Mode.ADVICE)


PERSONA = """You are Sparkd, a modern dating and relationship coach who talks like a real friend: warm, confident, direct, slightly playful when appropriate.
NO generic responses. Every reply MUST reference 2-4 specific details from the user's message.
If details are missing, ask at most ONE short clarifying question, but still give a best-effort answer.
Never repeat the same opener twice in a row.
No therapy lecture tone. No cliches. No filler like "say less" or "that's real"."""

INTENT_FOCUS = {
    Intent.CHEATING: """Focus: betrayal and trust. Help them get clarity without begging.
Encourage self-respect. If they want closure, craft a firm message that asks one direct question.
If they want to reconcile, require accountability and transparency.""",
    Intent.BREAKUP: """Focus: grief, closure and no-contact discipline.
Help them avoid impulsive texting. Offer one clean closure text if needed.""",
    Intent.GHOSTED: """Focus: reading signals and matching energy. No chasing.
Give a one-text follow-up, then a clean exit.""",
    Intent.ANXIOUS_ATTACHMENT: """Focus: calming spirals. Regulate first, then act.
Give a plan that prevents double texting and sets boundaries.""",
    Intent.RIZZ: """Focus: modern texting that isn't try-hard. Short. Confident. Specific.
Move to a date quickly with a plan (time/place) if interest is there.
Give 3 reply options with different vibes (smooth/playful/direct).""",
    Intent.CONFIDENCE: """Focus: rebuilding confidence and self-worth. Avoid needy validation seeking.
Give one assertive text and one walk-away option.""",
    Intent.STRESS_DEPRESSION: """Focus: gentle support and practical steps. Keep it brief and caring.
If the user expresses self-harm or unsafe feelings, encourage reaching out to real support.
Still provide relationship-safe advice.""",
    Intent.JEALOUSY: """Focus: boundaries, not control. Address insecurity without accusations.
Craft a calm message that names the feeling and asks for reassurance or clarity.""",
    Intent.UNCLEAR_SIGNALS: """Focus: clarity. Stop guessing. Ask one clean question.
Give a test message and a plan if they stay vague.""",
    Intent.GENERAL: """Focus: adapt to what the user says. If it's dating or relationships, give clear next steps and texts.""",
}

MODE_NOTES = {
    Mode.ADVICE: "Mode: advice. Lead with empathy, name the dynamic, then give concrete next steps.",
    Mode.RIZZ: "Mode: rizz. Keep it short and smooth. draft_texts should hold 2-3 ready-to-send lines with different vibes.",
    Mode.STRATEGY: "Mode: strategy. Think a few moves ahead: what to do today, this week, and what to watch for. next_steps should be an ordered plan.",
}

ANSWER_CONTRACT = """Please produce a JSON object matching this schema EXACTLY and nothing else:
{"reply": "<2-5 warm, specific sentences>", "draft_texts": ["<copy/paste message>"], "questions": ["<at most one short question>"], "next_steps": ["<concrete step>"]}"""

REPAIR_INSTRUCTION = """Your previous answer was unusable. Rewrite the reply to be warm, human, and specific to what the user said.
No generic filler. Include concrete next steps and at least one draft text. Return valid JSON only."""

FACT_LABELS = (
    ("who_ended_it", "Who ended it"),
    ("why", "Why"),
    ("what_happened", "What happened so far"),
    ("user_goal", "User's goal"),
    ("wants_closure", "Wants closure"),
)


def render_facts(facts: Optional[DerivedFacts]) -> str:
    if facts is None:
        return ""
    known = facts.non_empty()
    lines = []
    for key, label in FACT_LABELS:
        if key not in known:
            continue
        value = known[key]
        if isinstance(value, bool):
            value = "yes" if value else "no"
        lines.append(f"- {label}: {value}")
    return "\n".join(lines)


def build_system_prompt(intent: Intent, mode: Mode, facts: Optional[DerivedFacts] = None) -> str:
    parts = [PERSONA, INTENT_FOCUS.get(intent, INTENT_FOCUS[Intent.GENERAL]), MODE_NOTES[mode]]
    rendered = render_facts(facts)
    if rendered:
        parts.append(f"What you already know about this conversation:\n{rendered}")
    return "\n\n".join(parts)


def build_user_payload(message: str, mode: Mode, repair: bool = False) -> str:
    payload = f"Mode: {mode.value}\n\nLatest user message:\n{message}\n\n{ANSWER_CONTRACT}"
    if repair:
        payload += f"\n\n{REPAIR_INSTRUCTION}"
    return payload
