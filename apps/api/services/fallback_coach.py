"""
Deterministic fallback replies.

Used when generation is unavailable or produces nothing usable twice. Variants
are looked up by (intent, mode) with the chain:

    (intent, mode) -> (intent, any) -> (general, mode) -> (general, any)

and one is picked uniformly with the supplied random source, skipping the
session's previous reply when the entry has another variant. Tests can pin
the choice with a seeded `random.Random`.
"""

from __future__ import annotations

import random
from typing import Dict, List, Optional, Tuple

from services.coach_prompts import Mode
from services.coach_schema import CoachTurnResult
from services.intent_classifier import Intent

FallbackKey = Tuple[Intent, Optional[Mode]]


def _v(reply: str, drafts: List[str], questions: List[str], steps: List[str]) -> CoachTurnResult:
    return CoachTurnResult(reply=reply, draft_texts=drafts, questions=questions, next_steps=steps)


FALLBACKS: Dict[FallbackKey, List[CoachTurnResult]] = {
    (Intent.CHEATING, None): [
        _v(
            "Finding out about cheating knocks the wind out of you. Before you decide anything, get one straight answer instead of ten half-truths.",
            ["I need the truth about what happened. One honest answer, then I'll decide what I need."],
            ["Do you want to work it out, or do you want closure?"],
            ["Ask for specifics once, calmly", "Decide what accountability would have to look like", "Don't become a full-time detective"],
        ),
        _v(
            "Trust got broken and you deserve clarity, not a debate. Keep your message short and let their response show you who they are.",
            ["I know what happened. I'm not going to argue, I just want you to be honest with me."],
            ["What would they need to do for you to even consider staying?"],
            ["Write down what you actually know vs. what you suspect", "Send one calm message", "Give yourself 48 hours before any big decision"],
        ),
    ],
    (Intent.GHOSTED, None): [
        _v(
            "Getting left on read stings, but chasing usually makes it worse. Send one easy follow-up, then match their energy.",
            ["Hey, no pressure. If you're still down to hang, let me know this week."],
            ["How long has it been since they last replied?"],
            ["Send one low-pressure follow-up", "Don't double text after that", "Put your energy somewhere that replies"],
        ),
        _v(
            "Silence is an answer too, even when it isn't the one you wanted. One clean message keeps your dignity and gives them a door.",
            ["Seems like you got busy. All good. I'm going to step back, but you know where to find me."],
            ["Was there anything that changed right before they went quiet?"],
            ["Send the exit text once", "Mute the chat for a few days", "Let them come back if they want to"],
        ),
    ],
    (Intent.BREAKUP, None): [
        _v(
            "Breakups hit hard even when they make sense. Give yourself some no-contact space before you send anything you might regret.",
            ["I'm taking some space to heal. I wish you well, and I'll reach out if that changes."],
            ["Are you looking for closure or for a way back?"],
            ["Start no contact for at least two weeks", "Mute or unfollow if their posts set you off", "Write the message you want to send, but don't send it yet"],
        ),
        _v(
            "Wanting to reach out after a breakup is normal. The goal right now is to stabilize first so whatever you send comes from a calm place.",
            ["I've been thinking about us and I'm okay. I just wanted to say thank you for the good parts."],
            ["What do you want to feel a month from now?"],
            ["Pick one person to vent to instead of texting them", "Delete the drafts folder", "Plan one thing for yourself this weekend"],
        ),
    ],
    (Intent.JEALOUSY, None): [
        _v(
            "Jealousy usually means you need reassurance, not surveillance. Name the feeling without accusing them and see how they respond.",
            ["I noticed I felt a little insecure earlier. Not accusing you, I just want us to talk about it."],
            ["Is this about something they did, or about a feeling that keeps coming up?"],
            ["Say what you need (reassurance or clarity)", "Skip the screenshots and interrogations", "Agree on a boundary you both can live with"],
        ),
    ],
    (Intent.ANXIOUS_ATTACHMENT, None): [
        _v(
            "Your brain is spiraling and that's exhausting. Regulate first: put the phone down for twenty minutes before you decide whether to text.",
            ["Hey, hope your day's going well. Free later this week?"],
            ["What's the story your mind is telling you right now?"],
            ["Wait before sending any follow-up", "Do something physical for 20 minutes", "Only send one message, then let it breathe"],
        ),
    ],
    (Intent.STRESS_DEPRESSION, None): [
        _v(
            "That sounds really heavy, and I'm glad you said it out loud. Take care of you first. If you ever feel unsafe, please reach out to someone you trust or a local crisis line right away.",
            ["Hey, I'm having a rough few days. Could we talk or hang out soon?"],
            ["Is there one person you could check in with today?"],
            ["Reach out to one trusted person today", "Keep relationship decisions for a calmer day", "If things feel unsafe, contact local emergency services"],
        ),
    ],
    (Intent.CONFIDENCE, None): [
        _v(
            "Rejection says more about fit than about your worth. Keep your standards, stay kind, and let your actions do the talking.",
            ["All good, I appreciate you being honest. Take care."],
            ["What's one thing you actually like about how you show up?"],
            ["Send a graceful exit if they're not interested", "Do one thing today that makes you feel like you", "Stop checking their socials"],
        ),
    ],
    (Intent.RIZZ, None): [
        _v(
            "Keep it short and confident, then move toward an actual plan. Interest grows when it's easy to say yes.",
            ["Okay you're kind of fun. Coffee this week?", "I'm down. What day works for you?", "Let's stop texting like pen pals. Thursday?"],
            ["What was the last thing they sent you?"],
            ["Pick one line and send it", "Offer two concrete times", "Don't over-explain"],
        ),
    ],
    (Intent.UNCLEAR_SIGNALS, None): [
        _v(
            "Hot and cold is confusing, so stop guessing and ask one clean question. Their answer, or lack of one, tells you what you need.",
            ["I like hanging out with you. Are we seeing where this goes, or keeping it casual?"],
            ["How long has it been going back and forth like this?"],
            ["Ask the question once, in person or by text", "Match their effort level afterwards", "Decide your own answer before you ask"],
        ),
    ],
    (Intent.GENERAL, None): [
        _v(
            "I've got you. Give me the quick version of what happened and what you want to happen next, and we'll figure out your move.",
            ["I'm down. What day works for you this week?"],
            ["What outcome do you want here?"],
            ["Tell me who said what last", "Say what you want to happen next"],
        ),
        _v(
            "Let's make this simple. Clarity beats confusion, so we'll aim for one clear message that moves things forward.",
            ["Hey, I've been thinking about this and I'd rather just ask you directly."],
            ["What's the last message in the chat?"],
            ["Share the last few messages", "Pick the outcome you want", "Send one short, clear text"],
        ),
    ],
    (Intent.GENERAL, Mode.RIZZ): [
        _v(
            "Short and bold wins here. Match their vibe, add a little tease, and point it toward a real plan.",
            ["I'm down. When are you free this week?", "Okay bet, when are we doing this?", "You seem like trouble. Coffee Saturday?"],
            ["What did they say last?"],
            ["Pick the line that sounds most like you", "Send it without overthinking", "Follow up with a concrete time"],
        ),
    ],
    (Intent.GENERAL, Mode.STRATEGY): [
        _v(
            "Let's play this a few moves ahead. Today: one clear message. This week: watch whether their effort matches yours. Then decide.",
            ["Hey, I'd like to see you again. Are you free this week?"],
            ["What do you want this to look like a month from now?"],
            ["Today: send one clear message", "This week: track their effort, not your anxiety", "Next week: decide whether to invest more or step back"],
        ),
    ],
}


def lookup_chain(intent: Intent, mode: Mode) -> Tuple[FallbackKey, ...]:
    return ((intent, mode), (intent, None), (Intent.GENERAL, mode), (Intent.GENERAL, None))


def fallback_reply(
    intent: Intent,
    mode: Mode,
    rng: Optional[random.Random] = None,
    avoid: Optional[str] = None,
) -> CoachTurnResult:
    """
    Pick a canned variant; always returns a well-formed result.

    `avoid` is the previous coach reply. A variant with that reply is skipped
    when the entry has another one to offer.
    """
    rng = rng or random.Random()
    for key in lookup_chain(intent, mode):
        variants = FALLBACKS.get(key)
        if variants:
            fresh = [v for v in variants if v.reply != avoid] if avoid else variants
            return rng.choice(fresh or variants).model_copy(deep=True)
    raise LookupError("fallback table has no general entry")
