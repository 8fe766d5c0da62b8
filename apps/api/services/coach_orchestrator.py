"""
Coaching Orchestrator

Runs one advice request end to end:

    RECEIVED -> QUOTA_CHECKED -> INTENT_RESOLVED -> GENERATING -> VALIDATING
             -> (REPAIRING)? -> COMPLETED | FALLEN_BACK

- Quota is checked before anything else runs; a rejected request changes nothing.
- Generation gets at most one repair retry. A backend failure or a second
  invalid result ends in the deterministic fallback, so a request that passed
  the quota check always produces a well-formed reply.
- Memory and ledger updates after generation are best-effort: failures are
  logged and never turn a reply into an error.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from core.config import settings
from core.exceptions import BackendUnavailable, InputError, InvalidGeneration, QuotaExceededError
from services.coach_facts import infer_facts
from services.coach_prompts import Mode, build_system_prompt, build_user_payload, normalize_mode
from services.coach_schema import CoachTurnResult, validate_generation
from services.entitlements import EntitlementLedger, get_ledger
from services.fallback_coach import fallback_reply
from services.generation_backend import GenerationBackend, build_backend, generate_with_timeout
from services.intent_classifier import Intent, classify
from services.session_memory import SPEAKER_COACH, SPEAKER_USER, SessionMemory, get_session_memory

logger = logging.getLogger(__name__)


class TurnState(Enum):
    RECEIVED = "received"
    QUOTA_CHECKED = "quota_checked"
    INTENT_RESOLVED = "intent_resolved"
    GENERATING = "generating"
    VALIDATING = "validating"
    REPAIRING = "repairing"
    COMPLETED = "completed"
    FALLEN_BACK = "fallen_back"


@dataclass
class CoachOutcome:
    result: CoachTurnResult
    mode: Mode
    intent: Intent
    state: TurnState
    attempts: int = 0
    trail: List[TurnState] = field(default_factory=list)

    @property
    def fell_back(self) -> bool:
        return self.state == TurnState.FALLEN_BACK


class CoachOrchestrator:
    def __init__(
        self,
        ledger: Optional[EntitlementLedger] = None,
        memory: Optional[SessionMemory] = None,
        backend: Optional[GenerationBackend] = None,
        rng: Optional[random.Random] = None,
        max_repairs: int = 1,
        history_turns: Optional[int] = None,
        enforce_weekly: Optional[bool] = None,
    ):
        self.ledger = ledger or get_ledger()
        self.memory = memory or get_session_memory()
        self.backend = backend or build_backend()
        self.rng = rng or random.Random()
        self.max_repairs = max_repairs
        self.history_turns = history_turns or settings.GENERATION_HISTORY_TURNS
        self.enforce_weekly = settings.ENFORCE_WEEKLY_LIMIT if enforce_weekly is None else enforce_weekly
        self._last_sweep = 0.0

    # ------------------------------------------------------------------
    # steps
    # ------------------------------------------------------------------
    def check_quota(self, session_id: str) -> bool:
        """
        Raise QuotaExceededError when a free caller has nothing left.

        Returns whether the caller is premium. Ledger errors fail open.
        """
        try:
            rec = self.ledger.get(session_id)
        except Exception as e:
            logger.warning(f"Quota check failed, allowing request: {e}")
            return False

        if rec.is_premium:
            return True

        if self.ledger.daily_limit - rec.daily_count <= 0:
            raise QuotaExceededError("daily")
        if self.enforce_weekly and self.ledger.weekly_limit - rec.weekly_count <= 0:
            raise QuotaExceededError("weekly")
        return False

    async def _generate(
        self,
        session_id: str,
        message: str,
        intent: Intent,
        mode: Mode,
        trail: List[TurnState],
    ) -> tuple[Optional[CoachTurnResult], int]:
        facts = self.memory.read_facts(session_id)
        history = self.memory.read(session_id)[-self.history_turns:]
        system = build_system_prompt(intent, mode, facts)

        attempts = 0
        for attempt in range(1 + self.max_repairs):
            repair = attempt > 0
            trail.append(TurnState.REPAIRING if repair else TurnState.GENERATING)
            attempts += 1
            try:
                raw = await generate_with_timeout(
                    self.backend, system, history, build_user_payload(message, mode, repair=repair)
                )
            except BackendUnavailable as e:
                logger.warning(
                    f"Generation backend unavailable: {e}",
                    extra={"extra_fields": {"backend": self.backend.name, "attempt": attempts}},
                )
                return None, attempts
            except Exception as e:
                logger.error(
                    f"Generation backend failed unexpectedly: {e}",
                    exc_info=True,
                    extra={"extra_fields": {"backend": self.backend.name, "attempt": attempts}},
                )
                return None, attempts

            trail.append(TurnState.VALIDATING)
            try:
                return validate_generation(raw), attempts
            except InvalidGeneration as e:
                logger.info(
                    f"Generation rejected: {e}",
                    extra={"extra_fields": {"backend": self.backend.name, "attempt": attempts, "intent": intent.value}},
                )
        return None, attempts

    def _last_coach_line(self, session_id: str) -> Optional[str]:
        try:
            return self.memory.last_coach_line(session_id)
        except Exception as e:
            logger.warning(f"Session memory read failed: {e}")
            return None

    def _remember(self, session_id: str, message: str, reply: str) -> None:
        try:
            previous = self.memory.read_facts(session_id)
            self.memory.append(session_id, SPEAKER_USER, message)
            self.memory.append(session_id, SPEAKER_COACH, reply)
            self.memory.merge_facts(
                session_id, infer_facts(message, previous, settings.FACT_SUMMARY_MAX_CHARS)
            )
        except Exception as e:
            logger.error(f"Session memory update failed: {e}", exc_info=True)

    def _charge(self, session_id: str) -> None:
        try:
            self.ledger.record_usage(session_id)
        except Exception as e:
            logger.error(f"Usage increment failed: {e}", exc_info=True)

    def _maybe_sweep(self) -> None:
        now = time.monotonic()
        if now - self._last_sweep < settings.SESSION_SWEEP_INTERVAL_S:
            return
        self._last_sweep = now
        try:
            self.memory.evict_idle()
        except Exception as e:
            logger.warning(f"Session sweep failed: {e}")

    # ------------------------------------------------------------------
    # entry point
    # ------------------------------------------------------------------
    async def handle(self, session_id: str, message: str, mode: Optional[str] = None) -> CoachOutcome:
        trail = [TurnState.RECEIVED]
        text = (message or "").strip()
        if not text:
            raise InputError()

        resolved_mode = normalize_mode(mode)
        try:
            premium = self.check_quota(session_id)
        except QuotaExceededError as e:
            logger.info(
                f"Quota exceeded: {e.error_code}",
                extra={"extra_fields": {"session_id": session_id, "code": e.error_code}},
            )
            raise
        trail.append(TurnState.QUOTA_CHECKED)

        intent = classify(text)
        trail.append(TurnState.INTENT_RESOLVED)

        result, attempts = await self._generate(session_id, text, intent, resolved_mode, trail)
        if result is not None:
            state = TurnState.COMPLETED
        else:
            state = TurnState.FALLEN_BACK
            result = fallback_reply(intent, resolved_mode, self.rng, avoid=self._last_coach_line(session_id))
            logger.info(
                "Serving fallback reply",
                extra={"extra_fields": {"intent": intent.value, "mode": resolved_mode.value, "attempts": attempts}},
            )
        trail.append(state)

        self._remember(session_id, text, result.reply)
        if not premium:
            self._charge(session_id)
        self._maybe_sweep()

        return CoachOutcome(
            result=result,
            mode=resolved_mode,
            intent=intent,
            state=state,
            attempts=attempts,
            trail=trail,
        )


_orchestrator: Optional[CoachOrchestrator] = None


def get_orchestrator() -> CoachOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = CoachOrchestrator()
    return _orchestrator


def reset_orchestrator(orchestrator: Optional[CoachOrchestrator] = None) -> Optional[CoachOrchestrator]:
    global _orchestrator
    _orchestrator = orchestrator
    return _orchestrator
