"""
Session Memory

Per-session bounded transcript plus sparse derived facts.

- The transcript keeps only the most recent `max_turns` turns; older turns are
  evicted silently on append.
- Derived facts merge last-write-wins; a None value never clears a field.
- Each session has its own lock. The store-level lock is only held to look up
  or create a session, never across a mutation.
- Sessions idle for longer than `idle_ttl_s` are dropped by `evict_idle`.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, List, Optional

from core.config import settings

logger = logging.getLogger(__name__)

SPEAKER_USER = "user"
SPEAKER_COACH = "coach"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Turn:
    speaker: str  # "user" | "coach"
    text: str
    timestamp: datetime


@dataclass(frozen=True)
class DerivedFacts:
    who_ended_it: Optional[str] = None
    why: Optional[str] = None
    what_happened: Optional[str] = None
    user_goal: Optional[str] = None
    wants_closure: Optional[bool] = None

    def merged(self, partial: "DerivedFacts") -> "DerivedFacts":
        updates = {f.name: getattr(partial, f.name) for f in fields(partial) if getattr(partial, f.name) is not None}
        return replace(self, **updates) if updates else self

    def non_empty(self) -> Dict[str, object]:
        return {k: v for k, v in asdict(self).items() if v not in (None, "")}


@dataclass
class _Session:
    turns: Deque[Turn]
    facts: DerivedFacts = field(default_factory=DerivedFacts)
    last_seen: datetime = field(default_factory=_utcnow)
    lock: threading.Lock = field(default_factory=threading.Lock)


class SessionMemory:
    """In-process session store keyed by the caller's session token."""

    def __init__(
        self,
        max_turns: Optional[int] = None,
        idle_ttl_s: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.max_turns = max_turns or settings.SESSION_MAX_TURNS
        self.idle_ttl_s = idle_ttl_s if idle_ttl_s is not None else settings.SESSION_IDLE_TTL_S
        self.clock = clock
        self._sessions: Dict[str, _Session] = {}
        self._lock = threading.Lock()

    def _session(self, session_id: str) -> _Session:
        with self._lock:
            sess = self._sessions.get(session_id)
            if sess is None:
                sess = _Session(turns=deque(maxlen=self.max_turns), last_seen=self.clock())
                self._sessions[session_id] = sess
            return sess

    def append(self, session_id: str, speaker: str, text: str) -> Turn:
        if speaker not in (SPEAKER_USER, SPEAKER_COACH):
            raise ValueError(f"Unknown speaker: {speaker}")
        sess = self._session(session_id)
        turn = Turn(speaker=speaker, text=text, timestamp=self.clock())
        with sess.lock:
            sess.turns.append(turn)
            sess.last_seen = turn.timestamp
        return turn

    def read(self, session_id: str) -> List[Turn]:
        """Transcript oldest to newest (empty for unknown sessions)."""
        sess = self._session(session_id)
        with sess.lock:
            return list(sess.turns)

    def merge_facts(self, session_id: str, partial: DerivedFacts) -> DerivedFacts:
        sess = self._session(session_id)
        with sess.lock:
            sess.facts = sess.facts.merged(partial)
            sess.last_seen = self.clock()
            return sess.facts

    def read_facts(self, session_id: str) -> DerivedFacts:
        sess = self._session(session_id)
        with sess.lock:
            return sess.facts

    def last_coach_line(self, session_id: str) -> str:
        sess = self._session(session_id)
        with sess.lock:
            for turn in reversed(sess.turns):
                if turn.speaker == SPEAKER_COACH:
                    return turn.text
        return ""

    def evict_idle(self, now: Optional[datetime] = None) -> int:
        """Drop sessions idle longer than the TTL. Returns the number evicted."""
        now = now or self.clock()
        with self._lock:
            stale = [
                sid for sid, sess in self._sessions.items()
                if (now - sess.last_seen).total_seconds() > self.idle_ttl_s
            ]
            for sid in stale:
                del self._sessions[sid]
        if stale:
            logger.info(f"Evicted {len(stale)} idle sessions")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


_session_memory: Optional[SessionMemory] = None


def get_session_memory() -> SessionMemory:
    global _session_memory
    if _session_memory is None:
        _session_memory = SessionMemory()
    return _session_memory


def reset_session_memory(memory: Optional[SessionMemory] = None) -> SessionMemory:
    """Replace the process-wide store (tests pin clocks this way)."""
    global _session_memory
    _session_memory = memory or SessionMemory()
    return _session_memory
