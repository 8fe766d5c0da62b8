"""
Pytest configuration and fixtures

All state in this service is process-local, so every test gets fresh
singletons bound to a pinned clock. Redis is treated as unavailable and the
generation backend is disabled unless a test installs its own.
"""
import os
import sys
import random
from collections import deque
from datetime import datetime, timedelta, timezone

import pytest

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Must be set before core.config is imported.
os.environ.setdefault("GENERATION_PROVIDER", "disabled")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("ENFORCE_WEEKLY_LIMIT", "false")

from core.exceptions import BackendUnavailable  # noqa: E402


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedBackend:
    """Generation backend double that replays canned outputs in order.

    Items may be strings (returned) or exceptions (raised). Every call's
    arguments are recorded on `calls`.
    """

    name = "scripted"

    def __init__(self, *outputs):
        self.outputs = deque(outputs)
        self.calls = []

    async def generate(self, system, history, message):
        self.calls.append({"system": system, "history": list(history), "message": message})
        if not self.outputs:
            raise BackendUnavailable("script exhausted")
        item = self.outputs.popleft()
        if isinstance(item, BaseException):
            raise item
        return item


GOOD_REPLY_JSON = (
    '{"reply": "Two days on read after a great date is annoying, but it is not a verdict yet.",'
    ' "draft_texts": ["Hey, had fun Friday. Free this weekend?"],'
    ' "questions": ["Did they reply fast before the date?"],'
    ' "next_steps": ["Send one light follow-up", "Then match their energy"]}'
)


@pytest.fixture
def clock():
    # Wednesday, so the same ISO week spans both directions.
    return FakeClock(datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(autouse=True)
def _no_redis(monkeypatch):
    from core import cache

    cache.reset_redis_client()
    monkeypatch.setattr(cache, "get_redis_client", lambda: None)


@pytest.fixture
def ledger(clock):
    from services.entitlements import EntitlementLedger, reset_ledger

    return reset_ledger(EntitlementLedger(daily_limit=3, weekly_limit=3, clock=clock))


@pytest.fixture
def memory(clock):
    from services.session_memory import SessionMemory, reset_session_memory

    return reset_session_memory(SessionMemory(max_turns=10, idle_ttl_s=3600, clock=clock))


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def orchestrator(ledger, memory, backend):
    from services.coach_orchestrator import CoachOrchestrator, reset_orchestrator

    orch = CoachOrchestrator(ledger=ledger, memory=memory, backend=backend, rng=random.Random(7))
    reset_orchestrator(orch)
    yield orch
    reset_orchestrator(None)


@pytest.fixture
def billing_sync(ledger, clock):
    from services.billing_sync import BillingSync, ProcessedEventStore, reset_billing_sync

    sync = BillingSync(ledger=ledger, events=ProcessedEventStore(), clock=clock)
    reset_billing_sync(sync)
    yield sync
    reset_billing_sync(None)


@pytest.fixture
def client(orchestrator, billing_sync):
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)
