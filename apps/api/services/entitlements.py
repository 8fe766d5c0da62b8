"""
Entitlement Ledger

Per-identity plan tier plus daily and weekly usage counters.

Windows:
- daily: the current UTC calendar date
- weekly: the UTC Monday of the current ISO week

Every read and increment first rolls stale windows over (count reset to zero,
window key set to the current one) under the identity's lock, so a rollover
and the increment that follows it are one atomic step.

Premium identities still accumulate counts but are never limited; their
remaining allowance is reported as None (unlimited).

Plan and billing fields are written only by billing sync; counters are written
only by the request path.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set

from core.config import settings

logger = logging.getLogger(__name__)

PLAN_FREE = "free"
PLAN_PREMIUM = "premium"
PLANS = (PLAN_FREE, PLAN_PREMIUM)

_UNSET = object()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def daily_window_key(now: datetime) -> str:
    return now.astimezone(timezone.utc).date().isoformat()


def weekly_window_key(now: datetime) -> str:
    today = now.astimezone(timezone.utc).date()
    monday: date = today - timedelta(days=today.weekday())
    return monday.isoformat()


@dataclass(frozen=True)
class EntitlementRecord:
    identity: str
    plan: str = PLAN_FREE
    daily_count: int = 0
    daily_window: str = ""
    weekly_count: int = 0
    weekly_window: str = ""
    billing_customer_ref: Optional[str] = None
    billing_subscription_ref: Optional[str] = None
    current_period_end: Optional[datetime] = None

    @property
    def is_premium(self) -> bool:
        return self.plan == PLAN_PREMIUM


@dataclass(frozen=True)
class EntitlementSnapshot:
    """Read model for the entitlement query endpoint."""
    plan: str
    is_premium: bool
    daily_limit: Optional[int]
    daily_used: int
    daily_remaining: Optional[int]
    weekly_limit: Optional[int]
    weekly_used: int
    weekly_remaining: Optional[int]

    def to_response(self) -> dict:
        return {
            "ok": True,
            "plan": self.plan,
            "isPremium": self.is_premium,
            "dailyLimit": self.daily_limit,
            "dailyUsed": self.daily_used,
            "dailyRemaining": self.daily_remaining,
            "weeklyLimit": self.weekly_limit,
            "weeklyUsed": self.weekly_used,
            "weeklyRemaining": self.weekly_remaining,
        }


class EntitlementLedger:
    """In-process ledger keyed by caller identity."""

    def __init__(
        self,
        daily_limit: Optional[int] = None,
        weekly_limit: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.daily_limit = settings.FREE_DAILY_LIMIT if daily_limit is None else daily_limit
        self.weekly_limit = settings.FREE_WEEKLY_LIMIT if weekly_limit is None else weekly_limit
        self.clock = clock
        self._records: Dict[str, EntitlementRecord] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._by_customer: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _identity_lock(self, identity: str) -> threading.Lock:
        with self._lock:
            lock = self._locks.get(identity)
            if lock is None:
                lock = threading.Lock()
                self._locks[identity] = lock
            return lock

    def _rolled(self, identity: str) -> EntitlementRecord:
        """Current record with stale windows reset. Caller holds the identity lock."""
        now = self.clock()
        day, week = daily_window_key(now), weekly_window_key(now)
        rec = self._records.get(identity) or EntitlementRecord(identity=identity, daily_window=day, weekly_window=week)
        if rec.daily_window != day:
            rec = replace(rec, daily_count=0, daily_window=day)
        if rec.weekly_window != week:
            rec = replace(rec, weekly_count=0, weekly_window=week)
        self._records[identity] = rec
        return rec

    def _remaining(self, used: int, limit: int, rec: EntitlementRecord) -> Optional[int]:
        if rec.is_premium:
            return None
        return max(0, limit - used)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get(self, identity: str) -> EntitlementRecord:
        with self._identity_lock(identity):
            return self._rolled(identity)

    def daily_remaining(self, identity: str) -> Optional[int]:
        rec = self.get(identity)
        return self._remaining(rec.daily_count, self.daily_limit, rec)

    def weekly_remaining(self, identity: str) -> Optional[int]:
        rec = self.get(identity)
        return self._remaining(rec.weekly_count, self.weekly_limit, rec)

    def snapshot(self, identity: str) -> EntitlementSnapshot:
        rec = self.get(identity)
        premium = rec.is_premium
        return EntitlementSnapshot(
            plan=rec.plan,
            is_premium=premium,
            daily_limit=None if premium else self.daily_limit,
            daily_used=rec.daily_count,
            daily_remaining=self._remaining(rec.daily_count, self.daily_limit, rec),
            weekly_limit=None if premium else self.weekly_limit,
            weekly_used=rec.weekly_count,
            weekly_remaining=self._remaining(rec.weekly_count, self.weekly_limit, rec),
        )

    def find_by_customer_ref(self, customer_ref: str) -> List[str]:
        with self._lock:
            return sorted(self._by_customer.get(customer_ref, ()))

    # ------------------------------------------------------------------
    # counters (request path)
    # ------------------------------------------------------------------
    def increment_daily(self, identity: str, by: int = 1) -> EntitlementRecord:
        with self._identity_lock(identity):
            rec = self._rolled(identity)
            rec = replace(rec, daily_count=rec.daily_count + by)
            self._records[identity] = rec
            return rec

    def increment_weekly(self, identity: str, by: int = 1) -> EntitlementRecord:
        with self._identity_lock(identity):
            rec = self._rolled(identity)
            rec = replace(rec, weekly_count=rec.weekly_count + by)
            self._records[identity] = rec
            return rec

    def record_usage(self, identity: str, by: int = 1) -> EntitlementRecord:
        """Increment both counters in one rollover-then-increment step."""
        with self._identity_lock(identity):
            rec = self._rolled(identity)
            rec = replace(rec, daily_count=rec.daily_count + by, weekly_count=rec.weekly_count + by)
            self._records[identity] = rec
            return rec

    # ------------------------------------------------------------------
    # plan and billing (billing sync only)
    # ------------------------------------------------------------------
    def set_plan(self, identity: str, plan: str) -> EntitlementRecord:
        if plan not in PLANS:
            raise ValueError(f"Unknown plan: {plan}")
        with self._identity_lock(identity):
            previous = self._rolled(identity)
            rec = replace(previous, plan=plan)
            self._records[identity] = rec
        if previous.plan != plan:
            logger.info(f"Plan changed: {previous.plan} -> {plan}", extra={"extra_fields": {"identity": identity}})
        return rec

    def set_billing_refs(
        self,
        identity: str,
        customer_ref=_UNSET,
        subscription_ref=_UNSET,
        period_end=_UNSET,
    ) -> EntitlementRecord:
        """Update any subset of the billing fields; omitted fields are left alone."""
        with self._identity_lock(identity):
            rec = self._rolled(identity)
            updates = {}
            if customer_ref is not _UNSET:
                updates["billing_customer_ref"] = customer_ref
            if subscription_ref is not _UNSET:
                updates["billing_subscription_ref"] = subscription_ref
            if period_end is not _UNSET:
                updates["current_period_end"] = period_end
            new = replace(rec, **updates)
            self._records[identity] = new

            if new.billing_customer_ref != rec.billing_customer_ref:
                with self._lock:
                    if rec.billing_customer_ref:
                        self._by_customer.get(rec.billing_customer_ref, set()).discard(identity)
                    if new.billing_customer_ref:
                        self._by_customer.setdefault(new.billing_customer_ref, set()).add(identity)
            return new


_ledger: Optional[EntitlementLedger] = None


def get_ledger() -> EntitlementLedger:
    global _ledger
    if _ledger is None:
        _ledger = EntitlementLedger()
    return _ledger


def reset_ledger(ledger: Optional[EntitlementLedger] = None) -> EntitlementLedger:
    """Replace the process-wide ledger (tests pin clocks this way)."""
    global _ledger
    _ledger = ledger or EntitlementLedger()
    return _ledger
