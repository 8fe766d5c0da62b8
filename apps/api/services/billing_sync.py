from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import threading
from typing import Any, Callable, Optional, Set

import stripe

from core.cache import cache_key, claim_key, delete_key
from core.config import settings
from services.entitlements import PLAN_FREE, PLAN_PREMIUM, EntitlementLedger, get_ledger

logger = logging.getLogger(__name__)

ACTIVATED = "subscription_activated"
CANCELED = "subscription_canceled"
PAYMENT_FAILED = "payment_failed"

# Provider event type -> lifecycle event. Canonical names map to themselves.
EVENT_TYPE_MAP = {
    "checkout.session.completed": ACTIVATED,
    "customer.subscription.deleted": CANCELED,
    "invoice.payment_failed": PAYMENT_FAILED,
    ACTIVATED: ACTIVATED,
    CANCELED: CANCELED,
    PAYMENT_FAILED: PAYMENT_FAILED,
}

REFERENCE_METADATA_KEYS = ("session_id", "token")


@dataclass(frozen=True)
class StripeConfig:
    secret_key: Optional[str]
    webhook_secret: Optional[str]


def _get_stripe_config() -> StripeConfig:
    """
    Load Stripe config from environment via Settings.

    Only the webhook secret is needed to verify events; the API key is optional.
    """
    return StripeConfig(
        secret_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
    )


class StripeService:
    def __init__(self) -> None:
        cfg = _get_stripe_config()
        if cfg.secret_key:
            stripe.api_key = cfg.secret_key
        self.cfg = cfg

    def construct_event(self, *, payload: bytes, sig_header: str):
        if not self.cfg.webhook_secret:
            raise RuntimeError("Stripe webhook secret not configured")
        return stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=self.cfg.webhook_secret,
        )


class ProcessedEventStore:
    """
    Claim-once store for webhook event ids.

    Redis SET NX when available; otherwise a process-local set.
    """

    def __init__(self, ttl_s: Optional[int] = None):
        self.ttl_s = ttl_s or settings.WEBHOOK_EVENT_TTL_S
        self._local: Set[str] = set()
        self._lock = threading.Lock()

    def claim(self, event_id: str) -> bool:
        claimed = claim_key(cache_key("billing_event", event_id), self.ttl_s)
        if claimed is not None:
            return claimed
        with self._lock:
            if event_id in self._local:
                return False
            self._local.add(event_id)
            return True

    def release(self, event_id: str) -> None:
        delete_key(cache_key("billing_event", event_id))
        with self._lock:
            self._local.discard(event_id)


def _field(obj: Any, name: str) -> Any:
    """Attribute or key access (stripe objects support both, test doubles may not)."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    try:
        return getattr(obj, name, None)
    except Exception:
        return None


def _event_object(event: Any) -> Any:
    return _field(_field(event, "data"), "object")


def _resolve_reference(obj: Any) -> Optional[str]:
    ref = _field(obj, "client_reference_id")
    if ref:
        return str(ref)
    metadata = _field(obj, "metadata") or {}
    for key in REFERENCE_METADATA_KEYS:
        value = _field(metadata, key)
        if value:
            return str(value)
    return None


def _maybe_parse_period_end(ts: Any) -> Optional[datetime]:
    try:
        if ts is None:
            return None
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _ref_id(obj: Any, name: str) -> Optional[str]:
    value = _field(obj, name)
    if value is None:
        return None
    # Expanded objects carry the id on the object.
    if not isinstance(value, str):
        value = _field(value, "id")
    return str(value) if value else None


class BillingSync:
    """Applies verified billing lifecycle events to the entitlement ledger."""

    def __init__(
        self,
        ledger: Optional[EntitlementLedger] = None,
        events: Optional[ProcessedEventStore] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.ledger = ledger or get_ledger()
        self.events = events or ProcessedEventStore()
        self.clock = clock

    def process_event(self, event: Any) -> dict[str, Any]:
        """
        Idempotently apply a billing event.

        Unresolvable events are logged and acknowledged so the provider stops retrying.
        """
        event_id = str(_field(event, "id") or "")
        event_type = str(_field(event, "type") or "")

        if not event_id:
            return {"processed": False, "reason": "missing_event_id"}

        lifecycle = EVENT_TYPE_MAP.get(event_type)
        if lifecycle is None:
            logger.info(f"Ignoring billing event type {event_type}", extra={"extra_fields": {"event_id": event_id}})
            return {"processed": False, "ignored": True, "event_id": event_id, "event_type": event_type}

        # Claim before applying so concurrent deliveries of one event apply once.
        if not self.events.claim(event_id):
            logger.info(f"Duplicate billing event {event_id}")
            return {"processed": False, "idempotent": True, "event_id": event_id}

        try:
            if lifecycle == ACTIVATED:
                result = self._activate(_event_object(event))
            else:
                result = self._revoke(_event_object(event))
        except Exception:
            self.events.release(event_id)
            raise

        result.update({"processed": True, "event_id": event_id, "event_type": lifecycle})
        log = logger.info if result.get("matched") else logger.warning
        log(
            f"Billing event {lifecycle} applied" if result.get("matched") else f"Billing event {lifecycle} unresolved",
            extra={"extra_fields": {"event_id": event_id, "identities": result.get("identities", [])}},
        )
        return result

    def _activate(self, obj: Any) -> dict[str, Any]:
        identity = _resolve_reference(obj)
        if not identity:
            return {"matched": False, "reason": "missing_client_reference"}

        period_end = _maybe_parse_period_end(_field(obj, "current_period_end"))
        if period_end is None:
            period_end = self.clock() + timedelta(days=settings.BILLING_DEFAULT_PERIOD_DAYS)

        self.ledger.set_plan(identity, PLAN_PREMIUM)
        customer_ref = _ref_id(obj, "customer")
        subscription_ref = _ref_id(obj, "subscription")
        refs: dict[str, Any] = {"period_end": period_end}
        if customer_ref:
            refs["customer_ref"] = customer_ref
        if subscription_ref:
            refs["subscription_ref"] = subscription_ref
        self.ledger.set_billing_refs(identity, **refs)
        return {"matched": True, "identities": [identity]}

    def _revoke(self, obj: Any) -> dict[str, Any]:
        customer_ref = _ref_id(obj, "customer")
        if not customer_ref:
            return {"matched": False, "reason": "missing_customer"}

        identities = self.ledger.find_by_customer_ref(customer_ref)
        if not identities:
            return {"matched": False, "reason": "unknown_customer", "identities": []}

        for identity in identities:
            self.ledger.set_plan(identity, PLAN_FREE)
            self.ledger.set_billing_refs(identity, period_end=None)
        return {"matched": True, "identities": identities}


_billing_sync: Optional[BillingSync] = None


def get_billing_sync() -> BillingSync:
    global _billing_sync
    if _billing_sync is None:
        _billing_sync = BillingSync()
    return _billing_sync


def reset_billing_sync(sync: Optional[BillingSync] = None) -> Optional[BillingSync]:
    global _billing_sync
    _billing_sync = sync
    return _billing_sync
