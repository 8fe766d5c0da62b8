from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from core.exceptions import SignatureInvalidError
from services.billing_sync import BillingSync, StripeService, get_billing_sync

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/webhook")
async def stripe_webhook(request: Request, sync: BillingSync = Depends(get_billing_sync)):
    """
    Stripe webhook endpoint.

    Verifies signature and applies plan changes idempotently.
    """
    sig = request.headers.get("stripe-signature")
    if not sig:
        raise SignatureInvalidError("Missing Stripe-Signature header")

    payload = await request.body()
    try:
        event = StripeService().construct_event(payload=payload, sig_header=sig)
    except Exception as e:
        # Signature verification errors should return 400 so Stripe can retry appropriately.
        logger.warning(f"Rejected billing webhook: {type(e).__name__}")
        raise SignatureInvalidError()

    try:
        result = sync.process_event(event)
    except Exception as e:
        logger.error(f"Billing event processing failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to process billing event")
    return {"ok": True, "result": result}
