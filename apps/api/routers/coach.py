"""
Coach API Router

Advice chat and the caller's quota view.

Callers are identified by an opaque session token taken, in order, from the
request body/query, the `x-session-id` header or the `sid` cookie. First-time
callers get a fresh token back in both the header and a cookie.
"""

import logging
import secrets
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from core.exceptions import APIException
from services.coach_orchestrator import CoachOrchestrator, get_orchestrator
from services.entitlements import EntitlementLedger, get_ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Coach"])

SESSION_HEADER = "x-session-id"
SESSION_COOKIE = "sid"


class AdviceRequest(BaseModel):
    """Request to the coach."""
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    mode: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId", max_length=128)


class CoachPayload(BaseModel):
    reply: str
    draftTexts: List[str]
    questions: List[str]
    nextSteps: List[str]


class AdviceResponse(BaseModel):
    ok: bool = True
    message: str
    mode: str
    sessionId: str
    coach: CoachPayload


class EntitlementsResponse(BaseModel):
    ok: bool = True
    plan: str
    isPremium: bool
    dailyLimit: Optional[int] = None
    dailyUsed: int
    dailyRemaining: Optional[int] = None
    weeklyLimit: Optional[int] = None
    weeklyUsed: int
    weeklyRemaining: Optional[int] = None


def resolve_session_id(request: Request, response: Response, explicit: Optional[str] = None) -> str:
    """Body/query value, then header, then cookie; otherwise mint one and hand it back."""
    for candidate in (explicit, request.headers.get(SESSION_HEADER), request.cookies.get(SESSION_COOKIE)):
        if candidate and candidate.strip():
            return candidate.strip()

    session_id = secrets.token_hex(12)
    response.headers[SESSION_HEADER] = session_id
    response.set_cookie(SESSION_COOKIE, session_id, path="/", httponly=True, samesite="lax")
    return session_id


@router.post("/advice", response_model=AdviceResponse)
async def advice(
    payload: AdviceRequest,
    request: Request,
    response: Response,
    orchestrator: CoachOrchestrator = Depends(get_orchestrator),
):
    """
    Send a message to the coach and get a structured reply.

    Free callers are limited per UTC day; premium callers are not.
    """
    session_id = resolve_session_id(request, response, payload.session_id)
    try:
        outcome = await orchestrator.handle(session_id, payload.message, payload.mode)
    except APIException:
        raise
    except Exception as e:
        logger.error(
            f"Advice request failed: {e}",
            exc_info=True,
            extra={"extra_fields": {"session_id": session_id}},
        )
        return JSONResponse(status_code=502, content={"ok": False, "error": "COACH_UNAVAILABLE"})

    coach = outcome.result.to_client()
    return AdviceResponse(
        message=coach["reply"],
        mode=outcome.mode.value,
        sessionId=session_id,
        coach=CoachPayload(**coach),
    )


@router.get("/me/entitlements", response_model=EntitlementsResponse)
def my_entitlements(
    request: Request,
    response: Response,
    session_id: Optional[str] = Query(default=None, alias="sessionId", max_length=128),
    ledger: EntitlementLedger = Depends(get_ledger),
):
    """Current plan and remaining free allowance; limits are null for premium."""
    identity = resolve_session_id(request, response, session_id)
    return ledger.snapshot(identity).to_response()
