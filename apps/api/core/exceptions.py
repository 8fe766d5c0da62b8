"""
Custom exception classes and error handling.

Provides consistent error responses across the API. Client-facing errors
derive from APIException and are rendered by the handler in main.py;
the generation errors below never leave the service layer.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

    def to_body(self) -> Dict[str, Any]:
        return {"ok": False, "code": self.error_code, "message": self.detail}


class InputError(APIException):
    """Empty or malformed request input."""

    def __init__(self, detail: str = "Message is required", error_code: str = "EMPTY_INPUT"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )

    def to_body(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.error_code}


class QuotaExceededError(APIException):
    """Free-tier allowance for the current window is used up."""

    MESSAGES = {
        "DAILY_LIMIT": "You've used all your free messages for today. Upgrade for unlimited coaching.",
        "WEEKLY_LIMIT": "You've used all your free messages for this week. Upgrade for unlimited coaching.",
    }

    def __init__(self, window: str = "daily"):
        code = "WEEKLY_LIMIT" if window == "weekly" else "DAILY_LIMIT"
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=self.MESSAGES[code],
            error_code=code
        )
        self.window = window


class SignatureInvalidError(APIException):
    """Billing webhook failed signature verification."""

    def __init__(self, detail: str = "Invalid webhook signature"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="SIGNATURE_INVALID"
        )


class BackendUnavailable(Exception):
    """Text generation failed: transport error, non-success status, timeout or empty body."""


class InvalidGeneration(ValueError):
    """Backend text could not be turned into a usable coach turn."""
