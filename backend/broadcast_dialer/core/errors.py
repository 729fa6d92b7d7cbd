"""Domain errors raised by the services.

They subclass ``HTTPException`` so routers can let them propagate unchanged,
while workers catch them by type.
"""
from typing import Any

from fastapi import HTTPException, status


class BroadcastError(HTTPException):
    default_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: Any = None, status_code: int | None = None):
        super().__init__(status_code=status_code or self.default_status, detail=detail)

    @property
    def message(self) -> str:
        if isinstance(self.detail, dict):
            return str(self.detail.get("message", self.detail))
        return str(self.detail)


class ValidationError(BroadcastError):
    default_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidInput(BroadcastError):
    default_status = status.HTTP_400_BAD_REQUEST


class NotFound(BroadcastError):
    default_status = status.HTTP_404_NOT_FOUND


class InvalidTransition(BroadcastError):
    default_status = status.HTTP_409_CONFLICT


class ConcurrentUpdate(BroadcastError):
    default_status = status.HTTP_409_CONFLICT


class NoAvailableNumber(BroadcastError):
    default_status = status.HTTP_409_CONFLICT


class UnknownDtmfAction(BroadcastError):
    default_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class ReconciliationMismatch(BroadcastError):
    default_status = status.HTTP_409_CONFLICT


class NotReady(BroadcastError):
    default_status = status.HTTP_409_CONFLICT

    def __init__(self, readiness):
        self.readiness = readiness
        super().__init__(
            {
                "message": "Broadcast is not ready to start",
                "blocking_reasons": readiness.blocking_reasons,
                "fix_actions": [c.fix_action for c in readiness.checks if c.status == "fail" and c.fix_action],
            }
        )


class ConfirmationRequired(BroadcastError):
    default_status = status.HTTP_409_CONFLICT

    def __init__(self, lead_count: int, phone_count: int):
        self.lead_count = lead_count
        self.phone_count = phone_count
        super().__init__(
            {
                "message": (
                    f"About to dial {lead_count} leads from only {phone_count} caller ID(s). "
                    "Re-issue the start with confirm=true to proceed."
                ),
                "confirmation_required": True,
                "lead_count": lead_count,
                "phone_count": phone_count,
            }
        )


class ProviderError(BroadcastError):
    """Telephony or speech provider failure (including timeouts)."""

    default_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, detail: Any, provider_status: int | None = None):
        self.provider_status = provider_status
        super().__init__(detail)
