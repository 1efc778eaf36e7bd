"""
Domain errors raised by the service layer.

Each error is an HTTPException so services choose the status code, the same
way they always have; the application handler in main.py renders them as
{"success": false, "error": ...}. Extra fields (e.g. duplicateEmails) travel
in `extra` and are merged into the error body.
"""

from typing import Any, Optional

from fastapi import HTTPException, status


class BookingError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, extra: Optional[dict[str, Any]] = None):
        super().__init__(status_code=self.status_code, detail=message)
        self.extra = extra or {}


class ValidationError(BookingError):
    """Bad quantity, mismatched allocation, missing field."""


class InsufficientResourceError(BookingError):
    """Balance, voucher or training fund cannot cover the request."""


class InsufficientBalanceError(InsufficientResourceError):
    def __init__(self, program_tag: str, available: int, requested: int):
        super().__init__(
            f"Insufficient program tickets for '{program_tag}'. "
            f"Available: {available}, required: {requested}",
            extra={"available": available, "requested": requested},
        )
        self.available = available
        self.requested = requested


class ConsistencyViolation(BookingError):
    """Request would break a ledger invariant (over-cancel, nothing to reinstate)."""


class AuthorizationError(BookingError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(BookingError):
    status_code = status.HTTP_404_NOT_FOUND


class DuplicateRegistrationError(BookingError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, emails: list[str]):
        super().__init__(
            "The following attendees are already registered for this event: "
            + ", ".join(emails),
            extra={"duplicateEmails": emails},
        )
        self.emails = emails


class BalanceConflictError(BookingError):
    """A concurrent request changed a balance between check and commit."""

    status_code = status.HTTP_409_CONFLICT


class ExternalServiceError(BookingError):
    """A provider call failed. Raised by clients; the saga decides if it is fatal."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.upstream_status = status_code
