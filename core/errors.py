"""
core/errors.py -- Error taxonomy for the identity service.

Every expected failure of an engine operation is raised as one of the
ServiceError subclasses below. The HTTP layer maps them onto the uniform
error envelope {"error": {"code", "message", "detail"}} using the status_code
and code carried on the exception, so no route needs its own try/except.

Messages are written for end users. They never contain stack traces, SQL
text, or the str() of a library exception.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class ServiceError(Exception):
    """Base class for every typed failure an operation can report."""

    status_code: int = 400
    code: str = "error"
    default_message: str = "The request could not be completed."

    def __init__(self, message: str | None = None, *, detail: Any = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "detail": self.detail}


class ValidationError(ServiceError):
    """Malformed input, rejected before storage is touched."""

    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."

    def __init__(self, errors: list[str] | str, message: str | None = None) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__(message, detail=self.errors)


class Conflict(ServiceError):
    status_code = 409
    code = "conflict"
    default_message = "An account with this email already exists."


class InvalidCredentials(ServiceError):
    # Deliberately generic: never says which of email/password was wrong.
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid email or password."


class InvalidOrExpired(ServiceError):
    # Same error for a wrong code and an expired code.
    status_code = 400
    code = "invalid_or_expired"
    default_message = "Invalid or expired OTP."


class AccountLocked(ServiceError):
    status_code = 423
    code = "account_locked"
    default_message = "Account is locked."

    def __init__(self, locked_until: datetime) -> None:
        self.locked_until = locked_until
        stamp = locked_until.strftime("%Y-%m-%d %H:%M:%S")
        super().__init__(
            f"Account is locked. Please try again after {stamp} UTC.",
            detail={"locked_until": locked_until.isoformat()},
        )


class VerificationRequired(ServiceError):
    """Credentials were correct but the email address is not verified yet.

    A fresh verification OTP has been dispatched; otp_sent reports whether the
    dispatch succeeded so the caller can surface a degraded outcome.
    """

    status_code = 403
    code = "verification_required"
    default_message = "Please verify your email address. A new OTP has been sent."

    def __init__(self, email: str, otp_sent: bool = True) -> None:
        self.email = email
        self.otp_sent = otp_sent
        super().__init__(detail={"email": email, "otp_sent": otp_sent})


class Unauthorized(ServiceError):
    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class Forbidden(ServiceError):
    status_code = 403
    code = "forbidden"
    default_message = "You are not allowed to perform this action."


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"
    default_message = "Account not found."


class InternalError(ServiceError):
    status_code = 500
    code = "internal_error"
    default_message = "An unexpected error occurred."
