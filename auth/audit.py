"""
auth/audit.py -- Structured security event recording.

AuditRecorder.record() appends one AuditEntry per authentication-relevant
action through the repository. A failed audit write never aborts the
operation that triggered it: the exception is logged with full context on
the "identity.audit" logger and record() returns False.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from auth.models import AuditEntry, RequestContext
from auth.repository import AccountRepository

logger = logging.getLogger("identity.audit")


class AuditAction(str, Enum):
    USER_REGISTERED_OTP_SENT = "USER_REGISTERED_OTP_SENT"
    REGISTRATION_FAILED = "REGISTRATION_FAILED"
    EMAIL_VERIFIED = "EMAIL_VERIFIED"
    EMAIL_VERIFICATION_FAILED = "EMAIL_VERIFICATION_FAILED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_BLOCKED_LOCKOUT = "LOGIN_BLOCKED_LOCKOUT"
    LOGIN_VERIFICATION_REQUIRED = "LOGIN_VERIFICATION_REQUIRED"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET_SUCCESS = "PASSWORD_RESET_SUCCESS"
    PASSWORD_RESET_FAILED = "PASSWORD_RESET_FAILED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_CHANGE_FAILED = "PASSWORD_CHANGE_FAILED"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    LOGOUT = "LOGOUT"
    ROLE_UPDATED = "ROLE_UPDATED"
    ACCOUNT_STATUS_CHANGED = "ACCOUNT_STATUS_CHANGED"
    ACCOUNT_DEACTIVATED = "ACCOUNT_DEACTIVATED"
    ADMIN_BOOTSTRAPPED = "ADMIN_BOOTSTRAPPED"
    SESSIONS_REVOKED = "SESSIONS_REVOKED"


class AuditRecorder:
    def __init__(self, repository: AccountRepository, clock: Callable[[], datetime]) -> None:
        self._repository = repository
        self._clock = clock

    def record(
        self,
        action: AuditAction,
        context: RequestContext,
        *,
        success: bool,
        account_id: int | None = None,
        detail: str | None = None,
    ) -> bool:
        """Append one audit entry. Returns False if the write failed."""
        entry = AuditEntry(
            action=action.value,
            success=success,
            account_id=account_id,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            detail=detail,
            created_at=self._clock(),
        )
        try:
            self._repository.append_audit_entry(entry)
        except Exception:
            logger.exception(
                "Audit write failed: action=%s account_id=%s success=%s",
                action.value,
                account_id,
                success,
            )
            return False
        return True
