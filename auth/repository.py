"""
auth/repository.py -- Persistence contract the identity engine depends on.

The engine only ever talks to this Protocol. auth/store.py is the SQLAlchemy
implementation; tests may substitute anything structurally compatible.

Every method is atomic with respect to the fields it touches: a concurrent
reader never observes a half-applied write. Methods that depend on the
current time take `now` from the caller, so the store itself has no clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Protocol

from auth.models import Account, AccountStatistics, AccountStatus, AuditEntry, RefreshToken, Role


class AccountRepository(Protocol):
    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_id(self, account_id: int) -> Account | None: ...

    def create(self, account: Account) -> int:
        """Insert and return the new id. Raises Conflict on a duplicate email."""
        ...

    def update(self, account_id: int, **fields) -> bool: ...

    def update_fcm_token(self, account_id: int, token: str | None) -> bool: ...

    def soft_delete(self, account_id: int) -> bool: ...

    def list(self, limit: int = 100, offset: int = 0) -> list[Account]: ...

    def update_role(self, account_id: int, role: Role) -> bool: ...

    def update_status(self, account_id: int, status: AccountStatus) -> bool: ...

    def update_password(self, account_id: int, password_hash: str) -> bool: ...

    def update_last_login(self, account_id: int, now: datetime) -> None: ...

    def get_statistics(self, now: datetime) -> AccountStatistics: ...

    # ------------------------------------------------------------------
    # Lockout bookkeeping
    # ------------------------------------------------------------------

    def record_failed_login(
        self, email: str, threshold: int, lockout: timedelta, now: datetime
    ) -> Account | None:
        """Increment the failed-attempt counter and apply lockout in one step."""
        ...

    def reset_failed_attempts(self, account_id: int) -> None: ...

    # ------------------------------------------------------------------
    # One-time passcodes
    # ------------------------------------------------------------------

    def set_email_verification_otp(self, account_id: int, otp: str, expires_at: datetime) -> bool: ...

    def verify_email_otp(self, email: str, otp: str, now: datetime) -> Account | None:
        """Atomic lookup-and-clear. Returns the verified account or None."""
        ...

    def set_password_reset_otp(self, account_id: int, otp: str, expires_at: datetime) -> bool: ...

    def verify_password_reset_otp(self, email: str, otp: str, now: datetime) -> Account | None: ...

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, token: RefreshToken) -> RefreshToken: ...

    def validate_refresh_token(self, token: str, now: datetime) -> RefreshToken | None: ...

    def revoke_refresh_token(self, token: str, now: datetime) -> bool: ...

    def revoke_all_tokens_for_account(self, account_id: int, now: datetime) -> int: ...

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def append_audit_entry(self, entry: AuditEntry) -> int: ...
