"""
auth/models.py -- Domain dataclasses for identity and session entities.

Pattern: Data class (pure data container, near-zero logic). Dataclasses own
the domain shape; the store maps rows onto them and the engine does the work.
The only behaviour here is derived state that must be computed the same way
everywhere (is_locked, RefreshToken.is_valid).

Timestamps are timezone-aware UTC datetimes. The store persists them as ISO
strings and parses them back in its row mappers.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Tagged capability set. Checked explicitly at each admin boundary."""

    STANDARD = "User"
    ADMINISTRATOR = "Admin"


class AccountStatus(str, Enum):
    PENDING = "Pending"
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    DEACTIVATED = "Deactivated"


@dataclass
class Account:
    """A registered identity.

    password_hash is opaque (bcrypt) and never leaves the service. The OTP
    fields hold at most one outstanding code per purpose; verification and
    reset codes are independent of each other. fcm_token is the push
    notification device token and is not part of the public profile.

    The locked state is derived, never stored: an account is locked iff
    lockout_until is set and still in the future. A stale lockout_until is
    the same as no lockout.
    """

    email: str
    password_hash: str
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    country: str | None = None
    locale: str = "en"
    avatar_url: str | None = None
    fcm_token: str | None = None
    role: Role = Role.STANDARD
    status: AccountStatus = AccountStatus.PENDING
    email_verified: bool = False
    email_otp: str | None = None
    email_otp_expires_at: datetime | None = None
    reset_otp: str | None = None
    reset_otp_expires_at: datetime | None = None
    failed_login_attempts: int = 0
    lockout_until: datetime | None = None
    created_at: datetime | None = None
    last_login_at: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.lockout_until is not None and self.lockout_until > now

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMINISTRATOR

    def public_profile(self) -> dict:
        """Fields safe to return to the account owner. No hash, no OTPs."""
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "country": self.country,
            "locale": self.locale,
            "avatar_url": self.avatar_url,
            "role": self.role.value,
            "status": self.status.value,
            "email_verified": self.email_verified,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
        }


@dataclass
class RefreshToken:
    """Opaque capability reference bound to one account.

    Rows are never mutated after creation except to mark revocation.
    """

    account_id: int
    token: str
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None
    revoked_at: datetime | None = None
    is_revoked: bool = False

    def is_valid(self, now: datetime) -> bool:
        return not self.is_revoked and now < self.expires_at


@dataclass
class AuditEntry:
    """Append-only security event. account_id is None for anonymous actors."""

    action: str
    success: bool
    account_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    detail: str | None = None
    id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class RequestContext:
    """Where a request came from. Captured on every audit entry."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class AccountStatistics:
    total: int = 0
    pending: int = 0
    active: int = 0
    suspended: int = 0
    deactivated: int = 0
    email_verified: int = 0
    administrators: int = 0
    locked: int = 0
    created_last_7_days: int = 0
