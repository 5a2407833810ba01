"""
auth/tokens.py -- Access token signing/validation, refresh token minting, cookie helpers.

Security design decisions:
  Access tokens: python-jose with HS256. Signed with SECRET_KEY, carrying the
       account id, email and role plus iss/aud/iat/exp. Validation rejects a
       bad signature, a wrong issuer or audience, and expiry with zero leeway.
       validate_access_token() returns None on any failure -- the dependency
       layer turns that into 401.

  Refresh tokens: secrets.token_urlsafe(64) -- 512 bits of entropy, no embedded
       claims. The value is a capability reference; its validity and revocation
       live in the store, never here. TokenService is stateless.

  Cookie: the refresh token is mirrored into an httpOnly, SameSite=Strict
       cookie whose max_age matches the stored expiry, so the JSON body value
       and the cookie always describe the same token.

Settings and the clock are injected through the constructor. Nothing in this
module reads configuration at import time.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import Account, Role
from core.config import Settings

logger = logging.getLogger("identity.tokens")

_ALGORITHM = "HS256"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccessClaims:
    """Decoded, verified access-token claims."""

    account_id: int
    email: str
    role: Role
    expires_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMINISTRATOR


class TokenService:
    """Issues signed access tokens and opaque refresh tokens."""

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = utcnow) -> None:
        self._settings = settings
        self._clock = clock

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self._settings.access_token_expire_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self._settings.refresh_token_expire_days)

    def issue_access_token(self, account: Account) -> str:
        now = self._clock()
        payload = {
            "sub": str(account.id),
            "account_id": account.id,
            "email": account.email,
            "role": account.role.value,
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
            "iat": now,
            "exp": now + self.access_token_ttl,
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._settings.secret_key, algorithm=_ALGORITHM)

    def issue_refresh_token(self) -> str:
        return secrets.token_urlsafe(64)

    def validate_access_token(self, token: str) -> AccessClaims | None:
        """Decode and verify an access token. Returns None on any failure.

        python-jose checks signature, exp, iss and aud. Missing or malformed
        identity claims are treated the same as a bad signature.
        """
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._settings.secret_key,
                algorithms=[_ALGORITHM],
                audience=self._settings.jwt_audience,
                issuer=self._settings.jwt_issuer,
                options={"leeway": 0, "require_exp": True},
            )
        except JWTError:
            return None
        try:
            return AccessClaims(
                account_id=int(payload["account_id"]),
                email=str(payload["email"]),
                role=Role(payload["role"]),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Access token with valid signature but malformed claims rejected")
            return None


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str, settings: Settings) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests.
    max_age: matches the stored refresh token lifetime so both expire together.
    """
    response.set_cookie(
        settings.refresh_cookie_name,
        value=token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_expire_days * 24 * 3600,
        path="/",
    )


def clear_refresh_cookie(response, settings: Settings) -> None:
    response.delete_cookie(
        settings.refresh_cookie_name,
        path="/",
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
    )
