"""
auth/engine.py -- Identity & session engine.

Orchestrates registration, email verification, login, token refresh,
password reset/change, logout and admin account lifecycle on top of the
AccountRepository, PasswordHasher, TokenService, Notifier and AuditRecorder.

Account status machine:

    Pending --(email OTP verified)--> Active
    Active  --(admin)--> Suspended --(admin)--> Active
    any     --(admin soft delete)--> Deactivated

Error contract: every expected failure is raised as a core.errors.ServiceError
subclass, named in each method's docstring. Storage failures
(SQLAlchemyError) are logged with the operation name and re-raised as
InternalError by the _storage_guard decorator.

Audit contract: every authentication-relevant call writes exactly one audit
entry, success or failure, including calls rejected for malformed input. The
two documented exceptions are forgot_password for an unknown or blank email
and logout without a known caller.

The engine holds no mutable state of its own. All session state lives in
the repository, so any number of engine instances may serve requests.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from auth.audit import AuditAction, AuditRecorder
from auth.models import Account, AccountStatistics, AccountStatus, RefreshToken, RequestContext, Role
from auth.notifier import Notifier
from auth.otp import generate_otp
from auth.passwords import PasswordHasher, password_policy_errors
from auth.repository import AccountRepository
from auth.tokens import AccessClaims, TokenService, utcnow
from auth.validation import email_errors, normalize_email, profile_errors
from core.config import Settings
from core.errors import (
    AccountLocked,
    Conflict,
    Forbidden,
    InternalError,
    InvalidCredentials,
    InvalidOrExpired,
    NotFound,
    Unauthorized,
    ValidationError,
    VerificationRequired,
)

logger = logging.getLogger("identity.engine")

FORGOT_PASSWORD_MESSAGE = "If the email exists, a password reset OTP has been sent."

_NO_CONTEXT = RequestContext()
_SIGN_IN_BLOCKED = (AccountStatus.SUSPENDED, AccountStatus.DEACTIVATED)
_PROFILE_KEYS = ("first_name", "last_name", "phone", "country", "locale", "avatar_url")
_MAX_FCM_TOKEN_LENGTH = 512


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Registration:
    account_id: int
    email: str
    otp_sent: bool


@dataclass(frozen=True)
class Session:
    """Tokens handed out by login and email verification."""

    access_token: str
    refresh_token: str
    refresh_expires_at: datetime
    expires_in: int
    account: Account


@dataclass(frozen=True)
class RefreshedAccess:
    access_token: str
    refresh_token: str  # unchanged: refresh tokens are not rotated
    expires_in: int


def _storage_guard(operation: str):
    """Map storage-layer exceptions onto InternalError, logging the original."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except SQLAlchemyError as exc:
                logger.exception("Storage failure during %s", operation)
                raise InternalError() from exc

        return wrapper

    return decorator


class IdentityEngine:
    def __init__(
        self,
        repository: AccountRepository,
        tokens: TokenService,
        hasher: PasswordHasher,
        notifier: Notifier,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repository
        self._tokens = tokens
        self._hasher = hasher
        self._notifier = notifier
        self._settings = settings
        self._clock = clock
        self._audit = AuditRecorder(repository, clock)

    @property
    def _otp_ttl(self) -> timedelta:
        return timedelta(minutes=self._settings.otp_expire_minutes)

    @property
    def _access_expires_in(self) -> int:
        return int(self._tokens.access_token_ttl.total_seconds())

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    @_storage_guard("register")
    def register(
        self,
        email: str,
        password: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        phone: str | None = None,
        country: str | None = None,
        locale: str | None = None,
        context: RequestContext = _NO_CONTEXT,
    ) -> Registration:
        """Create a Pending account and dispatch its verification OTP.

        Raises ValidationError, Conflict.
        """
        errors = email_errors(email) + password_policy_errors(password)
        errors += profile_errors(
            first_name=first_name, last_name=last_name, phone=phone, country=country, locale=locale
        )
        if errors:
            raise self._rejected(AuditAction.REGISTRATION_FAILED, context, errors)

        email = normalize_email(email)
        now = self._clock()
        if self._repo.find_by_email(email) is not None:
            self._audit.record(
                AuditAction.REGISTRATION_FAILED, context, success=False, detail="Email already registered"
            )
            raise Conflict()

        account = Account(
            email=email,
            password_hash=self._hasher.hash(password),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            country=country.upper() if country else None,
            locale=locale or "en",
            role=Role.STANDARD,
            status=AccountStatus.PENDING,
            email_verified=False,
            created_at=now,
        )
        try:
            account.id = self._repo.create(account)
        except Conflict:
            # Lost a race with a concurrent registration for the same address.
            self._audit.record(
                AuditAction.REGISTRATION_FAILED, context, success=False, detail="Email already registered"
            )
            raise

        otp_sent = self._send_verification_otp(account, now)
        self._audit.record(
            AuditAction.USER_REGISTERED_OTP_SENT,
            context,
            success=True,
            account_id=account.id,
            detail=None if otp_sent else "OTP delivery failed",
        )
        logger.info("Account registered: id=%s otp_sent=%s", account.id, otp_sent)
        return Registration(account_id=account.id, email=email, otp_sent=otp_sent)

    @_storage_guard("verify_email")
    def verify_email(self, email: str, otp: str, *, context: RequestContext = _NO_CONTEXT) -> Session:
        """Consume the verification OTP, activate the account and sign it in.

        Raises ValidationError, InvalidOrExpired, Unauthorized.
        """
        if not email or not email.strip() or not otp:
            raise self._rejected(AuditAction.EMAIL_VERIFICATION_FAILED, context, "Email and OTP are required")

        now = self._clock()
        account = self._repo.verify_email_otp(email, otp, now)
        if account is None:
            self._audit.record(
                AuditAction.EMAIL_VERIFICATION_FAILED, context, success=False, detail="Invalid or expired OTP"
            )
            raise InvalidOrExpired()

        if account.status in _SIGN_IN_BLOCKED:
            self._audit.record(
                AuditAction.EMAIL_VERIFICATION_FAILED,
                context,
                success=False,
                account_id=account.id,
                detail=f"Email verified but account is {account.status.value}",
            )
            raise Unauthorized("Account is not active.")

        session = self._open_session(account, now)
        self._audit.record(AuditAction.EMAIL_VERIFIED, context, success=True, account_id=account.id)
        logger.info("Email verified: id=%s", account.id)
        return session

    # ------------------------------------------------------------------
    # Login / refresh / logout
    # ------------------------------------------------------------------

    @_storage_guard("login")
    def login(self, email: str, password: str, *, context: RequestContext = _NO_CONTEXT) -> Session:
        """Authenticate with email and password.

        Raises ValidationError, InvalidCredentials, AccountLocked,
        VerificationRequired.
        """
        if not email or not email.strip() or not password:
            raise self._rejected(AuditAction.LOGIN_FAILED, context, "Email and password are required")

        now = self._clock()
        account = self._repo.find_by_email(email)
        if account is None:
            # Equalize timing with the wrong-password path.
            self._hasher.burn(password)
            self._audit.record(
                AuditAction.LOGIN_FAILED, context, success=False, detail=f"Unknown email: {normalize_email(email)}"
            )
            raise InvalidCredentials()

        if account.is_locked(now):
            self._audit.record(
                AuditAction.LOGIN_BLOCKED_LOCKOUT,
                context,
                success=False,
                account_id=account.id,
                detail=f"Account locked until {account.lockout_until.isoformat()}",
            )
            raise AccountLocked(account.lockout_until)

        if not self._hasher.verify(password, account.password_hash):
            updated = self._repo.record_failed_login(
                account.email,
                threshold=self._settings.lockout_threshold,
                lockout=timedelta(minutes=self._settings.lockout_minutes),
                now=now,
            )
            detail = "Invalid password"
            if updated is not None and updated.is_locked(now):
                detail = f"Invalid password; locked until {updated.lockout_until.isoformat()}"
                logger.warning("Account %s locked after repeated failed logins", account.id)
            self._audit.record(AuditAction.LOGIN_FAILED, context, success=False, account_id=account.id, detail=detail)
            raise InvalidCredentials()

        if account.status in _SIGN_IN_BLOCKED:
            self._audit.record(
                AuditAction.LOGIN_FAILED,
                context,
                success=False,
                account_id=account.id,
                detail=f"Account is {account.status.value}",
            )
            raise InvalidCredentials()

        if not account.email_verified:
            otp_sent = self._send_verification_otp(account, now)
            self._audit.record(
                AuditAction.LOGIN_VERIFICATION_REQUIRED,
                context,
                success=False,
                account_id=account.id,
                detail="Verification OTP resent" if otp_sent else "Verification OTP delivery failed",
            )
            raise VerificationRequired(account.email, otp_sent=otp_sent)

        self._repo.reset_failed_attempts(account.id)
        self._repo.update_last_login(account.id, now)
        account.failed_login_attempts = 0
        account.lockout_until = None
        account.last_login_at = now

        session = self._open_session(account, now)
        self._audit.record(AuditAction.LOGIN_SUCCESS, context, success=True, account_id=account.id)
        logger.info("Login succeeded: id=%s", account.id)
        return session

    @_storage_guard("refresh")
    def refresh(self, refresh_token: str, *, context: RequestContext = _NO_CONTEXT) -> RefreshedAccess:
        """Exchange a valid refresh token for a new access token.

        The refresh token itself is not rotated: the same value stays valid
        until its original expiry or explicit revocation.

        Raises ValidationError, Unauthorized.
        """
        if not refresh_token or not refresh_token.strip():
            raise self._rejected(AuditAction.TOKEN_REFRESH_FAILED, context, "Refresh token is required")

        now = self._clock()
        stored = self._repo.validate_refresh_token(refresh_token, now)
        if stored is None:
            self._audit.record(
                AuditAction.TOKEN_REFRESH_FAILED, context, success=False, detail="Invalid, expired or revoked token"
            )
            raise Unauthorized("Invalid or expired refresh token.")

        account = self._repo.find_by_id(stored.account_id)
        if account is None or account.status in _SIGN_IN_BLOCKED:
            self._audit.record(
                AuditAction.TOKEN_REFRESH_FAILED,
                context,
                success=False,
                account_id=stored.account_id,
                detail="Account missing or not active",
            )
            raise Unauthorized("Invalid or expired refresh token.")

        access_token = self._tokens.issue_access_token(account)
        self._audit.record(AuditAction.TOKEN_REFRESHED, context, success=True, account_id=account.id)
        return RefreshedAccess(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self._access_expires_in,
        )

    @_storage_guard("logout")
    def logout(
        self,
        refresh_token: str,
        *,
        caller: AccessClaims | None = None,
        context: RequestContext = _NO_CONTEXT,
    ) -> None:
        """Revoke one refresh token. Idempotent for revoked or unknown tokens.

        Raises ValidationError.
        """
        if not refresh_token or not refresh_token.strip():
            if caller is None:
                raise ValidationError("Refresh token is required")
            raise self._rejected(
                AuditAction.LOGOUT, context, "Refresh token is required", account_id=caller.account_id
            )

        revoked = self._repo.revoke_refresh_token(refresh_token, self._clock())
        if caller is not None:
            self._audit.record(
                AuditAction.LOGOUT,
                context,
                success=True,
                account_id=caller.account_id,
                detail=None if revoked else "Token already revoked or unknown",
            )

    # ------------------------------------------------------------------
    # Password reset / change
    # ------------------------------------------------------------------

    @_storage_guard("forgot_password")
    def forgot_password(self, email: str, *, context: RequestContext = _NO_CONTEXT) -> str:
        """Send a reset OTP if the account exists. Always returns the same message.

        Raises ValidationError (blank email only).
        """
        if not email or not email.strip():
            raise ValidationError("Email is required")

        account = self._repo.find_by_email(email)
        if account is None:
            return FORGOT_PASSWORD_MESSAGE

        now = self._clock()
        otp = generate_otp(self._settings.otp_length)
        self._repo.set_password_reset_otp(account.id, otp, now + self._otp_ttl)
        otp_sent = self._dispatch(
            account.email,
            "Password Reset OTP",
            f"Your password reset code is: <strong>{otp}</strong>. "
            f"It expires in {self._settings.otp_expire_minutes} minutes.",
        )
        self._audit.record(
            AuditAction.PASSWORD_RESET_REQUESTED,
            context,
            success=True,
            account_id=account.id,
            detail=None if otp_sent else "OTP delivery failed",
        )
        return FORGOT_PASSWORD_MESSAGE

    @_storage_guard("reset_password")
    def reset_password(
        self, email: str, otp: str, new_password: str, *, context: RequestContext = _NO_CONTEXT
    ) -> None:
        """Set a new password using a reset OTP. Does not sign the user in.

        Existing refresh tokens are revoked and any lockout is cleared.

        Raises ValidationError, InvalidOrExpired.
        """
        if not email or not email.strip() or not otp or not new_password:
            raise self._rejected(
                AuditAction.PASSWORD_RESET_FAILED, context, "Email, OTP and new password are required"
            )
        errors = password_policy_errors(new_password)
        if errors:
            raise self._rejected(AuditAction.PASSWORD_RESET_FAILED, context, errors)

        now = self._clock()
        account = self._repo.verify_password_reset_otp(email, otp, now)
        if account is None:
            self._audit.record(
                AuditAction.PASSWORD_RESET_FAILED, context, success=False, detail="Invalid or expired OTP"
            )
            raise InvalidOrExpired()

        self._repo.update_password(account.id, self._hasher.hash(new_password))
        self._repo.reset_failed_attempts(account.id)
        self._repo.revoke_all_tokens_for_account(account.id, now)
        self._audit.record(AuditAction.PASSWORD_RESET_SUCCESS, context, success=True, account_id=account.id)
        logger.info("Password reset: id=%s", account.id)

    @_storage_guard("change_password")
    def change_password(
        self,
        account_id: int,
        current_password: str,
        new_password: str,
        *,
        context: RequestContext = _NO_CONTEXT,
    ) -> None:
        """Replace the password of an authenticated caller.

        Raises ValidationError, NotFound, InvalidCredentials.
        """
        if not current_password or not new_password:
            raise self._rejected(
                AuditAction.PASSWORD_CHANGE_FAILED,
                context,
                "Current and new password are required",
                account_id=account_id,
            )
        errors = password_policy_errors(new_password)
        if new_password == current_password:
            errors.append("New password must differ from the current password")
        if errors:
            raise self._rejected(AuditAction.PASSWORD_CHANGE_FAILED, context, errors, account_id=account_id)

        account = self._get_live_account(account_id)
        if not self._hasher.verify(current_password, account.password_hash):
            self._audit.record(
                AuditAction.PASSWORD_CHANGE_FAILED,
                context,
                success=False,
                account_id=account.id,
                detail="Incorrect current password",
            )
            raise InvalidCredentials("Incorrect current password.")

        self._repo.update_password(account.id, self._hasher.hash(new_password))
        self._audit.record(AuditAction.PASSWORD_CHANGED, context, success=True, account_id=account.id)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    @_storage_guard("get_account")
    def get_account(self, account_id: int) -> Account:
        """Raises NotFound for missing or deactivated accounts."""
        return self._get_live_account(account_id)

    @_storage_guard("update_profile")
    def update_profile(self, account_id: int, *, context: RequestContext = _NO_CONTEXT, **changes) -> Account:
        """Update the caller's own profile fields. Fields left out keep their value.

        Raises ValidationError, NotFound.
        """
        unknown = set(changes) - set(_PROFILE_KEYS)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        changes = {k: v for k, v in changes.items() if v is not None}
        errors = profile_errors(**{k: v for k, v in changes.items() if k != "avatar_url"})
        if errors:
            raise ValidationError(errors)
        if changes.get("country"):
            changes["country"] = changes["country"].upper()

        account = self._get_live_account(account_id)
        if changes:
            self._repo.update(account.id, **changes)
        self._audit.record(
            AuditAction.PROFILE_UPDATED,
            context,
            success=True,
            account_id=account.id,
            detail=", ".join(sorted(changes)) or None,
        )
        return self._get_live_account(account.id)

    @_storage_guard("update_fcm_token")
    def update_fcm_token(self, account_id: int, token: str, *, context: RequestContext = _NO_CONTEXT) -> None:
        """Register the caller's push-notification device token, replacing any previous one.

        Raises ValidationError, NotFound.
        """
        if not token or not token.strip():
            raise ValidationError("FCM token is required")
        if len(token) > _MAX_FCM_TOKEN_LENGTH:
            raise ValidationError(f"FCM token must not exceed {_MAX_FCM_TOKEN_LENGTH} characters")

        account = self._get_live_account(account_id)
        self._repo.update_fcm_token(account.id, token.strip())
        self._audit.record(
            AuditAction.PROFILE_UPDATED, context, success=True, account_id=account.id, detail="fcm_token"
        )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @_storage_guard("list_accounts")
    def list_accounts(self, actor: AccessClaims, *, limit: int = 100, offset: int = 0) -> list[Account]:
        """Raises Forbidden, ValidationError."""
        self._require_admin(actor)
        if not 1 <= limit <= 500 or offset < 0:
            raise ValidationError("limit must be 1-500 and offset must be >= 0")
        return self._repo.list(limit=limit, offset=offset)

    @_storage_guard("statistics")
    def statistics(self, actor: AccessClaims) -> AccountStatistics:
        """Raises Forbidden."""
        self._require_admin(actor)
        return self._repo.get_statistics(self._clock())

    @_storage_guard("update_role")
    def update_role(
        self, actor: AccessClaims, account_id: int, role: Role, *, context: RequestContext = _NO_CONTEXT
    ) -> Account:
        """Raises Forbidden, NotFound."""
        self._require_admin(actor)
        if account_id == actor.account_id:
            raise Forbidden("You cannot change your own role.")
        target = self._get_live_account(account_id)
        self._repo.update_role(target.id, role)
        self._audit.record(
            AuditAction.ROLE_UPDATED,
            context,
            success=True,
            account_id=actor.account_id,
            detail=f"account={target.id} role {target.role.value}->{role.value}",
        )
        return self._get_live_account(target.id)

    @_storage_guard("set_status")
    def set_status(
        self,
        actor: AccessClaims,
        account_id: int,
        status: AccountStatus,
        *,
        context: RequestContext = _NO_CONTEXT,
    ) -> Account:
        """Suspend or reactivate an account. Suspension revokes all its refresh tokens.

        Raises Forbidden, ValidationError, NotFound.
        """
        self._require_admin(actor)
        if status not in (AccountStatus.ACTIVE, AccountStatus.SUSPENDED):
            raise ValidationError("Status must be Active or Suspended")
        if account_id == actor.account_id:
            raise Forbidden("You cannot change the status of your own account.")
        target = self._get_live_account(account_id)
        now = self._clock()
        self._repo.update_status(target.id, status)
        if status is AccountStatus.SUSPENDED:
            self._repo.revoke_all_tokens_for_account(target.id, now)
        self._audit.record(
            AuditAction.ACCOUNT_STATUS_CHANGED,
            context,
            success=True,
            account_id=actor.account_id,
            detail=f"account={target.id} status {target.status.value}->{status.value}",
        )
        return self._get_live_account(target.id)

    @_storage_guard("soft_delete")
    def soft_delete(self, actor: AccessClaims, account_id: int, *, context: RequestContext = _NO_CONTEXT) -> None:
        """Deactivate an account and revoke its refresh tokens. Never removes rows.

        Raises Forbidden, NotFound.
        """
        self._require_admin(actor)
        if account_id == actor.account_id:
            raise Forbidden("You cannot delete your own account.")
        target = self._get_live_account(account_id)
        now = self._clock()
        self._repo.soft_delete(target.id)
        self._repo.revoke_all_tokens_for_account(target.id, now)
        self._audit.record(
            AuditAction.ACCOUNT_DEACTIVATED,
            context,
            success=True,
            account_id=actor.account_id,
            detail=f"account={target.id}",
        )

    # ------------------------------------------------------------------
    # Operator actions (CLI)
    # ------------------------------------------------------------------

    @_storage_guard("bootstrap_admin")
    def bootstrap_admin(self, email: str, password: str, *, context: RequestContext = _NO_CONTEXT) -> Account:
        """Create an Active, verified administrator without the OTP round trip.

        Raises ValidationError, Conflict.
        """
        errors = email_errors(email) + password_policy_errors(password)
        if errors:
            raise ValidationError(errors)
        now = self._clock()
        account = Account(
            email=normalize_email(email),
            password_hash=self._hasher.hash(password),
            role=Role.ADMINISTRATOR,
            status=AccountStatus.ACTIVE,
            email_verified=True,
            created_at=now,
        )
        account.id = self._repo.create(account)
        self._audit.record(AuditAction.ADMIN_BOOTSTRAPPED, context, success=True, account_id=account.id)
        logger.info("Administrator bootstrapped: id=%s", account.id)
        return account

    @_storage_guard("revoke_sessions")
    def revoke_sessions(self, email: str, *, context: RequestContext = _NO_CONTEXT) -> int:
        """Revoke every refresh token of an account. Returns how many were revoked.

        Raises NotFound.
        """
        account = self._repo.find_by_email(email) if email else None
        if account is None:
            raise NotFound()
        count = self._repo.revoke_all_tokens_for_account(account.id, self._clock())
        self._audit.record(
            AuditAction.SESSIONS_REVOKED, context, success=True, account_id=account.id, detail=f"revoked={count}"
        )
        return count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_live_account(self, account_id: int) -> Account:
        account = self._repo.find_by_id(account_id)
        if account is None or account.status is AccountStatus.DEACTIVATED:
            raise NotFound()
        return account

    def _rejected(
        self,
        action: AuditAction,
        context: RequestContext,
        errors: list[str] | str,
        *,
        account_id: int | None = None,
    ) -> ValidationError:
        """Audit a call refused for malformed input and return the error to raise."""
        exc = ValidationError(errors)
        self._audit.record(
            action, context, success=False, account_id=account_id, detail="Invalid input: " + "; ".join(exc.errors)
        )
        return exc

    def _require_admin(self, actor: AccessClaims | None) -> None:
        if actor is None or actor.role is not Role.ADMINISTRATOR:
            raise Forbidden("Admin access required.")

    def _open_session(self, account: Account, now: datetime) -> Session:
        access_token = self._tokens.issue_access_token(account)
        refresh_value = self._tokens.issue_refresh_token()
        expires_at = now + self._tokens.refresh_token_ttl
        self._repo.create_refresh_token(
            RefreshToken(account_id=account.id, token=refresh_value, expires_at=expires_at, created_at=now)
        )
        return Session(
            access_token=access_token,
            refresh_token=refresh_value,
            refresh_expires_at=expires_at,
            expires_in=self._access_expires_in,
            account=account,
        )

    def _send_verification_otp(self, account: Account, now: datetime) -> bool:
        """Replace any outstanding verification OTP with a fresh one and dispatch it."""
        otp = generate_otp(self._settings.otp_length)
        self._repo.set_email_verification_otp(account.id, otp, now + self._otp_ttl)
        return self._dispatch(
            account.email,
            "Verify Your Email",
            f"Your verification code is: <strong>{otp}</strong>. "
            f"It expires in {self._settings.otp_expire_minutes} minutes.",
        )

    def _dispatch(self, recipient: str, subject: str, body: str) -> bool:
        try:
            return bool(self._notifier.send(recipient, subject, body))
        except Exception:
            logger.exception("Notifier raised while sending %r", subject)
            return False
