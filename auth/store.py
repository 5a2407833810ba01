"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper. AccountStore implements the
AccountRepository protocol from auth/repository.py; _row_to_* are the
mappers. Engine and route code never touch SQL directly.

Atomicity:
  Each public method runs in its own transaction (engine.begin()), so a
  concurrent reader never sees a partial write. The two operations where a
  read-then-write race would matter are single conditional UPDATE statements:

  record_failed_login()  increments failed_login_attempts and, when the new
      value reaches the threshold, sets lockout_until and zeroes the counter.
      SET expressions read the pre-update row, so parallel failures each add
      exactly one and cannot under-count.

  verify_*_otp()  UPDATE ... WHERE email AND otp AND expiry > now. Only the
      statement that actually changes the row succeeds, so an OTP can be
      consumed once even when two requests present it together.

Timestamps are stored as ISO-8601 UTC strings with microsecond precision.
Fixed width means string comparison in SQL equals chronological comparison.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Account, AccountStatistics, AccountStatus, AuditEntry, RefreshToken, Role
from auth.validation import normalize_email
from core.errors import Conflict

logger = logging.getLogger("identity.store")

_DEFAULT_DB_URL = "sqlite:///identity.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(100), nullable=False, unique=True),  # always lower-cased
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(50)),
    Column("last_name", String(50)),
    Column("phone", String(20)),
    Column("country", String(2)),
    Column("locale", String(10), nullable=False, server_default="en"),
    Column("avatar_url", Text),
    Column("fcm_token", Text),
    Column("role", String(10), nullable=False, server_default=Role.STANDARD.value),
    Column("status", String(15), nullable=False, server_default=AccountStatus.PENDING.value),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("email_otp", String(10)),
    Column("email_otp_expires_at", String(32)),
    Column("reset_otp", String(10)),
    Column("reset_otp_expires_at", String(32)),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("lockout_until", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
    Column("last_login_at", String(32)),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, ForeignKey("accounts.id"), nullable=False, index=True),
    Column("token", String(128), nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
    Column("is_revoked", Integer, nullable=False, server_default="0"),
)

_audit_log = Table(
    "audit_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer),  # NULL for anonymous actors
    Column("action", String(50), nullable=False),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("detail", Text),
    Column("success", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
)

# Profile columns the owner may change through update().
_PROFILE_FIELDS = frozenset({"first_name", "last_name", "phone", "country", "locale", "avatar_url"})


# ---------------------------------------------------------------------------
# Connection setup
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers proceed while a write is in flight.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account, RefreshToken and AuditEntry records.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        account_id = store.create(Account(email="a@example.com", password_hash=h))
        account = store.find_by_email("A@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout_seconds: float = 5.0) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            # Busy timeout: a writer waits at most this long for the lock.
            connect_args["timeout"] = timeout_seconds
        else:
            engine_kwargs["pool_timeout"] = timeout_seconds
            engine_kwargs["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> Account | None:
        """Case-insensitive lookup. Includes deactivated accounts (email stays reserved)."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def create(self, account: Account) -> int:
        """Insert a new account and return its id.

        The UNIQUE constraint on the normalized email is the source of truth
        for uniqueness: two concurrent registrations for one address cannot
        both succeed even if both passed the engine's pre-check.
        """
        if not account.password_hash:
            raise ValueError("password_hash must be non-empty")
        now = _iso(account.created_at or _now())
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _accounts.insert().values(
                        email=normalize_email(account.email),
                        password_hash=account.password_hash,
                        first_name=account.first_name,
                        last_name=account.last_name,
                        phone=account.phone,
                        country=account.country,
                        locale=account.locale,
                        avatar_url=account.avatar_url,
                        role=account.role.value,
                        status=account.status.value,
                        email_verified=1 if account.email_verified else 0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise Conflict() from exc

    def update(self, account_id: int, **fields) -> bool:
        """Update profile fields. Unknown field names raise ValueError (fail fast).

        Returns True if a row was updated, False if account_id was not found.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        if not fields:
            return self.find_by_id(account_id) is not None
        return self._update_row(account_id, **fields)

    def update_fcm_token(self, account_id: int, token: str | None) -> bool:
        """Store the push-notification device token. None clears it."""
        return self._update_row(account_id, fcm_token=token)

    def soft_delete(self, account_id: int) -> bool:
        """Mark the account Deactivated. Rows are never physically removed."""
        return self._update_row(account_id, status=AccountStatus.DEACTIVATED.value)

    def list(self, limit: int = 100, offset: int = 0) -> list[Account]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _accounts.select().order_by(_accounts.c.id).limit(limit).offset(offset)
            ).fetchall()
        return [_row_to_account(r) for r in rows]

    def update_role(self, account_id: int, role: Role) -> bool:
        return self._update_row(account_id, role=role.value)

    def update_status(self, account_id: int, status: AccountStatus) -> bool:
        return self._update_row(account_id, status=status.value)

    def update_password(self, account_id: int, password_hash: str) -> bool:
        if not password_hash:
            raise ValueError("password_hash must be non-empty")
        return self._update_row(account_id, password_hash=password_hash)

    def update_last_login(self, account_id: int, now: datetime) -> None:
        self._update_row(account_id, last_login_at=_iso(now))

    def get_statistics(self, now: datetime) -> AccountStatistics:
        c = _accounts.c

        def _count_where(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        stmt = select(
            func.count().label("total"),
            _count_where(c.status == AccountStatus.PENDING.value).label("pending"),
            _count_where(c.status == AccountStatus.ACTIVE.value).label("active"),
            _count_where(c.status == AccountStatus.SUSPENDED.value).label("suspended"),
            _count_where(c.status == AccountStatus.DEACTIVATED.value).label("deactivated"),
            _count_where(c.email_verified == 1).label("email_verified"),
            _count_where(c.role == Role.ADMINISTRATOR.value).label("administrators"),
            _count_where(c.lockout_until > _iso(now)).label("locked"),
            _count_where(c.created_at >= _iso(now - timedelta(days=7))).label("created_last_7_days"),
        ).select_from(_accounts)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return AccountStatistics(**{k: int(v or 0) for k, v in row._mapping.items()})

    # ------------------------------------------------------------------
    # Lockout bookkeeping
    # ------------------------------------------------------------------

    def record_failed_login(
        self, email: str, threshold: int, lockout: timedelta, now: datetime
    ) -> Account | None:
        """Atomically count one failed attempt and apply lockout at the threshold.

        Returns the account as it stands after the update, or None if no
        account has this email.
        """
        c = _accounts.c
        incremented = c.failed_login_attempts + 1
        reached = incremented >= threshold
        stmt = (
            _accounts.update()
            .where(c.email == normalize_email(email))
            .values(
                failed_login_attempts=case((reached, 0), else_=incremented),
                lockout_until=case((reached, _iso(now + lockout)), else_=c.lockout_until),
            )
        )
        with self.engine.begin() as conn:
            result = conn.execute(stmt)
            if result.rowcount == 0:
                return None
            row = conn.execute(_accounts.select().where(c.email == normalize_email(email))).fetchone()
        return _row_to_account(row)

    def reset_failed_attempts(self, account_id: int) -> None:
        self._update_row(account_id, failed_login_attempts=0, lockout_until=None)

    # ------------------------------------------------------------------
    # One-time passcodes
    # ------------------------------------------------------------------

    def set_email_verification_otp(self, account_id: int, otp: str, expires_at: datetime) -> bool:
        """Store a verification OTP, replacing any outstanding one."""
        return self._update_row(account_id, email_otp=otp, email_otp_expires_at=_iso(expires_at))

    def verify_email_otp(self, email: str, otp: str, now: datetime) -> Account | None:
        """Consume a matching, unexpired verification OTP.

        On success the account becomes email-verified, a Pending account
        becomes Active, and the OTP is cleared. Returns None on mismatch or
        expiry -- the two cases are indistinguishable to the caller.
        """
        c = _accounts.c
        normalized = normalize_email(email)
        stmt = (
            _accounts.update()
            .where((c.email == normalized) & (c.email_otp == otp) & (c.email_otp_expires_at > _iso(now)))
            .values(
                email_verified=1,
                email_otp=None,
                email_otp_expires_at=None,
                status=case((c.status == AccountStatus.PENDING.value, AccountStatus.ACTIVE.value), else_=c.status),
                updated_at=_iso(now),
            )
        )
        with self.engine.begin() as conn:
            if conn.execute(stmt).rowcount != 1:
                return None
            row = conn.execute(_accounts.select().where(c.email == normalized)).fetchone()
        return _row_to_account(row)

    def set_password_reset_otp(self, account_id: int, otp: str, expires_at: datetime) -> bool:
        return self._update_row(account_id, reset_otp=otp, reset_otp_expires_at=_iso(expires_at))

    def verify_password_reset_otp(self, email: str, otp: str, now: datetime) -> Account | None:
        """Consume a matching, unexpired password-reset OTP. Same contract as verify_email_otp."""
        c = _accounts.c
        normalized = normalize_email(email)
        stmt = (
            _accounts.update()
            .where((c.email == normalized) & (c.reset_otp == otp) & (c.reset_otp_expires_at > _iso(now)))
            .values(reset_otp=None, reset_otp_expires_at=None, updated_at=_iso(now))
        )
        with self.engine.begin() as conn:
            if conn.execute(stmt).rowcount != 1:
                return None
            row = conn.execute(_accounts.select().where(c.email == normalized)).fetchone()
        return _row_to_account(row)

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def create_refresh_token(self, token: RefreshToken) -> RefreshToken:
        created_at = token.created_at or _now()
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    account_id=token.account_id,
                    token=token.token,
                    expires_at=_iso(token.expires_at),
                    created_at=_iso(created_at),
                    is_revoked=0,
                )
            )
            token_id = result.inserted_primary_key[0]
        return RefreshToken(
            id=token_id,
            account_id=token.account_id,
            token=token.token,
            expires_at=token.expires_at,
            created_at=created_at,
        )

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        """Fetch a token row regardless of state. Used by logout and tests."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def validate_refresh_token(self, token: str, now: datetime) -> RefreshToken | None:
        """Return the token row only if it is unrevoked and unexpired."""
        c = _refresh_tokens.c
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where((c.token == token) & (c.is_revoked == 0) & (c.expires_at > _iso(now)))
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def revoke_refresh_token(self, token: str, now: datetime) -> bool:
        """Mark one token revoked. Idempotent: revoking twice (or a missing token) is a no-op.

        Returns True only when this call performed the revocation.
        """
        c = _refresh_tokens.c
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((c.token == token) & (c.is_revoked == 0))
                .values(is_revoked=1, revoked_at=_iso(now))
            )
        return result.rowcount > 0

    def revoke_all_tokens_for_account(self, account_id: int, now: datetime) -> int:
        c = _refresh_tokens.c
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((c.account_id == account_id) & (c.is_revoked == 0))
                .values(is_revoked=1, revoked_at=_iso(now))
            )
        return result.rowcount

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def append_audit_entry(self, entry: AuditEntry) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _audit_log.insert().values(
                    account_id=entry.account_id,
                    action=entry.action,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    detail=entry.detail,
                    success=1 if entry.success else 0,
                    created_at=_iso(entry.created_at or _now()),
                )
            )
            return result.inserted_primary_key[0]

    def list_audit_entries(self, account_id: int | None = None, limit: int = 100) -> list[AuditEntry]:
        """Newest-first audit entries. Operational/test read path only."""
        stmt = _audit_log.select().order_by(_audit_log.c.id.desc()).limit(limit)
        if account_id is not None:
            stmt = stmt.where(_audit_log.c.account_id == account_id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_audit_entry(r) for r in rows]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Cheap connectivity probe for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()

    def _update_row(self, account_id: int, **values) -> bool:
        values.setdefault("updated_at", _iso(_now()))
        with self.engine.begin() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        country=row.country,
        locale=row.locale or "en",
        avatar_url=row.avatar_url,
        fcm_token=row.fcm_token,
        role=Role(row.role),
        status=AccountStatus(row.status),
        email_verified=bool(row.email_verified),
        email_otp=row.email_otp,
        email_otp_expires_at=_parse(row.email_otp_expires_at),
        reset_otp=row.reset_otp,
        reset_otp_expires_at=_parse(row.reset_otp_expires_at),
        failed_login_attempts=row.failed_login_attempts,
        lockout_until=_parse(row.lockout_until),
        created_at=_parse(row.created_at),
        last_login_at=_parse(row.last_login_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        account_id=row.account_id,
        token=row.token,
        expires_at=_parse(row.expires_at),
        created_at=_parse(row.created_at),
        revoked_at=_parse(row.revoked_at),
        is_revoked=bool(row.is_revoked),
    )


def _row_to_audit_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        account_id=row.account_id,
        action=row.action,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        detail=row.detail,
        success=bool(row.success),
        created_at=_parse(row.created_at),
    )
