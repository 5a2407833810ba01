"""Concurrency tests for the atomic repository operations.

Each test releases several threads at once through a Barrier against a WAL
file database, so the statements genuinely race for the SQLite write lock.

Covers:
- record_failed_login(): parallel failures are never under-counted and the
  threshold still locks the account
- verify_email_otp() / verify_password_reset_otp(): one OTP presented by many
  callers is consumed exactly once
- IdentityEngine.verify_email(): concurrent submissions yield one session
- IdentityEngine.refresh(): concurrent refreshes with one valid token all succeed
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from auth.models import Account
from auth.store import AccountStore
from auth.tokens import utcnow
from core.errors import InvalidOrExpired

ALICE = "alice@example.com"
WORKERS = 8


def _race(func, workers: int = WORKERS) -> list:
    """Run func(i) on `workers` threads released together; return results in submit order."""
    barrier = threading.Barrier(workers)

    def task(i):
        barrier.wait(timeout=10)
        return func(i)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(task, i) for i in range(workers)]
        return [f.result() for f in futures]


def _create(store: AccountStore) -> int:
    return store.create(Account(email=ALICE, password_hash="$2b$04$fakehash", created_at=utcnow()))


class TestParallelFailedLogins:
    """The increment-and-lock is a single UPDATE, so no attempt is lost."""

    def test_no_failure_is_lost_below_threshold(self, file_store: AccountStore) -> None:
        account_id = _create(file_store)
        now = utcnow()
        _race(lambda _: file_store.record_failed_login(ALICE, 100, timedelta(minutes=15), now))
        account = file_store.find_by_id(account_id)
        assert account.failed_login_attempts == WORKERS
        assert account.lockout_until is None

    def test_threshold_reached_by_parallel_failures_locks(self, file_store: AccountStore) -> None:
        account_id = _create(file_store)
        now = utcnow()
        _race(lambda _: file_store.record_failed_login(ALICE, WORKERS, timedelta(minutes=15), now))
        account = file_store.find_by_id(account_id)
        assert account.is_locked(now)
        assert account.lockout_until == now + timedelta(minutes=15)
        assert account.failed_login_attempts == 0


class TestParallelOtpConsumption:
    """A conditional UPDATE lets exactly one caller win an OTP."""

    def test_email_otp_has_one_winner(self, file_store: AccountStore) -> None:
        account_id = _create(file_store)
        now = utcnow()
        file_store.set_email_verification_otp(account_id, "123456", now + timedelta(minutes=15))
        results = _race(lambda _: file_store.verify_email_otp(ALICE, "123456", now))
        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0].email_verified is True
        assert file_store.find_by_id(account_id).email_otp is None

    def test_reset_otp_has_one_winner(self, file_store: AccountStore) -> None:
        account_id = _create(file_store)
        now = utcnow()
        file_store.set_password_reset_otp(account_id, "654321", now + timedelta(minutes=15))
        results = _race(lambda _: file_store.verify_password_reset_otp(ALICE, "654321", now))
        assert sum(r is not None for r in results) == 1

    def test_engine_verify_email_opens_one_session(self, file_harness) -> None:
        file_harness.engine.register(ALICE, "Passw0rd!x")
        otp = file_harness.notifier.last_otp(ALICE)

        def attempt(_):
            try:
                return file_harness.engine.verify_email(ALICE, otp)
            except InvalidOrExpired:
                return None

        results = _race(attempt, workers=2)
        assert sum(r is not None for r in results) == 1


class TestParallelRefresh:
    """Refresh tokens are not rotated, so concurrent refreshes never collide."""

    def test_concurrent_refreshes_all_succeed(self, file_harness) -> None:
        session = file_harness.register_and_verify(ALICE)
        results = _race(lambda _: file_harness.engine.refresh(session.refresh_token), workers=2)
        assert all(r.refresh_token == session.refresh_token for r in results)
        assert all(file_harness.tokens.validate_access_token(r.access_token) is not None for r in results)

        stored = file_harness.store.get_refresh_token(session.refresh_token)
        assert stored.is_revoked is False
        assert stored.expires_at == session.refresh_expires_at
