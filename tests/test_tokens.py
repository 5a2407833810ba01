"""Unit tests for auth/tokens.py -- access token signing and validation.

Covers:
- issued access tokens validate back to the account's id, email and role
- bad signature, wrong issuer/audience, expiry and garbage all yield None
- refresh tokens are long, URL-safe and unique
- refresh cookie attributes (httpOnly, SameSite=Strict, Secure, Max-Age)
"""

from datetime import timedelta

from starlette.responses import Response

from auth.models import Account, Role
from auth.tokens import TokenService, clear_refresh_cookie, set_refresh_cookie, utcnow


def _account(role: Role = Role.STANDARD) -> Account:
    return Account(id=7, email="alice@example.com", password_hash="x", role=role)


class TestAccessTokens:
    """Signed, short-lived access tokens."""

    def test_round_trip_claims(self, settings_factory) -> None:
        service = TokenService(settings_factory())
        claims = service.validate_access_token(service.issue_access_token(_account(Role.ADMINISTRATOR)))
        assert claims is not None
        assert claims.account_id == 7
        assert claims.email == "alice@example.com"
        assert claims.role is Role.ADMINISTRATOR
        assert claims.is_admin

    def test_expiry_matches_configuration(self, settings_factory, clock) -> None:
        service = TokenService(settings_factory(access_token_expire_minutes=15), clock=clock)
        claims = service.validate_access_token(service.issue_access_token(_account()))
        expected = clock.now + timedelta(minutes=15)
        assert abs((claims.expires_at - expected).total_seconds()) <= 1

    def test_expired_token_rejected(self, settings_factory, clock) -> None:
        clock.now = utcnow() - timedelta(hours=1)
        token = TokenService(settings_factory(), clock=clock).issue_access_token(_account())
        assert TokenService(settings_factory()).validate_access_token(token) is None

    def test_wrong_secret_rejected(self, settings_factory) -> None:
        token = TokenService(settings_factory()).issue_access_token(_account())
        other = TokenService(settings_factory(secret_key="another-secret-key-0123456789abcdef0123"))
        assert other.validate_access_token(token) is None

    def test_wrong_audience_rejected(self, settings_factory) -> None:
        token = TokenService(settings_factory(jwt_audience="someone-else")).issue_access_token(_account())
        assert TokenService(settings_factory()).validate_access_token(token) is None

    def test_wrong_issuer_rejected(self, settings_factory) -> None:
        token = TokenService(settings_factory(jwt_issuer="evil")).issue_access_token(_account())
        assert TokenService(settings_factory()).validate_access_token(token) is None

    def test_tampered_payload_rejected(self, settings_factory) -> None:
        service = TokenService(settings_factory())
        admin_token = service.issue_access_token(_account(Role.ADMINISTRATOR))
        user_token = service.issue_access_token(_account())
        # Signature of one token grafted onto the payload of another.
        head, payload, _ = user_token.split(".")
        _, _, admin_sig = admin_token.split(".")
        assert service.validate_access_token(f"{head}.{payload}.{admin_sig}") is None

    def test_garbage_and_empty_rejected(self, settings_factory) -> None:
        service = TokenService(settings_factory())
        assert service.validate_access_token("") is None
        assert service.validate_access_token("not.a.jwt") is None


class TestRefreshTokens:
    """Opaque refresh token values."""

    def test_refresh_tokens_are_long_and_unique(self, settings_factory) -> None:
        service = TokenService(settings_factory())
        values = {service.issue_refresh_token() for _ in range(20)}
        assert len(values) == 20
        assert all(len(v) >= 64 for v in values)

    def test_refresh_ttl_from_settings(self, settings_factory) -> None:
        service = TokenService(settings_factory(refresh_token_expire_days=7))
        assert service.refresh_token_ttl == timedelta(days=7)


class TestRefreshCookie:
    """Cookie helpers mirror the refresh token into an httpOnly cookie."""

    def test_set_cookie_attributes(self, settings_factory) -> None:
        resp = Response()
        set_refresh_cookie(resp, "abc", settings_factory(secure_cookies=True))
        header = resp.headers["set-cookie"]
        assert header.startswith("refreshToken=abc")
        assert "HttpOnly" in header
        assert "SameSite=strict" in header
        assert "Secure" in header
        assert f"Max-Age={7 * 24 * 3600}" in header

    def test_clear_cookie_expires_it(self, settings_factory) -> None:
        resp = Response()
        clear_refresh_cookie(resp, settings_factory())
        header = resp.headers["set-cookie"]
        assert header.startswith("refreshToken=")
        assert "Max-Age=0" in header
