"""
api/routes/v1/auth.py -- Public authentication endpoints.

Routes:
  POST /api/v1/auth/register         -- create Pending account; emails verification OTP
  POST /api/v1/auth/verify-email     -- consume OTP; activates and signs in
  POST /api/v1/auth/login            -- password login; returns tokens + refresh cookie
  POST /api/v1/auth/refresh-token    -- new access token from a refresh token (body or cookie)
  POST /api/v1/auth/forgot-password  -- emails reset OTP; constant response
  POST /api/v1/auth/reset-password   -- consume reset OTP; sets new password
  POST /api/v1/auth/logout           -- revoke refresh token (body or cookie); clears cookie
  GET  /api/v1/auth/me               -- current account (requires auth)

Security:
  Login, register and the OTP endpoints are rate-limited per client IP.
  Timing equalization for unknown emails lives in IdentityEngine.login().
  Cache-Control: no-store on every response that carries a token.
  forgot-password answers identically whether or not the email exists.

Handlers are plain `def` (not async): the engine does blocking bcrypt and
database work, so FastAPI runs them in its thread pool.

Error handling: the engine raises core.errors.ServiceError subclasses and the
exception handler in api/main.py renders them. No handler here catches them.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, otp_limit
from api.models import (
    AccountResponse,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    SessionResponse,
    VerifyEmailRequest,
)
from auth.dependencies import get_current_claims, request_context, try_get_claims
from auth.engine import IdentityEngine, Session
from auth.models import RequestContext
from auth.tokens import AccessClaims, clear_refresh_cookie, set_refresh_cookie
from core.errors import ValidationError

# Auth policy:
# - POST /api/v1/auth/register, verify-email, login, refresh-token,
#   forgot-password, reset-password: public
# - POST /api/v1/auth/logout: public; audited only when a valid bearer token is sent
# - GET  /api/v1/auth/me: requires auth (get_current_claims)
router = APIRouter()


def _engine(request: Request) -> IdentityEngine:
    return request.app.state.engine


def _session_response(request: Request, session: Session) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=SessionResponse(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=session.expires_in,
            account=AccountResponse.from_account(session.account),
        ).model_dump(),
    )
    set_refresh_cookie(resp, session.refresh_token, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _refresh_value(request: Request, body_value: Optional[str]) -> str:
    """Body value wins; otherwise fall back to the refresh cookie."""
    value = body_value or request.cookies.get(request.app.state.settings.refresh_cookie_name)
    if not value:
        raise ValidationError("Refresh token is required")
    return value


# ---------------------------------------------------------------------------
# Registration and verification
# ---------------------------------------------------------------------------


@limiter.limit(otp_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    context: RequestContext = Depends(request_context),
) -> JSONResponse:
    """Create a Pending account and email a verification OTP.

    otp_sent=False means the account exists but the email did not go out;
    the client should offer a resend (logging in again re-sends the OTP).
    """
    registration = _engine(request).register(
        body.email,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        country=body.country,
        locale=body.locale,
        context=context,
    )
    message = (
        "Registration successful. Please check your email for the verification code."
        if registration.otp_sent
        else "Registration successful, but the verification email could not be sent."
    )
    return JSONResponse(
        status_code=201,
        content=RegisterResponse(
            account_id=registration.account_id,
            email=registration.email,
            otp_sent=registration.otp_sent,
            message=message,
        ).model_dump(),
    )


@limiter.limit(otp_limit)
@router.post("/auth/verify-email", response_model=SessionResponse)
def verify_email(
    request: Request,
    body: VerifyEmailRequest,
    context: RequestContext = Depends(request_context),
) -> JSONResponse:
    """Verify the email OTP. On success the account is Active and signed in."""
    session = _engine(request).verify_email(body.email, body.otp, context=context)
    return _session_response(request, session)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@limiter.limit(login_limit)  # brute-force mitigation on top of account lockout
@router.post("/auth/login", response_model=SessionResponse)
def login(
    request: Request,
    body: LoginRequest,
    context: RequestContext = Depends(request_context),
) -> JSONResponse:
    """Authenticate with email and password.

    401 invalid_credentials covers unknown email, wrong password and
    suspended/deactivated accounts alike. 423 account_locked and 403
    verification_required are only reachable with a known email.
    """
    session = _engine(request).login(body.email, body.password, context=context)
    return _session_response(request, session)


@router.post("/auth/refresh-token", response_model=RefreshResponse)
def refresh_token(
    request: Request,
    body: Optional[RefreshRequest] = None,
    context: RequestContext = Depends(request_context),
) -> JSONResponse:
    """Issue a new access token. The refresh token is returned unchanged."""
    value = _refresh_value(request, body.refresh_token if body else None)
    refreshed = _engine(request).refresh(value, context=context)
    resp = JSONResponse(
        content=RefreshResponse(
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106
            expires_in=refreshed.expires_in,
        ).model_dump()
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    context: RequestContext = Depends(request_context),
    claims: Optional[AccessClaims] = Depends(try_get_claims),
) -> JSONResponse:
    """Revoke the refresh token and clear the cookie. Idempotent."""
    value = _refresh_value(request, body.refresh_token if body else None)
    _engine(request).logout(value, caller=claims, context=context)
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully.").model_dump())
    clear_refresh_cookie(resp, request.app.state.settings)
    return resp


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@limiter.limit(otp_limit)
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    context: RequestContext = Depends(request_context),
) -> MessageResponse:
    """Email a reset OTP. Identical response for known and unknown emails."""
    message = _engine(request).forgot_password(body.email, context=context)
    return MessageResponse(message=message)


@limiter.limit(otp_limit)
@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    context: RequestContext = Depends(request_context),
) -> MessageResponse:
    """Set a new password with a reset OTP. All existing sessions are revoked."""
    _engine(request).reset_password(body.email, body.otp, body.new_password, context=context)
    return MessageResponse(message="Password has been reset. Please log in with your new password.")


# ---------------------------------------------------------------------------
# Authenticated
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountResponse)
def me(request: Request, claims: AccessClaims = Depends(get_current_claims)) -> AccountResponse:
    """Return the account identified by the access token."""
    return AccountResponse.from_account(_engine(request).get_account(claims.account_id))
