"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as "Authorization: Bearer <token>" and are verified by
the TokenService wired into app.state.tokens. Verification is stateless:
claims are trusted until the token expires (15 minutes by default), which
is the window an admin role change or suspension takes to be reflected.

try_get_claims() is the soft variant (returns None on failure).
get_current_claims() wraps it and raises Unauthorized if unauthenticated.
require_admin() wraps get_current_claims() and raises Forbidden if not admin.

request_context() captures the client IP and User-Agent for audit entries.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import RequestContext
from auth.tokens import AccessClaims, TokenService
from core.errors import Forbidden, Unauthorized


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_claims(request: Request) -> AccessClaims | None:
    """Return verified access-token claims, or None. Never raises."""
    token = _bearer_token(request)
    if token is None:
        return None
    tokens: TokenService = request.app.state.tokens
    return tokens.validate_access_token(token)


def get_current_claims(request: Request) -> AccessClaims:
    """Require authentication. Raises Unauthorized (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: AccessClaims = Depends(get_current_claims)): ...
    """
    claims = try_get_claims(request)
    if claims is None:
        raise Unauthorized("Missing, invalid or expired access token.")
    return claims


def require_admin(claims: AccessClaims = Depends(get_current_claims)) -> AccessClaims:
    """Require the Admin role. 401 if unauthenticated, 403 if not admin."""
    if not claims.is_admin:
        raise Forbidden("Admin access required.")
    return claims


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
