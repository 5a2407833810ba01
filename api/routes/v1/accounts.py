"""
api/routes/v1/accounts.py -- Authenticated account endpoints and admin account management.

Routes:
  GET    /api/v1/accounts/me              -- own profile (requires auth)
  PATCH  /api/v1/accounts/me              -- update own profile (requires auth)
  PUT    /api/v1/accounts/me/password     -- change own password (requires auth)
  POST   /api/v1/accounts/me/fcm-token    -- register push-notification device token (requires auth)
  GET    /api/v1/accounts                 -- list accounts (admin only)
  GET    /api/v1/accounts/statistics      -- account statistics (admin only)
  PUT    /api/v1/accounts/{id}/role       -- set role (admin only)
  PUT    /api/v1/accounts/{id}/status     -- suspend / reactivate (admin only)
  DELETE /api/v1/accounts/{id}            -- soft delete (admin only)

Security:
  require_admin() gates the admin routes at the HTTP edge; the engine checks
  the role again so the CLI and tests cannot bypass it.
  Admins cannot demote, suspend or delete themselves (403 from the engine).
  Suspension and deletion revoke every refresh token of the target account.

Route order matters: /accounts/me and /accounts/statistics are declared
before /accounts/{account_id} so the literal paths win.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    AccountResponse,
    ChangePasswordRequest,
    FcmTokenUpdate,
    MessageResponse,
    ProfileUpdate,
    RoleUpdate,
    StatisticsResponse,
    StatusUpdate,
)
from auth.dependencies import get_current_claims, request_context, require_admin
from auth.engine import IdentityEngine
from auth.models import AccountStatus, RequestContext, Role
from auth.tokens import AccessClaims

# Auth policy:
# - /accounts/me*: requires auth (get_current_claims)
# - everything else: requires admin (require_admin)
router = APIRouter()


def _engine(request: Request) -> IdentityEngine:
    return request.app.state.engine


# ---------------------------------------------------------------------------
# Own account
# ---------------------------------------------------------------------------


@router.get("/accounts/me", response_model=AccountResponse)
def get_my_account(request: Request, claims: AccessClaims = Depends(get_current_claims)) -> AccountResponse:
    return AccountResponse.from_account(_engine(request).get_account(claims.account_id))


@router.patch("/accounts/me", response_model=AccountResponse)
def update_my_account(
    request: Request,
    body: ProfileUpdate,
    claims: AccessClaims = Depends(get_current_claims),
    context: RequestContext = Depends(request_context),
) -> AccountResponse:
    """Update profile fields. Omitted fields keep their current values."""
    account = _engine(request).update_profile(
        claims.account_id, context=context, **body.model_dump(exclude_none=True)
    )
    return AccountResponse.from_account(account)


@router.put("/accounts/me/password", response_model=MessageResponse)
def change_my_password(
    request: Request,
    body: ChangePasswordRequest,
    claims: AccessClaims = Depends(get_current_claims),
    context: RequestContext = Depends(request_context),
) -> MessageResponse:
    _engine(request).change_password(
        claims.account_id, body.current_password, body.new_password, context=context
    )
    return MessageResponse(message="Password changed successfully.")


@router.post("/accounts/me/fcm-token", response_model=MessageResponse)
def update_my_fcm_token(
    request: Request,
    body: FcmTokenUpdate,
    claims: AccessClaims = Depends(get_current_claims),
    context: RequestContext = Depends(request_context),
) -> MessageResponse:
    _engine(request).update_fcm_token(claims.account_id, body.token, context=context)
    return MessageResponse(message="FCM token updated successfully.")


# ---------------------------------------------------------------------------
# Administration (admin only)
# ---------------------------------------------------------------------------


@router.get("/accounts", response_model=list[AccountResponse])
def list_accounts(
    request: Request,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    admin: AccessClaims = Depends(require_admin),
) -> list[AccountResponse]:
    accounts = _engine(request).list_accounts(admin, limit=limit, offset=offset)
    return [AccountResponse.from_account(a) for a in accounts]


@router.get("/accounts/statistics", response_model=StatisticsResponse)
def account_statistics(request: Request, admin: AccessClaims = Depends(require_admin)) -> StatisticsResponse:
    return StatisticsResponse.from_statistics(_engine(request).statistics(admin))


@router.put("/accounts/{account_id}/role", response_model=AccountResponse)
def update_account_role(
    request: Request,
    account_id: int,
    body: RoleUpdate,
    admin: AccessClaims = Depends(require_admin),
    context: RequestContext = Depends(request_context),
) -> AccountResponse:
    account = _engine(request).update_role(admin, account_id, Role(body.role.value), context=context)
    return AccountResponse.from_account(account)


@router.put("/accounts/{account_id}/status", response_model=AccountResponse)
def update_account_status(
    request: Request,
    account_id: int,
    body: StatusUpdate,
    admin: AccessClaims = Depends(require_admin),
    context: RequestContext = Depends(request_context),
) -> AccountResponse:
    """Suspend or reactivate. Suspension ends every session of the account."""
    account = _engine(request).set_status(admin, account_id, AccountStatus(body.status.value), context=context)
    return AccountResponse.from_account(account)


@router.delete("/accounts/{account_id}", status_code=204)
def delete_account(
    request: Request,
    account_id: int,
    admin: AccessClaims = Depends(require_admin),
    context: RequestContext = Depends(request_context),
) -> Response:
    """Soft delete: status becomes Deactivated, rows are kept, sessions are revoked."""
    _engine(request).soft_delete(admin, account_id, context=context)
    return Response(status_code=204)
