"""
api/routes/v1/tokens.py -- Token issuance and refresh endpoints.

Routes:
  POST /api/v1/tokens          -- local login (email or username + password)
  POST /api/v1/tokens/ldap     -- directory login (LDAP bind)
  POST /api/v1/tokens/refresh  -- exchange expired access token + refresh token

Tenant resolution:
  The "tenant" request header names the tenant. An unknown or missing tenant
  is passed to the coordinator as None, which rejects with the same
  AuthenticationFailed as bad credentials.

Security:
  [H2] Both login routes are rate-limited per client IP (LOGIN_RATE_LIMIT).
  [M5] Cache-Control: no-store on every token response (errors included, see
       the AuthError handler in api/main.py).

Handlers are sync: password hashing, LDAP and SQLite calls all block, so
FastAPI runs them in its thread pool.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginLdapRequest, RefreshTokenRequest, TokenRequest, TokenResponseModel
from auth.models import DirectoryCredentials, LocalCredentials, Tenant, TokenResponse
from auth.service import AuthenticationCoordinator
from auth.store import TenantStore
from core.config import get_settings

router = APIRouter()

TENANT_HEADER = "tenant"


def _login_limit() -> str:
    return get_settings().login_rate_limit


def _client_ip(request: Request) -> str:
    """First X-Forwarded-For hop if present, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "N/A"


def _current_tenant(request: Request) -> Tenant | None:
    tenant_id = request.headers.get(TENANT_HEADER, "").strip()
    if not tenant_id:
        return None
    tenant_store: TenantStore = request.app.state.tenant_store
    return tenant_store.get(tenant_id)


def _to_response(result: TokenResponse) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=TokenResponseModel(
            token=result.token,
            refresh_token=result.refresh_token,
            refresh_token_expiry_time=result.refresh_token_expiry_time,
            is_auth_successful=result.is_auth_successful,
            is_tfa_enabled=result.is_tfa_enabled,
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/tokens", response_model=TokenResponseModel)
@limiter.limit(_login_limit)  # [H2] innermost, so the registered endpoint is the limited one
def get_token(request: Request, body: TokenRequest) -> JSONResponse:
    """Authenticate with email or username and password; return a token pair."""
    coordinator: AuthenticationCoordinator = request.app.state.coordinator
    credentials = LocalCredentials(password=body.password, email=body.email or None, username=body.username or None)
    result = coordinator.get_token(credentials, _current_tenant(request), _client_ip(request))
    return _to_response(result)


@router.post("/tokens/ldap", response_model=TokenResponseModel)
@limiter.limit(_login_limit)  # [H2]
def get_token_ldap(request: Request, body: LoginLdapRequest) -> JSONResponse:
    """Authenticate against the configured directory; return a token pair."""
    coordinator: AuthenticationCoordinator = request.app.state.coordinator
    credentials = DirectoryCredentials(username=body.username, password=body.password)
    result = coordinator.get_token(credentials, _current_tenant(request), _client_ip(request))
    return _to_response(result)


@router.post("/tokens/refresh", response_model=TokenResponseModel)
def refresh(request: Request, body: RefreshTokenRequest) -> JSONResponse:
    """Rotate the refresh token and issue a new access token."""
    coordinator: AuthenticationCoordinator = request.app.state.coordinator
    result = coordinator.refresh_token(body.token, body.refresh_token, _current_tenant(request), _client_ip(request))
    return _to_response(result)
