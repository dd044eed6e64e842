"""
api/routes/v1/auth.py -- Credential lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/signup               -- create account, send verification link
  GET  /api/v1/auth/verify-email         -- consume verification token (?token=)
  POST /api/v1/auth/login                -- password login; returns token pair
  POST /api/v1/auth/logout               -- clear refresh slot (requires auth)
  POST /api/v1/auth/refresh              -- rotate token pair
  GET  /api/v1/auth/profile              -- current principal (requires auth)
  POST /api/v1/auth/forgot-password      -- start reset; response never varies
  POST /api/v1/auth/reset-password       -- consume reset token, set password
  GET  /api/v1/auth/providers            -- enabled external providers (public)
  GET  /api/v1/auth/{provider}/login     -- redirect to the provider
  GET  /api/v1/auth/{provider}/callback  -- exchange code, return token pair

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] CredentialManager.authenticate() equalizes timing -- never inline lookups.
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers translate HTTP to CredentialManager calls and back. The manager
raises TaskNestError subclasses, which api/main.py renders.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    PrincipalResponse,
    RefreshRequest,
    ResetPasswordRequest,
    SignupRequest,
    SignupResponse,
    TokenResponse,
)
from auth.dependencies import get_current_principal
from auth.lifecycle import CredentialManager
from auth.models import Principal, TokenPair
from auth.oauth import get_enabled_providers, identity_from_token
from core.errors import NotFound, Unauthorized

logger = logging.getLogger("tasknest.api.auth")

# Auth policy:
# - signup, verify-email, login, refresh, forgot/reset-password: public
# - providers, {provider}/login, {provider}/callback:            public
# - logout, profile:                                             requires auth
router = APIRouter()


def _credentials(request: Request) -> CredentialManager:
    return request.app.state.credentials


def _token_response(response: Response, pair: TokenPair) -> TokenResponse:
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=pair.access_expires_in,
        refresh_expires_in=pair.refresh_expires_in,
    )


# ---------------------------------------------------------------------------
# Signup and verification
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> SignupResponse:
    """Register an account. A verification link is mailed; no tokens are issued."""
    principal = _credentials(request).signup(body.email, body.username, body.password)
    return SignupResponse(
        message="Account created. Check your email to verify your address.",
        user=PrincipalResponse.from_principal(principal),
    )


@router.get("/auth/verify-email", response_model=MessageResponse)
def verify_email(request: Request, token: str) -> MessageResponse:
    _credentials(request).verify_email(token)
    return MessageResponse(message="Email verified successfully.")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_RATE_LIMIT)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, response: Response, body: LoginRequest) -> TokenResponse:
    """Exchange email and password for an access/refresh token pair.

    Wrong email and wrong password produce the same 401 so the endpoint does
    not reveal which addresses are registered.
    """
    pair = _credentials(request).login(body.email, body.password)
    return _token_response(response, pair)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenResponse:
    """Rotate the token pair. The presented refresh token stops working."""
    pair = _credentials(request).refresh(body.refresh_token)
    return _token_response(response, pair)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, principal: Principal = Depends(get_current_principal)) -> MessageResponse:
    """End the session. The access token stays valid until it expires."""
    _credentials(request).logout(principal.id)
    return MessageResponse(message="Logged out.")


@router.get("/auth/profile", response_model=PrincipalResponse)
def profile(principal: Principal = Depends(get_current_principal)) -> PrincipalResponse:
    return PrincipalResponse.from_principal(principal)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    return MessageResponse(message=_credentials(request).forgot_password(body.email))


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    background_tasks: BackgroundTasks,
) -> MessageResponse:
    principal = _credentials(request).reset_password(body.token, body.new_password)
    background_tasks.add_task(request.app.state.audit.record, principal.id, "password_reset", "user", principal.id)
    return MessageResponse(message="Password has been reset. Please log in again.")


# ---------------------------------------------------------------------------
# External identity providers
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[str])
async def list_providers() -> list[str]:
    """Names of the external providers that are configured."""
    return get_enabled_providers()


def _require_provider(provider: str) -> None:
    # Only configured providers reach authlib; anything else looks absent.
    if provider not in get_enabled_providers():
        raise NotFound(f"Unknown identity provider: {provider}")


@router.get("/auth/{provider}/login")
async def provider_login(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page."""
    _require_provider(provider)
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("provider_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/{provider}/callback", response_model=TokenResponse, name="provider_callback")
async def provider_callback(request: Request, response: Response, provider: str) -> TokenResponse:
    """Complete the provider handshake and issue a token pair.

    Flow:
      1. Exchange authorization code for token (authlib checks the session state).
      2. Extract the verified identity -- raises ValueError if unverified.
      3. Resolve it to a local principal, creating one on first login.
      4. Issue a token pair exactly as password login does.
    """
    _require_provider(provider)
    client = request.app.state.oauth.create_client(provider)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        raise Unauthorized("External sign-in failed.") from exc

    try:
        identity = identity_from_token(provider, token)
    except ValueError as exc:
        logger.warning("OAuth login rejected from %r: %s", provider, exc)
        raise Unauthorized("External sign-in failed.") from exc

    credentials = _credentials(request)
    principal = credentials.resolve_external_identity(identity)
    return _token_response(response, credentials.issue_session(principal))
