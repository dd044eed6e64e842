"""
auth/oauth.py -- Authlib OAuth/OIDC provider configuration.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered.

The provider handshake itself (redirect, code exchange, state check) is
Authlib's job. This module only turns the provider's verified userinfo into an
ExternalIdentity that CredentialManager.resolve_external_identity() maps to a
local principal.

Security notes:
  [H1] Email verification is mandatory. identity_from_token() raises ValueError
       if the provider does not confirm the email is verified. Because external
       logins are linked to existing accounts by email [O1], accepting an
       unverified address would let anyone who registers a victim's email at
       the provider take over the victim's TaskNest account.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware.

Supported providers:
  google    -- OIDC discovery.
  microsoft -- OIDC discovery against the common (multi-tenant) endpoint.

Layer rule: no imports from api/, workspace/, or audit/. Import from core/
is allowed -- core/ is the kernel layer.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import AuthProvider, ExternalIdentity
from core.config import get_settings

logger = logging.getLogger("tasknest.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

_DISCOVERY_URLS = {
    AuthProvider.google.value: "https://accounts.google.com/.well-known/openid-configuration",
    AuthProvider.microsoft.value: "https://login.microsoftonline.com/common/v2.0/.well-known/openid-configuration",
}

if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name=AuthProvider.google.value,
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url=_DISCOVERY_URLS[AuthProvider.google.value],
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")

if _cfg.microsoft_client_id and _cfg.microsoft_client_secret:
    oauth.register(
        name=AuthProvider.microsoft.value,
        client_id=_cfg.microsoft_client_id,
        client_secret=_cfg.microsoft_client_secret,
        server_metadata_url=_DISCOVERY_URLS[AuthProvider.microsoft.value],
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Microsoft OAuth provider registered")


def get_enabled_providers() -> list[str]:
    """Names of providers with credentials configured, in display order."""
    cfg = get_settings()
    providers: list[str] = []
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append(AuthProvider.google.value)
    if cfg.microsoft_client_id and cfg.microsoft_client_secret:
        providers.append(AuthProvider.microsoft.value)
    return providers


# ---------------------------------------------------------------------------
# Identity extraction [H1]
# ---------------------------------------------------------------------------


def identity_from_token(provider: str, token: dict) -> ExternalIdentity:
    """Extract a verified ExternalIdentity from an OIDC token response.

    Both providers return an id_token whose parsed claims authlib exposes as
    token["userinfo"]: email, email_verified, given_name, family_name, sub.

    Raises:
        ValueError: unknown provider, no userinfo, unverified or missing email.
    """
    if provider not in _DISCOVERY_URLS:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")

    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError(
            f"{provider} OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError(f"{provider} OAuth: missing email or sub claim in userinfo")

    return ExternalIdentity(
        email=email,
        given_name=userinfo.get("given_name", "") or "",
        family_name=userinfo.get("family_name", "") or "",
        provider=provider,
        subject=str(subject),
    )
