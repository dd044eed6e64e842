"""
auth/tokens.py -- Signed, expiring access and refresh tokens.

Security design decisions:
  JWT: python-jose, algorithm from Settings.jwt_algorithm (HS256 by default),
       signed with SECRET_KEY. Both token kinds carry the principal id (sub),
       the display handle (username), a "type" claim, a random jti and the
       standard iat/exp claims.

  Two kinds, one secret: access tokens live ACCESS_TOKEN_EXPIRE_SECONDS
       (15 min), refresh tokens REFRESH_TOKEN_EXPIRE_SECONDS (7 days). The
       "type" claim stops a refresh token from being replayed as a bearer
       token and vice versa.

  jti: two tokens minted for the same principal within the same second
       would otherwise be byte-identical, and rotating to an identical refresh
       token would leave the "old" one valid.

  Stateless: an access token cannot be revoked before it expires; that is why
       its lifetime is short. Logout only clears the refresh slot.

  Expiry is checked by jose against the wall clock at every decode. Nothing is
       cached between verifications.

Layer rule: no imports from api/, workspace/, or audit/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenPair
from core.config import get_settings
from core.errors import TokenExpired, TokenInvalid

if TYPE_CHECKING:
    from auth.models import Principal

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

ACCESS = "access"
REFRESH = "refresh"

_LIFETIMES: dict[str, int] = {
    ACCESS: _settings.access_token_expire_seconds,
    REFRESH: _settings.refresh_token_expire_seconds,
}


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------


def create_token(
    principal_id: int,
    username: str,
    kind: str = ACCESS,
    expire_seconds: int = 0,
    issued_at: datetime | None = None,
) -> str:
    """Encode a signed JWT bound to a principal.

    Args:
        principal_id:   Numeric principal ID, stored as the (string) sub claim.
        username:       Display handle, carried for convenience only.
        kind:           ACCESS or REFRESH.
        expire_seconds: Lifetime override. 0 (default) uses the configured
                        lifetime for the kind.
        issued_at:      Issue time override. Tests use it to mint tokens that
                        are already expired.
    """
    if kind not in _LIFETIMES:
        raise ValueError(f"Unknown token kind: {kind!r}")
    now = issued_at or datetime.now(timezone.utc)
    duration = expire_seconds if expire_seconds > 0 else _LIFETIMES[kind]
    payload = {
        "sub": str(principal_id),
        "username": username,
        "type": kind,
        "jti": secrets.token_hex(16),
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_settings.jwt_algorithm)


def issue_token_pair(principal: Principal) -> TokenPair:
    """Mint a fresh access + refresh pair for a principal."""
    return TokenPair(
        access_token=create_token(principal.id, principal.username, ACCESS),
        refresh_token=create_token(principal.id, principal.username, REFRESH),
        access_expires_in=_LIFETIMES[ACCESS],
        refresh_expires_in=_LIFETIMES[REFRESH],
    )


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------


def verify_token(token: str, kind: str = ACCESS) -> dict:
    """Decode and verify a JWT of the expected kind.

    Returns the payload with "principal_id" (int) added.

    Raises:
        TokenExpired: signature valid, exp in the past.
        TokenInvalid: bad signature, malformed token, wrong kind or missing claims.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_settings.jwt_algorithm])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise TokenInvalid() from exc

    if payload.get("type") != kind:
        raise TokenInvalid(f"Expected a {kind} token.")
    try:
        payload["principal_id"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid() from exc
    return payload

