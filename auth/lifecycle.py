"""
auth/lifecycle.py -- Credential lifecycle: signup, verification, login,
refresh rotation, logout, password reset and external-identity resolution.

CredentialManager is the only writer of the secret-bearing principal fields:

  refresh_token_hash         login / refresh (write), logout (clear)
  verification_token_hash    signup (write), verify_email (clear)
  reset_token_hash + expiry  forgot_password (write), reset_password (clear)

Security notes:
  [C1] Login always runs bcrypt, against DUMMY_PASSWORD_HASH when the email is
       unknown or the principal has no password, so response time does not
       reveal which emails are registered.

  [R1] Refresh rotation is a compare-and-swap on the stored digest
       (PrincipalStore.rotate_refresh_hash). Two concurrent refreshes with the
       same token cannot both win; the loser gets Unauthorized instead of
       silently overwriting the winner's new hash.

  [R2] forgot_password() returns GENERIC_RESET_MESSAGE whether or not the
       email matched, so the endpoint cannot be used to enumerate accounts.

  [R3] A reset or verification token that is found expired is cleared on the
       spot. Once consumed or lapsed it can never authorize anything again.

  [O1] resolve_external_identity() links an external login to an existing
       local account purely by email. That is only safe when the provider has
       verified the address -- auth/oauth.py refuses unverified emails before
       this method is reached.

Verification is not a login gate: an unverified principal can log in.

Layer rule: no imports from api/, workspace/, or audit/.
"""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from auth.hashing import (
    DUMMY_PASSWORD_HASH,
    generate_secret_token,
    hash_password,
    hash_secret,
    secret_matches,
    verify_password,
)
from auth.models import AuthProvider, ExternalIdentity, Principal, TokenPair
from auth.store import PrincipalStore
from auth.tokens import REFRESH, issue_token_pair, verify_token
from core.config import Settings, get_settings
from core.db import to_iso
from core.errors import Conflict, InvalidOrExpiredToken, Unauthorized
from core.mailer import MailSender, redact_email

logger = logging.getLogger("tasknest.auth")

GENERIC_RESET_MESSAGE = "If an account with that email exists, a password reset link has been sent."

_USERNAME_MAX = 50
_USERNAME_ATTEMPTS = 10
_NON_HANDLE_CHARS = re.compile(r"[^a-z0-9_.-]")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialManager:
    """Orchestrates every credential workflow over a PrincipalStore.

    Args:
        store:    Principal repository.
        mailer:   Outbound mail collaborator. Delivery failures are logged and
                  never undo a token that has already been stored.
        settings: Defaults to the process-wide Settings singleton.
        clock:    Returns the current UTC time. Tests inject a movable clock to
                  exercise expiry without sleeping.
    """

    def __init__(
        self,
        store: PrincipalStore,
        mailer: MailSender,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.mailer = mailer
        self.settings = settings or get_settings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Signup and email verification
    # ------------------------------------------------------------------

    def signup(self, email: str, username: str, password: str | None = None) -> Principal:
        """Create a principal and send its verification link. Does not log in.

        Raises:
            Conflict: email or username already used by a live principal.
        """
        email = normalize_email(email)
        if self.store.identity_taken(email, username):
            raise Conflict()

        raw_token = generate_secret_token()
        principal = Principal(
            email=email,
            username=username,
            password_hash=hash_password(password, self.settings.bcrypt_rounds) if password else None,
            auth_provider=AuthProvider.email.value,
            verification_token_hash=hash_secret(raw_token),
            verification_expires_at=self._expiry(self.settings.email_verification_expire_seconds),
        )
        try:
            principal_id = self.store.create_principal(principal)
        except IntegrityError as exc:
            # A concurrent signup claimed the email/username after the pre-check.
            raise Conflict() from exc

        logger.info("Principal %d signed up", principal_id)
        self._deliver(
            email,
            "Verify your TaskNest email address",
            "Welcome to TaskNest!\n\n"
            "Confirm your email address by visiting:\n"
            f"{self.settings.app_base_url}/verify-email?token={raw_token}\n",
        )
        return self.store.get_by_id(principal_id)

    def verify_email(self, token: str) -> Principal:
        """Consume a verification token. Single use.

        Raises:
            InvalidOrExpiredToken: unknown, already used, or lapsed token.
        """
        digest = hash_secret(token)
        principal = self.store.get_by_verification_hash(digest)
        if principal is None:
            raise InvalidOrExpiredToken()
        if self._lapsed(principal.verification_expires_at):
            self.store.clear_verification(principal.id)  # [R3]
            raise InvalidOrExpiredToken()
        if not self.store.consume_verification(principal.id, digest):
            raise InvalidOrExpiredToken()
        logger.info("Principal %d verified email", principal.id)
        return self.store.get_by_id(principal.id)

    # ------------------------------------------------------------------
    # Login, refresh, logout
    # ------------------------------------------------------------------

    def authenticate(self, email: str, password: str) -> Principal:
        """Return the principal for valid credentials; Unauthorized otherwise. [C1]"""
        principal = self.store.get_by_email(normalize_email(email))
        if principal is None or principal.password_hash is None:
            verify_password(password, DUMMY_PASSWORD_HASH)
            logger.debug("Authentication attempt failed for %s", redact_email(email))
            raise Unauthorized("Invalid email or password.")
        if not verify_password(password, principal.password_hash):
            logger.debug("Authentication attempt failed for %s", redact_email(email))
            raise Unauthorized("Invalid email or password.")
        return principal

    def login(self, email: str, password: str) -> TokenPair:
        return self.issue_session(self.authenticate(email, password))

    def issue_session(self, principal: Principal) -> TokenPair:
        """Mint a token pair and overwrite the refresh slot with its digest.

        Any refresh token issued earlier for this principal stops working.
        """
        pair = issue_token_pair(principal)
        self.store.set_refresh_hash(principal.id, hash_secret(pair.refresh_token))
        logger.info("Issued session for principal %d", principal.id)
        return pair

    def validate_refresh_token(self, refresh_token: str) -> Principal:
        """Prove possession of the currently stored, unexpired refresh token.

        Raises:
            Unauthorized: bad signature, expired, wrong kind, unknown principal,
                or a token that is no longer the one in the refresh slot.
        """
        payload = verify_token(refresh_token, REFRESH)
        principal = self.store.get_by_id(payload["principal_id"])
        if principal is None or not secret_matches(refresh_token, principal.refresh_token_hash):
            raise Unauthorized("Refresh token is no longer valid.")
        return principal

    def refresh_tokens(self, principal: Principal, presented_refresh_token: str) -> TokenPair:
        """Rotate: issue a new pair and swap the refresh slot away from the presented token. [R1]

        Must only be called after validate_refresh_token() succeeded.
        """
        pair = issue_token_pair(principal)
        swapped = self.store.rotate_refresh_hash(
            principal.id,
            expected_hash=hash_secret(presented_refresh_token),
            new_hash=hash_secret(pair.refresh_token),
        )
        if not swapped:
            logger.warning("Refresh rotation lost a race for principal %d", principal.id)
            raise Unauthorized("Refresh token is no longer valid.")
        return pair

    def refresh(self, refresh_token: str) -> TokenPair:
        return self.refresh_tokens(self.validate_refresh_token(refresh_token), refresh_token)

    def logout(self, principal_id: int) -> None:
        """Clear the refresh slot. Live access tokens stay valid until they expire."""
        self.store.set_refresh_hash(principal_id, None)
        logger.info("Principal %d logged out", principal_id)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> str:
        """Start a reset if the email is known. Always returns the same message. [R2]"""
        principal = self.store.get_by_email(normalize_email(email))
        if principal is not None:
            raw_token = generate_secret_token()
            self.store.set_reset_token(
                principal.id,
                hash_secret(raw_token),
                self._expiry(self.settings.password_reset_expire_seconds),
            )
            logger.info("Password reset requested for principal %d", principal.id)
            self._deliver(
                principal.email,
                "Reset your TaskNest password",
                "We received a request to reset your password.\n\n"
                "Choose a new one within the next hour:\n"
                f"{self.settings.app_base_url}/reset-password?token={raw_token}\n\n"
                "If you did not ask for this, ignore this message.\n",
            )
        return GENERIC_RESET_MESSAGE

    def reset_password(self, token: str, new_password: str) -> Principal:
        """Set a new password using a reset token. Single use.

        Raises:
            InvalidOrExpiredToken: unknown, consumed, or lapsed token.
        """
        digest = hash_secret(token)
        principal = self.store.get_by_reset_hash(digest)
        if principal is None:
            raise InvalidOrExpiredToken()
        if self._lapsed(principal.reset_expires_at):
            self.store.clear_reset_token(principal.id)  # [R3]
            raise InvalidOrExpiredToken()

        new_hash = hash_password(new_password, self.settings.bcrypt_rounds)
        if not self.store.consume_reset_token(principal.id, digest, new_hash, to_iso(self.clock())):
            raise InvalidOrExpiredToken()
        logger.info("Password reset completed for principal %d", principal.id)
        return self.store.get_by_id(principal.id)

    # ------------------------------------------------------------------
    # External identity
    # ------------------------------------------------------------------

    def resolve_oauth_principal(
        self,
        email: str,
        given_name: str = "",
        family_name: str = "",
        provider: str = AuthProvider.google.value,
        subject: str | None = None,
    ) -> Principal:
        return self.resolve_external_identity(
            ExternalIdentity(
                email=email,
                given_name=given_name,
                family_name=family_name,
                provider=provider,
                subject=subject,
            )
        )

    def resolve_external_identity(self, identity: ExternalIdentity) -> Principal:
        """Map a provider-verified identity to a local principal. [O1]

        Existing principal with the same email: returned as-is.
        Otherwise a passwordless principal is created with a derived username.
        """
        email = normalize_email(identity.email)
        existing = self.store.get_by_email(email)
        if existing is not None:
            logger.info("External %s login matched principal %d by email", identity.provider, existing.id)
            return existing

        base = _derive_username(identity)
        for attempt in range(_USERNAME_ATTEMPTS):
            username = base if attempt == 0 else f"{base[: _USERNAME_MAX - 5]}-{secrets.token_hex(2)}"
            if self.store.get_by_username(username) is not None:
                continue
            try:
                principal_id = self.store.create_principal(
                    Principal(
                        email=email,
                        username=username,
                        auth_provider=identity.provider,
                        auth_provider_id=identity.subject,
                        is_email_verified=True,
                    )
                )
            except IntegrityError:
                # Either the username or the email was claimed concurrently.
                concurrent = self.store.get_by_email(email)
                if concurrent is not None:
                    return concurrent
                continue
            logger.info("Created principal %d from %s identity", principal_id, identity.provider)
            return self.store.get_by_id(principal_id)
        raise Conflict("Could not derive a free username for this identity.")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _expiry(self, seconds: int) -> str:
        return to_iso(self.clock() + timedelta(seconds=seconds))

    def _lapsed(self, expires_at: str | None) -> bool:
        return expires_at is None or expires_at <= to_iso(self.clock())

    def _deliver(self, to_address: str, subject: str, body: str) -> None:
        try:
            delivered = self.mailer.send(to_address, subject, body)
        except Exception:
            logger.exception("Mail sender raised for %s", redact_email(to_address))
            return
        if not delivered:
            logger.warning("Mail to %s was not delivered", redact_email(to_address))


def _derive_username(identity: ExternalIdentity) -> str:
    """Build a handle from the given/family names, falling back to the email local part."""
    raw = f"{identity.given_name}{identity.family_name}".strip().lower()
    if not raw:
        raw = identity.email.split("@", 1)[0].lower()
    handle = _NON_HANDLE_CHARS.sub("", raw.replace(" ", "."))
    return (handle or "user")[:_USERNAME_MAX]
