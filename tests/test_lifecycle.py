"""Unit tests for auth/lifecycle.py -- CredentialManager.

Covers:
- signup: conflict on live duplicates, hashed verification token, mail link
- verify_email: single use, lapsed token cleared, unknown token rejected
- login: unverified principals may log in; same error for unknown email and
  wrong password; passwordless principals cannot log in with a password
- refresh: rotation invalidates the presented token; refresh after logout fails
- forgot / reset password: identical message for known and unknown emails,
  single-use token, expiry via a movable clock, old refresh token dies
- external identity: match by email, create with derived username, collisions
- a mailer that raises does not break signup
"""

from __future__ import annotations

import pytest

from auth.hashing import hash_secret, verify_password
from auth.lifecycle import GENERIC_RESET_MESSAGE, CredentialManager
from auth.models import ExternalIdentity
from auth.store import PrincipalStore
from core.errors import Conflict, InvalidOrExpiredToken, Unauthorized

PASSWORD = "correct-horse-9"


def _signup(credentials: CredentialManager, name: str = "alice", password: str | None = PASSWORD):
    return credentials.signup(f"{name}@example.com", name, password)


class TestSignup:
    def test_signup_creates_unverified_principal(self, credentials, mailer) -> None:
        principal = _signup(credentials)
        assert principal.id is not None
        assert principal.is_email_verified is False
        assert principal.password_hash and principal.password_hash != PASSWORD
        assert principal.verification_token_hash is not None
        assert principal.verification_expires_at is not None

        to_address, subject, body = mailer.messages[-1]
        assert to_address == "alice@example.com"
        assert "/verify-email?token=" in body
        # Only the digest is stored.
        raw = mailer.last_token("alice@example.com")
        assert principal.verification_token_hash == hash_secret(raw)

    def test_signup_normalizes_email(self, credentials) -> None:
        principal = credentials.signup("  Alice@Example.COM ", "alice", PASSWORD)
        assert principal.email == "alice@example.com"

    def test_signup_without_password(self, credentials) -> None:
        principal = _signup(credentials, password=None)
        assert principal.password_hash is None

    def test_duplicate_email_conflicts(self, credentials) -> None:
        _signup(credentials)
        with pytest.raises(Conflict):
            credentials.signup("alice@example.com", "someone-else", PASSWORD)

    def test_duplicate_username_conflicts(self, credentials) -> None:
        _signup(credentials)
        with pytest.raises(Conflict):
            credentials.signup("other@example.com", "alice", PASSWORD)

    def test_mailer_failure_does_not_fail_signup(self, principal_store, clock) -> None:
        class ExplodingMailer:
            def send(self, to_address, subject, body):
                raise ConnectionError("relay down")

        manager = CredentialManager(principal_store, ExplodingMailer(), clock=clock)
        principal = _signup(manager)
        assert principal_store.get_by_id(principal.id) is not None


class TestVerifyEmail:
    def test_verify_marks_verified_and_clears_token(self, credentials, mailer) -> None:
        _signup(credentials)
        verified = credentials.verify_email(mailer.last_token("alice@example.com"))
        assert verified.is_email_verified is True
        assert verified.verification_token_hash is None

    def test_verify_is_single_use(self, credentials, mailer) -> None:
        _signup(credentials)
        token = mailer.last_token("alice@example.com")
        credentials.verify_email(token)
        with pytest.raises(InvalidOrExpiredToken):
            credentials.verify_email(token)

    def test_unknown_token(self, credentials) -> None:
        with pytest.raises(InvalidOrExpiredToken):
            credentials.verify_email("f" * 64)

    def test_lapsed_token_is_cleared(self, credentials, mailer, clock, principal_store) -> None:
        principal = _signup(credentials)
        token = mailer.last_token("alice@example.com")
        clock.advance(credentials.settings.email_verification_expire_seconds + 1)
        with pytest.raises(InvalidOrExpiredToken):
            credentials.verify_email(token)
        after = principal_store.get_by_id(principal.id)
        assert after.verification_token_hash is None
        assert after.is_email_verified is False


class TestLogin:
    def test_unverified_principal_can_log_in(self, credentials) -> None:
        _signup(credentials)
        pair = credentials.login("alice@example.com", PASSWORD)
        assert pair.access_token
        assert pair.refresh_token

    def test_login_is_case_insensitive_on_email(self, credentials) -> None:
        _signup(credentials)
        assert credentials.login("ALICE@example.com", PASSWORD).access_token

    def test_wrong_password_and_unknown_email_look_the_same(self, credentials) -> None:
        _signup(credentials)
        with pytest.raises(Unauthorized) as wrong_pw:
            credentials.login("alice@example.com", "not-the-password")
        with pytest.raises(Unauthorized) as unknown:
            credentials.login("nobody@example.com", PASSWORD)
        assert wrong_pw.value.message == unknown.value.message

    def test_passwordless_principal_cannot_password_login(self, credentials) -> None:
        _signup(credentials, password=None)
        with pytest.raises(Unauthorized):
            credentials.login("alice@example.com", "")

    def test_login_stores_refresh_digest(self, credentials, principal_store) -> None:
        principal = _signup(credentials)
        pair = credentials.login("alice@example.com", PASSWORD)
        stored = principal_store.get_by_id(principal.id).refresh_token_hash
        assert stored == hash_secret(pair.refresh_token)
        assert stored != pair.refresh_token


class TestRefresh:
    def test_refresh_rotates(self, credentials) -> None:
        _signup(credentials)
        first = credentials.login("alice@example.com", PASSWORD)
        second = credentials.refresh(first.refresh_token)
        assert second.refresh_token != first.refresh_token

    def test_old_refresh_token_rejected_after_rotation(self, credentials) -> None:
        _signup(credentials)
        first = credentials.login("alice@example.com", PASSWORD)
        credentials.refresh(first.refresh_token)
        with pytest.raises(Unauthorized):
            credentials.refresh(first.refresh_token)

    def test_new_login_invalidates_previous_refresh_token(self, credentials) -> None:
        _signup(credentials)
        first = credentials.login("alice@example.com", PASSWORD)
        credentials.login("alice@example.com", PASSWORD)
        with pytest.raises(Unauthorized):
            credentials.refresh(first.refresh_token)

    def test_access_token_cannot_refresh(self, credentials) -> None:
        _signup(credentials)
        pair = credentials.login("alice@example.com", PASSWORD)
        with pytest.raises(Unauthorized):
            credentials.refresh(pair.access_token)

    def test_refresh_after_logout_fails(self, credentials) -> None:
        principal = _signup(credentials)
        pair = credentials.login("alice@example.com", PASSWORD)
        credentials.logout(principal.id)
        with pytest.raises(Unauthorized):
            credentials.refresh(pair.refresh_token)

    def test_losing_rotation_race_is_unauthorized(self, credentials) -> None:
        """validate succeeded, but another rotation swapped the slot first."""
        _signup(credentials)
        pair = credentials.login("alice@example.com", PASSWORD)
        principal = credentials.validate_refresh_token(pair.refresh_token)
        credentials.refresh_tokens(principal, pair.refresh_token)
        with pytest.raises(Unauthorized):
            credentials.refresh_tokens(principal, pair.refresh_token)

    def test_deleted_principal_cannot_refresh(self, credentials, principal_store) -> None:
        principal = _signup(credentials)
        pair = credentials.login("alice@example.com", PASSWORD)
        principal_store.soft_delete(principal.id)
        with pytest.raises(Unauthorized):
            credentials.refresh(pair.refresh_token)


class TestPasswordReset:
    def test_message_identical_for_known_and_unknown(self, credentials, mailer) -> None:
        _signup(credentials)
        sent_before = len(mailer.messages)
        assert credentials.forgot_password("alice@example.com") == GENERIC_RESET_MESSAGE
        assert credentials.forgot_password("nobody@example.com") == GENERIC_RESET_MESSAGE
        # Only the known address got mail.
        assert len(mailer.messages) == sent_before + 1

    def test_reset_changes_password(self, credentials, mailer) -> None:
        _signup(credentials)
        credentials.forgot_password("alice@example.com")
        credentials.reset_password(mailer.last_token("alice@example.com"), "brand-new-pass")
        assert credentials.login("alice@example.com", "brand-new-pass").access_token
        with pytest.raises(Unauthorized):
            credentials.login("alice@example.com", PASSWORD)

    def test_reset_returns_updated_principal(self, credentials, mailer) -> None:
        _signup(credentials)
        credentials.login("alice@example.com", PASSWORD)
        credentials.forgot_password("alice@example.com")
        principal = credentials.reset_password(mailer.last_token("alice@example.com"), "brand-new-pass")
        assert verify_password("brand-new-pass", principal.password_hash)
        assert principal.refresh_token_hash is None
        assert principal.reset_token_hash is None

    def test_reset_token_single_use(self, credentials, mailer) -> None:
        _signup(credentials)
        credentials.forgot_password("alice@example.com")
        token = mailer.last_token("alice@example.com")
        credentials.reset_password(token, "brand-new-pass")
        with pytest.raises(InvalidOrExpiredToken):
            credentials.reset_password(token, "another-pass-1")

    def test_expired_reset_token_rejected_and_cleared(self, credentials, mailer, clock, principal_store) -> None:
        principal = _signup(credentials)
        credentials.forgot_password("alice@example.com")
        token = mailer.last_token("alice@example.com")
        clock.advance(credentials.settings.password_reset_expire_seconds + 1)
        with pytest.raises(InvalidOrExpiredToken):
            credentials.reset_password(token, "brand-new-pass")
        assert principal_store.get_by_id(principal.id).reset_token_hash is None
        # Still rejected after the clear, and the old password still works.
        with pytest.raises(InvalidOrExpiredToken):
            credentials.reset_password(token, "brand-new-pass")
        assert credentials.login("alice@example.com", PASSWORD).access_token

    def test_second_request_supersedes_first(self, credentials, mailer) -> None:
        _signup(credentials)
        credentials.forgot_password("alice@example.com")
        first = mailer.last_token("alice@example.com")
        credentials.forgot_password("alice@example.com")
        with pytest.raises(InvalidOrExpiredToken):
            credentials.reset_password(first, "brand-new-pass")

    def test_reset_kills_existing_refresh_token(self, credentials, mailer) -> None:
        _signup(credentials)
        pair = credentials.login("alice@example.com", PASSWORD)
        credentials.forgot_password("alice@example.com")
        credentials.reset_password(mailer.last_token("alice@example.com"), "brand-new-pass")
        with pytest.raises(Unauthorized):
            credentials.refresh(pair.refresh_token)


class TestExternalIdentity:
    def test_existing_email_returns_existing_principal(self, credentials) -> None:
        existing = _signup(credentials)
        resolved = credentials.resolve_oauth_principal("Alice@example.com", "Alice", "Smith")
        assert resolved.id == existing.id

    def test_new_identity_creates_verified_passwordless_principal(self, credentials) -> None:
        created = credentials.resolve_oauth_principal(
            "carol@example.com", "Carol", "Jones", provider="google", subject="sub-123"
        )
        assert created.username == "caroljones"
        assert created.password_hash is None
        assert created.is_email_verified is True
        assert created.auth_provider == "google"
        assert created.auth_provider_id == "sub-123"

    def test_second_call_is_idempotent(self, credentials) -> None:
        first = credentials.resolve_oauth_principal("carol@example.com", "Carol", "Jones")
        second = credentials.resolve_oauth_principal("carol@example.com", "Carol", "Jones")
        assert first.id == second.id

    def test_username_collision_gets_suffix(self, credentials) -> None:
        credentials.signup("someone@example.com", "caroljones", PASSWORD)
        created = credentials.resolve_oauth_principal("carol@example.com", "Carol", "Jones")
        assert created.username != "caroljones"
        assert created.username.startswith("caroljones-")

    def test_missing_names_fall_back_to_email_local_part(self, credentials) -> None:
        created = credentials.resolve_external_identity(ExternalIdentity(email="dave.k@example.com"))
        assert created.username == "dave.k"

    def test_session_issued_for_external_principal(self, credentials, principal_store: PrincipalStore) -> None:
        principal = credentials.resolve_oauth_principal("carol@example.com", "Carol", "Jones")
        pair = credentials.issue_session(principal)
        assert credentials.refresh(pair.refresh_token).access_token
