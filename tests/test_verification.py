"""Unit tests for auth/verification.py -- the email verification state machine.

Covers:
- signup persists a pending principal with a 6-digit code expiring in otp_ttl
- signup input policy and cross-type duplicate emails
- email outage never rolls back signup or resend
- verify_email error ordering: NotFound, NoPendingToken, CodeMismatch, CodeExpired
- a consumed code cannot be replayed; resend invalidates the previous code
- already-verified and legacy status=completed principals
"""

import pytest

from auth.exceptions import (
    AlreadyVerified,
    CodeExpired,
    CodeMismatch,
    DuplicateEmail,
    InvalidEmail,
    InvalidInput,
    NoPendingToken,
    NotFound,
    WeakPassword,
)
from auth.models import LegacyStatus, PrincipalType, VerificationState
from core.clock import to_epoch_ms

PASSWORD = "Abc12345!"


def _signup(verification, email="a@x.com", principal_type="buyer"):
    return verification.signup(principal_type, "Ada Lovelace", email, PASSWORD)


class TestSignup:
    def test_persists_pending_principal_with_code(self, verification, store, sender, clock, settings) -> None:
        result = _signup(verification)
        assert result.email_sent is True

        stored = store.find_by_email(PrincipalType.buyer, "a@x.com")
        assert stored.verification_state is VerificationState.pending
        assert stored.status is LegacyStatus.pending
        assert not stored.is_verified
        assert len(stored.email_token) == 6 and stored.email_token.isdigit()
        assert stored.email_token_expires == to_epoch_ms(clock()) + settings.otp_ttl_seconds * 1000
        assert stored.hashed_password != PASSWORD

        email = sender.last_to("a@x.com")
        assert email.code == stored.email_token
        assert "Verification Code" in email.subject

    def test_vendor_signup_uses_vendor_table(self, verification, store) -> None:
        _signup(verification, "shop@x.com", "vendor")
        assert store.find_by_email(PrincipalType.vendor, "shop@x.com") is not None
        assert store.find_by_email(PrincipalType.buyer, "shop@x.com") is None

    def test_missing_fields(self, verification) -> None:
        with pytest.raises(InvalidInput) as exc_info:
            verification.signup("buyer", None, "a@x.com", "")
        assert exc_info.value.data["fields"] == ["name", "password"]

    def test_invalid_email(self, verification) -> None:
        with pytest.raises(InvalidEmail):
            verification.signup("buyer", "Ada", "not-an-email", PASSWORD)

    def test_weak_password(self, verification, store) -> None:
        with pytest.raises(WeakPassword):
            verification.signup("buyer", "Ada", "a@x.com", "password")
        assert store.find_by_email(PrincipalType.buyer, "a@x.com") is None

    def test_invalid_principal_type(self, verification) -> None:
        with pytest.raises(InvalidInput):
            verification.signup("admin", "Ada", "a@x.com", PASSWORD)

    def test_duplicate_across_principal_types(self, verification) -> None:
        _signup(verification, "a@x.com", "vendor")
        with pytest.raises(DuplicateEmail):
            _signup(verification, "A@X.com", "buyer")

    def test_email_failure_keeps_account(self, verification, store, sender) -> None:
        sender.fail = True
        result = _signup(verification)
        assert result.email_sent is False
        stored = store.find_by_email(PrincipalType.buyer, "a@x.com")
        assert stored is not None
        assert stored.email_token is not None

    def test_profile_fields_stored(self, verification) -> None:
        result = verification.signup(
            "vendor", "Shop Owner", "shop@x.com", PASSWORD, phone_number="+2348012345678", state="Lagos", country="NG"
        )
        assert result.principal.phone_number == "+2348012345678"
        assert result.principal.state == "Lagos"
        assert result.principal.country == "NG"


class TestVerifyEmail:
    def test_correct_code_verifies(self, verification, store, sender) -> None:
        _signup(verification)
        code = sender.last_to("a@x.com").code

        result = verification.verify_email("buyer", "a@x.com", code)
        assert result.already_verified is False
        assert result.principal.is_verified
        assert result.principal.status is LegacyStatus.completed
        assert result.principal.email_token is None
        assert result.principal.email_token_expires is None
        assert result.principal.verified_at

    def test_numeric_code_accepted(self, verification, sender) -> None:
        _signup(verification)
        code = int(sender.last_to("a@x.com").code)
        assert verification.verify_email("buyer", "a@x.com", code).principal.is_verified

    def test_missing_fields(self, verification) -> None:
        with pytest.raises(InvalidInput):
            verification.verify_email("buyer", "a@x.com", None)

    def test_unknown_email(self, verification) -> None:
        with pytest.raises(NotFound):
            verification.verify_email("buyer", "nobody@x.com", "123456")

    def test_wrong_principal_type_is_not_found(self, verification, sender) -> None:
        _signup(verification, "a@x.com", "buyer")
        with pytest.raises(NotFound):
            verification.verify_email("vendor", "a@x.com", sender.last_to("a@x.com").code)

    def test_wrong_code(self, verification, sender) -> None:
        _signup(verification)
        code = sender.last_to("a@x.com").code
        wrong = "100000" if code != "100000" else "100001"
        with pytest.raises(CodeMismatch):
            verification.verify_email("buyer", "a@x.com", wrong)

    def test_expired_code(self, verification, sender, clock, settings) -> None:
        _signup(verification)
        code = sender.last_to("a@x.com").code
        clock.advance(settings.otp_ttl_seconds)
        with pytest.raises(CodeExpired):
            verification.verify_email("buyer", "a@x.com", code)

    def test_code_valid_just_before_expiry(self, verification, sender, clock, settings) -> None:
        _signup(verification)
        code = sender.last_to("a@x.com").code
        clock.advance(settings.otp_ttl_seconds - 1)
        assert verification.verify_email("buyer", "a@x.com", code).principal.is_verified

    def test_no_pending_token(self, verification, make_principal) -> None:
        make_principal(verified=False)
        with pytest.raises(NoPendingToken):
            verification.verify_email("buyer", "ada@example.com", "123456")

    def test_second_verify_is_idempotent_success(self, verification, store, sender) -> None:
        _signup(verification)
        code = sender.last_to("a@x.com").code
        first = verification.verify_email("buyer", "a@x.com", code)

        second = verification.verify_email("buyer", "a@x.com", code)
        assert second.already_verified is True
        assert second.principal.verified_at == first.principal.verified_at

    def test_consumed_code_cannot_be_replayed_at_store(self, verification, store, sender, clock) -> None:
        _signup(verification)
        code = sender.last_to("a@x.com").code
        principal = store.find_by_email(PrincipalType.buyer, "a@x.com")
        verification.verify_email("buyer", "a@x.com", code)
        assert not store.consume_email_token(PrincipalType.buyer, principal.id, code, to_epoch_ms(clock()))

    def test_concurrent_consumer_loses_with_no_pending_token(self, verification, store, sender, monkeypatch) -> None:
        _signup(verification)
        code = sender.last_to("a@x.com").code
        # Simulate another request consuming the code between read and write.
        monkeypatch.setattr(store, "consume_email_token", lambda *args, **kwargs: False)
        with pytest.raises(NoPendingToken):
            verification.verify_email("buyer", "a@x.com", code)

    def test_legacy_completed_status_self_heals(self, verification, store, make_principal) -> None:
        p = make_principal(verified=False, status=LegacyStatus.completed)
        result = verification.verify_email("buyer", p.email, "123456")
        assert result.already_verified is True
        assert store.find_by_id(p.principal_type, p.id).is_verified


class TestResendVerification:
    def test_resend_invalidates_old_code(self, verification, sender) -> None:
        _signup(verification)
        old = sender.last_to("a@x.com").code
        result = verification.resend_verification("buyer", "a@x.com")
        assert result.email_sent is True
        new = sender.last_to("a@x.com").code
        assert len(sender.sent) == 2

        if old != new:
            with pytest.raises(CodeMismatch):
                verification.verify_email("buyer", "a@x.com", old)
        assert verification.verify_email("buyer", "a@x.com", new).principal.is_verified

    def test_resend_resets_expiry(self, verification, sender, clock, settings) -> None:
        _signup(verification)
        clock.advance(settings.otp_ttl_seconds + 60)
        verification.resend_verification("buyer", "a@x.com")
        code = sender.last_to("a@x.com").code
        assert verification.verify_email("buyer", "a@x.com", code).principal.is_verified

    def test_resend_to_unverified_without_token(self, verification, store, make_principal, sender) -> None:
        p = make_principal(verified=False)
        verification.resend_verification("buyer", p.email)
        stored = store.find_by_id(p.principal_type, p.id)
        assert stored.verification_state is VerificationState.pending
        assert stored.email_token == sender.last_to(p.email).code

    def test_unknown_email(self, verification) -> None:
        with pytest.raises(NotFound):
            verification.resend_verification("buyer", "nobody@x.com")

    def test_already_verified(self, verification, make_principal) -> None:
        make_principal(verified=True)
        with pytest.raises(AlreadyVerified):
            verification.resend_verification("buyer", "ada@example.com")

    def test_email_failure_keeps_new_code(self, verification, store, sender) -> None:
        _signup(verification)
        sender.fail = True
        result = verification.resend_verification("buyer", "a@x.com")
        assert result.email_sent is False
        assert result.principal.email_token is not None
