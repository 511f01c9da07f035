"""Unit tests for auth/authenticator.py -- login and session resolution.

Covers:
- password check precedes the verification check
- unknown email and wrong password are indistinguishable
- unverified login re-issues a code and raises VerificationRequired
- legacy status=completed self-heals and logs in
- successful login signs {id, name, role} and stamps last_login
- resolve_session() for valid, expired, and orphaned tokens
"""

from datetime import datetime, timedelta, timezone

import pytest

from auth.exceptions import InvalidCredentials, InvalidEmail, InvalidInput, InvalidOrExpiredToken, VerificationRequired
from auth.models import LegacyStatus, PrincipalType, VerificationState

PASSWORD = "Abc12345!"


class TestLogin:
    def test_verified_buyer_logs_in(self, authenticator, signer, make_principal, store) -> None:
        p = make_principal("buyer@x.com", PrincipalType.buyer)
        result = authenticator.login("Buyer@X.com", PASSWORD)

        claims = signer.verify(result.token)
        assert claims["id"] == p.id
        assert claims["name"] == p.name
        assert claims["role"] == "Buyer"
        assert result.principal.last_login is not None

    def test_vendor_role(self, authenticator, signer, make_principal) -> None:
        make_principal("shop@x.com", PrincipalType.vendor)
        claims = signer.verify(authenticator.login("shop@x.com", PASSWORD).token)
        assert claims["role"] == "Vendor"

    def test_missing_fields(self, authenticator) -> None:
        with pytest.raises(InvalidInput):
            authenticator.login("", PASSWORD)
        with pytest.raises(InvalidInput):
            authenticator.login("a@x.com", None)

    def test_malformed_email(self, authenticator) -> None:
        with pytest.raises(InvalidEmail):
            authenticator.login("not-an-email", PASSWORD)

    def test_unknown_email_and_wrong_password_are_identical(self, authenticator, make_principal) -> None:
        make_principal("a@x.com")
        with pytest.raises(InvalidCredentials) as unknown:
            authenticator.login("nobody@x.com", PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong:
            authenticator.login("a@x.com", "Wrong1234!")
        assert unknown.value.message == wrong.value.message
        assert unknown.value.code == wrong.value.code
        assert unknown.value.data == wrong.value.data

    def test_unknown_email_still_runs_bcrypt(self, authenticator, store, monkeypatch) -> None:
        calls = []
        original = store.hasher.burn
        monkeypatch.setattr(store.hasher, "burn", lambda plain: calls.append(plain) or original(plain))
        with pytest.raises(InvalidCredentials):
            authenticator.login("nobody@x.com", PASSWORD)
        assert calls == [PASSWORD]

    def test_federated_principal_cannot_password_login(self, authenticator, make_principal) -> None:
        make_principal("g@x.com", password=None, provider="google")
        with pytest.raises(InvalidCredentials):
            authenticator.login("g@x.com", PASSWORD)

    def test_wrong_password_before_verification_check(self, authenticator, make_principal, sender) -> None:
        make_principal("a@x.com", verified=False)
        with pytest.raises(InvalidCredentials):
            authenticator.login("a@x.com", "Wrong1234!")
        assert sender.sent == []

    def test_unverified_login_reissues_code(self, authenticator, make_principal, store, sender) -> None:
        p = make_principal("a@x.com", PrincipalType.vendor, verified=False)
        with pytest.raises(VerificationRequired) as exc_info:
            authenticator.login("a@x.com", PASSWORD)

        assert exc_info.value.status_code == 403
        assert exc_info.value.data == {
            "requiresVerification": True,
            "email": "a@x.com",
            "role": "Vendor",
            "emailSent": True,
        }
        stored = store.find_by_id(p.principal_type, p.id)
        assert stored.verification_state is VerificationState.pending
        assert stored.email_token == sender.last_to("a@x.com").code
        assert stored.last_login is None

    def test_unverified_login_with_email_outage(self, authenticator, make_principal, sender) -> None:
        make_principal("a@x.com", verified=False)
        sender.fail = True
        with pytest.raises(VerificationRequired) as exc_info:
            authenticator.login("a@x.com", PASSWORD)
        assert exc_info.value.data["emailSent"] is False

    def test_code_from_login_verifies(self, authenticator, verification, make_principal, sender) -> None:
        make_principal("a@x.com", verified=False)
        with pytest.raises(VerificationRequired):
            authenticator.login("a@x.com", PASSWORD)
        verification.verify_email("buyer", "a@x.com", sender.last_to("a@x.com").code)
        assert authenticator.login("a@x.com", PASSWORD).token

    def test_legacy_completed_status_self_heals(self, authenticator, make_principal, store) -> None:
        p = make_principal("a@x.com", verified=False, status=LegacyStatus.completed)
        result = authenticator.login("a@x.com", PASSWORD)
        assert result.token
        assert result.principal.is_verified
        assert store.find_by_id(p.principal_type, p.id).verification_state is VerificationState.verified


class TestResolveSession:
    def test_resolves_principal(self, authenticator, make_principal) -> None:
        p = make_principal("a@x.com", PrincipalType.vendor)
        token = authenticator.login("a@x.com", PASSWORD).token
        resolved = authenticator.resolve_session(token)
        assert resolved.id == p.id
        assert resolved.principal_type is PrincipalType.vendor

    def test_missing_token(self, authenticator) -> None:
        with pytest.raises(InvalidOrExpiredToken):
            authenticator.resolve_session(None)

    def test_expired_token(self, authenticator, signer, make_principal) -> None:
        p = make_principal("a@x.com")
        past = datetime.now(timezone.utc) - timedelta(days=2)
        token = signer.sign({"id": p.id, "name": p.name, "role": p.role}, now=past)
        with pytest.raises(InvalidOrExpiredToken):
            authenticator.resolve_session(token)

    def test_principal_gone(self, authenticator, signer) -> None:
        token = signer.sign({"id": "0" * 32, "name": "Ghost", "role": "Buyer"})
        with pytest.raises(InvalidOrExpiredToken):
            authenticator.resolve_session(token)
