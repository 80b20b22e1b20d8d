from datetime import timedelta

import pytest

import database
import identity
import settings
from errors import AuthError


def test_sign_up_creates_account_and_profile():
    profile, verification = identity.sign_up("Ana@Example.com", "secret123", "Ana", phone="555-0100")

    assert profile["email"] == "ana@example.com"
    assert profile["role"] == "customer"
    assert profile["status"] == "active"
    assert profile["phone"] == "555-0100"
    account = database.get_document(identity.ACCOUNTS, profile["id"])
    assert account["email_verified"] is False
    assert account["password_hash"] != "secret123"
    assert verification


def test_duplicate_email_is_refused():
    identity.sign_up("ana@example.com", "secret123", "Ana")
    with pytest.raises(AuthError) as exc:
        identity.sign_up("ANA@example.com", "other123", "Ana 2")
    assert exc.value.code == "auth/email-already-in-use"


def test_sign_in_opens_session():
    identity.sign_up("ana@example.com", "secret123", "Ana")

    result = identity.sign_in("ana@example.com", "secret123")

    claims, profile = identity.authenticate(result["token"])
    assert profile["email"] == "ana@example.com"
    assert claims["sid"] == result["session_id"]


def test_wrong_password_and_unknown_user():
    identity.sign_up("ana@example.com", "secret123", "Ana")
    for email, password in [("ana@example.com", "nope"), ("bob@example.com", "secret123")]:
        with pytest.raises(AuthError) as exc:
            identity.sign_in(email, password)
        assert exc.value.code == "auth/invalid-credential"


def test_repeated_failures_lock_the_account(monkeypatch):
    monkeypatch.setattr(settings, "MAX_LOGIN_ATTEMPTS", 3)
    identity.sign_up("ana@example.com", "secret123", "Ana")
    for _ in range(3):
        with pytest.raises(AuthError):
            identity.sign_in("ana@example.com", "wrong")

    with pytest.raises(AuthError) as exc:
        identity.sign_in("ana@example.com", "secret123")
    assert exc.value.code == "auth/too-many-requests"


def test_lockout_expires(monkeypatch):
    monkeypatch.setattr(settings, "MAX_LOGIN_ATTEMPTS", 1)
    monkeypatch.setattr(settings, "LOGIN_LOCKOUT_MIN", 0)
    identity.sign_up("ana@example.com", "secret123", "Ana")
    with pytest.raises(AuthError):
        identity.sign_in("ana@example.com", "wrong")

    assert identity.sign_in("ana@example.com", "secret123")["token"]


def test_unverified_email_gate(monkeypatch):
    monkeypatch.setattr(settings, "REQUIRE_EMAIL_VERIFICATION", True)
    profile, verification = identity.sign_up("ana@example.com", "secret123", "Ana")
    with pytest.raises(AuthError) as exc:
        identity.sign_in("ana@example.com", "secret123")
    assert exc.value.code == "auth/email-not-verified"

    identity.verify_email(verification)

    assert identity.sign_in("ana@example.com", "secret123")["user"]["id"] == profile["id"]


def test_suspended_user_cannot_sign_in(make_user):
    user = make_user("ana@example.com")
    session = identity.sign_in("ana@example.com", "secret123")
    identity.set_role_and_status(user["id"], status="suspended")

    with pytest.raises(AuthError) as exc:
        identity.sign_in("ana@example.com", "secret123")
    assert exc.value.code == "auth/user-disabled"
    with pytest.raises(AuthError):
        identity.authenticate(session["token"])


def test_sign_out_invalidates_token(make_user):
    make_user("ana@example.com")
    session = identity.sign_in("ana@example.com", "secret123")

    identity.sign_out(session["session_id"])
    identity.sign_out(session["session_id"])

    with pytest.raises(AuthError) as exc:
        identity.authenticate(session["token"])
    assert exc.value.code == "auth/invalid-token"


def test_purpose_tokens_are_not_sessions():
    _, verification = identity.sign_up("ana@example.com", "secret123", "Ana")
    with pytest.raises(AuthError):
        identity.authenticate(verification)
    with pytest.raises(AuthError):
        identity.authenticate("not-a-jwt")


def test_password_reset_flow(make_user):
    make_user("ana@example.com")
    assert identity.send_password_reset("nobody@example.com") is None
    token = identity.send_password_reset("ana@example.com")

    identity.reset_password(token, "newpass456")

    assert identity.sign_in("ana@example.com", "newpass456")["token"]
    with pytest.raises(AuthError):
        identity.sign_in("ana@example.com", "secret123")
    with pytest.raises(AuthError):
        identity.reset_password(token, "again789")


def test_resend_verification(make_user):
    user = make_user("ana@example.com")
    token = identity.resend_verification(user["id"])
    identity.verify_email(token)

    with pytest.raises(AuthError) as exc:
        identity.resend_verification(user["id"])
    assert exc.value.code == "auth/already-verified"


def test_federated_sign_in_upserts_once():
    first = identity.sign_in_federated("ana@gmail.com", "Ana", "google", "g-1")
    second = identity.sign_in_federated("ana@gmail.com", "Ana", "google", "g-1")

    assert first["user"]["id"] == second["user"]["id"]
    assert first["session_id"] != second["session_id"]
    assert len(database.get_documents(identity.ACCOUNTS, {"email": "ana@gmail.com"})) == 1


def test_update_profile_ignores_protected_fields(make_user):
    user = make_user("ana@example.com")

    profile = identity.update_profile(user["id"], {"phone": "555-0199", "role": "admin", "status": "suspended"})

    assert profile["phone"] == "555-0199"
    assert profile["role"] == "customer"
    assert profile["status"] == "active"


def test_profile_subscription(make_user):
    user = make_user("ana@example.com")
    seen = []
    identity.subscribe_profile(user["id"], seen.append)

    identity.set_role_and_status(user["id"], role="delivery_rider")

    assert [p["role"] for p in seen] == ["customer", "delivery_rider"]


def test_delete_user_removes_everything(make_user):
    user = make_user("ana@example.com")
    identity.sign_in("ana@example.com", "secret123")

    deleted = identity.delete_user(user["id"])

    assert deleted["email"] == "ana@example.com"
    assert identity.get_profile(user["id"]) is None
    assert database.get_document(identity.ACCOUNTS, user["id"]) is None
    assert database.get_documents(identity.SESSIONS, {"user_id": user["id"]}) == []


def test_ensure_admin_is_idempotent(make_user):
    admin = identity.ensure_admin("root@example.com", "rootpass1")
    again = identity.ensure_admin("root@example.com", "rootpass1")

    assert admin["id"] == again["id"]
    assert again["role"] == "admin"
    make_user("ana@example.com")
    assert identity.ensure_admin("ana@example.com", "whatever")["role"] == "admin"


def test_concurrent_sign_up_for_one_email_keeps_one_account(monkeypatch):
    real_lookup = identity._account_by_email

    def racing_lookup(email):
        # another sign-up lands between the existence check and the insert
        found = real_lookup(email)
        database.create_document(identity.ACCOUNTS, {"email": email.lower(), "provider": "password"})
        return found

    monkeypatch.setattr(identity, "_account_by_email", racing_lookup)
    with pytest.raises(AuthError) as exc:
        identity.sign_up("ana@example.com", "secret123", "Ana")

    assert exc.value.code == "auth/email-already-in-use"
    assert len(database.get_documents(identity.ACCOUNTS, {"email": "ana@example.com"})) == 1
    assert database.get_documents(identity.USERS, {"email": "ana@example.com"}) == []


def test_expired_session_is_rejected(make_user):
    make_user("ana@example.com")
    result = identity.sign_in("ana@example.com", "secret123")
    assert identity.session_user(result["session_id"])["email"] == "ana@example.com"

    database.update_document(identity.SESSIONS, result["session_id"], {
        "expires_at": database.now() - timedelta(seconds=1),
    })

    assert identity.session_user(result["session_id"]) is None
    with pytest.raises(AuthError) as exc:
        identity.authenticate(result["token"])
    assert exc.value.code == "auth/invalid-token"


def test_session_user_is_none_for_suspended_or_closed(make_user):
    user = make_user("ana@example.com")
    result = identity.sign_in("ana@example.com", "secret123")

    identity.set_role_and_status(user["id"], status="suspended")
    assert identity.session_user(result["session_id"]) is None

    identity.set_role_and_status(user["id"], status="active")
    identity.sign_out(result["session_id"])
    assert identity.session_user(result["session_id"]) is None
