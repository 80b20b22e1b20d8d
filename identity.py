"""
Identity service

Auth accounts (``accounts``) hold credentials, the public profile lives in
``users`` under the same id, and every sign-in opens a row in ``sessions``.
JWTs carry the user id (``sub``) and the session id (``sid``); a token stops
working as soon as its session is closed.
"""

import logging
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

import database
import settings
from errors import AuthError, DocumentNotFound
from schemas import UserProfile

logger = logging.getLogger(__name__)

ACCOUNTS = "accounts"
SESSIONS = "sessions"
USERS = "users"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# fields a user may not change on their own profile
PROTECTED_PROFILE_FIELDS = ("role", "status", "email", "has_applied")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_jwt(payload: Dict[str, Any], expires_min: Optional[int] = None) -> str:
    if expires_min is None:
        expires_min = settings.TOKEN_EXPIRE_MIN
    now = database.now()
    to_encode = {"exp": now + timedelta(minutes=expires_min), "iat": now, **payload}
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_jwt(token: str, purpose: Optional[str] = None) -> Dict[str, Any]:
    try:
        data = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError as e:
        raise AuthError("auth/invalid-token", f"Invalid token: {e}")
    if data.get("type") != purpose:
        raise AuthError("auth/invalid-token", "Invalid token")
    return data


def _account_by_email(email: str) -> Optional[Dict[str, Any]]:
    accounts = database.get_documents(ACCOUNTS, {"email": email.lower()}, limit=1)
    return accounts[0] if accounts else None


def _new_profile(uid: str, email: str, name: str, role: str = "customer", phone: str = "", address: str = "", avatar_url=None):
    profile = UserProfile(
        email=email,
        name=name,
        role=role,
        phone=phone or "",
        address=address or "",
        avatar_url=avatar_url,
    )
    return database.set_document(USERS, uid, profile)


def _create_account(uid: str, account: Dict[str, Any]) -> None:
    # the unique accounts.email index settles concurrent sign-ups for one email
    try:
        database.create_document(ACCOUNTS, account, doc_id=uid)
    except DuplicateKeyError:
        raise AuthError("auth/email-already-in-use", "Email already registered") from None


def sign_up(
    email: str,
    password: str,
    name: str,
    role: str = "customer",
    phone: str = "",
    address: str = "",
) -> Tuple[Dict[str, Any], str]:
    """Create the auth account and its profile. Returns (profile, verification token)."""
    email = email.lower()
    if _account_by_email(email) is not None:
        raise AuthError("auth/email-already-in-use", "Email already registered")
    uid = uuid.uuid4().hex
    _create_account(uid, {
        "email": email,
        "password_hash": hash_password(password),
        "email_verified": False,
        "provider": "password",
        "failed_attempts": 0,
        "last_failed_at": None,
        "reset_token": None,
    })
    try:
        profile = _new_profile(uid, email, name, role, phone, address)
    except Exception:
        logger.exception("Account %s created but profile write failed", uid)
        raise
    logger.info("Registered %s as %s", email, role)
    return profile, create_jwt({"sub": uid, "type": "verify"}, settings.VERIFY_TOKEN_EXPIRE_MIN)


def _open_session(uid: str, profile: Dict[str, Any], provider: str) -> Dict[str, Any]:
    sid = uuid.uuid4().hex
    database.set_document(SESSIONS, sid, {
        "user_id": uid,
        "provider": provider,
        "expires_at": database.now() + timedelta(minutes=settings.TOKEN_EXPIRE_MIN),
    })
    token = create_jwt({"sub": uid, "sid": sid, "email": profile.get("email"), "role": profile.get("role")})
    return {"token": token, "session_id": sid, "user": profile}


def _locked_out(account: Dict[str, Any]) -> bool:
    if account.get("failed_attempts", 0) < settings.MAX_LOGIN_ATTEMPTS:
        return False
    last = database.to_datetime(account.get("last_failed_at"))
    return last is not None and database.now() - last < timedelta(minutes=settings.LOGIN_LOCKOUT_MIN)


def sign_in(email: str, password: str) -> Dict[str, Any]:
    account = _account_by_email(email)
    if account is None:
        raise AuthError("auth/invalid-credential", "Invalid email or password")
    if _locked_out(account):
        raise AuthError("auth/too-many-requests", "Too many failed attempts, try again later")
    if not account.get("password_hash") or not verify_password(password, account["password_hash"]):
        attempts = account.get("failed_attempts", 0)
        if not _locked_out(account) and attempts >= settings.MAX_LOGIN_ATTEMPTS:
            attempts = 0
        database.update_document(ACCOUNTS, account["id"], {
            "failed_attempts": attempts + 1,
            "last_failed_at": database.now(),
        })
        raise AuthError("auth/invalid-credential", "Invalid email or password")
    if settings.REQUIRE_EMAIL_VERIFICATION and not account.get("email_verified"):
        raise AuthError("auth/email-not-verified", "Please verify your email before signing in")

    profile = database.get_document(USERS, account["id"])
    if profile is None:
        raise AuthError("auth/user-not-found", "User data not found")
    if profile.get("status") == "suspended":
        raise AuthError("auth/user-disabled", "This account has been suspended")
    if account.get("failed_attempts"):
        database.update_document(ACCOUNTS, account["id"], {"failed_attempts": 0, "last_failed_at": None})
    return _open_session(account["id"], profile, "password")


def sign_in_federated(email: str, name: str, provider: str, provider_id: Optional[str], avatar_url: Optional[str] = None) -> Dict[str, Any]:
    """Upsert account and profile for a federated login, then open a session."""
    email = email.lower()
    account = _account_by_email(email)
    if account is None:
        uid = uuid.uuid4().hex
        _create_account(uid, {
            "email": email,
            "password_hash": None,
            "email_verified": True,
            "provider": provider,
            "provider_id": provider_id,
            "failed_attempts": 0,
        })
        profile = _new_profile(uid, email, name or email, avatar_url=avatar_url)
        logger.info("Registered %s via %s", email, provider)
    else:
        uid = account["id"]
        profile = database.get_document(USERS, uid) or _new_profile(uid, email, name or email, avatar_url=avatar_url)
    if profile.get("status") == "suspended":
        raise AuthError("auth/user-disabled", "This account has been suspended")
    return _open_session(uid, profile, provider)


def sign_out(session_id: str) -> None:
    try:
        database.delete_document(SESSIONS, session_id)
    except DocumentNotFound:
        logger.info("Session %s already closed", session_id)


def _session_open(session: Optional[Dict[str, Any]]) -> bool:
    if session is None:
        return False
    expires_at = database.to_datetime(session.get("expires_at"))
    return expires_at is None or expires_at > database.now()


def session_user(session_id: str) -> Optional[Dict[str, Any]]:
    """Profile behind a live session, None once it is closed, expired or suspended."""
    session = database.get_document(SESSIONS, session_id)
    if not _session_open(session):
        return None
    profile = database.get_document(USERS, session["user_id"])
    if profile is None or profile.get("status") == "suspended":
        return None
    return profile


def authenticate(token: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """Resolve a bearer token into (claims, profile)."""
    claims = decode_jwt(token)
    sid = claims.get("sid")
    if not sid or not _session_open(database.get_document(SESSIONS, sid)):
        raise AuthError("auth/invalid-token", "Session expired")
    profile = database.get_document(USERS, claims.get("sub", ""))
    if profile is None:
        raise AuthError("auth/user-not-found", "User not found")
    if profile.get("status") == "suspended":
        raise AuthError("auth/user-disabled", "This account has been suspended")
    return claims, profile


def send_password_reset(email: str) -> Optional[str]:
    """Issue a reset token. Unknown emails get None so callers can't enumerate users."""
    account = _account_by_email(email)
    if account is None:
        return None
    token = create_jwt({"sub": account["id"], "type": "reset"}, settings.RESET_TOKEN_EXPIRE_MIN)
    database.update_document(ACCOUNTS, account["id"], {"reset_token": token})
    logger.info("Password reset requested for %s", account["email"])
    return token


def reset_password(token: str, new_password: str) -> None:
    data = decode_jwt(token, "reset")
    account = database.get_document(ACCOUNTS, data.get("sub", ""))
    if account is None or account.get("reset_token") != token:
        raise AuthError("auth/invalid-token", "Invalid token")
    database.update_document(ACCOUNTS, account["id"], {
        "password_hash": hash_password(new_password),
        "reset_token": None,
        "failed_attempts": 0,
        "last_failed_at": None,
    })


def resend_verification(user_id: str) -> str:
    account = database.get_document(ACCOUNTS, user_id)
    if account is None:
        raise DocumentNotFound(ACCOUNTS, user_id)
    if account.get("email_verified"):
        raise AuthError("auth/already-verified", "Email already verified")
    return create_jwt({"sub": user_id, "type": "verify"}, settings.VERIFY_TOKEN_EXPIRE_MIN)


def verify_email(token: str) -> None:
    data = decode_jwt(token, "verify")
    database.update_document(ACCOUNTS, data.get("sub", ""), {"email_verified": True})


# ---------------------- Profiles ----------------------

def get_profile(user_id: str) -> Optional[Dict[str, Any]]:
    return database.get_document(USERS, user_id)


def update_profile(user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    changes = {k: v for k, v in changes.items() if k not in PROTECTED_PROFILE_FIELDS}
    return database.update_document(USERS, user_id, changes)


def subscribe_profile(user_id: str, callback: Callable[[Optional[Dict[str, Any]]], None]):
    return database.subscribe_document(USERS, user_id, callback)


def list_users() -> List[Dict[str, Any]]:
    return database.query_documents(USERS, database.Query(order_by="created_at", descending=True))


def set_role_and_status(user_id: str, role: Optional[str] = None, status: Optional[str] = None) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    if role is not None:
        changes["role"] = role
        changes["role_updated_at"] = database.now()
    if status is not None:
        changes["status"] = status
    profile = database.update_document(USERS, user_id, changes)
    logger.info("User %s updated by admin: %s", user_id, changes)
    return profile


def delete_user(user_id: str) -> Dict[str, Any]:
    """Remove profile, account and open sessions of a user."""
    profile = database.get_document(USERS, user_id)
    if profile is None:
        raise DocumentNotFound(USERS, user_id)
    database.delete_document(USERS, user_id)
    try:
        database.delete_document(ACCOUNTS, user_id)
    except DocumentNotFound:
        logger.warning("User %s had no auth account", user_id)
    for session in database.get_documents(SESSIONS, {"user_id": user_id}):
        database.delete_document(SESSIONS, session["id"])
    logger.info("Deleted user %s", profile.get("email"))
    return profile


def ensure_admin(email: str, password: str, name: str = "Admin") -> Dict[str, Any]:
    """Create the platform admin if missing, or make sure the account is an admin."""
    account = _account_by_email(email)
    if account is None:
        profile, _ = sign_up(email, password, name, role="admin")
        database.update_document(ACCOUNTS, profile["id"], {"email_verified": True})
        return profile
    profile = database.get_document(USERS, account["id"])
    if profile is None:
        return _new_profile(account["id"], email.lower(), name, role="admin")
    if profile.get("role") != "admin" or profile.get("status") != "active":
        profile = set_role_and_status(account["id"], role="admin", status="active")
    return profile
