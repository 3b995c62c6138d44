"""
Identity: accounts, sessions and onboarding state.

A session is an opaque token stored in the ``sessions`` collection; the HTTP
layer carries it in a cookie. ``SessionContext`` is the per-session view of
the signed-in user that request handlers work with.
"""
import logging
import secrets
from typing import Optional, Tuple

import bcrypt
from pydantic import ValidationError
from pymongo.errors import PyMongoError

import database
from schemas import User

logger = logging.getLogger(__name__)

PROFILE_SETUP_PATH = "/profile-setup"
DASHBOARD_PATH = "/dashboard"


class IdentityError(Exception):
    """Validation failure surfaced next to the form field."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def _public(user: Optional[dict]) -> Optional[dict]:
    if user:
        user.pop("passwordHash", None)
    return user


def _open_session(uid: str) -> str:
    token = secrets.token_urlsafe(32)
    database.create_document("sessions", {"token": token, "userId": uid, "createdAt": database.now_iso()})
    return token


def _find_user_by_email(email: str) -> Optional[dict]:
    matches = database.get_documents("users", {"email": email.lower()}, limit=1)
    return matches[0] if matches else None


def sign_up(email: str, password: str, confirm_password: str, first_name: str, last_name: str) -> Tuple[dict, str]:
    if password != confirm_password:
        raise IdentityError("Passwords do not match")
    try:
        user = User(email=email.lower(), firstName=first_name, lastName=last_name, createdAt=database.now_iso())
    except ValidationError:
        raise IdentityError("Invalid email address")
    if _find_user_by_email(user.email):
        raise IdentityError("Email already registered.", status_code=409)

    data = user.model_dump(exclude={"id", "username", "university", "phoneNumber"})
    data["profileComplete"] = False
    data["passwordHash"] = hash_password(password)
    created = database.create_document("users", data)
    logger.info("User %s signed up", created["id"])
    return _public(created), _open_session(created["id"])


def sign_in(email: str, password: str) -> Optional[str]:
    user = _find_user_by_email(email)
    if not user or not verify_password(password, user.get("passwordHash")):
        logger.info("Failed sign-in for %s", email)
        return None
    return _open_session(user["id"])


def sign_in_federated(email: str, display_name: Optional[str]) -> str:
    """Sign in a principal already verified by an external provider."""
    user = _find_user_by_email(email)
    if user is None:
        parts = (display_name or "").split(" ")
        first_name = parts[0] if parts else ""
        last_name = parts[1] if len(parts) > 1 else ""
        user = database.create_document("users", {
            "email": email.lower(),
            "firstName": first_name,
            "lastName": last_name,
            "createdAt": database.now_iso(),
            "profileComplete": False,
        })
        logger.info("Created user %s from federated sign-in", user["id"])
    return _open_session(user["id"])


def sign_out(token: Optional[str]):
    if not token:
        return
    try:
        database.collection("sessions").delete_one({"token": token})
    except PyMongoError as e:
        logger.error("Error in sign_out: %s", e)
        raise


def get_user(uid: str) -> Optional[dict]:
    return _public(database.get_document("users", uid))


def user_for_token(token: Optional[str]) -> Optional[dict]:
    if not token:
        return None
    try:
        session = database.collection("sessions").find_one({"token": token})
        if not session:
            return None
        return get_user(session["userId"])
    except PyMongoError as e:
        logger.error("Error resolving session: %s", e)
        return None


def is_profile_complete(uid: str) -> bool:
    try:
        user = database.get_document("users", uid)
    except PyMongoError as e:
        logger.error("Error checking profile completion: %s", e)
        return False
    return bool(user and user.get("profileComplete"))


def is_username_available(username: str) -> bool:
    return not database.get_documents("users", {"username": username}, limit=1)


def update_profile(uid: str, username: str, university: str, phone_number: str) -> bool:
    if not is_username_available(username):
        raise IdentityError("This username is already taken", status_code=409)
    return database.update_document("users", uid, {
        "username": username,
        "university": university,
        "phoneNumber": phone_number,
        "profileComplete": True,
    })


class SessionContext:
    """The signed-in user of one session, or nobody."""

    def __init__(self, token: Optional[str] = None):
        self.token = token
        self.user: Optional[dict] = None
        self.loading = True

    @classmethod
    def open(cls, token: Optional[str]) -> "SessionContext":
        ctx = cls(token)
        ctx.apply(user_for_token(token))
        return ctx

    def apply(self, user: Optional[dict]):
        self.user = user
        self.loading = False

    @property
    def uid(self) -> Optional[str]:
        return self.user["id"] if self.user else None

    @property
    def profile_complete(self) -> bool:
        return bool(self.user and self.user.get("profileComplete"))

    def close(self):
        sign_out(self.token)
        self.token = None
        self.apply(None)

    def to_dict(self) -> dict:
        return {"user": self.user, "loading": self.loading, "profileComplete": self.profile_complete}


def onboarding_redirect(session: SessionContext, path: str) -> Optional[str]:
    if session.user is None:
        return None
    if not session.profile_complete and path != PROFILE_SETUP_PATH:
        return PROFILE_SETUP_PATH
    if session.profile_complete and path == PROFILE_SETUP_PATH:
        return DASHBOARD_PATH
    return None
