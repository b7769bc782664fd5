"""Login sessions for the Waymark API.

Sessions live in memory and carry what the request handlers need about the
signed-in user (id, email, admin flag), so routes don't go back to the
users table on every call. They are lost when the server restarts.
"""

import os
import re
import secrets
import time
from dataclasses import dataclass
from http.cookies import CookieError, SimpleCookie
from typing import Callable, Dict, Optional

import database as db
from agents.common.errors import ValidationError

SESSION_COOKIE_NAME = "waymark_session"
SESSION_TTL = 24 * 60 * 60

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class Session:
    token: str
    user_id: int
    username: str
    email: Optional[str]
    is_admin: bool
    expires_at: float

    @classmethod
    def for_user(cls, user: dict, token: str, expires_at: float) -> "Session":
        return cls(
            token=token,
            user_id=user["id"],
            username=user["username"],
            email=user.get("email"),
            is_admin=bool(user.get("is_admin")),
            expires_at=expires_at,
        )

    def user(self) -> dict:
        """The user record handed to billing and profile handlers."""
        return {"id": self.user_id, "username": self.username,
                "email": self.email, "is_admin": self.is_admin}


class SessionStore:
    """Token -> Session map with expiry. Expired entries are swept on every login."""

    def __init__(self, ttl: float = SESSION_TTL, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.clock = clock
        self._sessions = {}  # type: Dict[str, Session]

    def __len__(self):
        return len(self._sessions)

    def open(self, user: dict) -> Session:
        self.purge_expired()
        session = Session.for_user(user, secrets.token_urlsafe(32), self.clock() + self.ttl)
        self._sessions[session.token] = session
        return session

    def get(self, token: Optional[str]) -> Optional[Session]:
        session = self._sessions.get(token) if token else None
        if session and session.expires_at <= self.clock():
            del self._sessions[token]
            return None
        return session

    def close(self, token: Optional[str]) -> Optional[Session]:
        return self._sessions.pop(token, None) if token else None

    def purge_expired(self) -> int:
        now = self.clock()
        expired = [t for t, s in self._sessions.items() if s.expires_at <= now]
        for token in expired:
            del self._sessions[token]
        if expired:
            print(f"[AUTH] Dropped {len(expired)} expired session(s)")
        return len(expired)


sessions = SessionStore()


def login(username: str, password: str, store: SessionStore = sessions) -> Optional[Session]:
    user = db.authenticate_user(username, password)
    if not user:
        return None
    print(f"[AUTH] Login: {username}")
    return store.open(user)


def register_user(username: str, email: str, password: str, full_name: Optional[str] = None) -> int:
    """Create an account and its free-tier profile. Raises ValidationError on bad input."""
    if len(username) < 3:
        raise ValidationError("Username must be at least 3 characters")
    if len(email) > 255 or not EMAIL_RE.match(email):
        raise ValidationError("Invalid email address")
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if len(password) > 128:
        raise ValidationError("Password must be less than 128 characters")
    if full_name and len(full_name) > 100:
        raise ValidationError("Full name must be less than 100 characters")

    if db.username_exists(username):
        raise ValidationError("Username already taken")
    if db.email_exists(email):
        raise ValidationError("Email already registered")

    user_id = db.create_user(username, email, password)
    if not user_id:
        raise ValidationError("Failed to create user")
    if full_name:
        db.update_profile(user_id, {"full_name": full_name})
    print(f"[AUTH] Registered: {username}")
    return user_id


def token_from_cookies(cookie_header: Optional[str]) -> Optional[str]:
    cookies = SimpleCookie()
    try:
        cookies.load(cookie_header or "")
    except CookieError:
        return None
    morsel = cookies.get(SESSION_COOKIE_NAME)
    return morsel.value if morsel else None


def session_cookie(session: Optional[Session], secure: bool = False) -> str:
    """Set-Cookie value for a session; ``None`` clears the cookie."""
    token, max_age = (session.token, SESSION_TTL) if session else ("", 0)
    cookie = f"{SESSION_COOKIE_NAME}={token}; Path=/; HttpOnly; SameSite=Lax; Max-Age={max_age}"
    if secure:
        cookie += "; Secure"
    return cookie


def is_auth_enabled() -> bool:
    return os.environ.get("AUTH_DISABLED", "").lower() != "true"


def local_session() -> Session:
    """Stand-in session for AUTH_DISABLED mode: everything runs as the default admin."""
    username = os.environ.get("AUTH_USERNAME", "admin")
    user = db.get_user_by_username(username) or {"id": 1, "username": username, "is_admin": True}
    return Session.for_user(user, token="", expires_at=float("inf"))


def ensure_default_user():
    """Create the default admin account on first start."""
    username = os.environ.get("AUTH_USERNAME", "admin")
    if db.username_exists(username):
        return
    password = os.environ.get("AUTH_PASSWORD", "waymark-admin")
    email = os.environ.get("AUTH_EMAIL", "admin@example.com")
    if db.create_user(username, email, password, is_admin=True):
        print(f"[AUTH] Created default admin user: {username}")
    else:
        print("[AUTH] Failed to create default user")
