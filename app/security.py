"""Session, credential and role helpers for RLS Guard Dog.

Passwords are verified by the hosted auth service; this module only applies
the sign-up policy locally and keeps the service's tokens in the Flask
session cookie.
"""

from __future__ import annotations

from typing import Optional

from flask import session

from config.settings import get_settings
from models import AuthSession, User

ACCESS_TOKEN_KEY = "sb_access_token"
REFRESH_TOKEN_KEY = "sb_refresh_token"
EXPIRES_AT_KEY = "sb_expires_at"
PROFILE_KEY = "profile"

_SESSION_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, EXPIRES_AT_KEY, PROFILE_KEY)

DASHBOARD_ENDPOINTS = {
    "teacher": "core.teacher_dashboard",
    "student": "core.student_dashboard",
}


def validate_new_password(password: str, confirm_password: Optional[str] = None) -> Optional[str]:
    """Return an error message when the password breaks the sign-up policy."""
    if not password:
        return "Password is required."
    min_length = get_settings().MIN_PASSWORD_LENGTH
    if len(password) < min_length:
        return f"Password must be at least {min_length} characters long."
    if confirm_password is not None and confirm_password != password:
        return "Passwords do not match."
    return None


def dashboard_endpoint_for(role: Optional[str]) -> str:
    """Return the dashboard endpoint for a role (students by default)."""
    return DASHBOARD_ENDPOINTS.get(role or "", DASHBOARD_ENDPOINTS["student"])


def store_auth_session(auth_session: AuthSession, user: User) -> None:
    """Persist tokens and the profile snapshot used by the user loader."""
    session[ACCESS_TOKEN_KEY] = auth_session.access_token
    session[REFRESH_TOKEN_KEY] = auth_session.refresh_token
    session[EXPIRES_AT_KEY] = auth_session.expires_at
    session[PROFILE_KEY] = user.to_session()


def update_tokens(auth_session: AuthSession) -> None:
    session[ACCESS_TOKEN_KEY] = auth_session.access_token
    session[REFRESH_TOKEN_KEY] = auth_session.refresh_token
    session[EXPIRES_AT_KEY] = auth_session.expires_at


def clear_auth_session() -> None:
    for key in _SESSION_KEYS:
        session.pop(key, None)


def current_access_token() -> Optional[str]:
    return session.get(ACCESS_TOKEN_KEY)


def session_user(user_id: str) -> Optional[User]:
    """Rebuild the signed-in user from the session snapshot."""
    profile = session.get(PROFILE_KEY)
    if not isinstance(profile, dict) or str(profile.get("id")) != str(user_id):
        return None
    if not session.get(ACCESS_TOKEN_KEY):
        return None
    return User.from_profile(profile)
