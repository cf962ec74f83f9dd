"""Data access layer for RLS Guard Dog on top of the hosted Supabase project.

Every query is issued through a client carrying the signed-in user's access
token, so the row-level security policies shipped in ``supabase/migrations``
decide which rows come back. Nothing in this module filters rows for
authorization purposes on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from flask import g, has_app_context
from flask_login import UserMixin
from supabase import AuthError, Client, PostgrestAPIError, create_client

from config.settings import get_settings

logger = logging.getLogger(__name__)

_anon_client: Optional[Client] = None
_service_client: Optional[Client] = None

ROLES = ("student", "teacher")
PROGRESS_STATUSES = ("pending", "in_progress", "completed")

_WITH_STUDENT = "*, student:student_id(*)"
_CLASSROOM_FIELDS = {"class_name", "grade", "student_id"}
_PROGRESS_FIELDS = {"topic", "status", "score", "student_id"}

# Postgres "insufficient_privilege", raised by PostgREST when a policy rejects a write.
_RLS_VIOLATION_CODE = "42501"


class SupabaseConfigurationError(RuntimeError):
    """Raised when the Supabase credentials are missing."""


class SupabaseOperationError(RuntimeError):
    """Raised when a request against the Supabase backend fails."""


class AuthenticationError(SupabaseOperationError):
    """Raised when credentials or tokens are rejected by the auth service."""


class PermissionDeniedError(SupabaseOperationError):
    """Raised when a row-level security policy rejects a write."""


class RecordNotFoundError(SupabaseOperationError):
    """Raised when an update or delete matches no visible row."""


class User(UserMixin):
    """Flask-Login compatible wrapper around a ``profiles`` row."""

    def __init__(
        self,
        *,
        id: str,
        email: str,
        role: str,
        first_name: str = "",
        last_name: str = "",
        full_name: Optional[str] = None,
    ) -> None:
        self.id = id
        self.email = email
        self.role = role
        self.first_name = first_name
        self.last_name = last_name
        self.full_name = full_name

    @property
    def name(self) -> str:
        if self.full_name:
            return self.full_name
        return f"{self.first_name} {self.last_name}".strip() or self.email

    @property
    def is_teacher(self) -> bool:
        return self.role == "teacher"

    @classmethod
    def from_profile(cls, profile: dict[str, object]) -> "User":
        return cls(
            id=str(profile["id"]),
            email=str(profile.get("email") or ""),
            role=str(profile.get("role") or "student"),
            first_name=str(profile.get("first_name") or ""),
            last_name=str(profile.get("last_name") or ""),
            full_name=profile.get("full_name") or None,  # type: ignore[arg-type]
        )

    def to_session(self) -> dict[str, object]:
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<User id={self.id} role={self.role} email={self.email!r}>"


@dataclass(slots=True)
class AuthSession:
    user_id: str
    email: str
    access_token: str
    refresh_token: str
    expires_at: Optional[int] = None


def _create_supabase_client(url: str, key: str) -> Client:
    return create_client(url, key)


def _require_credentials(*, service: bool = False) -> tuple[str, str]:
    settings = get_settings()
    url = settings.SUPABASE_URL
    key = settings.SUPABASE_SERVICE_KEY if service else settings.SUPABASE_ANON_KEY
    if not url or not key:
        key_name = "SUPABASE_SERVICE_KEY" if service else "SUPABASE_ANON_KEY"
        raise SupabaseConfigurationError(f"SUPABASE_URL and {key_name} must be set.")
    return url, key


def new_client() -> Client:
    """Return a fresh anonymous client that shares no auth state."""
    url, key = _require_credentials()
    return _create_supabase_client(url, key)


def create_user_client(access_token: str) -> Client:
    """Return a client whose table queries run as the token's user."""
    client = new_client()
    client.postgrest.auth(access_token)
    return client


def bind_access_token(access_token: str) -> Client:
    """Bind a user client to the current application context."""
    client = create_user_client(access_token)
    g.supabase_client = client
    return client


def get_client() -> Client:
    """Return the request's user client, or the anonymous singleton."""
    global _anon_client
    if has_app_context():
        bound = g.get("supabase_client")
        if bound is not None:
            return bound
    if _anon_client is None:
        _anon_client = new_client()
    return _anon_client


def get_service_client() -> Client:
    """Return the service-role client used by admin scripts and diagnostics."""
    global _service_client
    if _service_client is None:
        url, key = _require_credentials(service=True)
        _service_client = _create_supabase_client(url, key)
    return _service_client


def reset_client() -> None:
    """Drop cached clients (used in tests and after configuration changes)."""
    global _anon_client, _service_client
    _anon_client = None
    _service_client = None


def _execute(query, action: str):
    try:
        return query.execute()
    except PostgrestAPIError as exc:
        code = getattr(exc, "code", None)
        message = getattr(exc, "message", None) or str(exc)
        if code == _RLS_VIOLATION_CODE:
            raise PermissionDeniedError(f"Not allowed to {action}.") from exc
        raise SupabaseOperationError(f"Failed to {action}: {message}") from exc


def _rows(response) -> list[dict[str, object]]:
    data = getattr(response, "data", None)
    if not data:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


def _first_or_raise(rows: list[dict[str, object]], message: str) -> dict[str, object]:
    if not rows:
        raise RecordNotFoundError(message)
    return rows[0]


# --------------------------------------------------------------------------- auth


def _session_from_response(response) -> AuthSession:
    session = getattr(response, "session", None)
    user = getattr(response, "user", None)
    if session is None or user is None:
        raise AuthenticationError("The auth service did not return a session.")
    return AuthSession(
        user_id=str(user.id),
        email=user.email or "",
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_at=getattr(session, "expires_at", None),
    )


def sign_in(email: str, password: str) -> AuthSession:
    if not email or not password:
        raise ValueError("Email and password are required.")

    client = new_client()
    try:
        response = client.auth.sign_in_with_password({"email": email, "password": password})
    except AuthError as exc:
        raise AuthenticationError(exc.message or "Invalid login credentials.") from exc
    return _session_from_response(response)


def _validate_role(role: str) -> str:
    normalized_role = (role or "").strip().lower()
    if normalized_role not in ROLES:
        raise ValueError("Role must be 'student' or 'teacher'.")
    return normalized_role


def _user_metadata(first_name: str, last_name: str, role: str) -> dict[str, str]:
    return {
        "first_name": first_name,
        "last_name": last_name,
        "role": role,
    }


def sign_up(
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role: str,
) -> str:
    """Register an account; the profile row is created by a database trigger."""
    normalized_role = _validate_role(role)

    client = new_client()
    try:
        response = client.auth.sign_up(
            {
                "email": email,
                "password": password,
                "options": {"data": _user_metadata(first_name, last_name, normalized_role)},
            }
        )
    except AuthError as exc:
        raise ValueError(exc.message or "Failed to sign up.") from exc

    user = getattr(response, "user", None)
    if user is None:
        raise SupabaseOperationError("The auth service did not return the new user.")
    logger.info("Registered %s account %s", normalized_role, user.id)
    return str(user.id)


def refresh_session(refresh_token: str) -> AuthSession:
    client = new_client()
    try:
        response = client.auth.refresh_session(refresh_token)
    except AuthError as exc:
        raise AuthenticationError(exc.message or "Session expired.") from exc
    return _session_from_response(response)


def sign_out(access_token: str) -> None:
    """Revoke the refresh tokens behind an access token."""
    if not access_token:
        return
    client = new_client()
    try:
        client.auth.admin.sign_out(access_token)
    except AuthError as exc:
        logger.warning("Sign-out request was rejected: %s", exc.message)


def create_auth_user(
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role: str,
    client: Optional[Client] = None,
) -> str:
    """Create a confirmed account with the service-role key."""
    normalized_role = _validate_role(role)
    admin_client = client or get_service_client()
    try:
        response = admin_client.auth.admin.create_user(
            {
                "email": email,
                "password": password,
                "email_confirm": True,
                "user_metadata": _user_metadata(first_name, last_name, normalized_role),
            }
        )
    except AuthError as exc:
        raise ValueError(exc.message or "Failed to create user.") from exc
    return str(response.user.id)


def delete_auth_user(user_id: str, *, client: Optional[Client] = None) -> None:
    admin_client = client or get_service_client()
    try:
        admin_client.auth.admin.delete_user(user_id)
    except AuthError as exc:
        raise SupabaseOperationError(f"Failed to delete user {user_id}: {exc.message}") from exc


# ----------------------------------------------------------------------- profiles


def get_profile(user_id: str, *, client: Optional[Client] = None) -> Optional[dict[str, object]]:
    query = (client or get_client()).table("profiles").select("*").eq("id", user_id).limit(1)
    rows = _rows(_execute(query, "load profile"))
    return rows[0] if rows else None


def list_students(*, client: Optional[Client] = None) -> list[dict[str, object]]:
    query = (
        (client or get_client())
        .table("profiles")
        .select("*")
        .eq("role", "student")
        .order("last_name")
    )
    return _rows(_execute(query, "list students"))


# --------------------------------------------------------------------- classrooms


def list_classrooms(
    *,
    student_id: Optional[str] = None,
    client: Optional[Client] = None,
) -> list[dict[str, object]]:
    query = (client or get_client()).table("classrooms").select(_WITH_STUDENT)
    if student_id:
        query = query.eq("student_id", student_id)
    query = query.order("class_name")
    return _rows(_execute(query, "list classrooms"))


def get_classroom(classroom_id: str, *, client: Optional[Client] = None) -> Optional[dict[str, object]]:
    query = (client or get_client()).table("classrooms").select("*").eq("id", classroom_id).limit(1)
    rows = _rows(_execute(query, "load classroom"))
    return rows[0] if rows else None


def create_classroom(
    *,
    class_name: str,
    student_id: str,
    grade: Optional[str] = None,
    client: Optional[Client] = None,
) -> dict[str, object]:
    class_name = (class_name or "").strip()
    if not class_name:
        raise ValueError("Class name is required.")
    if not student_id:
        raise ValueError("A student must be selected.")

    payload = {
        "class_name": class_name,
        "grade": (grade or "").strip() or None,
        "student_id": student_id,
    }
    query = (client or get_client()).table("classrooms").insert(payload)
    rows = _rows(_execute(query, "create classroom"))
    if not rows:
        raise SupabaseOperationError("Classroom insert returned no row.")
    return rows[0]


def _clean_updates(updates: dict[str, object], allowed: set[str]) -> dict[str, object]:
    cleaned = {key: value for key, value in updates.items() if key in allowed}
    if not cleaned:
        raise ValueError(f"Nothing to update. Allowed fields: {', '.join(sorted(allowed))}.")
    return cleaned


def update_classroom(
    classroom_id: str,
    updates: dict[str, object],
    *,
    client: Optional[Client] = None,
) -> dict[str, object]:
    cleaned = _clean_updates(updates, _CLASSROOM_FIELDS)
    if "class_name" in cleaned and not str(cleaned["class_name"] or "").strip():
        raise ValueError("Class name cannot be empty.")
    query = (client or get_client()).table("classrooms").update(cleaned).eq("id", classroom_id)
    rows = _rows(_execute(query, "update classroom"))
    return _first_or_raise(rows, "Classroom not found.")


def delete_classroom(classroom_id: str, *, client: Optional[Client] = None) -> dict[str, object]:
    query = (client or get_client()).table("classrooms").delete().eq("id", classroom_id)
    rows = _rows(_execute(query, "delete classroom"))
    return _first_or_raise(rows, "Classroom not found.")


# ----------------------------------------------------------------------- progress


def list_progress(
    *,
    student_id: Optional[str] = None,
    client: Optional[Client] = None,
) -> list[dict[str, object]]:
    query = (client or get_client()).table("progress").select(_WITH_STUDENT)
    if student_id:
        query = query.eq("student_id", student_id)
    query = query.order("updated_at", desc=True)
    return _rows(_execute(query, "list progress"))


def get_progress(progress_id: str, *, client: Optional[Client] = None) -> Optional[dict[str, object]]:
    query = (client or get_client()).table("progress").select("*").eq("id", progress_id).limit(1)
    rows = _rows(_execute(query, "load progress record"))
    return rows[0] if rows else None


def _validate_status(status: object) -> str:
    normalized = str(status or "").strip().lower()
    if normalized not in PROGRESS_STATUSES:
        raise ValueError("Status must be 'pending', 'in_progress', or 'completed'.")
    return normalized


def create_progress(
    *,
    student_id: str,
    topic: str,
    status: str = "pending",
    score: Optional[float] = None,
    client: Optional[Client] = None,
) -> dict[str, object]:
    topic = (topic or "").strip()
    if not topic:
        raise ValueError("Topic is required.")
    if not student_id:
        raise ValueError("A student must be selected.")

    payload: dict[str, object] = {
        "student_id": student_id,
        "topic": topic,
        "status": _validate_status(status),
    }
    if score is not None:
        payload["score"] = score
    query = (client or get_client()).table("progress").insert(payload)
    rows = _rows(_execute(query, "create progress record"))
    if not rows:
        raise SupabaseOperationError("Progress insert returned no row.")
    return rows[0]


def update_progress(
    progress_id: str,
    updates: dict[str, object],
    *,
    client: Optional[Client] = None,
) -> dict[str, object]:
    cleaned = _clean_updates(updates, _PROGRESS_FIELDS)
    if "status" in cleaned:
        cleaned["status"] = _validate_status(cleaned["status"])
    if "topic" in cleaned and not str(cleaned["topic"] or "").strip():
        raise ValueError("Topic cannot be empty.")
    query = (client or get_client()).table("progress").update(cleaned).eq("id", progress_id)
    rows = _rows(_execute(query, "update progress record"))
    return _first_or_raise(rows, "Progress record not found.")


def delete_progress(progress_id: str, *, client: Optional[Client] = None) -> dict[str, object]:
    query = (client or get_client()).table("progress").delete().eq("id", progress_id)
    rows = _rows(_execute(query, "delete progress record"))
    return _first_or_raise(rows, "Progress record not found.")
