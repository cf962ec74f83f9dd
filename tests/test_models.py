from unittest.mock import MagicMock

import pytest
from supabase import PostgrestAPIError

import models
from models import (
    PermissionDeniedError,
    RecordNotFoundError,
    SupabaseConfigurationError,
    SupabaseOperationError,
    User,
)


def _api_error(code: str) -> PostgrestAPIError:
    return PostgrestAPIError({"message": "boom", "code": code, "hint": None, "details": None})


def test_execute_maps_policy_violation():
    query = MagicMock()
    query.execute.side_effect = _api_error("42501")

    with pytest.raises(PermissionDeniedError):
        models._execute(query, "create progress record")


def test_execute_wraps_other_errors():
    query = MagicMock()
    query.execute.side_effect = _api_error("23503")

    with pytest.raises(SupabaseOperationError, match="Failed to create classroom: boom"):
        models._execute(query, "create classroom")


def test_missing_credentials_raise_configuration_error(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    models.reset_client()

    with pytest.raises(SupabaseConfigurationError):
        models.get_client()


def test_user_from_profile():
    user = User.from_profile(
        {"id": "u-1", "email": "ada@example.com", "role": "teacher", "first_name": "Ada", "last_name": "L"}
    )

    assert user.get_id() == "u-1"
    assert user.is_teacher
    assert user.name == "Ada L"
    assert User.from_profile(user.to_session()).to_session() == user.to_session()


def test_sign_in_requires_credentials():
    with pytest.raises(ValueError):
        models.sign_in("", "secret")


def test_sign_up_rejects_unknown_role(app):
    with pytest.raises(ValueError):
        models.sign_up(email="a@example.com", password="secret12", first_name="A", last_name="B", role="admin")


def test_update_progress_validates_before_querying():
    client = MagicMock()

    with pytest.raises(ValueError):
        models.update_progress("p-1", {"status": "archived"}, client=client)
    with pytest.raises(ValueError):
        models.update_progress("p-1", {"id": "other"}, client=client)
    client.table.assert_not_called()


def test_update_with_no_visible_row_raises_not_found(app, backend, student):
    admin = models.get_service_client()
    row = backend.add_row("progress", student_id=student, topic="Hidden")
    anonymous = models.new_client()

    with pytest.raises(RecordNotFoundError):
        models.update_progress(row["id"], {"status": "completed"}, client=anonymous)
    assert models.update_progress(row["id"], {"status": "completed"}, client=admin)["status"] == "completed"


def test_user_client_runs_as_token_owner(app, backend, student):
    session = models.sign_in("student1@example.com", "password123")
    client = models.create_user_client(session.access_token)

    profile = models.get_profile(student, client=client)

    assert profile["email"] == "student1@example.com"
    assert backend.requests[-1] == ("select", "profiles", student)


def test_create_and_delete_auth_user_with_service_key(app, backend):
    user_id = models.create_auth_user(
        email="seeded@example.com",
        password="password123",
        first_name="Seed",
        last_name="User",
        role="student",
    )

    assert backend.row("profiles", user_id)["full_name"] == "Seed User"
    models.delete_auth_user(user_id)
    assert backend.row("profiles", user_id) is None


def test_user_can_edit_own_profile_but_not_role(app, backend, student):
    session = models.sign_in("student1@example.com", "password123")
    client = models.create_user_client(session.access_token)

    renamed = models._execute(
        client.table("profiles").update({"first_name": "Lexi"}).eq("id", student),
        "update profile",
    )
    assert renamed.data[0]["first_name"] == "Lexi"

    with pytest.raises(PermissionDeniedError):
        models._execute(
            client.table("profiles").update({"role": "teacher"}).eq("id", student),
            "update profile",
        )
    assert backend.role_of(student) == "student"
