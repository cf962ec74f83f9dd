from __future__ import annotations

import csv
import datetime
import io
import logging
from functools import wraps
from typing import Callable, Mapping, Optional, Sequence

from flask import (
    Blueprint,
    Response,
    current_app,
    flash,
    jsonify,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_login import current_user, login_user, logout_user
from pymongo.errors import PyMongoError

from app.repositories import classrooms_repo, progress_repo
from app.repositories.profiles_repo import ProfileNotReadyError, fetch_profile_with_retry, list_students
from app.services.audit import AuditConfigurationError, get_audit_service, record_action
from app.services.preferences import (
    STUDENT_VIEWS,
    TeacherPreferences,
    default_preferences,
    from_mapping,
)
from app.services.progress import (
    STATUS_CHOICES,
    display_name,
    grade_label,
    normalize_status,
    parse_score,
    status_info,
    summarize_progress,
    teacher_stats,
)
from app.services.rls_checks import RlsCheckRunner
from models import (
    AuthenticationError,
    PermissionDeniedError,
    RecordNotFoundError,
    SupabaseConfigurationError,
    SupabaseOperationError,
    User,
    bind_access_token,
    sign_in,
    sign_out,
    sign_up,
)

from .security import (
    clear_auth_session,
    current_access_token,
    dashboard_endpoint_for,
    store_auth_session,
    validate_new_password,
)

logger = logging.getLogger(__name__)

bp = Blueprint("core", __name__)


@bp.app_context_processor
def inject_helpers() -> dict[str, object]:
    return {
        "status_info": status_info,
        "display_name": display_name,
        "format_date": _format_date,
        "status_choices": STATUS_CHOICES,
    }


@bp.get("/")
def index():
    if current_user.is_authenticated:
        return redirect(url_for(dashboard_endpoint_for(current_user.role)))
    return render_template("index.html")


@bp.get("/health")
def health():
    return jsonify({"status": "ok", "service": "rls-guard-dog"}), 200


def _wants_json() -> bool:
    return request.path.startswith("/api/")


def role_required(*roles: str) -> Callable:
    """Ensure the current user is signed in with one of the provided roles.

    Pages send a user of another role to their own dashboard; API endpoints
    answer 401/403 instead.
    """

    def decorator(view: Callable) -> Callable:
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                if _wants_json():
                    return jsonify({"error": "Authentication required."}), 401
                return current_app.login_manager.unauthorized()
            if current_user.role not in roles:
                if _wants_json():
                    return jsonify({"error": "You do not have access to this resource."}), 403
                return redirect(url_for(dashboard_endpoint_for(current_user.role)))
            return view(*args, **kwargs)

        return wrapped

    return decorator


def _error_status(exc: Exception) -> int:
    if isinstance(exc, RecordNotFoundError):
        return 404
    if isinstance(exc, PermissionDeniedError):
        return 403
    if isinstance(exc, AuthenticationError):
        return 401
    if isinstance(exc, SupabaseOperationError):
        return 502
    if isinstance(exc, ValueError) and "already" in str(exc).lower():
        return 409
    return 400


def _json_error(exc: Exception):
    status_code = _error_status(exc)
    if status_code == 502:
        logger.error("Backend request failed: %s", exc)
    return jsonify({"error": str(exc)}), status_code


def _flash_error(exc: Exception, fallback: str) -> None:
    if isinstance(exc, SupabaseOperationError) and not isinstance(
        exc, (RecordNotFoundError, PermissionDeniedError)
    ):
        logger.error("%s: %s", fallback, exc)
        flash(fallback, "error")
    else:
        flash(str(exc), "error")


def _flash_errors(errors: Mapping[str, str]) -> None:
    for message in errors.values():
        flash(message, "error")


def _parse_optional_int(
    value: object,
    field_name: str,
    *,
    min_value: Optional[int] = None,
    max_value: Optional[int] = None,
) -> Optional[int]:
    """Parse optional integer from query or JSON payload."""
    if value in (None, "", "null"):
        return None
    try:
        result = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValueError(f"{field_name} must be an integer.")
    if min_value is not None and result < min_value:
        raise ValueError(f"{field_name} must be ≥ {min_value}.")
    if max_value is not None and result > max_value:
        raise ValueError(f"{field_name} must be ≤ {max_value}.")
    return result


def _isoformat_or_none(value: object) -> Optional[str]:
    if value in (None, "", "null"):
        return None
    if isinstance(value, datetime.datetime):
        return value.isoformat()
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.datetime.min.time()).isoformat()
    if isinstance(value, str):
        try:
            return datetime.datetime.fromisoformat(value).isoformat()
        except ValueError:
            return value
    return None


def _format_date(value: object) -> str:
    iso_value = _isoformat_or_none(value)
    if not iso_value:
        return "Never"
    try:
        return datetime.datetime.fromisoformat(iso_value).strftime("%b %d, %Y")
    except ValueError:
        return iso_value


# --------------------------------------------------------------------------- auth


@bp.route("/login", methods=["GET", "POST"])
def login():
    if current_user.is_authenticated:
        return redirect(url_for(dashboard_endpoint_for(current_user.role)))

    errors: dict[str, str] = {}
    form_data = {"email": ""}

    if request.method == "POST":
        email = request.form.get("email", "").strip()
        password = request.form.get("password", "")
        form_data["email"] = email

        if not email:
            errors["email"] = "Email is required."
        if not password:
            errors["password"] = "Password is required."

        if not errors:
            try:
                auth_session = sign_in(email, password)
                bind_access_token(auth_session.access_token)
                profile = fetch_profile_with_retry(auth_session.user_id)
            except AuthenticationError as exc:
                errors["form"] = str(exc) or "Invalid login credentials."
            except ProfileNotReadyError:
                errors["form"] = "Your profile is still being set up. Please try again in a moment."
            except SupabaseOperationError as exc:
                logger.error("Sign-in failed for %s: %s", email, exc)
                errors["form"] = "Sign-in failed. Please try again."
            else:
                user = User.from_profile(profile)
                store_auth_session(auth_session, user)
                login_user(user)
                flash(f"Welcome back, {user.name}!", "success")
                return redirect(url_for(dashboard_endpoint_for(user.role)))

    return render_template("login.html", errors=errors, form_data=form_data)


def _validate_signup(payload: Mapping[str, object]) -> tuple[dict[str, str], dict[str, str]]:
    cleaned: dict[str, str] = {}
    errors: dict[str, str] = {}

    for field_name, label in (("first_name", "First name"), ("last_name", "Last name"), ("email", "Email")):
        value = str(payload.get(field_name) or "").strip()
        cleaned[field_name] = value
        if not value:
            errors[field_name] = f"{label} is required."

    role = str(payload.get("role") or "student").strip().lower()
    cleaned["role"] = role
    if role not in {"student", "teacher"}:
        errors["role"] = "Please choose a valid role."

    password = payload.get("password")
    password_value = password if isinstance(password, str) else ""
    confirm = payload.get("confirm_password")
    password_error = validate_new_password(
        password_value,
        confirm if isinstance(confirm, str) else None,
    )
    if password_error:
        errors["password"] = password_error
    cleaned["password"] = password_value

    return cleaned, errors


@bp.route("/signup", methods=["GET", "POST"])
def signup():
    if current_user.is_authenticated:
        return redirect(url_for(dashboard_endpoint_for(current_user.role)))

    errors: dict[str, str] = {}
    form_data = {"first_name": "", "last_name": "", "email": "", "role": "student"}

    if request.method == "POST":
        payload = dict(request.form)
        payload.setdefault("confirm_password", "")
        cleaned, errors = _validate_signup(payload)
        form_data.update({key: cleaned[key] for key in form_data})

        if not errors:
            try:
                sign_up(
                    email=cleaned["email"],
                    password=cleaned["password"],
                    first_name=cleaned["first_name"],
                    last_name=cleaned["last_name"],
                    role=cleaned["role"],
                )
            except ValueError as exc:
                errors["form"] = str(exc)
            except SupabaseOperationError as exc:
                logger.error("Sign-up failed for %s: %s", cleaned["email"], exc)
                errors["form"] = "Failed to sign up. Please try again."
            else:
                return _sign_in_after_signup(cleaned["email"], cleaned["password"])

    return render_template("signup.html", errors=errors, form_data=form_data)


def _sign_in_after_signup(email: str, password: str):
    """Sign the new account in when the project does not require email confirmation."""
    try:
        auth_session = sign_in(email, password)
        bind_access_token(auth_session.access_token)
        profile = fetch_profile_with_retry(auth_session.user_id)
    except (AuthenticationError, ProfileNotReadyError) as exc:
        logger.info("Account %s created but not signed in: %s", email, exc)
        flash("Account created. Confirm your email address, then sign in.", "success")
        return redirect(url_for("core.login"))
    except SupabaseOperationError as exc:
        logger.error("Account %s created but sign-in failed: %s", email, exc)
        flash("Account created, but signing in failed. Please sign in.", "error")
        return redirect(url_for("core.login"))

    user = User.from_profile(profile)
    store_auth_session(auth_session, user)
    login_user(user)
    flash("Account created successfully. Welcome!", "success")
    return redirect(url_for(dashboard_endpoint_for(user.role)))


@bp.get("/logout")
def logout():
    access_token = current_access_token()
    if access_token:
        try:
            sign_out(access_token)
        except SupabaseConfigurationError as exc:
            logger.warning("Skipping remote sign-out: %s", exc)
    clear_auth_session()
    logout_user()
    flash("You have been signed out.", "info")
    return redirect(url_for("core.login"))


# ----------------------------------------------------------------------- student


def _student_dashboard_data(student_id: str) -> dict[str, object]:
    classrooms = classrooms_repo.list_classrooms(student_id=student_id)
    progress = progress_repo.list_progress(student_id=student_id)
    return {
        "classrooms": classrooms,
        "progress": progress,
        "summary": summarize_progress(progress),
    }


@bp.get("/student/dashboard")
@role_required("student")
def student_dashboard():
    try:
        data = _student_dashboard_data(current_user.id)
    except SupabaseOperationError as exc:
        logger.error("Failed to load student dashboard for %s: %s", current_user.id, exc)
        flash("Failed to load dashboard data.", "error")
        data = {"classrooms": [], "progress": [], "summary": summarize_progress([])}
    return render_template("student_dashboard.html", **data)


def _serialize_progress(record: Mapping[str, object], criteria: Optional[Mapping[str, float]] = None) -> dict[str, object]:
    info = status_info(record.get("status"))
    score = record.get("score")
    payload = {
        "id": record.get("id"),
        "student_id": record.get("student_id"),
        "topic": record.get("topic"),
        "status": record.get("status"),
        "status_label": info["label"],
        "percent": info["percent"],
        "score": score,
        "updated_at": _isoformat_or_none(record.get("updated_at")),
    }
    if criteria is not None:
        payload["grade_label"] = grade_label(score if isinstance(score, (int, float)) else None, criteria)
    student = record.get("student")
    if isinstance(student, Mapping):
        payload["student_name"] = display_name(student)
    return payload


def _serialize_classroom(record: Mapping[str, object]) -> dict[str, object]:
    payload = {
        "id": record.get("id"),
        "class_name": record.get("class_name"),
        "grade": record.get("grade"),
        "student_id": record.get("student_id"),
    }
    student = record.get("student")
    if isinstance(student, Mapping):
        payload["student_name"] = display_name(student)
    return payload


def _serialize_profile(profile: Mapping[str, object]) -> dict[str, object]:
    return {
        "id": profile.get("id"),
        "email": profile.get("email"),
        "first_name": profile.get("first_name"),
        "last_name": profile.get("last_name"),
        "name": display_name(profile),
        "role": profile.get("role"),
    }


@bp.get("/api/student/dashboard")
@role_required("student")
def api_student_dashboard():
    try:
        data = _student_dashboard_data(current_user.id)
    except SupabaseOperationError as exc:
        return _json_error(exc)
    return jsonify(
        {
            "profile": current_user.to_session(),
            "summary": data["summary"],
            "classrooms": [_serialize_classroom(row) for row in data["classrooms"]],
            "progress": [_serialize_progress(row) for row in data["progress"]],
        }
    )


@bp.post("/student/progress/<progress_id>/status")
@role_required("student")
def student_update_progress(progress_id: str):
    try:
        status = normalize_status(request.form.get("status"))
        progress_repo.update_progress(
            actor=current_user,
            progress_id=progress_id,
            updates={"status": status},
        )
    except (ValueError, SupabaseOperationError) as exc:
        _flash_error(exc, "Failed to update progress.")
    else:
        flash("Progress updated successfully.", "success")
    return redirect(url_for("core.student_dashboard"))


# ----------------------------------------------------------------------- teacher


def _load_preferences(user_id: str) -> TeacherPreferences:
    """Return stored preferences, falling back to defaults when storage is unavailable."""
    try:
        service = get_audit_service()
        if service is None:
            return default_preferences(user_id)
        return service.get_preferences_or_default(user_id)
    except (PyMongoError, AuditConfigurationError, ValueError) as exc:
        logger.warning("Using default preferences for %s: %s", user_id, exc)
        return default_preferences(user_id)


def _teacher_dashboard_data() -> dict[str, object]:
    students = list_students()
    classrooms = classrooms_repo.list_classrooms()
    progress = progress_repo.list_progress()
    return {
        "students": students,
        "classrooms": classrooms,
        "progress": progress,
        "stats": teacher_stats(students, classrooms, progress),
    }


@bp.get("/teacher/dashboard")
@role_required("teacher")
def teacher_dashboard():
    preferences = _load_preferences(current_user.id)
    try:
        data = _teacher_dashboard_data()
    except SupabaseOperationError as exc:
        logger.error("Failed to load teacher dashboard for %s: %s", current_user.id, exc)
        flash("Failed to load data.", "error")
        data = {
            "students": [],
            "classrooms": [],
            "progress": [],
            "stats": teacher_stats([], [], []),
        }

    active_tab = request.args.get("tab") or preferences.default_student_view
    if active_tab not in STUDENT_VIEWS:
        active_tab = "students"

    return render_template(
        "teacher_dashboard.html",
        active_tab=active_tab,
        preferences=preferences,
        criteria=preferences.primary_criteria,
        grade_label=grade_label,
        **data,
    )


@bp.get("/api/teacher/dashboard")
@role_required("teacher")
def api_teacher_dashboard():
    criteria = _load_preferences(current_user.id).primary_criteria
    try:
        data = _teacher_dashboard_data()
    except SupabaseOperationError as exc:
        return _json_error(exc)
    return jsonify(
        {
            "stats": data["stats"],
            "students": [_serialize_profile(row) for row in data["students"]],
            "classrooms": [_serialize_classroom(row) for row in data["classrooms"]],
            "progress": [_serialize_progress(row, criteria) for row in data["progress"]],
        }
    )


def _validate_student_submission(payload: Mapping[str, object]) -> tuple[dict[str, str], dict[str, str]]:
    """Validate student creation inputs shared by form and API routes."""
    cleaned: dict[str, str] = {}
    errors: dict[str, str] = {}

    for field_name, label in (("first_name", "First name"), ("last_name", "Last name"), ("email", "Email")):
        value = str(payload.get(field_name) or "").strip()
        cleaned[field_name] = value
        if not value:
            errors[field_name] = f"{label} is required."

    password = payload.get("password")
    password_value = password if isinstance(password, str) else ""
    password_error = validate_new_password(password_value)
    if password_error:
        errors["password"] = password_error
    cleaned["password"] = password_value

    return cleaned, errors


def _create_student_account(cleaned: Mapping[str, str]) -> str:
    student_id = sign_up(
        email=cleaned["email"],
        password=cleaned["password"],
        first_name=cleaned["first_name"],
        last_name=cleaned["last_name"],
        role="student",
    )
    record_action(
        user_id=current_user.id,
        user_role=current_user.role,
        action="create",
        table="profiles",
        record_id=student_id,
        new_data={
            "student_id": student_id,
            "email": cleaned["email"],
            "first_name": cleaned["first_name"],
            "last_name": cleaned["last_name"],
        },
    )
    return student_id


@bp.post("/teacher/students")
@role_required("teacher")
def teacher_create_student():
    cleaned, errors = _validate_student_submission(request.form)
    if errors:
        _flash_errors(errors)
    else:
        try:
            _create_student_account(cleaned)
        except (ValueError, SupabaseOperationError) as exc:
            _flash_error(exc, "Failed to create student.")
        else:
            flash("Student created successfully.", "success")
    return redirect(url_for("core.teacher_dashboard", tab="students"))


@bp.post("/api/students")
@role_required("teacher")
def api_create_student():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Request body must be a JSON object."}), 400
    cleaned, errors = _validate_student_submission(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    try:
        student_id = _create_student_account(cleaned)
    except (ValueError, SupabaseOperationError) as exc:
        return _json_error(exc)
    return jsonify({"id": student_id, "email": cleaned["email"]}), 201


def _validate_classroom_submission(
    payload: Mapping[str, object],
    *,
    partial: bool = False,
) -> tuple[dict[str, object], dict[str, str]]:
    cleaned: dict[str, object] = {}
    errors: dict[str, str] = {}

    if not partial or "class_name" in payload:
        class_name = str(payload.get("class_name") or "").strip()
        if not class_name:
            errors["class_name"] = "Class name is required."
        cleaned["class_name"] = class_name
    if not partial or "student_id" in payload:
        student_id = str(payload.get("student_id") or "").strip()
        if not student_id:
            errors["student_id"] = "Please select a student."
        cleaned["student_id"] = student_id
    if not partial or "grade" in payload:
        cleaned["grade"] = str(payload.get("grade") or "").strip() or None

    if partial and not cleaned:
        errors["form"] = "Nothing to update."
    return cleaned, errors


@bp.post("/teacher/classrooms")
@role_required("teacher")
def teacher_create_classroom():
    cleaned, errors = _validate_classroom_submission(request.form)
    if errors:
        _flash_errors(errors)
    else:
        try:
            classrooms_repo.create_classroom(actor=current_user, **cleaned)
        except (ValueError, SupabaseOperationError) as exc:
            _flash_error(exc, "Failed to create classroom.")
        else:
            flash("Classroom created successfully.", "success")
    return redirect(url_for("core.teacher_dashboard", tab="classrooms"))


@bp.post("/teacher/classrooms/<classroom_id>/edit")
@role_required("teacher")
def teacher_edit_classroom(classroom_id: str):
    cleaned, errors = _validate_classroom_submission(request.form, partial=True)
    if errors:
        _flash_errors(errors)
    else:
        try:
            classrooms_repo.update_classroom(
                actor=current_user,
                classroom_id=classroom_id,
                updates=cleaned,
            )
        except (ValueError, SupabaseOperationError) as exc:
            _flash_error(exc, "Failed to update classroom.")
        else:
            flash("Classroom updated.", "success")
    return redirect(url_for("core.teacher_dashboard", tab="classrooms"))


@bp.post("/teacher/classrooms/<classroom_id>/delete")
@role_required("teacher")
def teacher_delete_classroom(classroom_id: str):
    try:
        classrooms_repo.delete_classroom(actor=current_user, classroom_id=classroom_id)
    except SupabaseOperationError as exc:
        _flash_error(exc, "Failed to delete classroom.")
    else:
        flash("Classroom deleted.", "success")
    return redirect(url_for("core.teacher_dashboard", tab="classrooms"))


@bp.get("/api/classrooms")
@role_required("teacher", "student")
def api_list_classrooms():
    student_id = current_user.id if current_user.role == "student" else request.args.get("student_id")
    try:
        rows = classrooms_repo.list_classrooms(student_id=student_id or None)
    except SupabaseOperationError as exc:
        return _json_error(exc)
    return jsonify({"items": [_serialize_classroom(row) for row in rows], "total": len(rows)})


@bp.post("/api/classrooms")
@role_required("teacher")
def api_create_classroom():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Request body must be a JSON object."}), 400
    cleaned, errors = _validate_classroom_submission(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    try:
        row = classrooms_repo.create_classroom(actor=current_user, **cleaned)
    except (ValueError, SupabaseOperationError) as exc:
        return _json_error(exc)
    return jsonify(_serialize_classroom(row)), 201


@bp.patch("/api/classrooms/<classroom_id>")
@role_required("teacher")
def api_update_classroom(classroom_id: str):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Request body must be a JSON object."}), 400
    cleaned, errors = _validate_classroom_submission(payload, partial=True)
    if errors:
        return jsonify({"errors": errors}), 400
    try:
        row = classrooms_repo.update_classroom(
            actor=current_user,
            classroom_id=classroom_id,
            updates=cleaned,
        )
    except (ValueError, SupabaseOperationError) as exc:
        return _json_error(exc)
    return jsonify(_serialize_classroom(row))


@bp.delete("/api/classrooms/<classroom_id>")
@role_required("teacher")
def api_delete_classroom(classroom_id: str):
    try:
        classrooms_repo.delete_classroom(actor=current_user, classroom_id=classroom_id)
    except SupabaseOperationError as exc:
        return _json_error(exc)
    return jsonify({"deleted": classroom_id})


def _validate_progress_submission(
    payload: Mapping[str, object],
    *,
    partial: bool = False,
) -> tuple[dict[str, object], dict[str, str]]:
    cleaned: dict[str, object] = {}
    errors: dict[str, str] = {}

    if not partial or "student_id" in payload:
        student_id = str(payload.get("student_id") or "").strip()
        if not student_id:
            errors["student_id"] = "Please select a student."
        cleaned["student_id"] = student_id
    if not partial or "topic" in payload:
        topic = str(payload.get("topic") or "").strip()
        if not topic:
            errors["topic"] = "Topic is required."
        cleaned["topic"] = topic
    if not partial or "status" in payload:
        raw_status = payload.get("status") or ("pending" if not partial else None)
        try:
            cleaned["status"] = normalize_status(raw_status)
        except ValueError as exc:
            errors["status"] = str(exc)
    if "score" in payload:
        try:
            cleaned["score"] = parse_score(payload.get("score"))
        except ValueError as exc:
            errors["score"] = str(exc)

    if partial and not cleaned and not errors:
        errors["form"] = "Nothing to update."
    return cleaned, errors


@bp.post("/teacher/progress")
@role_required("teacher")
def teacher_create_progress():
    cleaned, errors = _validate_progress_submission(request.form)
    if errors:
        _flash_errors(errors)
    else:
        try:
            progress_repo.create_progress(actor=current_user, **cleaned)
        except (ValueError, SupabaseOperationError) as exc:
            _flash_error(exc, "Failed to create progress.")
        else:
            flash("Progress record created successfully.", "success")
    return redirect(url_for("core.teacher_dashboard", tab="progress"))


@bp.post("/teacher/progress/<progress_id>/update")
@role_required("teacher")
def teacher_update_progress(progress_id: str):
    cleaned, errors = _validate_progress_submission(request.form, partial=True)
    if errors:
        _flash_errors(errors)
    else:
        try:
            progress_repo.update_progress(
                actor=current_user,
                progress_id=progress_id,
                updates=cleaned,
            )
        except (ValueError, SupabaseOperationError) as exc:
            _flash_error(exc, "Failed to update progress.")
        else:
            flash("Progress updated successfully.", "success")
    return redirect(url_for("core.teacher_dashboard", tab="progress"))


@bp.post("/teacher/progress/<progress_id>/delete")
@role_required("teacher")
def teacher_delete_progress(progress_id: str):
    try:
        progress_repo.delete_progress(actor=current_user, progress_id=progress_id)
    except SupabaseOperationError as exc:
        _flash_error(exc, "Failed to delete progress.")
    else:
        flash("Progress record deleted.", "success")
    return redirect(url_for("core.teacher_dashboard", tab="progress"))


@bp.get("/api/progress")
@role_required("teacher", "student")
def api_list_progress():
    student_id = current_user.id if current_user.role == "student" else request.args.get("student_id")
    try:
        rows = progress_repo.list_progress(student_id=student_id or None)
    except SupabaseOperationError as exc:
        return _json_error(exc)
    return jsonify({"items": [_serialize_progress(row) for row in rows], "total": len(rows)})


@bp.post("/api/progress")
@role_required("teacher")
def api_create_progress():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Request body must be a JSON object."}), 400
    cleaned, errors = _validate_progress_submission(payload)
    if errors:
        return jsonify({"errors": errors}), 400
    try:
        row = progress_repo.create_progress(actor=current_user, **cleaned)
    except (ValueError, SupabaseOperationError) as exc:
        return _json_error(exc)
    return jsonify(_serialize_progress(row)), 201


@bp.patch("/api/progress/<progress_id>")
@role_required("teacher", "student")
def api_update_progress(progress_id: str):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Request body must be a JSON object."}), 400
    if current_user.role == "student" and set(payload) - {"status"}:
        return jsonify({"error": "Students may only change the status of their progress."}), 403
    cleaned, errors = _validate_progress_submission(payload, partial=True)
    if errors:
        return jsonify({"errors": errors}), 400
    try:
        row = progress_repo.update_progress(
            actor=current_user,
            progress_id=progress_id,
            updates=cleaned,
        )
    except (ValueError, SupabaseOperationError) as exc:
        return _json_error(exc)
    return jsonify(_serialize_progress(row))


@bp.delete("/api/progress/<progress_id>")
@role_required("teacher")
def api_delete_progress(progress_id: str):
    try:
        progress_repo.delete_progress(actor=current_user, progress_id=progress_id)
    except SupabaseOperationError as exc:
        return _json_error(exc)
    return jsonify({"deleted": progress_id})


@bp.get("/api/teacher/export")
@role_required("teacher")
def api_teacher_export():
    criteria = _load_preferences(current_user.id).primary_criteria
    try:
        progress = progress_repo.list_progress()
    except SupabaseOperationError as exc:
        return _json_error(exc)

    response = Response(_build_progress_csv(progress, criteria), mimetype="text/csv")
    timestamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d_%H%M%S")
    response.headers["Content-Disposition"] = f'attachment; filename="progress_{timestamp}.csv"'
    return response


def _build_progress_csv(records: Sequence[Mapping[str, object]], criteria: Mapping[str, float]) -> str:
    """Return CSV string for a collection of progress records."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["id", "student", "email", "topic", "status", "score", "grade", "updated_at"])

    for entry in records:
        student = entry.get("student") if isinstance(entry.get("student"), Mapping) else {}
        score = entry.get("score")
        writer.writerow(
            [
                entry.get("id"),
                _csv_safe(display_name(student)),  # type: ignore[arg-type]
                _csv_safe(student.get("email")),  # type: ignore[union-attr]
                _csv_safe(entry.get("topic")),
                entry.get("status"),
                score,
                grade_label(score if isinstance(score, (int, float)) else None, criteria),
                _isoformat_or_none(entry.get("updated_at")),
            ]
        )

    return output.getvalue()


def _csv_safe(value: object) -> object:
    """Escape values that could be interpreted as formulas by spreadsheet apps."""
    if isinstance(value, str) and value and value[0] in {"=", "+", "-", "@"}:
        return f"'{value}"
    return value


# ------------------------------------------------------------------------- audit


def _require_audit_service():
    """Return the audit service or a 503 response tuple."""
    try:
        service = get_audit_service()
    except PyMongoError as exc:
        logger.error("Audit log store unavailable: %s", exc)
        return None, (jsonify({"error": "Audit log store is unavailable."}), 503)
    if service is None:
        return None, (jsonify({"error": "Audit logging is not configured."}), 503)
    return service, None


def _serialize_audit_entry(entry: Mapping[str, object]) -> dict[str, object]:
    payload = {key: value for key, value in entry.items() if key != "_id"}
    payload["timestamp"] = _isoformat_or_none(entry.get("timestamp"))
    return payload


def _parse_audit_filters(args: Mapping[str, object]) -> dict[str, object]:
    limit = _parse_optional_int(args.get("limit"), "limit", min_value=1, max_value=500)
    offset = _parse_optional_int(args.get("offset"), "offset", min_value=0)
    table = str(args.get("table") or "").strip() or None
    if table is not None and table not in {"profiles", "classrooms", "progress"}:
        raise ValueError("table must be 'profiles', 'classrooms', or 'progress'.")
    return {
        "user_id": str(args.get("user_id") or "").strip() or None,
        "table": table,
        "limit": limit or 100,
        "offset": offset or 0,
    }


@bp.get("/teacher/audit")
@role_required("teacher")
def teacher_audit_page():
    try:
        filters = _parse_audit_filters(request.args)
    except ValueError as exc:
        flash(str(exc), "error")
        filters = _parse_audit_filters({})

    logs: list[dict[str, object]] = []
    analytics: list[dict[str, object]] = []
    audit_enabled = True
    try:
        service = get_audit_service()
        if service is None:
            audit_enabled = False
        else:
            logs = [_serialize_audit_entry(entry) for entry in service.get_audit_logs(**filters)]
            analytics = service.get_progress_analytics(current_user.id)
    except PyMongoError as exc:
        logger.error("Failed to load audit logs: %s", exc)
        flash("Audit log store is unavailable.", "error")

    return render_template(
        "teacher_audit.html",
        audit_enabled=audit_enabled,
        logs=logs,
        analytics=analytics,
        filters=filters,
    )


@bp.get("/api/audit/logs")
@role_required("teacher")
def api_audit_logs():
    try:
        filters = _parse_audit_filters(request.args)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    service, error_response = _require_audit_service()
    if error_response:
        return error_response
    try:
        entries = service.get_audit_logs(**filters)
    except PyMongoError as exc:
        logger.error("Failed to query audit logs: %s", exc)
        return jsonify({"error": "Audit log store is unavailable."}), 503
    return jsonify({"items": [_serialize_audit_entry(entry) for entry in entries], **filters})


@bp.get("/api/audit/students/<student_id>/activity")
@role_required("teacher")
def api_student_activity(student_id: str):
    try:
        days = _parse_optional_int(request.args.get("days"), "days", min_value=1, max_value=365) or 30
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    service, error_response = _require_audit_service()
    if error_response:
        return error_response
    try:
        summary = service.get_student_activity_summary(student_id, days=days)
    except PyMongoError as exc:
        logger.error("Failed to summarize activity for %s: %s", student_id, exc)
        return jsonify({"error": "Audit log store is unavailable."}), 503
    return jsonify({"student_id": student_id, "days": days, "activity": summary})


@bp.get("/api/audit/analytics")
@role_required("teacher")
def api_progress_analytics():
    service, error_response = _require_audit_service()
    if error_response:
        return error_response
    try:
        analytics = service.get_progress_analytics(current_user.id)
    except PyMongoError as exc:
        logger.error("Failed to compute progress analytics: %s", exc)
        return jsonify({"error": "Audit log store is unavailable."}), 503
    return jsonify({"teacher_id": current_user.id, "months": analytics})


# ------------------------------------------------------------------- preferences


def _parse_criteria_text(raw: str) -> dict[str, str]:
    """Parse ``Label: minimum`` lines from the preferences form."""
    criteria: dict[str, str] = {}
    for line in raw.splitlines():
        if not line.strip():
            continue
        if ":" not in line:
            raise ValueError(f"Criterion '{line.strip()}' must look like 'Label: 90'.")
        label, minimum = line.rsplit(":", 1)
        criteria[label.strip()] = minimum.strip()
    return criteria


def _preferences_from_form(user_id: str, form: Mapping[str, str]) -> TeacherPreferences:
    payload: dict[str, object] = {
        "dashboard_layout": form.get("dashboard_layout", "grid"),
        "default_student_view": form.get("default_student_view", "progress"),
        "notification_settings": {
            "email_updates": form.get("email_updates") == "on",
            "progress_alerts": form.get("progress_alerts") == "on",
            "new_student_registrations": form.get("new_student_registrations") == "on",
        },
        "custom_categories": form.get("custom_categories", ""),
    }
    criteria_text = form.get("grade_criteria", "")
    if criteria_text.strip():
        payload["grade_templates"] = [
            {
                "name": (form.get("grade_template_name") or "Standard").strip() or "Standard",
                "criteria": _parse_criteria_text(criteria_text),
            }
        ]
    return from_mapping(user_id, payload)


@bp.route("/teacher/preferences", methods=["GET", "POST"])
@role_required("teacher")
def teacher_preferences():
    preferences = _load_preferences(current_user.id)

    if request.method == "POST":
        try:
            submitted = _preferences_from_form(current_user.id, request.form)
        except ValueError as exc:
            flash(str(exc), "error")
        else:
            try:
                service = get_audit_service()
                if service is None:
                    flash("Preferences storage is not configured.", "error")
                else:
                    service.save_teacher_preferences(submitted)
                    flash("Preferences saved.", "success")
                    return redirect(url_for("core.teacher_preferences"))
            except PyMongoError as exc:
                logger.error("Failed to save preferences for %s: %s", current_user.id, exc)
                flash("Failed to save preferences.", "error")
            preferences = submitted

    return render_template("teacher_preferences.html", preferences=preferences)


@bp.get("/api/teacher/preferences")
@role_required("teacher")
def api_get_preferences():
    return jsonify(_load_preferences(current_user.id).to_document())


@bp.put("/api/teacher/preferences")
@role_required("teacher")
def api_put_preferences():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Request body must be a JSON object."}), 400
    try:
        preferences = from_mapping(current_user.id, payload)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    service, error_response = _require_audit_service()
    if error_response:
        return error_response
    try:
        service.save_teacher_preferences(preferences)
    except PyMongoError as exc:
        logger.error("Failed to save preferences for %s: %s", current_user.id, exc)
        return jsonify({"error": "Preferences storage is unavailable."}), 503
    return jsonify(preferences.to_document())


# ------------------------------------------------------------------- diagnostics


@bp.route("/teacher/rls-checks", methods=["GET", "POST"])
@role_required("teacher")
def teacher_rls_checks():
    suites = []
    if request.method == "POST":
        try:
            suites = RlsCheckRunner().run_all()
        except SupabaseConfigurationError as exc:
            flash(str(exc), "error")
        else:
            passed = all(suite.passed for suite in suites)
            total = sum(len(suite.results) for suite in suites)
            if passed:
                flash(f"All checks passed ({total} checks completed).", "success")
            else:
                flash(f"Some checks failed ({total} checks completed).", "error")
    return render_template("teacher_rls_checks.html", suites=suites)
