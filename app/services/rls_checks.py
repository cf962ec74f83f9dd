"""Live row-level security diagnostics run from the teacher dashboard.

Each check signs up throw-away accounts against the configured backend and
verifies what the policies allow them to read and write. Accounts are
removed afterwards when a service key is available.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from config.settings import get_settings
from app.repositories.profiles_repo import ProfileNotReadyError, fetch_profile_with_retry
from models import (
    PermissionDeniedError,
    RecordNotFoundError,
    SupabaseOperationError,
    create_progress,
    create_user_client,
    delete_auth_user,
    list_progress,
    sign_in,
    sign_up,
    update_progress,
)

logger = logging.getLogger(__name__)


class CheckFailed(Exception):
    """Raised by a check when the backend behaves differently than expected."""


@dataclass(slots=True)
class CheckResult:
    name: str
    passed: bool
    duration_ms: int
    error: Optional[str] = None


@dataclass(slots=True)
class CheckSuite:
    name: str
    results: list[CheckResult] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def passed(self) -> bool:
        return all(result.passed for result in self.results)


@dataclass(slots=True)
class _Principal:
    user_id: str
    email: str
    client: object


class RlsCheckRunner:
    def __init__(self, *, password: str = "testpass123", email_domain: str = "example.com") -> None:
        self._password = password
        self._email_domain = email_domain
        self._created_user_ids: list[str] = []
        self._students: dict[str, _Principal] = {}
        self._records: dict[str, str] = {}

    def _temp_email(self, prefix: str) -> str:
        return f"rls-{prefix}-{uuid.uuid4().hex[:12]}@{self._email_domain}"

    def _register(self, role: str, prefix: str, *, sign_in_after: bool = True) -> _Principal:
        email = self._temp_email(prefix)
        user_id = sign_up(
            email=email,
            password=self._password,
            first_name="Check",
            last_name=prefix.title(),
            role=role,
        )
        self._created_user_ids.append(user_id)
        client = None
        if sign_in_after:
            session = sign_in(email, self._password)
            client = create_user_client(session.access_token)
        return _Principal(user_id=user_id, email=email, client=client)

    def _run(self, name: str, check: Callable[[], None]) -> CheckResult:
        started = time.perf_counter()
        try:
            check()
        except (CheckFailed, ValueError, SupabaseOperationError, ProfileNotReadyError) as exc:
            duration = int((time.perf_counter() - started) * 1000)
            logger.info("RLS check %r failed: %s", name, exc)
            return CheckResult(name=name, passed=False, duration_ms=duration, error=str(exc) or type(exc).__name__)
        duration = int((time.perf_counter() - started) * 1000)
        return CheckResult(name=name, passed=True, duration_ms=duration)

    def _run_suite(self, name: str, checks: list[tuple[str, Callable[[], None]]]) -> CheckSuite:
        started = time.perf_counter()
        suite = CheckSuite(name=name)
        for check_name, check in checks:
            suite.results.append(self._run(check_name, check))
        suite.duration_ms = int((time.perf_counter() - started) * 1000)
        return suite

    # ------------------------------------------------------------- policy checks

    def _check_student_own_data(self) -> None:
        student = self._register("student", "student-a")
        self._students["a"] = student
        fetch_profile_with_retry(student.user_id, client=student.client)

        record = create_progress(
            student_id=student.user_id,
            topic="RLS check topic A",
            status="pending",
            client=student.client,
        )
        self._records["a"] = str(record["id"])

        visible = list_progress(student_id=student.user_id, client=student.client)
        if len(visible) != 1:
            raise CheckFailed(f"Expected 1 progress record, found {len(visible)}.")

    def _check_student_isolation(self) -> None:
        student_a = self._students.get("a")
        if student_a is None:
            raise CheckFailed("Depends on the own-data check, which did not complete.")

        student_b = self._register("student", "student-b")
        self._students["b"] = student_b
        fetch_profile_with_retry(student_b.user_id, client=student_b.client)
        record = create_progress(
            student_id=student_b.user_id,
            topic="RLS check topic B",
            status="pending",
            client=student_b.client,
        )
        self._records["b"] = str(record["id"])

        leaked = list_progress(student_id=student_b.user_id, client=student_a.client)
        if leaked:
            raise CheckFailed("A student could read another student's progress.")

        try:
            update_progress(self._records["b"], {"status": "completed"}, client=student_a.client)
        except (RecordNotFoundError, PermissionDeniedError):
            return
        raise CheckFailed("A student could update another student's progress.")

    def _check_teacher_all_data(self) -> None:
        if not self._records:
            raise CheckFailed("Depends on the student checks, which created no records.")

        teacher = self._register("teacher", "teacher")
        fetch_profile_with_retry(teacher.user_id, client=teacher.client)

        visible_ids = {str(row["id"]) for row in list_progress(client=teacher.client)}
        missing = [key for key, record_id in self._records.items() if record_id not in visible_ids]
        if missing:
            raise CheckFailed(f"Teacher could not see records of student(s): {', '.join(missing)}.")

    # --------------------------------------------------------------- auth checks

    def _check_registration(self) -> None:
        principal = self._register("student", "signup", sign_in_after=False)
        if not principal.user_id:
            raise CheckFailed("Sign-up did not return a user id.")

    def _check_profile_trigger(self) -> None:
        principal = self._register("teacher", "trigger")
        profile = fetch_profile_with_retry(principal.user_id, client=principal.client)
        if profile.get("role") != "teacher":
            raise CheckFailed(f"Profile role is {profile.get('role')!r}, expected 'teacher'.")
        if profile.get("first_name") != "Check":
            raise CheckFailed("Profile did not copy the sign-up metadata.")

    # -------------------------------------------------------------------- public

    def run_policy_suite(self) -> CheckSuite:
        return self._run_suite(
            "RLS Policy Checks",
            [
                ("Student can access own data", self._check_student_own_data),
                ("Student data isolation", self._check_student_isolation),
                ("Teacher can access all data", self._check_teacher_all_data),
            ],
        )

    def run_auth_suite(self) -> CheckSuite:
        return self._run_suite(
            "Authentication Checks",
            [
                ("User registration", self._check_registration),
                ("Profile creation trigger", self._check_profile_trigger),
            ],
        )

    def run_all(self) -> list[CheckSuite]:
        try:
            return [self.run_policy_suite(), self.run_auth_suite()]
        finally:
            self.cleanup()

    def cleanup(self) -> None:
        """Delete the temporary accounts when a service key is configured."""
        if not get_settings().SUPABASE_SERVICE_KEY:
            if self._created_user_ids:
                logger.info(
                    "Leaving %s temporary account(s); set SUPABASE_SERVICE_KEY to remove them.",
                    len(self._created_user_ids),
                )
            self._created_user_ids.clear()
            return
        for user_id in self._created_user_ids:
            try:
                delete_auth_user(user_id)
            except SupabaseOperationError as exc:
                logger.warning("Could not delete temporary account %s: %s", user_id, exc)
        self._created_user_ids.clear()
