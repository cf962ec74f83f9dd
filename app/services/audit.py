"""MongoDB side-service for audit logs, activity analytics and teacher preferences.

The service is optional: when ``MONGODB_URI`` is unset or ``AUDIT_LOG_ENABLED``
is false, :func:`get_audit_service` returns ``None`` and :func:`record_action`
does nothing. Audit writes never interrupt the request that triggered them.
"""

from __future__ import annotations

import datetime
import logging
from typing import Optional

from flask import has_request_context, request
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from config.settings import get_settings

from .preferences import TeacherPreferences, default_preferences, from_document

logger = logging.getLogger(__name__)

AUDIT_COLLECTION = "audit_logs"
PREFERENCES_COLLECTION = "teacher_preferences"
AUDIT_ACTIONS = ("create", "update", "delete", "select")

_service: Optional["AuditLogService"] = None


class AuditConfigurationError(RuntimeError):
    """Raised when the audit store is used before it is connected."""


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def student_activity_pipeline(student_id: str, since: datetime.datetime) -> list[dict[str, object]]:
    """Daily action counts for one user since ``since``, oldest day first."""
    return [
        {"$match": {"user_id": student_id, "timestamp": {"$gte": since}}},
        {
            "$group": {
                "_id": {
                    "date": {"$dateToString": {"format": "%Y-%m-%d", "date": "$timestamp"}},
                    "action": "$action",
                },
                "count": {"$sum": 1},
            }
        },
        {
            "$group": {
                "_id": "$_id.date",
                "actions": {"$push": {"action": "$_id.action", "count": "$count"}},
                "total_actions": {"$sum": "$count"},
            }
        },
        {"$sort": {"_id": 1}},
    ]


def progress_analytics_pipeline(teacher_id: str) -> list[dict[str, object]]:
    """Monthly progress writes by one teacher with the number of students touched."""
    return [
        {
            "$match": {
                "user_id": teacher_id,
                "user_role": "teacher",
                "action": {"$in": ["create", "update"]},
                "table": "progress",
            }
        },
        {
            "$group": {
                "_id": {"month": {"$month": "$timestamp"}, "year": {"$year": "$timestamp"}},
                "total_updates": {"$sum": 1},
                "unique_students": {"$addToSet": "$student_id"},
            }
        },
        {
            "$project": {
                "_id": 0,
                "month": "$_id.month",
                "year": "$_id.year",
                "total_updates": 1,
                "unique_student_count": {"$size": "$unique_students"},
            }
        },
        {"$sort": {"year": 1, "month": 1}},
    ]


class AuditLogService:
    def __init__(
        self,
        connection_string: str,
        database_name: str = "rls_guard_dog",
        *,
        timeout_ms: int = 5000,
    ) -> None:
        self._connection_string = connection_string
        self._database_name = database_name
        self._timeout_ms = timeout_ms
        self._client: Optional[MongoClient] = None
        self._audit = None
        self._preferences = None

    @property
    def is_connected(self) -> bool:
        return self._audit is not None

    def connect(self) -> None:
        client: MongoClient = MongoClient(
            self._connection_string,
            serverSelectionTimeoutMS=self._timeout_ms,
            tz_aware=True,
        )
        try:
            self.attach(client[self._database_name])
        except PyMongoError:
            client.close()
            raise
        self._client = client
        logger.info("Connected audit log store (database: %s)", self._database_name)

    def attach(self, database) -> None:
        """Use collections from an existing database handle and ensure indexes."""
        audit = database[AUDIT_COLLECTION]
        preferences = database[PREFERENCES_COLLECTION]
        audit.create_index([("user_id", ASCENDING), ("timestamp", DESCENDING)])
        audit.create_index([("table", ASCENDING), ("record_id", ASCENDING)])
        preferences.create_index([("user_id", ASCENDING)], unique=True)
        self._audit = audit
        self._preferences = preferences

    def disconnect(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._audit = None
        self._preferences = None

    def _require_audit(self):
        if self._audit is None:
            raise AuditConfigurationError("Audit log store is not connected.")
        return self._audit

    def _require_preferences(self):
        if self._preferences is None:
            raise AuditConfigurationError("Audit log store is not connected.")
        return self._preferences

    def log_action(
        self,
        *,
        user_id: str,
        user_role: str,
        action: str,
        table: str,
        record_id: str,
        student_id: Optional[str] = None,
        old_data: Optional[dict[str, object]] = None,
        new_data: Optional[dict[str, object]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action: {action}")
        entry: dict[str, object] = {
            "user_id": user_id,
            "user_role": user_role,
            "action": action,
            "table": table,
            "record_id": record_id,
            "student_id": student_id,
            "old_data": old_data,
            "new_data": new_data,
            "timestamp": _utcnow(),
            "ip_address": ip_address,
            "user_agent": user_agent,
        }
        self._require_audit().insert_one(entry)

    def get_audit_logs(
        self,
        user_id: Optional[str] = None,
        table: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[dict[str, object]]:
        query: dict[str, object] = {}
        if user_id:
            query["user_id"] = user_id
        if table:
            query["table"] = table
        cursor = (
            self._require_audit()
            .find(query, {"_id": 0})
            .sort("timestamp", DESCENDING)
            .skip(offset)
            .limit(limit)
        )
        return list(cursor)

    def get_student_activity_summary(self, student_id: str, days: int = 30) -> list[dict[str, object]]:
        since = _utcnow() - datetime.timedelta(days=days)
        rows = self._require_audit().aggregate(student_activity_pipeline(student_id, since))
        return [
            {
                "date": row["_id"],
                "actions": row.get("actions", []),
                "total_actions": row.get("total_actions", 0),
            }
            for row in rows
        ]

    def get_progress_analytics(self, teacher_id: str) -> list[dict[str, object]]:
        return list(self._require_audit().aggregate(progress_analytics_pipeline(teacher_id)))

    def save_teacher_preferences(self, preferences: TeacherPreferences) -> None:
        self._require_preferences().replace_one(
            {"user_id": preferences.user_id},
            preferences.to_document(),
            upsert=True,
        )

    def get_teacher_preferences(self, user_id: str) -> Optional[TeacherPreferences]:
        document = self._require_preferences().find_one({"user_id": user_id})
        if document is None:
            return None
        return from_document(document)

    def get_preferences_or_default(self, user_id: str) -> TeacherPreferences:
        return self.get_teacher_preferences(user_id) or default_preferences(user_id)


def get_audit_service() -> Optional[AuditLogService]:
    """Return the connected service, or ``None`` when auditing is not configured."""
    global _service
    settings = get_settings()
    if not settings.AUDIT_LOG_ENABLED or not settings.MONGODB_URI:
        return None
    if _service is None:
        service = AuditLogService(
            settings.MONGODB_URI,
            settings.MONGODB_DB_NAME,
            timeout_ms=settings.MONGODB_TIMEOUT_MS,
        )
        service.connect()
        _service = service
    return _service


def set_audit_service(service: Optional[AuditLogService]) -> None:
    global _service
    _service = service


def reset_audit_service() -> None:
    global _service
    if _service is not None:
        _service.disconnect()
    _service = None


def _request_metadata() -> tuple[Optional[str], Optional[str]]:
    if not has_request_context():
        return None, None
    user_agent = request.headers.get("User-Agent")
    return request.remote_addr, user_agent


def record_action(
    *,
    user_id: str,
    user_role: str,
    action: str,
    table: str,
    record_id: str,
    old_data: Optional[dict[str, object]] = None,
    new_data: Optional[dict[str, object]] = None,
) -> None:
    """Write an audit entry if auditing is configured; failures are only logged."""
    student_id = None
    for data in (new_data, old_data):
        if data and data.get("student_id"):
            student_id = str(data["student_id"])
            break

    try:
        service = get_audit_service()
        if service is None:
            return
        ip_address, user_agent = _request_metadata()
        service.log_action(
            user_id=user_id,
            user_role=user_role,
            action=action,
            table=table,
            record_id=record_id,
            student_id=student_id,
            old_data=old_data,
            new_data=new_data,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    except (PyMongoError, AuditConfigurationError) as exc:
        logger.warning("Failed to write audit log for %s on %s/%s: %s", action, table, record_id, exc)
