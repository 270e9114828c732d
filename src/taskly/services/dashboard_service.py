"""Dashboard aggregation over a user's tasks, subjects and attendance.

The store only has to provide three coroutines:

    list_tasks(uid[, filters]) -> list of task dicts
    list_subjects(uid) -> list of subject dicts
    list_attendance(uid, subject_id) -> list of attendance dicts

Tasks and subjects are fetched together and either failure aborts the
aggregation. Attendance is fetched per subject afterwards and a failure there
only blanks that subject's statistics.
"""
import asyncio
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from taskly.config.settings import settings
from taskly.core.attendance import ATTENDANCE_STATUSES, attendance_rate, compute_stats, is_at_risk
from taskly.core.overdue import Clock, is_overdue, today_as_int


logger = logging.getLogger(__name__)

UPCOMING_FIELDS = ("id", "title", "subjectId", "subjectName", "type", "status", "dueOn", "isOverdue")


class DashboardServiceError(Exception):
    pass


class DashboardInputError(ValueError):
    pass


def _validate_user_id(uid: Any) -> str:
    if not isinstance(uid, str) or not uid.strip():
        raise DashboardInputError("userId is required")
    return uid.strip()


def _validate_limit(limit: Any, name: str) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise DashboardInputError(f"{name} must be a positive integer")
    return limit


def with_overdue(tasks: Sequence[Dict[str, Any]], today: int) -> List[Dict[str, Any]]:
    """Copy tasks with `isOverdue` recomputed; the stored value is ignored."""
    return [
        {**task, "isOverdue": is_overdue(task.get("dueOn"), task.get("status"), today=today)}
        for task in tasks
    ]


def summarize_tasks(tasks: Sequence[Dict[str, Any]]) -> Dict[str, int]:
    summary = {"total": len(tasks), "pending": 0, "delivered": 0, "completed": 0, "overdue": 0}
    for task in tasks:
        status = task.get("status")
        if status in ("pending", "delivered", "completed"):
            summary[status] += 1
        if status == "pending" and task.get("isOverdue"):
            summary["overdue"] += 1
    return summary


def upcoming_tasks(tasks: Sequence[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
    pending = [task for task in tasks if task.get("status") == "pending" and not task.get("isOverdue")]
    # sorted() is stable, so equal due dates keep fetch order.
    pending = sorted(pending, key=lambda task: int(task.get("dueOn") or 0))
    return [_upcoming_view(task) for task in pending[:limit]]


def _upcoming_view(task: Dict[str, Any]) -> Dict[str, Any]:
    view = {field: task.get(field) for field in UPCOMING_FIELDS}
    view["subjectName"] = task.get("subjectName") or ""
    return view


def subject_summary(
    subject: Dict[str, Any],
    tasks: Sequence[Dict[str, Any]],
    records: Sequence[Dict[str, Any]],
) -> Dict[str, Any]:
    stats = compute_stats(records)
    pending = sum(1 for task in tasks if task.get("subjectId") == subject["id"] and task.get("status") == "pending")
    return {
        "subjectId": subject["id"],
        "subjectName": subject.get("subjectName"),
        "color": subject.get("color"),
        "icon": subject.get("icon"),
        "pendingTasks": pending,
        "attendance": {
            "totalClasses": stats["total"],
            "absences": stats["absent"],
            "presences": stats["present"],
            "lates": stats["late"],
            "justified": stats["justified"],
            "attendanceRate": stats["attendanceRate"],
            "isAtRisk": is_at_risk(stats),
        },
    }


def attendance_summary(records_by_subject: Dict[str, List[Dict[str, Any]]]) -> Dict[str, Any]:
    counts = {status: 0 for status in ATTENDANCE_STATUSES}
    total = 0
    for records in records_by_subject.values():
        for record in records:
            total += 1
            if record.get("status") in counts:
                counts[record["status"]] += 1

    return {
        "totalClasses": total,
        "absences": counts["absent"],
        "presences": counts["present"],
        "lates": counts["late"],
        "justified": counts["justified"],
        "attendanceRate": attendance_rate(counts["present"], counts["late"], total),
    }


class DashboardService:
    def __init__(
        self,
        store,
        *,
        clock: Clock = date.today,
        attendance_timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.attendance_timeout = attendance_timeout

    @classmethod
    def from_store(cls, store) -> "DashboardService":
        return cls(store, attendance_timeout=settings.attendance_fetch_timeout)

    async def get_overview(self, uid: str, upcoming_limit: Optional[int] = None) -> Dict[str, Any]:
        uid = _validate_user_id(uid)
        limit = _validate_limit(settings.upcoming_limit if upcoming_limit is None else upcoming_limit, "upcomingLimit")

        task_rows, subjects = await self._fetch_tasks_and_subjects(uid)

        tasks = with_overdue(task_rows, today_as_int(self.clock))
        records_by_subject = await self._fetch_attendance(uid, subjects)

        return {
            "upcomingTasks": upcoming_tasks(tasks, limit),
            "tasksSummary": summarize_tasks(tasks),
            "subjectsSummary": [
                subject_summary(subject, tasks, records_by_subject.get(subject["id"], []))
                for subject in subjects
            ],
            "attendanceSummary": attendance_summary(records_by_subject),
        }

    async def get_tasks_summary(self, uid: str) -> Dict[str, int]:
        uid = _validate_user_id(uid)
        try:
            rows = await self.store.list_tasks(uid)
        except Exception as exc:
            logger.exception("Failed to fetch tasks summary for user %s", uid)
            raise DashboardServiceError("Failed to fetch tasks summary from database") from exc
        return summarize_tasks(with_overdue(rows, today_as_int(self.clock)))

    async def get_upcoming_tasks(self, uid: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        uid = _validate_user_id(uid)
        limit = _validate_limit(settings.upcoming_limit if limit is None else limit, "limit")
        try:
            rows = await self.store.list_tasks(uid, {"status": "pending"})
        except Exception as exc:
            logger.exception("Failed to fetch upcoming tasks for user %s", uid)
            raise DashboardServiceError("Failed to fetch upcoming tasks from database") from exc
        return upcoming_tasks(with_overdue(rows, today_as_int(self.clock)), limit)

    async def _fetch_tasks_and_subjects(self, uid: str):
        jobs = [
            asyncio.ensure_future(self.store.list_tasks(uid)),
            asyncio.ensure_future(self.store.list_subjects(uid)),
        ]
        try:
            tasks, subjects = await asyncio.gather(*jobs)
        except Exception as exc:
            for job in jobs:
                job.cancel()
            logger.exception("Failed to fetch dashboard overview for user %s", uid)
            raise DashboardServiceError("Failed to fetch dashboard overview from database") from exc
        return tasks, subjects

    async def _fetch_attendance(self, uid: str, subjects: Sequence[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
        results = await asyncio.gather(*(self._subject_attendance(uid, subject["id"]) for subject in subjects))
        return {subject["id"]: records for subject, records in zip(subjects, results)}

    async def _subject_attendance(self, uid: str, subject_id: str) -> List[Dict[str, Any]]:
        try:
            fetch = self.store.list_attendance(uid, subject_id)
            if self.attendance_timeout is not None:
                return list(await asyncio.wait_for(fetch, self.attendance_timeout))
            return list(await fetch)
        except Exception as exc:
            logger.warning(
                "Attendance unavailable for user %s subject %s, using empty records: %r",
                uid,
                subject_id,
                exc,
            )
            return []
