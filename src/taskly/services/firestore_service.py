import logging
from datetime import date
from typing import Any, Awaitable, Dict, List, Optional

try:
    from google.cloud import firestore
    from google.cloud.firestore_v1.base_query import FieldFilter
except ModuleNotFoundError as exc:
    raise ModuleNotFoundError(
        "Missing dependency 'google-cloud-firestore'. Run pip install -e . first."
    ) from exc
from google.api_core.exceptions import GoogleAPIError, NotFound

from taskly.config.settings import settings
from taskly.core.attendance import compute_stats, is_at_risk
from taskly.core.overdue import Clock, is_overdue, today_as_int


logger = logging.getLogger(__name__)

# Fields the server owns; never taken from a client update.
PROTECTED_FIELDS = ("id", "createdAt")


class FirestoreServiceError(Exception):
    pass


class EntityNotFoundError(FirestoreServiceError):
    pass


def _with_id(snapshot) -> Dict[str, Any]:
    data = snapshot.to_dict() or {}
    data["id"] = snapshot.id
    return data


def _strip_protected(updates: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in updates.items() if key not in PROTECTED_FIELDS}


class FirestoreService:
    def __init__(
        self,
        project_id: str,
        database: str = "(default)",
        *,
        client: Optional[Any] = None,
        clock: Clock = date.today,
    ) -> None:
        self.clock = clock
        if client is not None:
            self.db = client
            return
        if not project_id:
            raise FirestoreServiceError("Missing FIREBASE_PROJECT_ID in environment")
        self.db = firestore.AsyncClient(project=project_id, database=database)

    @classmethod
    def from_settings(cls) -> "FirestoreService":
        return cls(settings.firebase_project_id, settings.firestore_database)

    # -- references -------------------------------------------------------

    def _users(self):
        return self.db.collection(settings.users_collection)

    def _user_ref(self, uid: str):
        return self._users().document(uid)

    def _subjects(self, uid: str):
        return self._user_ref(uid).collection(settings.subjects_collection)

    def _tasks(self, uid: str):
        return self._user_ref(uid).collection(settings.tasks_collection)

    def _notes(self, uid: str):
        return self._user_ref(uid).collection(settings.notes_collection)

    def _attendance(self, uid: str, subject_id: str):
        return self._subjects(uid).document(subject_id).collection(settings.attendance_collection)

    # -- low level --------------------------------------------------------

    async def _fetch(self, query, operation: str, uid: str) -> List:
        try:
            return list(await query.get())
        except GoogleAPIError as exc:
            logger.exception("Firestore %s failed for user %s", operation, uid)
            raise FirestoreServiceError(f"Failed to {operation}") from exc

    async def _snapshot(self, ref, operation: str, uid: str):
        try:
            return await ref.get()
        except GoogleAPIError as exc:
            logger.exception("Firestore %s failed for user %s", operation, uid)
            raise FirestoreServiceError(f"Failed to {operation}") from exc

    async def _commit(self, write: Awaitable, operation: str, uid: str) -> None:
        try:
            await write
        except NotFound as exc:
            raise EntityNotFoundError(f"Failed to {operation}: document not found") from exc
        except GoogleAPIError as exc:
            logger.exception("Firestore %s failed for user %s", operation, uid)
            raise FirestoreServiceError(f"Failed to {operation}") from exc

    async def _create(self, collection, data: Dict[str, Any], operation: str, uid: str) -> Dict[str, Any]:
        ref = collection.document()
        await self._commit(ref.set(data), operation, uid)
        # Re-read so the caller sees resolved server timestamps.
        return _with_id(await self._snapshot(ref, operation, uid))

    async def _update(self, ref, updates: Dict[str, Any], operation: str, uid: str) -> None:
        data = _strip_protected(updates)
        data["updatedAt"] = firestore.SERVER_TIMESTAMP
        await self._commit(ref.update(data), operation, uid)

    def _with_overdue(self, snapshot, today: int) -> Dict[str, Any]:
        task = _with_id(snapshot)
        task["isOverdue"] = is_overdue(task.get("dueOn"), task.get("status"), today=today)
        return task

    # -- users ------------------------------------------------------------

    async def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        query = self._users().where(filter=FieldFilter("email", "==", email)).limit(1)
        docs = await self._fetch(query, "look up user by email", email)
        if not docs:
            return None
        return _with_id(docs[0])

    async def get_user(self, uid: str) -> Optional[Dict[str, Any]]:
        snap = await self._snapshot(self._user_ref(uid), "fetch user", uid)
        if not snap.exists:
            return None
        return _with_id(snap)

    async def create_user(self, email: str, password_hash: str) -> str:
        ref = self._users().document()
        await self._commit(
            ref.set({"email": email, "password": password_hash, "authenticated": True}),
            "create user",
            email,
        )
        return ref.id

    async def set_authenticated(self, uid: str, authenticated: bool) -> None:
        await self._commit(
            self._user_ref(uid).update({"authenticated": authenticated}),
            "update authentication flag",
            uid,
        )

    # -- subjects ---------------------------------------------------------

    async def create_subject(self, uid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        document = {
            "subjectName": data["subjectName"],
            "teacherName": data["teacherName"],
            "color": data["color"],
            "icon": data["icon"],
            "totalClasses": data["totalClasses"],
            "classTime": data["classTime"],
            "classEndTime": data.get("classEndTime") or "",
            "semester": data["semester"],
            "year": data["year"],
            "collegePeriod": data["collegePeriod"],
            "daysOfWeek": data.get("daysOfWeek") or [],
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        return await self._create(self._subjects(uid), document, "create subject", uid)

    async def list_subjects(self, uid: str) -> List[Dict[str, Any]]:
        docs = await self._fetch(self._subjects(uid), "fetch subjects", uid)
        return [_with_id(doc) for doc in docs]

    async def get_subject(self, uid: str, subject_id: str) -> Optional[Dict[str, Any]]:
        snap = await self._snapshot(self._subjects(uid).document(subject_id), "fetch subject", uid)
        if not snap.exists:
            return None
        return _with_id(snap)

    async def update_subject(self, uid: str, subject_id: str, updates: Dict[str, Any]) -> None:
        await self._update(self._subjects(uid).document(subject_id), updates, "update subject", uid)

    async def delete_subject(self, uid: str, subject_id: str) -> None:
        # Tasks, notes and the attendance sub-collection are left in place.
        await self._commit(self._subjects(uid).document(subject_id).delete(), "delete subject", uid)

    # -- tasks ------------------------------------------------------------

    async def create_task(self, uid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        overdue = data.get("isOverdue")
        if overdue is None:
            overdue = is_overdue(data["dueOn"], data["status"], today=today_as_int(self.clock))

        document = {
            "title": data["title"],
            "type": data["type"],
            "status": data["status"],
            "subjectId": data["subjectId"],
            "subjectName": data.get("subjectName") or "",
            "dueOn": data["dueOn"],
            "notes": data.get("notes") or "",
            "isOverdue": overdue,
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        return await self._create(self._tasks(uid), document, "create task", uid)

    async def list_tasks(self, uid: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        filters = filters or {}
        query = self._tasks(uid)
        for field in ("subjectId", "status", "type", "isOverdue"):
            if filters.get(field) is not None:
                query = query.where(filter=FieldFilter(field, "==", filters[field]))
        if filters.get("dueOnStart"):
            query = query.where(filter=FieldFilter("dueOn", ">=", filters["dueOnStart"]))
        if filters.get("dueOnEnd"):
            query = query.where(filter=FieldFilter("dueOn", "<=", filters["dueOnEnd"]))

        docs = await self._fetch(query, "fetch tasks", uid)
        today = today_as_int(self.clock)
        tasks = [self._with_overdue(doc, today) for doc in docs]
        # Sorted here rather than with order_by to avoid a composite index per filter.
        tasks.sort(key=lambda task: task.get("dueOn") or 0)
        return tasks

    async def get_task(self, uid: str, task_id: str) -> Optional[Dict[str, Any]]:
        snap = await self._snapshot(self._tasks(uid).document(task_id), "fetch task", uid)
        if not snap.exists:
            return None
        return self._with_overdue(snap, today_as_int(self.clock))

    async def update_task(self, uid: str, task_id: str, updates: Dict[str, Any]) -> None:
        ref = self._tasks(uid).document(task_id)
        updates = _strip_protected(updates)

        if "status" in updates or "dueOn" in updates:
            snap = await self._snapshot(ref, "fetch task", uid)
            if snap.exists:
                current = snap.to_dict() or {}
                status = updates.get("status") or current.get("status")
                due_on = updates.get("dueOn") or current.get("dueOn")
                updates["isOverdue"] = is_overdue(due_on, status, today=today_as_int(self.clock))

        await self._update(ref, updates, "update task", uid)

    async def delete_task(self, uid: str, task_id: str) -> None:
        await self._commit(self._tasks(uid).document(task_id).delete(), "delete task", uid)

    # -- notes ------------------------------------------------------------

    async def create_note(self, uid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        document = {
            "title": data["title"],
            "content": data["content"],
            "subjectId": data["subjectId"],
            "subjectName": data.get("subjectName") or "",
            "pinned": bool(data.get("pinned")),
            "createdAt": firestore.SERVER_TIMESTAMP,
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        return await self._create(self._notes(uid), document, "create note", uid)

    async def list_notes(self, uid: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        filters = filters or {}
        query = self._notes(uid)
        if filters.get("subjectId"):
            query = query.where(filter=FieldFilter("subjectId", "==", filters["subjectId"]))
        if filters.get("pinned") is not None:
            query = query.where(filter=FieldFilter("pinned", "==", filters["pinned"]))

        docs = await self._fetch(query, "fetch notes", uid)
        notes = [_with_id(doc) for doc in docs]

        search = (filters.get("search") or "").lower()
        if search:
            notes = [
                note
                for note in notes
                if search in str(note.get("title", "")).lower() or search in str(note.get("content", "")).lower()
            ]

        notes.sort(key=_note_updated_at, reverse=True)
        notes.sort(key=lambda note: not note.get("pinned"))
        return notes

    async def get_note(self, uid: str, note_id: str) -> Optional[Dict[str, Any]]:
        snap = await self._snapshot(self._notes(uid).document(note_id), "fetch note", uid)
        if not snap.exists:
            return None
        return _with_id(snap)

    async def update_note(self, uid: str, note_id: str, updates: Dict[str, Any]) -> None:
        await self._update(self._notes(uid).document(note_id), updates, "update note", uid)

    async def delete_note(self, uid: str, note_id: str) -> None:
        await self._commit(self._notes(uid).document(note_id).delete(), "delete note", uid)

    # -- attendance -------------------------------------------------------

    async def upsert_attendance(self, uid: str, subject_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        ref = self._attendance(uid, subject_id).document(data["date"])
        existing = await self._snapshot(ref, "fetch attendance", uid)

        document = {
            "date": data["date"],
            "status": data["status"],
            "subjectId": subject_id,
            "subjectName": data.get("subjectName") or "",
            "notes": data.get("notes") or "",
            "updatedAt": firestore.SERVER_TIMESTAMP,
        }
        if not existing.exists:
            document["createdAt"] = firestore.SERVER_TIMESTAMP

        await self._commit(ref.set(document, merge=True), "upsert attendance", uid)
        return _with_id(await self._snapshot(ref, "fetch attendance", uid))

    async def list_attendance(
        self,
        uid: str,
        subject_id: str,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        filters = filters or {}
        query = self._attendance(uid, subject_id)
        if filters.get("status"):
            query = query.where(filter=FieldFilter("status", "==", filters["status"]))
        if filters.get("dateStart"):
            query = query.where(filter=FieldFilter("date", ">=", filters["dateStart"]))
        if filters.get("dateEnd"):
            query = query.where(filter=FieldFilter("date", "<=", filters["dateEnd"]))
        if filters:
            query = query.order_by("date", direction=firestore.Query.DESCENDING)
            if filters.get("limit"):
                query = query.limit(int(filters["limit"]))

        docs = await self._fetch(query, f"fetch attendance for subject {subject_id}", uid)
        records = [_with_id(doc) for doc in docs]
        if not filters:
            records.sort(key=lambda record: record.get("date", ""), reverse=True)
        return records

    async def get_attendance(self, uid: str, subject_id: str, attendance_date: str) -> Optional[Dict[str, Any]]:
        ref = self._attendance(uid, subject_id).document(attendance_date)
        snap = await self._snapshot(ref, "fetch attendance", uid)
        if not snap.exists:
            return None
        return _with_id(snap)

    async def delete_attendance(self, uid: str, subject_id: str, attendance_date: str) -> None:
        ref = self._attendance(uid, subject_id).document(attendance_date)
        await self._commit(ref.delete(), "delete attendance", uid)

    async def attendance_stats(self, uid: str, subject_id: str) -> Dict[str, Any]:
        records = await self.list_attendance(uid, subject_id)
        stats = compute_stats(records)
        stats["isAtRisk"] = is_at_risk(stats)
        return stats


def _note_updated_at(note: Dict[str, Any]) -> float:
    value = note.get("updatedAt")
    if value is None or not hasattr(value, "timestamp"):
        return 0.0
    return value.timestamp()
