import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware

from taskly.config.settings import parse_positive_int, settings
from taskly.schemas import (
    AttendancePayload,
    AuthPayload,
    NotePayload,
    NoteUpdatePayload,
    SubjectPayload,
    SubjectUpdatePayload,
    TaskPayload,
    TaskUpdatePayload,
    UserIdPayload,
)
from taskly.services.auth_service import AuthService, AuthServiceError
from taskly.services.dashboard_service import DashboardInputError, DashboardService, DashboardServiceError
from taskly.services.firestore_service import EntityNotFoundError, FirestoreService, FirestoreServiceError


logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Taskly API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_store() -> FirestoreService:
    try:
        return FirestoreService.from_settings()
    except FirestoreServiceError as exc:
        logger.error("Firestore is not configured: %s", exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database not configured") from exc


def get_dashboard(store: FirestoreService = Depends(get_store)) -> DashboardService:
    return DashboardService.from_store(store)


def get_auth(store: FirestoreService = Depends(get_store)) -> AuthService:
    return AuthService(store)


def resolve_user_id(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    x_user_id: Optional[str] = Header(default=None),
) -> str:
    uid = (user_id or x_user_id or "").strip()
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User ID is required. Send userId as a query param or the x-user-id header.",
        )
    return uid


def _store_failure(exc: FirestoreServiceError) -> HTTPException:
    if isinstance(exc, EntityNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _not_found(entity: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{entity} not found")


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


# -- auth -------------------------------------------------------------------


@app.post("/signup", status_code=status.HTTP_201_CREATED)
async def sign_up(payload: AuthPayload, auth: AuthService = Depends(get_auth)) -> Dict[str, Any]:
    try:
        result = await auth.sign_up(payload.email, payload.password)
        return {"id": result.uid, "email": result.email}
    except AuthServiceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.post("/login")
async def login(payload: AuthPayload, auth: AuthService = Depends(get_auth)) -> Dict[str, Any]:
    try:
        result = await auth.log_in(payload.email, payload.password)
        return {"id": result.uid, "email": result.email, "authenticated": result.authenticated}
    except AuthServiceError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.post("/logout")
async def logout(payload: UserIdPayload, auth: AuthService = Depends(get_auth)) -> Dict[str, str]:
    try:
        await auth.log_out(payload.id)
        return {"message": "Logout successful"}
    except AuthServiceError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.post("/verifyAuthentication")
async def verify_authentication(payload: UserIdPayload, auth: AuthService = Depends(get_auth)) -> Dict[str, bool]:
    try:
        return {"isAuthenticated": await auth.verify(payload.id)}
    except AuthServiceError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


# -- subjects ---------------------------------------------------------------


@app.get("/subjects")
async def list_subjects(
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    try:
        subjects = await store.list_subjects(uid)
        return {"subjects": subjects, "count": len(subjects)}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.post("/subjects", status_code=status.HTTP_201_CREATED)
async def create_subject(
    payload: SubjectPayload,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    try:
        subject = await store.create_subject(uid, payload.model_dump())
        return {"message": "Subject created successfully", "subject": subject}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.get("/subjects/{subject_id}")
async def get_subject(
    subject_id: str,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    try:
        subject = await store.get_subject(uid, subject_id)
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc
    if subject is None:
        raise _not_found("Subject")
    return {"subject": subject}


@app.patch("/subjects/{subject_id}")
async def update_subject(
    subject_id: str,
    payload: SubjectUpdatePayload,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    try:
        await store.update_subject(uid, subject_id, payload.model_dump(exclude_unset=True))
        return {"message": "Subject updated successfully"}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.delete("/subjects/{subject_id}")
async def delete_subject(
    subject_id: str,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    try:
        await store.delete_subject(uid, subject_id)
        return {"message": "Subject deleted successfully"}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


# -- tasks ------------------------------------------------------------------


@app.get("/tasks")
async def list_tasks(
    subject_id: Optional[str] = Query(default=None, alias="subjectId"),
    task_status: Optional[str] = Query(default=None, alias="status"),
    task_type: Optional[str] = Query(default=None, alias="type"),
    is_overdue: Optional[bool] = Query(default=None, alias="isOverdue"),
    due_on_start: Optional[int] = Query(default=None, alias="dueOnStart"),
    due_on_end: Optional[int] = Query(default=None, alias="dueOnEnd"),
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    filters = {
        "subjectId": subject_id,
        "status": task_status,
        "type": task_type,
        "isOverdue": is_overdue,
        "dueOnStart": due_on_start,
        "dueOnEnd": due_on_end,
    }
    try:
        tasks = await store.list_tasks(uid, {key: value for key, value in filters.items() if value is not None})
        return {"tasks": tasks, "count": len(tasks)}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.get("/tasks/{task_id}")
async def get_task(
    task_id: str,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    try:
        task = await store.get_task(uid, task_id)
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc
    if task is None:
        raise _not_found("Task")
    return {"task": task}


@app.post("/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(
    payload: TaskPayload,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    try:
        task = await store.create_task(uid, payload.model_dump())
        return {"message": "Task created successfully", "task": task}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.patch("/tasks/{task_id}")
async def update_task(
    task_id: str,
    payload: TaskUpdatePayload,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    try:
        await store.update_task(uid, task_id, payload.model_dump(exclude_unset=True))
        return {"message": "Task updated successfully"}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    try:
        await store.delete_task(uid, task_id)
        return {"message": "Task deleted successfully"}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


# -- notes ------------------------------------------------------------------


@app.get("/notes")
async def list_notes(
    subject_id: Optional[str] = Query(default=None, alias="subjectId"),
    pinned: Optional[bool] = None,
    search: Optional[str] = None,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    try:
        notes = await store.list_notes(uid, {"subjectId": subject_id, "pinned": pinned, "search": search})
        return {"notes": notes, "count": len(notes)}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.get("/notes/{note_id}")
async def get_note(
    note_id: str,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    try:
        note = await store.get_note(uid, note_id)
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc
    if note is None:
        raise _not_found("Note")
    return {"note": note}


@app.post("/notes", status_code=status.HTTP_201_CREATED)
async def create_note(
    payload: NotePayload,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    try:
        note = await store.create_note(uid, payload.model_dump())
        return {"message": "Note created successfully", "note": note}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.patch("/notes/{note_id}")
async def update_note(
    note_id: str,
    payload: NoteUpdatePayload,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    try:
        await store.update_note(uid, note_id, payload.model_dump(exclude_unset=True))
        return {"message": "Note updated successfully"}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.delete("/notes/{note_id}")
async def delete_note(
    note_id: str,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    try:
        await store.delete_note(uid, note_id)
        return {"message": "Note deleted successfully"}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


# -- attendance -------------------------------------------------------------


@app.get("/subjects/{subject_id}/attendance")
async def list_attendance(
    subject_id: str,
    attendance_status: Optional[str] = Query(default=None, alias="status"),
    date_start: Optional[str] = Query(default=None, alias="dateStart"),
    date_end: Optional[str] = Query(default=None, alias="dateEnd"),
    limit: Optional[int] = Query(default=None, gt=0),
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    filters = {"status": attendance_status, "dateStart": date_start, "dateEnd": date_end, "limit": limit}
    try:
        records = await store.list_attendance(
            uid,
            subject_id,
            {key: value for key, value in filters.items() if value is not None},
        )
        return {"attendance": records, "count": len(records)}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.get("/subjects/{subject_id}/attendance-stats")
async def attendance_stats(
    subject_id: str,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    try:
        return {"stats": await store.attendance_stats(uid, subject_id)}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.get("/subjects/{subject_id}/attendance/{attendance_date}")
async def get_attendance(
    subject_id: str,
    attendance_date: str,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    try:
        record = await store.get_attendance(uid, subject_id, attendance_date)
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc
    if record is None:
        raise _not_found("Attendance record")
    return {"attendance": record}


@app.post("/subjects/{subject_id}/attendance")
async def upsert_attendance(
    subject_id: str,
    payload: AttendancePayload,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    try:
        record = await store.upsert_attendance(uid, subject_id, payload.model_dump())
        return {"message": "Attendance saved successfully", "attendance": record}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


@app.delete("/subjects/{subject_id}/attendance/{attendance_date}")
async def delete_attendance(
    subject_id: str,
    attendance_date: str,
    uid: str = Depends(resolve_user_id),
    store: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    try:
        await store.delete_attendance(uid, subject_id, attendance_date)
        return {"message": "Attendance deleted successfully"}
    except FirestoreServiceError as exc:
        raise _store_failure(exc) from exc


# -- dashboard --------------------------------------------------------------


@app.get("/dashboard")
async def dashboard_overview(
    upcoming_limit: Optional[str] = Query(default=None, alias="upcomingLimit"),
    uid: str = Depends(resolve_user_id),
    dashboard: DashboardService = Depends(get_dashboard),
) -> Dict[str, Any]:
    try:
        overview = await dashboard.get_overview(uid, parse_positive_int(upcoming_limit, settings.upcoming_limit))
        return {"success": True, "data": overview}
    except DashboardInputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DashboardServiceError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


@app.get("/dashboard/tasks-summary")
async def dashboard_tasks_summary(
    uid: str = Depends(resolve_user_id),
    dashboard: DashboardService = Depends(get_dashboard),
) -> Dict[str, Any]:
    try:
        return {"success": True, "data": await dashboard.get_tasks_summary(uid)}
    except DashboardInputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DashboardServiceError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


@app.get("/dashboard/upcoming-tasks")
async def dashboard_upcoming_tasks(
    limit: Optional[str] = None,
    uid: str = Depends(resolve_user_id),
    dashboard: DashboardService = Depends(get_dashboard),
) -> Dict[str, Any]:
    try:
        tasks = await dashboard.get_upcoming_tasks(uid, parse_positive_int(limit, settings.upcoming_limit))
        return {"success": True, "count": len(tasks), "data": tasks}
    except DashboardInputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DashboardServiceError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


def main() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
