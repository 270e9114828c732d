from dataclasses import dataclass
import os
from typing import Optional
from dotenv import load_dotenv


load_dotenv()


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    return float(value)


def parse_positive_int(value: Optional[str], default: int) -> int:
    try:
        parsed = int(value) if value is not None else default
    except ValueError:
        return default
    return parsed if parsed > 0 else default


@dataclass(frozen=True)
class Settings:
    firebase_project_id: str = os.getenv("FIREBASE_PROJECT_ID", "")
    firestore_database: str = os.getenv("FIRESTORE_DATABASE", "(default)")

    users_collection: str = "users"
    subjects_collection: str = "subjects"
    tasks_collection: str = "tasks"
    notes_collection: str = "notes"
    attendance_collection: str = "attendance"

    upcoming_limit: int = parse_positive_int(os.getenv("DASHBOARD_UPCOMING_LIMIT"), 5)
    # Seconds; None leaves the per-subject attendance fan-out unbounded.
    attendance_fetch_timeout: Optional[float] = _optional_float(os.getenv("ATTENDANCE_FETCH_TIMEOUT"))

    cors_allowed_origins: tuple[str, ...] = _split_csv(
        os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    )

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    port: int = int(os.getenv("PORT", "8000"))


settings = Settings()
