"""Request payloads. Field names follow the stored document fields."""
from typing import Annotated, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from taskly.core.validation import WEEK_DAYS, is_valid_attendance_date, is_valid_due_on


TaskType = Literal["assignment", "exam", "quiz", "presentation", "project", "other"]
TaskStatus = Literal["pending", "delivered", "completed"]
AttendanceStatus = Literal["present", "absent", "late", "justified"]


def _check_due_on(value: Optional[int]) -> Optional[int]:
    if value is not None and not is_valid_due_on(value):
        raise ValueError("dueOn must be a valid date in YYYYMMDD format (ex: 20251130)")
    return value


def _check_days(value: Optional[List[str]]) -> Optional[List[str]]:
    if value:
        invalid = [day for day in value if day not in WEEK_DAYS]
        if invalid:
            raise ValueError(f"daysOfWeek contains invalid days: {', '.join(invalid)}")
    return value


DueOn = Annotated[int, AfterValidator(_check_due_on)]
WeekDays = Annotated[List[str], AfterValidator(_check_days)]


class _UpdatePayload(BaseModel):
    # Unknown fields (including id and createdAt) are rejected.
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def require_fields(self):
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided for update")
        return self


class AuthPayload(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class UserIdPayload(BaseModel):
    id: str = Field(min_length=1)


class SubjectPayload(BaseModel):
    subjectName: str = Field(min_length=1)
    teacherName: str = Field(min_length=1)
    color: str = Field(min_length=1)
    icon: str = Field(min_length=1)
    totalClasses: int = Field(ge=0)
    classTime: str = Field(min_length=1)
    classEndTime: str = ""
    semester: str = Field(min_length=1)
    year: int = Field(ge=1900, le=2100)
    collegePeriod: str = Field(min_length=1)
    daysOfWeek: WeekDays = Field(default_factory=list)


class SubjectUpdatePayload(_UpdatePayload):
    subjectName: Optional[str] = Field(default=None, min_length=1)
    teacherName: Optional[str] = Field(default=None, min_length=1)
    color: Optional[str] = Field(default=None, min_length=1)
    icon: Optional[str] = Field(default=None, min_length=1)
    totalClasses: Optional[int] = Field(default=None, ge=0)
    classTime: Optional[str] = Field(default=None, min_length=1)
    classEndTime: Optional[str] = None
    semester: Optional[str] = Field(default=None, min_length=1)
    year: Optional[int] = Field(default=None, ge=1900, le=2100)
    collegePeriod: Optional[str] = Field(default=None, min_length=1)
    daysOfWeek: Optional[WeekDays] = None


class TaskPayload(BaseModel):
    title: str = Field(min_length=1)
    type: TaskType
    status: TaskStatus
    subjectId: str = Field(min_length=1)
    subjectName: str = ""
    dueOn: DueOn
    notes: str = ""
    # When given, stored verbatim instead of being computed from dueOn/status.
    isOverdue: Optional[bool] = None

    @field_validator("title", "subjectId")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must be a non-empty string")
        return value


class TaskUpdatePayload(_UpdatePayload):
    title: Optional[str] = Field(default=None, min_length=1)
    type: Optional[TaskType] = None
    status: Optional[TaskStatus] = None
    subjectId: Optional[str] = Field(default=None, min_length=1)
    subjectName: Optional[str] = None
    dueOn: Optional[DueOn] = None
    notes: Optional[str] = None
    isOverdue: Optional[bool] = None


class NotePayload(BaseModel):
    title: str = Field(min_length=1)
    content: str
    subjectId: str = Field(min_length=1)
    subjectName: str = ""
    pinned: bool = False


class NoteUpdatePayload(_UpdatePayload):
    title: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = None
    subjectId: Optional[str] = Field(default=None, min_length=1)
    subjectName: Optional[str] = None
    pinned: Optional[bool] = None


class AttendancePayload(BaseModel):
    date: str
    status: AttendanceStatus
    subjectName: str = ""
    notes: str = ""

    @field_validator("date")
    @classmethod
    def check_date(cls, value: str) -> str:
        if not is_valid_attendance_date(value):
            raise ValueError("date must be in YYYY-MM-DD format (ex: 2025-11-26)")
        return value
