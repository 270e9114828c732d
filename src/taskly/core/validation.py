import re
from datetime import date
from typing import Any


TASK_TYPES = ("assignment", "exam", "quiz", "presentation", "project", "other")
TASK_STATUSES = ("pending", "delivered", "completed")
WEEK_DAYS = ("SEG", "TER", "QUA", "QUI", "SEX", "SAB", "DOM")

_DAYS_IN_MONTH = (31, 29, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)
_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _valid_parts(year: int, month: int, day: int) -> bool:
    if year < 2000 or year > 2100:
        return False
    if month < 1 or month > 12:
        return False
    return 1 <= day <= _DAYS_IN_MONTH[month - 1]


def is_valid_due_on(value: Any) -> bool:
    """Accept YYYYMMDD integers between 2000 and 2100 with a plausible month/day."""
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    text = str(value)
    if len(text) != 8:
        return False
    return _valid_parts(int(text[:4]), int(text[4:6]), int(text[6:]))


def is_valid_attendance_date(value: Any) -> bool:
    if not isinstance(value, str) or not _DATE_PATTERN.match(value):
        return False
    year, month, day = (int(part) for part in value.split("-"))
    if not _valid_parts(year, month, day):
        return False
    try:
        date(year, month, day)
    except ValueError:
        return False
    return True
