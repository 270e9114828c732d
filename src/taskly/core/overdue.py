from datetime import date
from typing import Callable, Optional


TERMINAL_STATUSES = frozenset({"delivered", "completed"})

Clock = Callable[[], date]


def date_to_int(value: date) -> int:
    """Render a calendar date as a YYYYMMDD integer (e.g. 2025-11-30 -> 20251130)."""
    return value.year * 10000 + value.month * 100 + value.day


def today_as_int(clock: Clock = date.today) -> int:
    return date_to_int(clock())


def is_overdue(due_on: Optional[int], status: Optional[str], *, today: Optional[int] = None) -> bool:
    """
    A task is overdue when it has not reached a terminal status and its due
    date is strictly before today. A task due today is never overdue.
    """
    if status in TERMINAL_STATUSES:
        return False
    if due_on is None:
        return False
    if today is None:
        today = today_as_int()
    return int(due_on) < today
