from typing import Dict, Iterable, Mapping, Union


ATTENDANCE_STATUSES = ("present", "absent", "late", "justified")
AT_RISK_THRESHOLD = 75.0


def attendance_rate(present: int, late: int, total: int, *, round_to: int = 2) -> float:
    """
    Share of classes attended, as a percentage.
    Late arrivals count as attended; a subject with no records has a rate of 0.
    """
    if total <= 0:
        return 0
    return round((present + late) / total * 100, round_to)


def compute_stats(records: Iterable[Mapping]) -> Dict[str, Union[int, float]]:
    stats: Dict[str, Union[int, float]] = {
        "total": 0,
        "present": 0,
        "absent": 0,
        "late": 0,
        "justified": 0,
        "attendanceRate": 0,
    }

    for record in records:
        stats["total"] += 1
        status = record.get("status")
        # Unknown statuses still count towards the total.
        if status in ATTENDANCE_STATUSES:
            stats[status] += 1

    stats["attendanceRate"] = attendance_rate(stats["present"], stats["late"], stats["total"])
    return stats


def is_at_risk(stats: Mapping) -> bool:
    if not stats.get("total"):
        return False
    return stats["attendanceRate"] < AT_RISK_THRESHOLD
