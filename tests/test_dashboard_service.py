import time
import unittest
from datetime import date

from fake_store import FakeStore
from taskly.services.dashboard_service import DashboardInputError, DashboardService, DashboardServiceError


def _clock():
    return date(2025, 11, 20)


def _task(task_id, due_on, status="pending", subject_id="math", **extra):
    task = {
        "id": task_id,
        "title": f"Task {task_id}",
        "type": "assignment",
        "status": status,
        "subjectId": subject_id,
        "subjectName": subject_id.title(),
        "dueOn": due_on,
        "notes": "",
    }
    task.update(extra)
    return task


SUBJECTS = [
    {"id": "math", "subjectName": "Math", "color": "#f00", "icon": "calc"},
    {"id": "bio", "subjectName": "Biology", "color": "#0f0", "icon": "leaf"},
]


def _store(**kwargs):
    tasks = kwargs.pop("tasks", [
        _task("t1", 20251125),
        _task("t2", 20251110),
        _task("t3", 20251120),
        _task("t4", 20251101, status="delivered"),
        _task("t5", 20251201, status="completed", subject_id="bio"),
        _task("t6", 20251122, subject_id="bio"),
    ])
    attendance = kwargs.pop("attendance", {
        "math": [{"status": "present"}, {"status": "present"}, {"status": "late"}, {"status": "absent"}],
        "bio": [{"status": "absent"}, {"status": "absent"}, {"status": "present"}],
    })
    return FakeStore(tasks=tasks, subjects=kwargs.pop("subjects", SUBJECTS), attendance=attendance)


class DashboardOverviewTests(unittest.IsolatedAsyncioTestCase):
    async def test_overview_shape(self):
        service = DashboardService(_store(), clock=_clock)
        overview = await service.get_overview("user-1")

        self.assertEqual(
            set(overview),
            {"upcomingTasks", "tasksSummary", "subjectsSummary", "attendanceSummary"},
        )
        self.assertEqual(
            overview["tasksSummary"],
            {"total": 6, "pending": 4, "delivered": 1, "completed": 1, "overdue": 1},
        )

    async def test_stored_overdue_flag_is_ignored(self):
        store = _store(tasks=[
            _task("stale", 20251001, isOverdue=False),
            _task("wrong", 20251230, isOverdue=True),
            _task("done", 20250101, status="completed", isOverdue=True),
        ])
        overview = await DashboardService(store, clock=_clock).get_overview("user-1")

        self.assertEqual(overview["tasksSummary"]["overdue"], 1)
        self.assertEqual([task["id"] for task in overview["upcomingTasks"]], ["wrong"])
        self.assertFalse(overview["upcomingTasks"][0]["isOverdue"])

    async def test_upcoming_tasks_sorted_and_trimmed(self):
        overview = await DashboardService(_store(), clock=_clock).get_overview("user-1", upcoming_limit=2)
        upcoming = overview["upcomingTasks"]

        self.assertEqual([task["id"] for task in upcoming], ["t3", "t6"])
        self.assertEqual(
            set(upcoming[0]),
            {"id", "title", "subjectId", "subjectName", "type", "status", "dueOn", "isOverdue"},
        )
        for task in upcoming:
            self.assertEqual(task["status"], "pending")
            self.assertFalse(task["isOverdue"])

    async def test_upcoming_ties_keep_fetch_order(self):
        store = _store(tasks=[
            _task("b", 20251130),
            _task("a", 20251125),
            _task("c", 20251130),
            _task("d", 20251130),
        ])
        overview = await DashboardService(store, clock=_clock).get_overview("user-1", upcoming_limit=10)
        self.assertEqual([task["id"] for task in overview["upcomingTasks"]], ["a", "b", "c", "d"])

    async def test_missing_subject_name_defaults_to_empty(self):
        store = _store(tasks=[{"id": "x", "title": "X", "type": "quiz", "status": "pending", "subjectId": "math", "dueOn": 20251130}])
        overview = await DashboardService(store, clock=_clock).get_overview("user-1")
        self.assertEqual(overview["upcomingTasks"][0]["subjectName"], "")

    async def test_subject_summaries(self):
        overview = await DashboardService(_store(), clock=_clock).get_overview("user-1")
        by_id = {row["subjectId"]: row for row in overview["subjectsSummary"]}

        self.assertEqual(by_id["math"]["pendingTasks"], 3)
        self.assertEqual(by_id["bio"]["pendingTasks"], 1)
        self.assertEqual(by_id["math"]["subjectName"], "Math")
        self.assertEqual(by_id["math"]["color"], "#f00")
        self.assertEqual(
            by_id["math"]["attendance"],
            {
                "totalClasses": 4,
                "absences": 1,
                "presences": 2,
                "lates": 1,
                "justified": 0,
                "attendanceRate": 75.0,
                "isAtRisk": False,
            },
        )
        self.assertEqual(by_id["bio"]["attendance"]["attendanceRate"], 33.33)
        self.assertTrue(by_id["bio"]["attendance"]["isAtRisk"])

    async def test_attendance_summary_sums_all_subjects(self):
        overview = await DashboardService(_store(), clock=_clock).get_overview("user-1")
        self.assertEqual(
            overview["attendanceSummary"],
            {
                "totalClasses": 7,
                "absences": 3,
                "presences": 3,
                "lates": 1,
                "justified": 0,
                "attendanceRate": 57.14,
            },
        )

    async def test_one_subject_attendance_failure_is_degraded(self):
        store = _store()
        store.failing_subjects.add("bio")
        with self.assertLogs("taskly.services.dashboard_service", level="WARNING") as logs:
            overview = await DashboardService(store, clock=_clock).get_overview("user-1")

        by_id = {row["subjectId"]: row for row in overview["subjectsSummary"]}
        self.assertEqual(by_id["math"]["attendance"]["totalClasses"], 4)
        self.assertEqual(by_id["math"]["attendance"]["attendanceRate"], 75.0)
        self.assertEqual(
            by_id["bio"]["attendance"],
            {
                "totalClasses": 0,
                "absences": 0,
                "presences": 0,
                "lates": 0,
                "justified": 0,
                "attendanceRate": 0,
                "isAtRisk": False,
            },
        )
        self.assertEqual(overview["attendanceSummary"]["totalClasses"], 4)
        self.assertIn("bio", "\n".join(logs.output))

    async def test_attendance_timeout_is_degraded(self):
        store = _store()
        store.slow_subjects.add("math")
        service = DashboardService(store, clock=_clock, attendance_timeout=0.01)
        overview = await service.get_overview("user-1")

        by_id = {row["subjectId"]: row for row in overview["subjectsSummary"]}
        self.assertEqual(by_id["math"]["attendance"]["totalClasses"], 0)
        self.assertEqual(by_id["bio"]["attendance"]["totalClasses"], 3)

    async def test_task_fetch_failure_aborts(self):
        store = _store()
        store.failing.add("list_tasks")
        with self.assertLogs("taskly.services.dashboard_service", level="ERROR"):
            with self.assertRaises(DashboardServiceError) as ctx:
                await DashboardService(store, clock=_clock).get_overview("user-1")

        self.assertIsInstance(ctx.exception.__cause__, RuntimeError)
        self.assertFalse(store.called("list_attendance"))

    async def test_subject_fetch_failure_aborts(self):
        store = _store()
        store.failing.add("list_subjects")
        with self.assertLogs("taskly.services.dashboard_service", level="ERROR"):
            with self.assertRaises(DashboardServiceError):
                await DashboardService(store, clock=_clock).get_overview("user-1")
        self.assertFalse(store.called("list_attendance"))

    async def test_invalid_input_rejected_before_store_access(self):
        store = _store()
        service = DashboardService(store, clock=_clock)
        for uid in ("", "   ", None):
            with self.assertRaises(DashboardInputError):
                await service.get_overview(uid)
        for limit in (0, -3, "5", True):
            with self.assertRaises(DashboardInputError):
                await service.get_overview("user-1", upcoming_limit=limit)
        self.assertEqual(store.calls, [])

    async def test_no_subjects(self):
        store = _store(subjects=[], attendance={})
        overview = await DashboardService(store, clock=_clock).get_overview("user-1")
        self.assertEqual(overview["subjectsSummary"], [])
        self.assertEqual(overview["attendanceSummary"]["attendanceRate"], 0)

    async def test_tasks_and_subjects_fetched_together(self):
        store = _store(subjects=[], attendance={})
        store.delay = 0.05
        await DashboardService(store, clock=_clock).get_overview("user-1")
        self.assertEqual(store.peak_in_flight, 2)

    async def test_attendance_fetched_for_all_subjects_at_once(self):
        subjects = [{"id": f"s{n}", "subjectName": f"S{n}", "color": "#000", "icon": "book"} for n in range(5)]
        store = _store(subjects=subjects, attendance={})
        store.delay = 0.2

        started = time.monotonic()
        overview = await DashboardService(store, clock=_clock).get_overview("user-1")
        elapsed = time.monotonic() - started

        self.assertEqual(len(overview["subjectsSummary"]), 5)
        self.assertEqual(store.peak_in_flight, 5)
        # One round trip for tasks and subjects, one for all attendance.
        self.assertLess(elapsed, 0.6)


class DashboardProjectionTests(unittest.IsolatedAsyncioTestCase):
    async def test_tasks_summary_matches_overview(self):
        service = DashboardService(_store(), clock=_clock)
        summary = await service.get_tasks_summary("user-1")
        overview = await service.get_overview("user-1")

        self.assertEqual(summary, overview["tasksSummary"])
        self.assertEqual(summary["total"], summary["pending"] + summary["delivered"] + summary["completed"])

    async def test_upcoming_tasks_matches_overview(self):
        service = DashboardService(_store(), clock=_clock)
        for limit in (1, 2, 5):
            upcoming = await service.get_upcoming_tasks("user-1", limit)
            overview = await service.get_overview("user-1", upcoming_limit=limit)
            self.assertEqual(upcoming, overview["upcomingTasks"])

    async def test_upcoming_tasks_prefilters_pending(self):
        store = _store()
        await DashboardService(store, clock=_clock).get_upcoming_tasks("user-1")
        self.assertIn(("list_tasks", "user-1", {"status": "pending"}), store.calls)

    async def test_projection_failures_are_wrapped(self):
        store = _store()
        store.failing.add("list_tasks")
        service = DashboardService(store, clock=_clock)
        with self.assertLogs("taskly.services.dashboard_service", level="ERROR"):
            with self.assertRaises(DashboardServiceError):
                await service.get_tasks_summary("user-1")
            with self.assertRaises(DashboardServiceError):
                await service.get_upcoming_tasks("user-1")

    async def test_clock_drives_overdue(self):
        store = _store(tasks=[_task("t", 20251120)])
        on_due_date = DashboardService(store, clock=lambda: date(2025, 11, 20))
        day_after = DashboardService(store, clock=lambda: date(2025, 11, 21))

        self.assertEqual((await on_due_date.get_tasks_summary("user-1"))["overdue"], 0)
        self.assertEqual((await day_after.get_tasks_summary("user-1"))["overdue"], 1)


if __name__ == "__main__":
    unittest.main()
