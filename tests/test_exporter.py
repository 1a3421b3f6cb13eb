"""
Tests for the local → Google export phases (custom events, deadlines, exams,
work items).
"""

from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from academic_calendar_sync.models import Course
from academic_calendar_sync.models import CustomEvent
from academic_calendar_sync.models import Deadline
from academic_calendar_sync.models import Exam
from academic_calendar_sync.models import SyncReport
from academic_calendar_sync.models import WorkItem
from academic_calendar_sync.sync.exporter import CUSTOM_EVENTS
from academic_calendar_sync.sync.exporter import DEADLINES
from academic_calendar_sync.sync.exporter import EXAMS
from academic_calendar_sync.sync.exporter import WORK_ITEMS
from academic_calendar_sync.sync.exporter import export_entities
from tests.conftest import NOW
from tests.conftest import USER_ID
from tests.fake_client import FakeCalendarClient

UTC = timezone.utc


def _export(kind, state_db, sync_run, sync_logger, client) -> SyncReport:
    report = SyncReport()
    export_entities(sync_run, report, sync_logger, kind, client, state_db)
    return report


def _course(state_db) -> Course:
    state_db.add_course(Course(id="c1", user_id=USER_ID, code="CS101", name="Intro to CS"))
    return state_db.get_courses(USER_ID)[0]


# ---------------------------------------------------------------------------
# Exams
# ---------------------------------------------------------------------------


class TestExamExport:
    def test_late_exam_exports_all_day_then_updates_in_place(
        self, state_db, sync_run, sync_logger
    ):
        state_db.add_exam(
            Exam(
                id="x1",
                user_id=USER_ID,
                title="Final",
                exam_at=datetime(2025, 5, 10, 23, 0, tzinfo=UTC),
                location="Hall B",
                course=_course(state_db),
            )
        )
        state_db.commit()
        client = FakeCalendarClient()

        first = _export(EXAMS, state_db, sync_run, sync_logger, client)

        assert first["exportedExams"].created == 1
        ref = state_db.get_remote_ref("exam", "x1")
        remote = client.get(ref)
        assert remote.summary == "📝 [CS101] Final"
        assert remote.location == "Hall B"
        assert remote.start.date == date(2025, 5, 10)
        assert remote.end.date == date(2025, 5, 11)
        assert remote.origin_id == "x1"
        assert remote.origin_kind == "exam"

        second = _export(EXAMS, state_db, sync_run, sync_logger, client)

        assert second["exportedExams"].created == 0
        assert second["exportedExams"].updated == 1
        assert state_db.get_remote_ref("exam", "x1") == ref
        assert client.event_count() == 1

    def test_completed_and_unscheduled_exams_are_skipped(self, state_db, sync_run, sync_logger):
        state_db.add_exam(
            Exam(id="x1", user_id=USER_ID, title="Old", exam_at=NOW, status="completed")
        )
        state_db.add_exam(Exam(id="x2", user_id=USER_ID, title="TBD", exam_at=None))
        state_db.add_exam(
            Exam(id="x3", user_id=USER_ID, title="Dropped", exam_at=NOW, status="cancelled")
        )
        state_db.commit()
        client = FakeCalendarClient()

        report = _export(EXAMS, state_db, sync_run, sync_logger, client)

        assert report["exportedExams"].created == 0
        assert client.creates == []


# ---------------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------------


class TestDeadlineExport:
    def test_afternoon_deadline_is_timed(self, state_db, sync_run, sync_logger):
        due = datetime(2025, 5, 10, 14, 30, tzinfo=UTC)
        state_db.add_deadline(
            Deadline(id="d1", user_id=USER_ID, title="Essay", due_at=due, notes="2000 words")
        )
        state_db.commit()
        client = FakeCalendarClient()

        _export(DEADLINES, state_db, sync_run, sync_logger, client)

        remote = client.creates[0]
        assert remote.summary == "📋 Essay"
        assert remote.description == "2000 words"
        assert remote.start.date_time == due
        assert remote.end.date_time == due

    def test_remote_deletion_unlinks_then_next_run_recreates_once(
        self, state_db, sync_run, sync_logger
    ):
        state_db.add_deadline(Deadline(id="d1", user_id=USER_ID, title="Essay", due_at=NOW))
        state_db.commit()
        client = FakeCalendarClient()
        _export(DEADLINES, state_db, sync_run, sync_logger, client)
        ref = state_db.get_remote_ref("deadline", "d1")
        client.remove_remotely(ref)
        client.reset_counters()

        unlinked = _export(DEADLINES, state_db, sync_run, sync_logger, client)

        result = unlinked["exportedDeadlines"]
        assert (result.created, result.updated, result.errors) == (0, 0, [])
        assert state_db.get_remote_ref("deadline", "d1") is None
        assert client.creates == []

        recreated = _export(DEADLINES, state_db, sync_run, sync_logger, client)

        assert recreated["exportedDeadlines"].created == 1
        assert client.event_count() == 1
        assert state_db.get_remote_ref("deadline", "d1") != ref

    def test_one_failure_does_not_stop_the_rest(self, state_db, sync_run, sync_logger):
        for i, title in enumerate(["First", "Broken", "Third"]):
            state_db.add_deadline(
                Deadline(
                    id=f"d{i}",
                    user_id=USER_ID,
                    title=title,
                    due_at=NOW + timedelta(days=i, hours=2),
                )
            )
        state_db.commit()
        client = FakeCalendarClient()
        client.failing_summaries.add("📋 Broken")

        report = _export(DEADLINES, state_db, sync_run, sync_logger, client)

        result = report["exportedDeadlines"]
        assert result.created == 2
        assert result.errors == ['Failed to export deadline "Broken": Backend Error']
        assert state_db.get_remote_ref("deadline", "d1") is None


# ---------------------------------------------------------------------------
# Work items
# ---------------------------------------------------------------------------


class TestWorkItemExport:
    def test_glyph_follows_item_type(self, state_db, sync_run, sync_logger):
        due = datetime(2025, 5, 10, 10, 0, tzinfo=UTC)
        for item_id, item_type in [("w1", "reading"), ("w2", "project"), ("w3", "task")]:
            state_db.add_work_item(
                WorkItem(id=item_id, user_id=USER_ID, title=item_id, type=item_type, due_at=due)
            )
        state_db.add_work_item(
            WorkItem(id="w4", user_id=USER_ID, title="done", due_at=due, status="done")
        )
        state_db.commit()
        client = FakeCalendarClient()

        report = _export(WORK_ITEMS, state_db, sync_run, sync_logger, client)

        assert report["exportedWork"].created == 3
        assert sorted(e.summary for e in client.creates) == ["✅ w3", "📖 w1", "🔨 w2"]
        assert {e.origin_kind for e in client.creates} == {"workItem"}


# ---------------------------------------------------------------------------
# Custom events
# ---------------------------------------------------------------------------


class TestCustomEventExport:
    def test_only_local_events_are_exported(self, state_db, sync_run, sync_logger):
        start = datetime(2025, 5, 9, 18, 0, tzinfo=UTC)
        end = start + timedelta(hours=2)
        state_db.add_custom_event(
            CustomEvent(id="e1", user_id=USER_ID, title="Study group", start_at=start, end_at=end)
        )
        state_db.add_custom_event(
            CustomEvent(
                id="e2",
                user_id=USER_ID,
                title="Dentist",
                start_at=start,
                remote_ref="g_dentist",
                remote_origin="import",
            )
        )
        state_db.add_custom_event(
            CustomEvent(
                id="e3", user_id=USER_ID, title="Quiz 1", start_at=start, lms_source="canvas"
            )
        )
        state_db.add_custom_event(
            CustomEvent(
                id="e4",
                user_id=USER_ID,
                title="🏫 [CS101] Class",
                start_at=start,
                course_id="c1",
                remote_ref="g_class",
                remote_origin="export",
            )
        )
        state_db.commit()
        client = FakeCalendarClient()

        report = _export(CUSTOM_EVENTS, state_db, sync_run, sync_logger, client)

        assert report["exportedEvents"].created == 1
        remote = client.creates[0]
        assert remote.summary == "Study group"
        assert remote.start.date_time == start
        assert remote.end.date_time == end
        assert remote.origin_kind == "event"
        assert state_db.get_custom_event("e1").remote_origin == "export"

    def test_exported_event_is_updated_on_next_run(self, state_db, sync_run, sync_logger):
        state_db.add_custom_event(
            CustomEvent(
                id="e1",
                user_id=USER_ID,
                title="Trip",
                start_at=datetime(2025, 5, 20, tzinfo=UTC),
                end_at=datetime(2025, 5, 22, tzinfo=UTC),
                all_day=True,
            )
        )
        state_db.commit()
        client = FakeCalendarClient()
        _export(CUSTOM_EVENTS, state_db, sync_run, sync_logger, client)

        report = _export(CUSTOM_EVENTS, state_db, sync_run, sync_logger, client)

        assert report["exportedEvents"].updated == 1
        remote = client.get(state_db.get_remote_ref("event", "e1"))
        assert remote.start.date == date(2025, 5, 20)
        assert remote.end.date == date(2025, 5, 23)
