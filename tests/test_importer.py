"""
Tests for the Google → local import phase.

Every scenario runs the real import function against FakeCalendarClient and a
real SQLite StateDatabase.
"""

from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from academic_calendar_sync.models import EventTime
from academic_calendar_sync.models import RemoteEvent
from academic_calendar_sync.models import SyncReport
from academic_calendar_sync.models import TransientError
from academic_calendar_sync.sync.importer import run_import
from tests.conftest import USER_ID
from tests.fake_client import FakeCalendarClient

UTC = timezone.utc


def _timed(event_id, summary, start, hours=1, **extra) -> RemoteEvent:
    return RemoteEvent(
        id=event_id,
        summary=summary,
        start=EventTime(date_time=start),
        end=EventTime(date_time=start + timedelta(hours=hours)),
        status="confirmed",
        **extra,
    )


def _dentist() -> RemoteEvent:
    return _timed("g_dentist", "Dentist", datetime(2025, 5, 12, 15, 0, tzinfo=UTC), color_id="11")


def _our_deadline() -> RemoteEvent:
    return _timed(
        "g_w1",
        "📋 [CS101] Essay",
        datetime(2025, 5, 10, 14, 30, tzinfo=UTC),
        origin_id="W1",
        origin_kind="deadline",
    )


def _import(state_db, sync_run, sync_report, sync_logger, client):
    run_import(sync_run, sync_report, sync_logger, client, state_db)
    return sync_report["imported"]


def test_foreign_event_is_imported_and_own_export_skipped(
    state_db, sync_run, sync_report, sync_logger
):
    client = FakeCalendarClient([_dentist(), _our_deadline()])

    result = _import(state_db, sync_run, sync_report, sync_logger, client)

    assert result.created == 1
    assert result.updated == 0
    events = state_db.get_custom_events(USER_ID)
    assert len(events) == 1
    dentist = events[0]
    assert dentist.title == "Dentist"
    assert dentist.remote_ref == "g_dentist"
    assert dentist.remote_origin == "import"
    assert dentist.color == "#d50000"
    assert dentist.start_at == datetime(2025, 5, 12, 15, 0, tzinfo=UTC)
    assert sync_report.debug["skippedExported"] == 1
    assert sync_report.debug["googleEventsFound"] == 2


def test_second_import_updates_instead_of_duplicating(
    state_db, sync_run, sync_report, sync_logger
):
    client = FakeCalendarClient([_dentist()])
    _import(state_db, sync_run, sync_report, sync_logger, client)

    # Local rename, remote reschedule.
    event = state_db.get_custom_events(USER_ID)[0]
    state_db.conn.execute(
        "UPDATE calendar_events SET title = ? WHERE id = ?", ("Dentist (Dr. Lee)", event.id)
    )
    state_db.commit()
    moved = _timed("g_dentist", "Dentist", datetime(2025, 5, 13, 9, 0, tzinfo=UTC))
    client = FakeCalendarClient([moved])

    report = SyncReport()
    result = _import(state_db, sync_run, report, sync_logger, client)

    assert result.created == 0
    assert result.updated == 1
    events = state_db.get_custom_events(USER_ID)
    assert len(events) == 1
    assert events[0].title == "Dentist (Dr. Lee)"
    assert events[0].start_at == datetime(2025, 5, 13, 9, 0, tzinfo=UTC)
    assert report.debug["existingInDb"] == 1


def test_excluded_event_is_not_resurrected(state_db, sync_run, sync_report, sync_logger):
    state_db.add_exclusion(USER_ID, "g_dentist")
    state_db.commit()
    client = FakeCalendarClient([_dentist()])

    result = _import(state_db, sync_run, sync_report, sync_logger, client)

    assert result.created == 0
    assert state_db.get_custom_events(USER_ID) == []
    assert sync_report.debug["skippedDeleted"] == 1
    assert sync_report.debug["deletedEventIdsCount"] == 1


def test_skip_reasons_are_counted(state_db, sync_run, sync_report, sync_logger):
    cancelled = _dentist()
    cancelled.status = "cancelled"
    client = FakeCalendarClient(
        [
            cancelled,
            RemoteEvent(id="g_nostart", summary="Floating", status="confirmed"),
        ]
    )
    client._events("primary")[""] = RemoteEvent(id="", summary="No id")

    result = _import(state_db, sync_run, sync_report, sync_logger, client)

    assert result.created == 0
    assert sync_report.debug["skippedCancelled"] == 1
    assert sync_report.debug["skippedNoStart"] == 1
    assert sync_report.debug["skippedNoId"] == 1


def test_all_day_event_and_untitled_fallback(state_db, sync_run, sync_report, sync_logger):
    client = FakeCalendarClient(
        [
            RemoteEvent(
                id="g_trip",
                start=EventTime(date=date(2025, 5, 20)),
                end=EventTime(date=date(2025, 5, 23)),
                status="confirmed",
            )
        ]
    )

    _import(state_db, sync_run, sync_report, sync_logger, client)

    trip = state_db.get_custom_events(USER_ID)[0]
    assert trip.title == "Untitled Event"
    assert trip.all_day is True
    assert trip.start_at == datetime(2025, 5, 20, tzinfo=UTC)
    assert trip.end_at == datetime(2025, 5, 22, tzinfo=UTC)


def test_list_failure_is_recorded_and_phase_returns(
    state_db, sync_run, sync_report, sync_logger
):
    client = FakeCalendarClient([_dentist()])
    client.failures["list_events"] = TransientError("Backend Error", status=500)

    result = _import(state_db, sync_run, sync_report, sync_logger, client)

    assert result.created == 0
    assert result.errors == ["Failed to fetch Google Calendar events: Backend Error"]
    assert state_db.get_custom_events(USER_ID) == []


def test_uses_configured_import_calendar(state_db, sync_run, sync_report, sync_logger):
    sync_run.import_calendar_id = "school"
    client = FakeCalendarClient([_dentist()], calendar_id="school")

    result = _import(state_db, sync_run, sync_report, sync_logger, client)

    assert result.created == 1
    assert sync_report.debug["importCalendar"] == "school"
