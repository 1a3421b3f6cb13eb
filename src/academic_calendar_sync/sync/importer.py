"""
Phase 1: Google Calendar → local custom events.
"""

import sqlite3
import uuid

from dateutil.relativedelta import relativedelta

from academic_calendar_sync.db import StateDatabase
from academic_calendar_sync.google_client import GOOGLE_COLOR_MAP
from academic_calendar_sync.google_client import GoogleCalendarClient
from academic_calendar_sync.models import IMPORT_MONTHS_AHEAD
from academic_calendar_sync.models import IMPORT_MONTHS_BACK
from academic_calendar_sync.models import CalendarSyncError
from academic_calendar_sync.models import CustomEvent
from academic_calendar_sync.models import RemoteEvent
from academic_calendar_sync.models import SyncReport
from academic_calendar_sync.models import SyncRun
from academic_calendar_sync.sync.utils import remote_schedule


def _skip_reason(event: RemoteEvent, excluded_ids: set[str]) -> str | None:
    """Debug counter name explaining why an event is not imported, or None."""
    if not event.id:
        return "skippedNoId"
    if event.status == "cancelled":
        return "skippedCancelled"
    if event.id in excluded_ids:
        return "skippedDeleted"
    # Created by our own export; importing it would loop.
    if event.has_origin_marker:
        return "skippedExported"
    if event.start is None:
        return "skippedNoStart"
    return None


def _import_event(
    run: SyncRun,
    report: SyncReport,
    event: RemoteEvent,
    existing_id: str | None,
    store: StateDatabase,
):
    start_at, end_at, all_day = remote_schedule(event)

    if existing_id:
        # Remote owns the schedule; local title/description edits are kept.
        store.update_event_schedule(existing_id, start_at, end_at, all_day, event.location or None)
        store.commit()
        report["imported"].updated += 1
        return

    store.add_custom_event(
        CustomEvent(
            id=str(uuid.uuid4()),
            user_id=run.user_id,
            title=event.summary or "Untitled Event",
            description=event.description or "",
            start_at=start_at,
            end_at=end_at,
            all_day=all_day,
            location=event.location or None,
            color=GOOGLE_COLOR_MAP.get(event.color_id) if event.color_id else None,
            remote_ref=event.id,
            remote_origin="import",
        )
    )
    store.commit()
    report["imported"].created += 1


def run_import(
    run: SyncRun,
    report: SyncReport,
    logger,
    client: GoogleCalendarClient,
    store: StateDatabase,
):
    """Upsert remote events from the import window into local custom events."""
    result = report["imported"]
    debug = report.debug

    excluded_ids = store.get_excluded_ids(run.user_id)
    time_min = run.now - relativedelta(months=IMPORT_MONTHS_BACK)
    time_max = run.now + relativedelta(months=IMPORT_MONTHS_AHEAD)

    logger.info(f"Fetching Google events from {run.import_calendar_id}...")
    try:
        remote_events = client.list_events(run.import_calendar_id, time_min, time_max)
    except CalendarSyncError as e:
        logger.error(f"Failed to fetch Google Calendar events: {e}")
        result.errors.append(f"Failed to fetch Google Calendar events: {e}")
        return

    debug["googleEventsFound"] = len(remote_events)
    debug["importCalendar"] = run.import_calendar_id
    debug["deletedEventIdsCount"] = len(excluded_ids)

    existing = store.get_linked_event_map(run.user_id)
    skipped = {
        "skippedNoId": 0,
        "skippedCancelled": 0,
        "skippedDeleted": 0,
        "skippedExported": 0,
        "skippedNoStart": 0,
    }

    logger.info(f"Processing {len(remote_events)} Google events...")
    for event in remote_events:
        reason = _skip_reason(event, excluded_ids)
        if reason:
            skipped[reason] += 1
            logger.debug(f"Skipping {event.id} ({reason})")
            continue

        try:
            _import_event(run, report, event, existing.get(event.id), store)
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Failed to import event {event.id}: {e}")
            result.errors.append(f'Failed to import event "{event.summary}": {e}')

    debug.update(skipped)
    debug["existingInDb"] = len(existing)
