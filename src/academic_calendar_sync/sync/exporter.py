"""
Phases 2-5: local entities → Google Calendar.

One reconciler serves every entity kind; what differs between kinds (which
rows qualify, how the remote draft looks) lives in an ExportKind strategy.
"""

import sqlite3
from dataclasses import dataclass
from datetime import tzinfo
from typing import Callable

from academic_calendar_sync.db import StateDatabase
from academic_calendar_sync.google_client import GoogleCalendarClient
from academic_calendar_sync.models import CalendarSyncError
from academic_calendar_sync.models import CustomEvent
from academic_calendar_sync.models import Deadline
from academic_calendar_sync.models import Exam
from academic_calendar_sync.models import NotFoundError
from academic_calendar_sync.models import RemoteEvent
from academic_calendar_sync.models import SyncReport
from academic_calendar_sync.models import SyncRun
from academic_calendar_sync.models import TransientError
from academic_calendar_sync.models import WorkItem
from academic_calendar_sync.sync.utils import build_event_times
from academic_calendar_sync.sync.utils import course_prefix

DEADLINE_GLYPH = "📋"
EXAM_GLYPH = "📝"
WORK_TYPE_GLYPHS = {
    "assignment": "📋",
    "task": "✅",
    "reading": "📖",
    "project": "🔨",
}

_CLOSED_STATUSES = frozenset({"completed", "cancelled"})
_CLOSED_WORK_STATUSES = frozenset({"done", "cancelled"})


@dataclass(frozen=True)
class ExportKind:
    """Per-kind strategy for the export reconciler.

    ``kind`` doubles as the origin-marker kind and the store's entity kind;
    ``phase`` is the report key; ``label`` names the entity in error messages.
    """

    kind: str
    phase: str
    label: str
    select: Callable[[StateDatabase, str], list]
    build_draft: Callable[[object, tzinfo], RemoteEvent]


# ---------------------------------------------------------------------------
# Selectors
# ---------------------------------------------------------------------------


def _select_custom_events(store: StateDatabase, user_id: str) -> list[CustomEvent]:
    """Locally-created events: never LMS imports, Google imports or class occurrences."""
    return [
        event
        for event in store.get_custom_events(user_id)
        if not event.lms_source
        and event.course_id is None
        and (event.remote_ref is None or event.remote_origin == "export")
    ]


def _select_deadlines(store: StateDatabase, user_id: str) -> list[Deadline]:
    return [
        d
        for d in store.get_deadlines(user_id)
        if d.due_at is not None and d.status not in _CLOSED_STATUSES
    ]


def _select_exams(store: StateDatabase, user_id: str) -> list[Exam]:
    return [
        e
        for e in store.get_exams(user_id)
        if e.exam_at is not None and e.status not in _CLOSED_STATUSES
    ]


def _select_work_items(store: StateDatabase, user_id: str) -> list[WorkItem]:
    return [
        w
        for w in store.get_work_items(user_id)
        if w.due_at is not None and w.status not in _CLOSED_WORK_STATUSES
    ]


# ---------------------------------------------------------------------------
# Draft builders
# ---------------------------------------------------------------------------


def _custom_event_draft(event: CustomEvent, tz: tzinfo) -> RemoteEvent:
    start, end = build_event_times(event.start_at, event.end_at, all_day=event.all_day, tz=tz)
    return RemoteEvent(
        summary=event.title,
        description=event.description or None,
        location=event.location,
        start=start,
        end=end,
        origin_id=event.id,
        origin_kind="event",
    )


def _deadline_draft(deadline: Deadline, tz: tzinfo) -> RemoteEvent:
    start, end = build_event_times(deadline.due_at, tz=tz)
    return RemoteEvent(
        summary=f"{DEADLINE_GLYPH} {course_prefix(deadline.course)}{deadline.title}",
        description=deadline.notes or None,
        start=start,
        end=end,
        origin_id=deadline.id,
        origin_kind="deadline",
    )


def _exam_draft(exam: Exam, tz: tzinfo) -> RemoteEvent:
    start, end = build_event_times(exam.exam_at, tz=tz)
    return RemoteEvent(
        summary=f"{EXAM_GLYPH} {course_prefix(exam.course)}{exam.title}",
        description=exam.notes or None,
        location=exam.location,
        start=start,
        end=end,
        origin_id=exam.id,
        origin_kind="exam",
    )


def _work_item_draft(item: WorkItem, tz: tzinfo) -> RemoteEvent:
    glyph = WORK_TYPE_GLYPHS.get(item.type, DEADLINE_GLYPH)
    start, end = build_event_times(item.due_at, tz=tz)
    return RemoteEvent(
        summary=f"{glyph} {course_prefix(item.course)}{item.title}",
        description=item.notes or None,
        start=start,
        end=end,
        origin_id=item.id,
        origin_kind="workItem",
    )


CUSTOM_EVENTS = ExportKind(
    kind="event",
    phase="exportedEvents",
    label="event",
    select=_select_custom_events,
    build_draft=_custom_event_draft,
)
DEADLINES = ExportKind(
    kind="deadline",
    phase="exportedDeadlines",
    label="deadline",
    select=_select_deadlines,
    build_draft=_deadline_draft,
)
EXAMS = ExportKind(
    kind="exam",
    phase="exportedExams",
    label="exam",
    select=_select_exams,
    build_draft=_exam_draft,
)
WORK_ITEMS = ExportKind(
    kind="workItem",
    phase="exportedWork",
    label="work item",
    select=_select_work_items,
    build_draft=_work_item_draft,
)


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


def _push_entity(
    run: SyncRun,
    report: SyncReport,
    logger,
    kind: ExportKind,
    entity,
    client: GoogleCalendarClient,
    store: StateDatabase,
):
    result = report[kind.phase]
    draft = kind.build_draft(entity, run.tz)

    if entity.remote_ref:
        try:
            client.update_event(run.export_calendar_id, entity.remote_ref, draft)
        except NotFoundError:
            # Deleted on the Google side: drop the link rather than recreate it this run.
            logger.info(f"Remote event for {kind.label} {entity.id} is gone; unlinking")
            store.set_remote_ref(kind.kind, entity.id, None)
            store.commit()
            return
        result.updated += 1
        logger.debug(f"Updated {kind.label} {entity.id} ({entity.remote_ref})")
        return

    created = client.insert_event(run.export_calendar_id, draft)
    if not created.id:
        raise TransientError("Google Calendar returned an event without an id")
    store.set_remote_ref(kind.kind, entity.id, created.id)
    store.commit()
    result.created += 1
    logger.debug(f"Created {kind.label} {entity.id} as {created.id}")


def export_entities(
    run: SyncRun,
    report: SyncReport,
    logger,
    kind: ExportKind,
    client: GoogleCalendarClient,
    store: StateDatabase,
):
    """Create or update the remote event of every eligible entity of one kind.

    Entities are processed one by one; a failure is recorded against the
    entity's title and the next entity is attempted.
    """
    result = report[kind.phase]
    entities = kind.select(store, run.user_id)
    logger.info(f"Exporting {len(entities)} {kind.label}(s)...")

    for entity in entities:
        try:
            _push_entity(run, report, logger, kind, entity, client, store)
        except (CalendarSyncError, sqlite3.Error, ValueError) as e:
            logger.error(f"Failed to export {kind.label} {entity.id}: {e}")
            result.errors.append(f'Failed to export {kind.label} "{entity.title}": {e}')
