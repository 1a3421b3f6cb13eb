"""
Phase 6: upcoming class meetings → Google Calendar.

Occurrences are expanded from each course's weekly meeting pattern for the
next two weeks and pushed once each. They are never updated afterwards.
"""

import sqlite3
import uuid
from datetime import date
from datetime import datetime
from datetime import time
from datetime import timedelta

from academic_calendar_sync.db import StateDatabase
from academic_calendar_sync.google_client import GoogleCalendarClient
from academic_calendar_sync.models import CLASS_EXPORT_DAYS
from academic_calendar_sync.models import CalendarSyncError
from academic_calendar_sync.models import Course
from academic_calendar_sync.models import CustomEvent
from academic_calendar_sync.models import EventTime
from academic_calendar_sync.models import RemoteEvent
from academic_calendar_sync.models import SyncReport
from academic_calendar_sync.models import SyncRun
from academic_calendar_sync.models import TransientError

CLASS_GLYPH = "🏫"
WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def parse_meeting_time(value: str) -> time:
    """Parse an 'H:MM' / 'HH:MM' meeting time."""
    hour, minute = value.strip().split(":")[:2]
    return time(int(hour), int(minute))


def _occurrence_key(day: date, start: time) -> str:
    return f"{day.isoformat()}T{start.strftime('%H:%M')}"


def class_title(course: Course) -> str:
    return f"{CLASS_GLYPH} [{course.label}] Class"


def expand_occurrences(
    course: Course, meeting: dict, today: date, days: int = CLASS_EXPORT_DAYS
) -> list[date]:
    """Dates from today through today+days on which this meeting takes place."""
    occurrences = []
    for offset in range(days + 1):
        day = today + timedelta(days=offset)
        if WEEKDAY_NAMES[day.weekday()] not in meeting["days"]:
            continue
        if course.start_date and day < course.start_date:
            continue
        if course.end_date and day > course.end_date:
            continue
        occurrences.append(day)
    return occurrences


def _export_course(
    run: SyncRun,
    report: SyncReport,
    logger,
    course: Course,
    client: GoogleCalendarClient,
    store: StateDatabase,
):
    result = report["exportedClasses"]
    today = run.now.astimezone(run.tz).date()
    day_start = datetime.combine(today, time.min, tzinfo=run.tz)

    # Occurrences exported by earlier runs, including today's past ones.
    existing = set()
    for event in store.get_class_events(run.user_id, course.id, since=day_start):
        local_start = event.start_at.astimezone(run.tz)
        existing.add(_occurrence_key(local_start.date(), local_start.time()))

    for meeting in course.meeting_times:
        if not meeting.get("days") or not meeting.get("start") or not meeting.get("end"):
            continue
        start_time = parse_meeting_time(meeting["start"])
        end_time = parse_meeting_time(meeting["end"])
        location = meeting.get("location") or None

        for day in expand_occurrences(course, meeting, today):
            key = _occurrence_key(day, start_time)
            if key in existing:
                continue

            start_at = datetime.combine(day, start_time, tzinfo=run.tz)
            end_at = datetime.combine(day, end_time, tzinfo=run.tz)
            draft = RemoteEvent(
                summary=class_title(course),
                location=location,
                start=EventTime(date_time=start_at),
                end=EventTime(date_time=end_at),
                origin_id=course.id,
                origin_kind="class",
            )

            try:
                created = client.insert_event(run.export_calendar_id, draft)
                if not created.id:
                    raise TransientError("Google Calendar returned an event without an id")
                store.add_custom_event(
                    CustomEvent(
                        id=str(uuid.uuid4()),
                        user_id=run.user_id,
                        title=class_title(course),
                        start_at=start_at,
                        end_at=end_at,
                        location=location,
                        remote_ref=created.id,
                        remote_origin="export",
                        course_id=course.id,
                    )
                )
                store.commit()
            except (CalendarSyncError, sqlite3.Error) as e:
                logger.error(f"Failed to export class {course.label} on {key}: {e}")
                result.errors.append(f"Failed to export class for {course.label}: {e}")
                continue

            existing.add(key)
            result.created += 1
            logger.debug(f"Exported class {course.label} on {key} as {created.id}")


def export_classes(
    run: SyncRun,
    report: SyncReport,
    logger,
    client: GoogleCalendarClient,
    store: StateDatabase,
):
    """Create remote events for class meetings not yet exported."""
    result = report["exportedClasses"]
    courses = [c for c in store.get_courses(run.user_id) if c.meeting_times]
    logger.info(f"Exporting class meetings for {len(courses)} course(s)...")

    for course in courses:
        try:
            _export_course(run, report, logger, course, client, store)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to export classes for {course.label}: {e}")
            result.errors.append(f"Failed to export classes for {course.label}: {e}")
