"""
Stateless helpers shared by the import and export phases.
"""

from datetime import datetime
from datetime import timedelta
from datetime import timezone
from datetime import tzinfo

from academic_calendar_sync.models import Course
from academic_calendar_sync.models import EventTime
from academic_calendar_sync.models import RemoteEvent


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def should_export_as_all_day(when: datetime) -> bool:
    """Return True when a timestamp should become a date-only remote event.

    Midnight means no time was set; 23:00 onward covers the common "due 11:59 PM"
    convention, which reads better as an all-day entry than a one-minute slot.
    """
    return (when.hour == 0 and when.minute == 0) or when.hour >= 23


def build_event_times(
    start: datetime,
    end: datetime | None = None,
    all_day: bool | None = None,
    tz: tzinfo = timezone.utc,
) -> tuple[EventTime, EventTime]:
    """Start/end for a draft.

    ``all_day=None`` applies the all-day heuristic to ``start`` as seen in
    ``tz``. All-day end dates are exclusive, so a single-day entry ends on the
    following date.
    """
    start = as_utc(start).astimezone(tz)
    end = as_utc(end).astimezone(tz) if end is not None else start
    if all_day is None:
        all_day = should_export_as_all_day(start)

    if all_day:
        end_date = max(end.date(), start.date()) + timedelta(days=1)
        return EventTime(date=start.date()), EventTime(date=end_date)
    return EventTime(date_time=start), EventTime(date_time=end)


def course_prefix(course: Course | None) -> str:
    return f"[{course.label}] " if course is not None else ""


def event_time_to_datetime(value: EventTime) -> datetime:
    if value.date_time is not None:
        return as_utc(value.date_time)
    return datetime(value.date.year, value.date.month, value.date.day, tzinfo=timezone.utc)


def remote_schedule(event: RemoteEvent) -> tuple[datetime, datetime | None, bool]:
    """(start, end, all_day) of a remote event in local-store terms.

    An event is all-day when its start carries only a date. The exclusive
    all-day end date is converted back to the inclusive last day.
    """
    all_day = event.start.is_date_only
    start_at = event_time_to_datetime(event.start)
    end_at = None
    if event.end is not None:
        end_at = event_time_to_datetime(event.end)
        if all_day and event.end.is_date_only and end_at > start_at:
            end_at -= timedelta(days=1)
    return start_at, end_at, all_day
