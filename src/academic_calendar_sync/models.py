"""
Pure data models; no HTTP or sqlite imports.
"""

from __future__ import annotations

from dataclasses import asdict
from dataclasses import dataclass
from dataclasses import field
from datetime import date
from datetime import datetime
from datetime import timezone
from datetime import tzinfo
from pathlib import Path

DEFAULT_STATE_DB = Path.home() / ".local/share/academic-calendar-sync.db"
DEFAULT_CONFIG = Path.home() / ".config/academic-calendar-sync.conf"

# Minimum spacing between Google API calls: ~6.6 req/s, under the 10 req/s per-user quota.
API_DELAY_SECONDS = 0.15
SYNC_COOLDOWN_SECONDS = 30
TOKEN_REFRESH_MARGIN_SECONDS = 5 * 60
IMPORT_MONTHS_BACK = 1
IMPORT_MONTHS_AHEAD = 6
CLASS_EXPORT_DAYS = 14

ORIGIN_ID_KEY = "originId"
ORIGIN_KIND_KEY = "originKind"


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class AuthError(CalendarSyncError):
    """No usable access token; the user has to reconnect."""

    pass


class NotConnectedError(CalendarSyncError):
    pass


class CooldownError(CalendarSyncError):
    """A sync ran for this user less than the cooldown window ago."""

    pass


class EntitlementError(CalendarSyncError):
    pass


class RemoteError(CalendarSyncError):
    """Non-2xx or network failure talking to the remote calendar."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class NotFoundError(RemoteError):
    """The remote event no longer exists (HTTP 404)."""

    pass


class TransientError(RemoteError):
    pass


@dataclass
class SyncSettings:
    """Per-user connection state and direction toggles."""

    user_id: str
    connected: bool = False
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: datetime | None = None
    email: str | None = None
    import_events: bool = True
    export_events: bool = True
    export_deadlines: bool = True
    export_exams: bool = True
    import_calendar_id: str = "primary"
    export_calendar_id: str = "primary"
    last_synced_at: datetime | None = None


@dataclass
class SyncOptions:
    """Directions enabled for a single run."""

    import_events: bool = True
    export_events: bool = True
    export_deadlines: bool = True
    export_exams: bool = True

    @classmethod
    def resolve(cls, settings: SyncSettings, overrides: dict | None = None) -> "SyncOptions":
        """Stored toggles, with any non-null per-run override taking precedence."""
        overrides = overrides or {}

        def pick(key: str, stored: bool) -> bool:
            value = overrides.get(key)
            return stored if value is None else bool(value)

        return cls(
            import_events=pick("importEvents", settings.import_events),
            export_events=pick("exportEvents", settings.export_events),
            export_deadlines=pick("exportDeadlines", settings.export_deadlines),
            export_exams=pick("exportExams", settings.export_exams),
        )


@dataclass
class SyncRun:
    """Per-run parameters handed to every phase."""

    user_id: str
    import_calendar_id: str
    export_calendar_id: str
    options: SyncOptions
    now: datetime
    tz: tzinfo = timezone.utc


@dataclass
class Course:
    id: str
    user_id: str
    code: str | None = None
    name: str = ""
    meeting_times: list[dict] = field(default_factory=list)
    start_date: date | None = None
    end_date: date | None = None

    @property
    def label(self) -> str:
        return self.code or self.name


@dataclass
class CustomEvent:
    id: str
    user_id: str
    title: str
    start_at: datetime
    end_at: datetime | None = None
    all_day: bool = False
    description: str = ""
    location: str | None = None
    color: str | None = None
    remote_ref: str | None = None
    remote_origin: str | None = None  # 'import' | 'export'
    lms_source: str | None = None
    course_id: str | None = None


@dataclass
class Deadline:
    id: str
    user_id: str
    title: str
    due_at: datetime | None = None
    status: str = "open"
    notes: str | None = None
    course: Course | None = None
    remote_ref: str | None = None


@dataclass
class Exam:
    id: str
    user_id: str
    title: str
    exam_at: datetime | None = None
    status: str = "scheduled"
    notes: str | None = None
    location: str | None = None
    course: Course | None = None
    remote_ref: str | None = None


@dataclass
class WorkItem:
    id: str
    user_id: str
    title: str
    type: str = "task"
    due_at: datetime | None = None
    status: str = "open"
    notes: str | None = None
    course: Course | None = None
    remote_ref: str | None = None


@dataclass
class DeletionQueueEntry:
    id: int
    user_id: str
    remote_id: str
    queued_at: datetime | None = None


@dataclass
class EventTime:
    """A remote start/end: either a calendar date (all-day) or a date-time."""

    date: date | None = None
    date_time: datetime | None = None

    @property
    def is_date_only(self) -> bool:
        return self.date is not None and self.date_time is None

    def to_api(self) -> dict:
        if self.date_time is not None:
            return {"dateTime": self.date_time.isoformat()}
        return {"date": self.date.isoformat()}

    @classmethod
    def from_api(cls, data: dict | None) -> "EventTime | None":
        if not data:
            return None
        if data.get("dateTime"):
            return cls(date_time=datetime.fromisoformat(data["dateTime"].replace("Z", "+00:00")))
        if data.get("date"):
            return cls(date=date.fromisoformat(data["date"]))
        return None


@dataclass
class RemoteEvent:
    """Google Calendar event as seen by the engine."""

    id: str | None = None
    summary: str | None = None
    description: str | None = None
    location: str | None = None
    start: EventTime | None = None
    end: EventTime | None = None
    status: str | None = None
    color_id: str | None = None
    origin_id: str | None = None
    origin_kind: str | None = None

    @property
    def has_origin_marker(self) -> bool:
        return bool(self.origin_id)

    def to_api(self, clear_empty: bool = False) -> dict:
        """Request body for insert/patch; unset fields are omitted.

        With ``clear_empty`` an empty description or location is sent as ""
        so a PATCH clears whatever the remote event still holds.
        """
        body = {}
        if self.summary is not None:
            body["summary"] = self.summary
        if self.description or clear_empty:
            body["description"] = self.description or ""
        if self.location or clear_empty:
            body["location"] = self.location or ""
        if self.start is not None:
            body["start"] = self.start.to_api()
        if self.end is not None:
            body["end"] = self.end.to_api()
        if self.color_id:
            body["colorId"] = self.color_id
        if self.origin_id:
            body["extendedProperties"] = {
                "private": {ORIGIN_ID_KEY: self.origin_id, ORIGIN_KIND_KEY: self.origin_kind}
            }
        return body

    @classmethod
    def from_api(cls, data: dict) -> "RemoteEvent":
        private = (data.get("extendedProperties") or {}).get("private") or {}
        return cls(
            id=data.get("id"),
            summary=data.get("summary"),
            description=data.get("description"),
            location=data.get("location"),
            start=EventTime.from_api(data.get("start")),
            end=EventTime.from_api(data.get("end")),
            status=data.get("status"),
            color_id=data.get("colorId"),
            origin_id=private.get(ORIGIN_ID_KEY),
            origin_kind=private.get(ORIGIN_KIND_KEY),
        )


@dataclass
class PhaseResult:
    """Counters and error messages for one sync phase."""

    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)


PHASES = (
    "deletions",
    "imported",
    "exportedEvents",
    "exportedDeadlines",
    "exportedExams",
    "exportedWork",
    "exportedClasses",
)


@dataclass
class SyncReport:
    """Accumulated results of one sync run."""

    phases: dict[str, PhaseResult] = field(
        default_factory=lambda: {name: PhaseResult() for name in PHASES}
    )
    debug: dict[str, int | str] = field(default_factory=dict)

    def __getitem__(self, phase: str) -> PhaseResult:
        return self.phases[phase]

    @property
    def error_count(self) -> int:
        return sum(len(p.errors) for p in self.phases.values())

    def to_dict(self) -> dict:
        return {
            "result": {name: asdict(result) for name, result in self.phases.items()},
            "debug": dict(self.debug),
        }
