"""
SQLite persistence for sync settings, local academic entities, and the
deletion/exclusion bookkeeping the sync engine relies on.
"""

import json
import logging
import sqlite3
from datetime import date
from datetime import datetime
from datetime import timezone
from pathlib import Path

from academic_calendar_sync.models import Course
from academic_calendar_sync.models import CustomEvent
from academic_calendar_sync.models import Deadline
from academic_calendar_sync.models import DeletionQueueEntry
from academic_calendar_sync.models import Exam
from academic_calendar_sync.models import SyncSettings
from academic_calendar_sync.models import WorkItem
from academic_calendar_sync.tokens import TokenCipher

logger = logging.getLogger(__name__)

# entity kind → table holding its remote_ref column
_KIND_TABLES = {
    "event": "calendar_events",
    "deadline": "deadlines",
    "exam": "exams",
    "workItem": "work_items",
}

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS sync_settings (
        user_id TEXT PRIMARY KEY,
        connected INTEGER NOT NULL DEFAULT 0,
        access_token TEXT,
        refresh_token TEXT,
        token_expires_at TEXT,
        email TEXT,
        import_events INTEGER NOT NULL DEFAULT 1,
        export_events INTEGER NOT NULL DEFAULT 1,
        export_deadlines INTEGER NOT NULL DEFAULT 1,
        export_exams INTEGER NOT NULL DEFAULT 1,
        import_calendar_id TEXT NOT NULL DEFAULT 'primary',
        export_calendar_id TEXT NOT NULL DEFAULT 'primary',
        last_synced_at TEXT
    );
    CREATE TABLE IF NOT EXISTS entitlements (
        user_id TEXT PRIMARY KEY,
        premium INTEGER NOT NULL DEFAULT 0
    );
    CREATE TABLE IF NOT EXISTS courses (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        code TEXT,
        name TEXT NOT NULL DEFAULT '',
        meeting_times TEXT NOT NULL DEFAULT '[]',
        start_date TEXT,
        end_date TEXT
    );
    CREATE TABLE IF NOT EXISTS calendar_events (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        start_at TEXT NOT NULL,
        end_at TEXT,
        all_day INTEGER NOT NULL DEFAULT 0,
        location TEXT,
        color TEXT,
        remote_ref TEXT,
        remote_origin TEXT,
        lms_source TEXT,
        course_id TEXT
    );
    CREATE TABLE IF NOT EXISTS deadlines (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        due_at TEXT,
        status TEXT NOT NULL DEFAULT 'open',
        notes TEXT,
        course_id TEXT,
        remote_ref TEXT
    );
    CREATE TABLE IF NOT EXISTS exams (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        exam_at TEXT,
        status TEXT NOT NULL DEFAULT 'scheduled',
        notes TEXT,
        location TEXT,
        course_id TEXT,
        remote_ref TEXT
    );
    CREATE TABLE IF NOT EXISTS work_items (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        type TEXT NOT NULL DEFAULT 'task',
        due_at TEXT,
        status TEXT NOT NULL DEFAULT 'open',
        notes TEXT,
        course_id TEXT,
        remote_ref TEXT
    );
    CREATE TABLE IF NOT EXISTS deletion_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        remote_id TEXT NOT NULL,
        queued_at TEXT NOT NULL,
        UNIQUE(user_id, remote_id)
    );
    CREATE TABLE IF NOT EXISTS excluded_remote_events (
        user_id TEXT NOT NULL,
        remote_id TEXT NOT NULL,
        excluded_at TEXT NOT NULL,
        PRIMARY KEY (user_id, remote_id)
    );
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dt_to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _dt_from_db(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _date_from_db(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


class StateDatabase:
    """Typed read/write access to everything the sync engine persists."""

    def __init__(self, db_path: Path, secret: str | None = None):
        self.db_path = db_path
        self.cipher = TokenCipher(secret)
        self.conn: sqlite3.Connection | None = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self):
        """Open the database file and create tables if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row  # Enable column access by name
        self.conn.executescript(_SCHEMA)
        self.conn.commit()

    # ------------------------------------------------------------------ #
    # Settings                                                             #
    # ------------------------------------------------------------------ #

    def get_settings(self, user_id: str) -> SyncSettings | None:
        row = self.conn.execute(
            "SELECT * FROM sync_settings WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return None
        return SyncSettings(
            user_id=row["user_id"],
            connected=bool(row["connected"]),
            access_token=self.cipher.decrypt(row["access_token"]),
            refresh_token=self.cipher.decrypt(row["refresh_token"]),
            token_expires_at=_dt_from_db(row["token_expires_at"]),
            email=row["email"],
            import_events=bool(row["import_events"]),
            export_events=bool(row["export_events"]),
            export_deadlines=bool(row["export_deadlines"]),
            export_exams=bool(row["export_exams"]),
            import_calendar_id=row["import_calendar_id"],
            export_calendar_id=row["export_calendar_id"],
            last_synced_at=_dt_from_db(row["last_synced_at"]),
        )

    def save_settings(self, settings: SyncSettings):
        """Insert or replace the full settings row for a user."""
        self.conn.execute(
            "INSERT INTO sync_settings "
            "(user_id, connected, access_token, refresh_token, token_expires_at, email, "
            " import_events, export_events, export_deadlines, export_exams, "
            " import_calendar_id, export_calendar_id, last_synced_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET "
            " connected = excluded.connected, access_token = excluded.access_token, "
            " refresh_token = excluded.refresh_token, "
            " token_expires_at = excluded.token_expires_at, email = excluded.email, "
            " import_events = excluded.import_events, export_events = excluded.export_events, "
            " export_deadlines = excluded.export_deadlines, "
            " export_exams = excluded.export_exams, "
            " import_calendar_id = excluded.import_calendar_id, "
            " export_calendar_id = excluded.export_calendar_id, "
            " last_synced_at = excluded.last_synced_at",
            (
                settings.user_id,
                int(settings.connected),
                self.cipher.encrypt(settings.access_token),
                self.cipher.encrypt(settings.refresh_token),
                _dt_to_db(settings.token_expires_at),
                settings.email,
                int(settings.import_events),
                int(settings.export_events),
                int(settings.export_deadlines),
                int(settings.export_exams),
                settings.import_calendar_id,
                settings.export_calendar_id,
                _dt_to_db(settings.last_synced_at),
            ),
        )
        self.commit()

    def update_tokens(
        self,
        user_id: str,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
    ):
        """Persist a refreshed access token; the refresh token only when rotated."""
        if refresh_token:
            self.conn.execute(
                "UPDATE sync_settings SET access_token = ?, token_expires_at = ?, "
                "refresh_token = ? WHERE user_id = ?",
                (
                    self.cipher.encrypt(access_token),
                    _dt_to_db(expires_at),
                    self.cipher.encrypt(refresh_token),
                    user_id,
                ),
            )
        else:
            self.conn.execute(
                "UPDATE sync_settings SET access_token = ?, token_expires_at = ? "
                "WHERE user_id = ?",
                (self.cipher.encrypt(access_token), _dt_to_db(expires_at), user_id),
            )
        self.commit()

    def set_connected(self, user_id: str, connected: bool):
        self.conn.execute(
            "UPDATE sync_settings SET connected = ? WHERE user_id = ?",
            (int(connected), user_id),
        )
        self.commit()

    def set_last_synced(self, user_id: str, when: datetime):
        self.conn.execute(
            "UPDATE sync_settings SET last_synced_at = ? WHERE user_id = ?",
            (_dt_to_db(when), user_id),
        )
        self.commit()

    # ------------------------------------------------------------------ #
    # Entitlements                                                         #
    # ------------------------------------------------------------------ #

    def set_premium(self, user_id: str, premium: bool = True):
        self.conn.execute(
            "INSERT INTO entitlements (user_id, premium) VALUES (?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET premium = excluded.premium",
            (user_id, int(premium)),
        )
        self.commit()

    def is_premium(self, user_id: str) -> bool:
        row = self.conn.execute(
            "SELECT premium FROM entitlements WHERE user_id = ?", (user_id,)
        ).fetchone()
        return bool(row and row["premium"])

    # ------------------------------------------------------------------ #
    # Courses                                                              #
    # ------------------------------------------------------------------ #

    def add_course(self, course: Course):
        self.conn.execute(
            "INSERT INTO courses (id, user_id, code, name, meeting_times, start_date, end_date) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                course.id,
                course.user_id,
                course.code,
                course.name,
                json.dumps(course.meeting_times),
                course.start_date.isoformat() if course.start_date else None,
                course.end_date.isoformat() if course.end_date else None,
            ),
        )
        self.commit()

    @staticmethod
    def _course_from_row(row: sqlite3.Row) -> Course:
        return Course(
            id=row["id"],
            user_id=row["user_id"],
            code=row["code"],
            name=row["name"],
            meeting_times=json.loads(row["meeting_times"] or "[]"),
            start_date=_date_from_db(row["start_date"]),
            end_date=_date_from_db(row["end_date"]),
        )

    def get_courses(self, user_id: str) -> list[Course]:
        cursor = self.conn.execute("SELECT * FROM courses WHERE user_id = ?", (user_id,))
        return [self._course_from_row(row) for row in cursor.fetchall()]

    def _courses_by_id(self, user_id: str) -> dict[str, Course]:
        return {c.id: c for c in self.get_courses(user_id)}

    # ------------------------------------------------------------------ #
    # Custom calendar events                                               #
    # ------------------------------------------------------------------ #

    def add_custom_event(self, event: CustomEvent):
        self.conn.execute(
            "INSERT INTO calendar_events "
            "(id, user_id, title, description, start_at, end_at, all_day, location, color, "
            " remote_ref, remote_origin, lms_source, course_id) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                event.id,
                event.user_id,
                event.title,
                event.description or "",
                _dt_to_db(event.start_at),
                _dt_to_db(event.end_at),
                int(event.all_day),
                event.location,
                event.color,
                event.remote_ref,
                event.remote_origin,
                event.lms_source,
                event.course_id,
            ),
        )

    @staticmethod
    def _event_from_row(row: sqlite3.Row) -> CustomEvent:
        return CustomEvent(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            description=row["description"],
            start_at=_dt_from_db(row["start_at"]),
            end_at=_dt_from_db(row["end_at"]),
            all_day=bool(row["all_day"]),
            location=row["location"],
            color=row["color"],
            remote_ref=row["remote_ref"],
            remote_origin=row["remote_origin"],
            lms_source=row["lms_source"],
            course_id=row["course_id"],
        )

    def get_custom_events(self, user_id: str) -> list[CustomEvent]:
        cursor = self.conn.execute(
            "SELECT * FROM calendar_events WHERE user_id = ? ORDER BY start_at", (user_id,)
        )
        return [self._event_from_row(row) for row in cursor.fetchall()]

    def get_custom_event(self, event_id: str) -> CustomEvent | None:
        row = self.conn.execute(
            "SELECT * FROM calendar_events WHERE id = ?", (event_id,)
        ).fetchone()
        return self._event_from_row(row) if row else None

    def get_linked_event_map(self, user_id: str) -> dict[str, str]:
        """remote_ref → local id for every linked custom event of the user."""
        cursor = self.conn.execute(
            "SELECT id, remote_ref FROM calendar_events "
            "WHERE user_id = ? AND remote_ref IS NOT NULL",
            (user_id,),
        )
        return {row["remote_ref"]: row["id"] for row in cursor.fetchall()}

    def update_event_schedule(
        self,
        event_id: str,
        start_at: datetime,
        end_at: datetime | None,
        all_day: bool,
        location: str | None,
    ):
        """Apply remote-owned fields; title and description stay as edited locally."""
        self.conn.execute(
            "UPDATE calendar_events SET start_at = ?, end_at = ?, all_day = ?, location = ? "
            "WHERE id = ?",
            (_dt_to_db(start_at), _dt_to_db(end_at), int(all_day), location, event_id),
        )

    def get_class_events(self, user_id: str, course_id: str, since: datetime) -> list[CustomEvent]:
        """Exported class-meeting occurrences of a course starting at or after ``since``."""
        cursor = self.conn.execute(
            "SELECT * FROM calendar_events WHERE user_id = ? AND course_id = ? "
            "AND remote_ref IS NOT NULL AND start_at >= ?",
            (user_id, course_id, _dt_to_db(since)),
        )
        return [self._event_from_row(row) for row in cursor.fetchall()]

    # ------------------------------------------------------------------ #
    # Deadlines, exams, work items                                         #
    # ------------------------------------------------------------------ #

    def add_deadline(self, deadline: Deadline):
        self.conn.execute(
            "INSERT INTO deadlines (id, user_id, title, due_at, status, notes, course_id, "
            "remote_ref) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                deadline.id,
                deadline.user_id,
                deadline.title,
                _dt_to_db(deadline.due_at),
                deadline.status,
                deadline.notes,
                deadline.course.id if deadline.course else None,
                deadline.remote_ref,
            ),
        )

    def get_deadlines(self, user_id: str) -> list[Deadline]:
        courses = self._courses_by_id(user_id)
        cursor = self.conn.execute(
            "SELECT * FROM deadlines WHERE user_id = ? ORDER BY due_at", (user_id,)
        )
        return [
            Deadline(
                id=row["id"],
                user_id=row["user_id"],
                title=row["title"],
                due_at=_dt_from_db(row["due_at"]),
                status=row["status"],
                notes=row["notes"],
                course=courses.get(row["course_id"]),
                remote_ref=row["remote_ref"],
            )
            for row in cursor.fetchall()
        ]

    def add_exam(self, exam: Exam):
        self.conn.execute(
            "INSERT INTO exams (id, user_id, title, exam_at, status, notes, location, "
            "course_id, remote_ref) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                exam.id,
                exam.user_id,
                exam.title,
                _dt_to_db(exam.exam_at),
                exam.status,
                exam.notes,
                exam.location,
                exam.course.id if exam.course else None,
                exam.remote_ref,
            ),
        )

    def get_exams(self, user_id: str) -> list[Exam]:
        courses = self._courses_by_id(user_id)
        cursor = self.conn.execute(
            "SELECT * FROM exams WHERE user_id = ? ORDER BY exam_at", (user_id,)
        )
        return [
            Exam(
                id=row["id"],
                user_id=row["user_id"],
                title=row["title"],
                exam_at=_dt_from_db(row["exam_at"]),
                status=row["status"],
                notes=row["notes"],
                location=row["location"],
                course=courses.get(row["course_id"]),
                remote_ref=row["remote_ref"],
            )
            for row in cursor.fetchall()
        ]

    def add_work_item(self, item: WorkItem):
        self.conn.execute(
            "INSERT INTO work_items (id, user_id, title, type, due_at, status, notes, "
            "course_id, remote_ref) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                item.id,
                item.user_id,
                item.title,
                item.type,
                _dt_to_db(item.due_at),
                item.status,
                item.notes,
                item.course.id if item.course else None,
                item.remote_ref,
            ),
        )

    def get_work_items(self, user_id: str) -> list[WorkItem]:
        courses = self._courses_by_id(user_id)
        cursor = self.conn.execute(
            "SELECT * FROM work_items WHERE user_id = ? ORDER BY due_at", (user_id,)
        )
        return [
            WorkItem(
                id=row["id"],
                user_id=row["user_id"],
                title=row["title"],
                type=row["type"],
                due_at=_dt_from_db(row["due_at"]),
                status=row["status"],
                notes=row["notes"],
                course=courses.get(row["course_id"]),
                remote_ref=row["remote_ref"],
            )
            for row in cursor.fetchall()
        ]

    # ------------------------------------------------------------------ #
    # Remote links                                                         #
    # ------------------------------------------------------------------ #

    def set_remote_ref(self, kind: str, entity_id: str, remote_ref: str | None):
        """Link (or unlink, with None) a local entity to a remote event."""
        table = _KIND_TABLES[kind]
        self.conn.execute(
            f"UPDATE {table} SET remote_ref = ? WHERE id = ?", (remote_ref, entity_id)
        )
        if kind == "event":
            self.conn.execute(
                "UPDATE calendar_events SET remote_origin = ? WHERE id = ?",
                ("export" if remote_ref else None, entity_id),
            )

    def get_remote_ref(self, kind: str, entity_id: str) -> str | None:
        table = _KIND_TABLES[kind]
        row = self.conn.execute(
            f"SELECT remote_ref FROM {table} WHERE id = ?", (entity_id,)
        ).fetchone()
        return row["remote_ref"] if row else None

    def delete_entity(self, kind: str, user_id: str, entity_id: str) -> bool:
        """Delete a local entity and record what the next sync must do remotely.

        Imported events become exclusion records so import does not resurrect
        them; anything this engine exported is queued for remote deletion.
        """
        table = _KIND_TABLES[kind]
        columns = "remote_ref, remote_origin" if kind == "event" else "remote_ref"
        row = self.conn.execute(
            f"SELECT {columns} FROM {table} WHERE id = ? AND user_id = ?",
            (entity_id, user_id),
        ).fetchone()
        if row is None:
            return False

        remote_ref = row["remote_ref"]
        if remote_ref:
            if kind == "event" and row["remote_origin"] == "import":
                self.add_exclusion(user_id, remote_ref)
            else:
                self.enqueue_deletion(user_id, remote_ref)

        self.conn.execute(f"DELETE FROM {table} WHERE id = ?", (entity_id,))
        self.commit()
        logger.debug(f"Deleted {kind} {entity_id} (remote: {remote_ref})")
        return True

    # ------------------------------------------------------------------ #
    # Deletion queue and exclusions                                        #
    # ------------------------------------------------------------------ #

    def enqueue_deletion(self, user_id: str, remote_id: str):
        self.conn.execute(
            "INSERT INTO deletion_queue (user_id, remote_id, queued_at) VALUES (?, ?, ?) "
            "ON CONFLICT(user_id, remote_id) DO UPDATE SET queued_at = excluded.queued_at",
            (user_id, remote_id, _dt_to_db(_utcnow())),
        )

    def get_deletion_queue(self, user_id: str) -> list[DeletionQueueEntry]:
        cursor = self.conn.execute(
            "SELECT * FROM deletion_queue WHERE user_id = ? ORDER BY id", (user_id,)
        )
        return [
            DeletionQueueEntry(
                id=row["id"],
                user_id=row["user_id"],
                remote_id=row["remote_id"],
                queued_at=_dt_from_db(row["queued_at"]),
            )
            for row in cursor.fetchall()
        ]

    def remove_deletion(self, entry_id: int):
        self.conn.execute("DELETE FROM deletion_queue WHERE id = ?", (entry_id,))

    def add_exclusion(self, user_id: str, remote_id: str):
        self.conn.execute(
            "INSERT OR IGNORE INTO excluded_remote_events (user_id, remote_id, excluded_at) "
            "VALUES (?, ?, ?)",
            (user_id, remote_id, _dt_to_db(_utcnow())),
        )

    def get_excluded_ids(self, user_id: str) -> set[str]:
        cursor = self.conn.execute(
            "SELECT remote_id FROM excluded_remote_events WHERE user_id = ?", (user_id,)
        )
        return {row["remote_id"] for row in cursor.fetchall()}

    def commit(self):
        """Commit pending transactions."""
        if self.conn:
            self.conn.commit()

    def close(self):
        """Close the database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
