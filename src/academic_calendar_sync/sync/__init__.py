"""
CalendarSynchronizer: the orchestrator that sequences the sync phases.
"""

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Callable

from academic_calendar_sync.auth import TokenProvider
from academic_calendar_sync.db import StateDatabase
from academic_calendar_sync.google_client import GoogleCalendarClient
from academic_calendar_sync.models import SYNC_COOLDOWN_SECONDS
from academic_calendar_sync.models import CooldownError
from academic_calendar_sync.models import NotConnectedError
from academic_calendar_sync.models import SyncOptions
from academic_calendar_sync.models import SyncReport
from academic_calendar_sync.models import SyncRun
from academic_calendar_sync.rate_limit import RateLimiter
from academic_calendar_sync.sync.classes import export_classes
from academic_calendar_sync.sync.deletions import process_deletion_queue
from academic_calendar_sync.sync.exporter import CUSTOM_EVENTS
from academic_calendar_sync.sync.exporter import DEADLINES
from academic_calendar_sync.sync.exporter import EXAMS
from academic_calendar_sync.sync.exporter import WORK_ITEMS
from academic_calendar_sync.sync.exporter import export_entities
from academic_calendar_sync.sync.importer import run_import

ClientFactory = Callable[[str, RateLimiter], GoogleCalendarClient]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _default_client_factory(access_token: str, rate_limiter: RateLimiter) -> GoogleCalendarClient:
    return GoogleCalendarClient(access_token, rate_limiter=rate_limiter)


class CalendarSynchronizer:
    """Main synchronization engine.

    One ``run()`` is one pass: cooldown check, token, pending deletions,
    import, then the five export phases in a fixed order. Only the cooldown,
    connection and token steps can abort a run; a failure inside a phase is
    recorded in that phase's result and the next phase still runs.
    """

    def __init__(
        self,
        store: StateDatabase,
        token_provider: TokenProvider,
        client_factory: ClientFactory = _default_client_factory,
        rate_limiter: RateLimiter | None = None,
        tz=timezone.utc,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.token_provider = token_provider
        self.client_factory = client_factory
        self.rate_limiter = rate_limiter or RateLimiter()
        self.tz = tz
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def run(self, user_id: str, overrides: dict | None = None) -> SyncReport:
        """Execute one synchronization pass for a user."""
        now = self.clock()

        settings = self.store.get_settings(user_id)
        if settings is None or not settings.connected:
            raise NotConnectedError("Google Calendar is not connected. Please connect first.")

        # Advisory only: two requests racing past this check both run.
        if settings.last_synced_at is not None:
            if settings.last_synced_at > now - timedelta(seconds=SYNC_COOLDOWN_SECONDS):
                raise CooldownError("Please wait before syncing again")

        self.logger.info(f"Authenticating Google Calendar for {user_id}...")
        access_token = self.token_provider.get_valid_token(settings, user_id)
        client = self.client_factory(access_token, self.rate_limiter)

        run = SyncRun(
            user_id=user_id,
            import_calendar_id=settings.import_calendar_id or "primary",
            export_calendar_id=settings.export_calendar_id or "primary",
            options=SyncOptions.resolve(settings, overrides),
            now=now,
            tz=self.tz,
        )
        report = SyncReport()
        args = (run, report, self.logger)
        options = run.options

        self._phase("deletions", report, process_deletion_queue, *args, client, self.store)
        if options.import_events:
            self._phase("imported", report, run_import, *args, client, self.store)
        if options.export_events:
            self._phase(
                "exportedEvents", report, export_entities, *args, CUSTOM_EVENTS, client, self.store
            )
        if options.export_deadlines:
            self._phase(
                "exportedDeadlines", report, export_entities, *args, DEADLINES, client, self.store
            )
        if options.export_exams:
            self._phase("exportedExams", report, export_entities, *args, EXAMS, client, self.store)
        # Work items ride on the deadline toggle, class meetings on the events toggle.
        if options.export_deadlines:
            self._phase(
                "exportedWork", report, export_entities, *args, WORK_ITEMS, client, self.store
            )
        if options.export_events:
            self._phase("exportedClasses", report, export_classes, *args, client, self.store)

        self.store.set_last_synced(user_id, self.clock())
        self.logger.info(f"Sync finished for {user_id} with {report.error_count} error(s)")
        return report

    def _phase(self, name: str, report: SyncReport, func, *args):
        """Run one phase; anything escaping it lands in that phase's errors."""
        try:
            func(*args)
        except Exception as e:
            self.logger.error(f"Phase {name} failed: {e}", exc_info=True)
            report[name].errors.append(f"Failed to run {name}: {e}")
