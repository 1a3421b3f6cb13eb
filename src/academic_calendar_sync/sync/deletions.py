"""
Phase 0: drain the queue of remote events whose local entity was deleted.
"""

from academic_calendar_sync.db import StateDatabase
from academic_calendar_sync.google_client import GoogleCalendarClient
from academic_calendar_sync.models import CalendarSyncError
from academic_calendar_sync.models import NotFoundError
from academic_calendar_sync.models import SyncReport
from academic_calendar_sync.models import SyncRun


def process_deletion_queue(
    run: SyncRun,
    report: SyncReport,
    logger,
    client: GoogleCalendarClient,
    store: StateDatabase,
):
    """Delete every queued remote event, then drop the queue entry.

    A 404 counts as handled (the event is already gone). Other failures are
    logged and recorded, but the entry is removed anyway: a leftover remote
    event is preferable to retrying the same delete on every run.
    """
    result = report["deletions"]
    pending = store.get_deletion_queue(run.user_id)
    if pending:
        logger.info(f"Processing {len(pending)} pending remote deletion(s)...")

    for entry in pending:
        try:
            client.delete_event(run.export_calendar_id, entry.remote_id)
            result.deleted += 1
            logger.debug(f"Deleted remote event {entry.remote_id}")
        except NotFoundError:
            logger.debug(f"Remote event {entry.remote_id} already gone")
        except CalendarSyncError as e:
            logger.error(f"Failed to delete remote event {entry.remote_id}: {e}")
            result.errors.append(f"Failed to delete remote event {entry.remote_id}: {e}")

        store.remove_deletion(entry.id)
        store.commit()
