"""
In-memory fake Google Calendar client for testing.

Duck-type-compatible stand-in for GoogleCalendarClient. No network is
involved: events live in a dict keyed by id, per calendar.
"""

import itertools
from dataclasses import replace

from academic_calendar_sync.models import NotFoundError
from academic_calendar_sync.models import RemoteEvent
from academic_calendar_sync.models import TransientError


class FakeCalendarClient:
    """In-memory stub that satisfies the GoogleCalendarClient duck-type contract."""

    def __init__(self, initial_events: list[RemoteEvent] | None = None, calendar_id="primary"):
        # calendar id → event id → RemoteEvent
        self._calendars: dict[str, dict[str, RemoteEvent]] = {calendar_id: {}}
        for event in initial_events or []:
            self._calendars[calendar_id][event.id] = event
        self._ids = itertools.count(1)
        self.creates: list[RemoteEvent] = []
        self.updates: list[str] = []
        self.deletes: list[str] = []
        self.list_calls = 0
        # operation name → exception raised by every call of that operation
        self.failures: dict[str, Exception] = {}
        # summaries whose insert fails with a transient error
        self.failing_summaries: set[str] = set()

    # ------------------------------------------------------------------ #
    # Internal helpers                                                      #
    # ------------------------------------------------------------------ #

    def _events(self, calendar_id: str) -> dict[str, RemoteEvent]:
        return self._calendars.setdefault(calendar_id, {})

    def _maybe_fail(self, operation: str):
        if operation in self.failures:
            raise self.failures[operation]

    # ------------------------------------------------------------------ #
    # GoogleCalendarClient interface                                        #
    # ------------------------------------------------------------------ #

    def list_calendars(self) -> list[dict]:
        self._maybe_fail("list_calendars")
        return [
            {
                "id": cal_id,
                "summary": cal_id,
                "primary": cal_id == "primary",
                "backgroundColor": None,
            }
            for cal_id in self._calendars
        ]

    def list_events(self, calendar_id, time_min, time_max) -> list[RemoteEvent]:
        self._maybe_fail("list_events")
        self.list_calls += 1
        return list(self._events(calendar_id).values())

    def insert_event(self, calendar_id, draft: RemoteEvent) -> RemoteEvent:
        self._maybe_fail("insert_event")
        if draft.summary in self.failing_summaries:
            raise TransientError("Backend Error", status=503)
        event = replace(draft, id=f"g{next(self._ids)}", status="confirmed")
        self._events(calendar_id)[event.id] = event
        self.creates.append(event)
        return event

    def update_event(self, calendar_id, event_id, draft: RemoteEvent) -> RemoteEvent:
        self._maybe_fail("update_event")
        events = self._events(calendar_id)
        if event_id not in events:
            raise NotFoundError("Not Found", status=404)
        event = replace(draft, id=event_id, status="confirmed")
        events[event_id] = event
        self.updates.append(event_id)
        return event

    def delete_event(self, calendar_id, event_id):
        self._maybe_fail("delete_event")
        events = self._events(calendar_id)
        if event_id not in events:
            raise NotFoundError("Not Found", status=404)
        del events[event_id]
        self.deletes.append(event_id)

    # ------------------------------------------------------------------ #
    # Test helpers                                                          #
    # ------------------------------------------------------------------ #

    def get(self, event_id: str, calendar_id: str = "primary") -> RemoteEvent | None:
        return self._events(calendar_id).get(event_id)

    def remove_remotely(self, event_id: str, calendar_id: str = "primary"):
        """Simulate the user deleting an event in Google Calendar."""
        self._events(calendar_id).pop(event_id, None)

    def event_count(self, calendar_id: str = "primary") -> int:
        return len(self._events(calendar_id))

    @property
    def call_count(self) -> int:
        return len(self.creates) + len(self.updates) + len(self.deletes) + self.list_calls

    def reset_counters(self):
        """Clear the create/update/delete lists between sync runs."""
        self.creates.clear()
        self.updates.clear()
        self.deletes.clear()
        self.list_calls = 0
