"""
Fixed-delay throttle in front of every Google Calendar API call.
"""

import logging
import time
from typing import Callable

from academic_calendar_sync.models import API_DELAY_SECONDS

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sleeps a fixed interval before each remote call.

    Calls are issued one at a time, so a fixed pause keeps a run below the
    provider's per-user quota without tracking a request window. Not safe for
    concurrent use.
    """

    def __init__(
        self,
        interval: float = API_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.interval = interval
        self._sleep = sleep
        self.calls = 0

    def throttle(self):
        """Block for the configured interval."""
        self.calls += 1
        if self.interval > 0:
            self._sleep(self.interval)
