"""
Access-token lifecycle: hand out the stored token or refresh it.
"""

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Callable

import requests

from academic_calendar_sync.db import StateDatabase
from academic_calendar_sync.models import TOKEN_REFRESH_MARGIN_SECONDS
from academic_calendar_sync.models import AuthError
from academic_calendar_sync.models import SyncSettings

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenProvider:
    """Returns a usable Google access token for a user.

    Tokens expiring within five minutes are refreshed with the stored refresh
    token and the new values are persisted before returning. Every failure
    (no tokens, no client credentials, revoked grant, network error) is raised
    as AuthError. A failed refresh also marks the user disconnected.
    """

    def __init__(
        self,
        store: StateDatabase,
        client_id: str | None,
        client_secret: str | None,
        session: requests.Session | None = None,
        token_url: str = GOOGLE_TOKEN_URL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.client_id = client_id
        self.client_secret = client_secret
        self.session = session or requests.Session()
        self.token_url = token_url
        self.clock = clock

    def get_valid_token(self, settings: SyncSettings, user_id: str) -> str:
        if not settings.access_token or not settings.refresh_token:
            raise AuthError("No Google Calendar tokens found")

        now = self.clock()
        expires_at = settings.token_expires_at
        if expires_at and expires_at > now + timedelta(seconds=TOKEN_REFRESH_MARGIN_SECONDS):
            return settings.access_token

        if not self.client_id or not self.client_secret:
            raise AuthError("Google Calendar client credentials not configured")

        logger.info(f"Refreshing Google Calendar access token for {user_id}")
        try:
            tokens = self._refresh(settings.refresh_token)
        except AuthError:
            self.store.set_connected(user_id, False)
            raise

        access_token = tokens["access_token"]
        new_expires_at = now + timedelta(seconds=int(tokens.get("expires_in", 3600)))
        self.store.update_tokens(
            user_id, access_token, new_expires_at, refresh_token=tokens.get("refresh_token")
        )

        settings.access_token = access_token
        settings.token_expires_at = new_expires_at
        if tokens.get("refresh_token"):
            settings.refresh_token = tokens["refresh_token"]
        return access_token

    def _refresh(self, refresh_token: str) -> dict:
        """Exchange the refresh token; any failure is an AuthError."""
        try:
            response = self.session.post(
                self.token_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                timeout=30,
            )
        except requests.RequestException as e:
            raise AuthError(f"Failed to refresh Google Calendar token: {e}") from e

        if response.status_code != 200:
            raise AuthError(f"Failed to refresh Google Calendar token: {response.text}")

        try:
            tokens = response.json()
        except ValueError as e:
            raise AuthError("Failed to refresh Google Calendar token: invalid response") from e
        if not tokens.get("access_token"):
            raise AuthError("Failed to refresh Google Calendar token: no access token returned")
        return tokens
