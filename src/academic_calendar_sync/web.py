"""FastAPI application exposing the sync engine over HTTP."""

import logging
from dataclasses import dataclass
from typing import Callable

from fastapi import Depends
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pydantic import ValidationError

from academic_calendar_sync.auth import TokenProvider
from academic_calendar_sync.config import AppConfig
from academic_calendar_sync.db import StateDatabase
from academic_calendar_sync.google_client import GoogleCalendarClient
from academic_calendar_sync.models import AuthError
from academic_calendar_sync.models import CalendarSyncError
from academic_calendar_sync.models import CooldownError
from academic_calendar_sync.models import EntitlementError
from academic_calendar_sync.models import NotConnectedError
from academic_calendar_sync.rate_limit import RateLimiter
from academic_calendar_sync.sync import CalendarSynchronizer
from academic_calendar_sync.sync import ClientFactory

logger = logging.getLogger(__name__)

RECONNECT_MESSAGE = "Google Calendar authentication failed. Please reconnect."


@dataclass
class Entitlement:
    allowed: bool
    message: str = ""


IdentityResolver = Callable[[Request], str | None]
EntitlementChecker = Callable[[str, StateDatabase], Entitlement]


def header_identity(request: Request) -> str | None:
    """Caller id as forwarded by the session layer in front of this app."""
    return request.headers.get("X-User-Id") or None


def premium_entitlement(user_id: str, store: StateDatabase) -> Entitlement:
    if store.is_premium(user_id):
        return Entitlement(True)
    return Entitlement(False, "Google Calendar sync requires a premium subscription")


class SyncOverrides(BaseModel):
    importEvents: bool | None = None
    exportEvents: bool | None = None
    exportDeadlines: bool | None = None
    exportExams: bool | None = None


class SettingsUpdate(SyncOverrides):
    importCalendarId: str | None = None
    exportCalendarId: str | None = None


async def sync_overrides(request: Request) -> SyncOverrides | None:
    """Optional toggle overrides from the body; a missing or malformed body means none."""
    body = await request.body()
    if not body:
        return None
    try:
        return SyncOverrides.model_validate_json(body)
    except ValidationError:
        logger.debug("Ignoring unparseable /sync body")
        return None


def _error(status: int, message: str, **extra) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status)


def create_app(
    config: AppConfig,
    identity: IdentityResolver = header_identity,
    entitlement: EntitlementChecker = premium_entitlement,
    client_factory: ClientFactory | None = None,
    rate_limiter: RateLimiter | None = None,
    token_session=None,
) -> FastAPI:
    """Build the HTTP app; collaborators are injectable for tests and embedding."""
    app = FastAPI(
        title="Academic Calendar Sync",
        description="Bidirectional Google Calendar sync for academic data",
        version="0.1.0",
    )

    def token_provider(store: StateDatabase) -> TokenProvider:
        return TokenProvider(
            store,
            config.google_client_id,
            config.google_client_secret,
            session=token_session,
        )

    def make_client(
        access_token: str, limiter: RateLimiter | None = None
    ) -> GoogleCalendarClient:
        limiter = limiter or rate_limiter or RateLimiter(config.api_delay)
        if client_factory is not None:
            return client_factory(access_token, limiter)
        return GoogleCalendarClient(access_token, rate_limiter=limiter)

    @app.post("/sync")
    def sync(request: Request, overrides: SyncOverrides | None = Depends(sync_overrides)):
        user_id = identity(request)
        if not user_id:
            return _error(401, "Please sign in to continue")

        with StateDatabase(config.state_db_path, config.encryption_secret) as store:
            try:
                access = entitlement(user_id, store)
            except EntitlementError as e:
                access = Entitlement(False, str(e))
            if not access.allowed:
                return _error(403, access.message or "Access denied")

            synchronizer = CalendarSynchronizer(
                store,
                token_provider(store),
                client_factory=make_client,
                rate_limiter=rate_limiter or RateLimiter(config.api_delay),
                tz=config.tzinfo,
            )
            try:
                report = synchronizer.run(
                    user_id, overrides.model_dump() if overrides else None
                )
            except NotConnectedError as e:
                return _error(400, str(e))
            except CooldownError as e:
                return _error(429, str(e))
            except AuthError as e:
                logger.warning(f"Sync auth failure for {user_id}: {e}")
                return _error(401, RECONNECT_MESSAGE, authError=True)
            except Exception:
                logger.exception(f"Sync failed for {user_id}")
                return _error(500, "Failed to sync with Google Calendar. Please try again.")

        return {"success": True, **report.to_dict(), "message": "Google Calendar sync completed"}

    @app.get("/status")
    def status(request: Request):
        user_id = identity(request)
        if not user_id:
            return _error(401, "Please sign in to continue")

        with StateDatabase(config.state_db_path, config.encryption_secret) as store:
            settings = store.get_settings(user_id)

        if settings is None:
            return {
                "connected": False,
                "email": None,
                "lastSyncedAt": None,
                "syncImportEvents": True,
                "syncExportEvents": True,
                "syncExportDeadlines": True,
                "syncExportExams": True,
                "importCalendarId": "primary",
                "exportCalendarId": "primary",
            }
        return {
            "connected": settings.connected,
            "email": settings.email,
            "lastSyncedAt": (
                settings.last_synced_at.isoformat() if settings.last_synced_at else None
            ),
            "syncImportEvents": settings.import_events,
            "syncExportEvents": settings.export_events,
            "syncExportDeadlines": settings.export_deadlines,
            "syncExportExams": settings.export_exams,
            "importCalendarId": settings.import_calendar_id,
            "exportCalendarId": settings.export_calendar_id,
        }

    @app.patch("/settings")
    def update_settings(request: Request, update: SettingsUpdate):
        user_id = identity(request)
        if not user_id:
            return _error(401, "Please sign in to continue")

        with StateDatabase(config.state_db_path, config.encryption_secret) as store:
            settings = store.get_settings(user_id)
            if settings is None:
                return _error(400, "Google Calendar is not connected")

            for field, attr in (
                ("importEvents", "import_events"),
                ("exportEvents", "export_events"),
                ("exportDeadlines", "export_deadlines"),
                ("exportExams", "export_exams"),
                ("importCalendarId", "import_calendar_id"),
                ("exportCalendarId", "export_calendar_id"),
            ):
                value = getattr(update, field)
                if value is not None:
                    setattr(settings, attr, value)
            store.save_settings(settings)

        return {"success": True}

    @app.post("/refresh")
    def refresh(request: Request):
        user_id = identity(request)
        if not user_id:
            return _error(401, "Please sign in to continue")

        with StateDatabase(config.state_db_path, config.encryption_secret) as store:
            settings = store.get_settings(user_id)
            if settings is None or not settings.connected:
                return _error(400, "Google Calendar is not connected")
            try:
                token_provider(store).get_valid_token(settings, user_id)
            except AuthError:
                return _error(401, "Failed to refresh token. Please reconnect Google Calendar.")

        return {"success": True, "message": "Token refreshed"}

    @app.get("/calendars")
    def calendars(request: Request):
        user_id = identity(request)
        if not user_id:
            return _error(401, "Please sign in to continue")

        with StateDatabase(config.state_db_path, config.encryption_secret) as store:
            settings = store.get_settings(user_id)
            if settings is None or not settings.connected:
                return _error(400, "Google Calendar is not connected")
            try:
                token = token_provider(store).get_valid_token(settings, user_id)
                items = make_client(token).list_calendars()
            except AuthError:
                return _error(401, RECONNECT_MESSAGE)
            except CalendarSyncError as e:
                logger.error(f"Failed to fetch calendars for {user_id}: {e}")
                return _error(500, "Failed to fetch calendars")

        return {"calendars": items}

    return app
