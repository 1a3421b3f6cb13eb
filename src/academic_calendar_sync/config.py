"""
Application configuration: INI file plus environment overrides.
"""

import os
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo

from academic_calendar_sync.models import API_DELAY_SECONDS
from academic_calendar_sync.models import DEFAULT_CONFIG
from academic_calendar_sync.models import DEFAULT_STATE_DB

CONFIG_SECTION = "calendar-sync"


@dataclass
class AppConfig:
    """Settings shared by the CLI and the HTTP app."""

    state_db_path: Path = DEFAULT_STATE_DB
    google_client_id: str | None = None
    google_client_secret: str | None = None
    timezone: str = "UTC"
    api_delay: float = API_DELAY_SECONDS
    encryption_secret: str | None = None

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return dict(parser[CONFIG_SECTION])


def load_config(config_path: Path = DEFAULT_CONFIG, state_db: Path | None = None) -> AppConfig:
    """Build an AppConfig; explicit arguments beat env vars, which beat the file."""
    values = load_config_file(config_path)
    env = os.environ

    db_path = state_db or env.get("ACADEMIC_SYNC_DB") or values.get("state_db")
    delay_ms = values.get("api_delay_ms")

    return AppConfig(
        state_db_path=Path(db_path).expanduser() if db_path else DEFAULT_STATE_DB,
        google_client_id=env.get("GOOGLE_CLIENT_ID") or values.get("google_client_id"),
        google_client_secret=env.get("GOOGLE_CLIENT_SECRET") or values.get("google_client_secret"),
        timezone=env.get("ACADEMIC_SYNC_TZ") or values.get("timezone") or "UTC",
        api_delay=int(delay_ms) / 1000 if delay_ms else API_DELAY_SECONDS,
        encryption_secret=env.get("GOOGLE_ENCRYPTION_SECRET") or values.get("encryption_secret"),
    )
