# property_import/config.py
from __future__ import annotations

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

log = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    IMOTKO_DB_URL: str = "sqlite+aiosqlite:///./imotko.db"

    # --- Admin router auth (API key) ---
    # Send: X-API-Key: <key>
    API_KEY: str | None = None

    # --- Source feed ---
    IMPORT_DATA_SOURCE_URL: str = "https://globalracecalendar.com/imotko/delta.json"
    FEED_TIMEOUT_S: float = 30.0
    FEED_MAX_ATTEMPTS: int = 3
    FEED_USER_AGENT: str = "Imotko-Property-Import/1.0"

    # --- Ownership / defaults applied to imported records ---
    IMPORT_SYSTEM_USER_ID: str | None = None
    IMPORT_DEFAULT_AGENCY_ID: str | None = None

    # --- Run tuning ---
    IMPORT_BATCH_SIZE: int = 10
    IMPORT_BATCH_DELAY_S: float = 2.0  # pause between batches
    IMPORT_TEST_MODE: bool = False  # dry run: map but never persist
    IMPORT_SKIP_IMAGES: bool = False
    IMPORT_EXTRACT_REFERENCE_CODE: bool = True
    IMPORT_ALERT_THRESHOLD: int = 3  # consecutive failed runs before alerting

    # --- Scheduler ---
    IMPORT_CRON_SCHEDULE: str = "0 0 * * *"  # daily at midnight
    IMPORT_TIMEZONE: str = "Europe/Skopje"
    IMPORT_STOP_TIMEOUT_S: float = 10.0

    # --- Completion service (normalization / geocoding) ---
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    MODEL_TIMEOUT_S: float = 15.0
    MODEL_MIN_GAP_S: float = 0.1
    MODEL_MAX_ATTEMPTS: int = 2
    MODEL_RETRY_DELAY_S: float = 1.0

    # --- Images ---
    IMAGE_MAX_CONCURRENT: int = 3
    IMAGE_DOWNLOAD_TIMEOUT_S: float = 15.0
    IMAGE_MAX_ATTEMPTS: int = 3
    IMAGE_BACKOFF_BASE_S: float = 1.0
    IMAGE_QUALITY: int = 60

    # --- Object storage (Supabase) ---
    SUPABASE_URL: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: str | None = None
    STORAGE_BUCKET: str = "imotko-prod"
    STORAGE_PREFIX: str = "properties"


settings = Settings()


REQUIRED_IMPORT_SETTINGS = ("OPENAI_API_KEY", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY")


def validate_import_settings(s: Settings) -> None:
    """
    Fail fast on missing credentials, warn on missing optional ownership fields.

    Runs before the feed is fetched so a misconfigured process never half-imports.
    """
    for name in REQUIRED_IMPORT_SETTINGS:
        if not getattr(s, name, None):
            raise ConfigurationError(f"Missing required environment variable {name}")

    if not s.IMPORT_SYSTEM_USER_ID:
        log.warning("IMPORT_SYSTEM_USER_ID not set - imported properties will be created by 'system'")
    if not s.IMPORT_DEFAULT_AGENCY_ID:
        log.warning("IMPORT_DEFAULT_AGENCY_ID not set - imported properties will not be assigned to an agency")
