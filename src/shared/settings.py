import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from src.shared.local_store import default_state_file
from src.specs.common.errors import ConfigurationError


class Settings(BaseModel):
    """Runtime configuration, read from environment variables."""

    cosmos_connection_string: Optional[str] = None
    cosmos_database: Optional[str] = None
    cosmos_records_container: Optional[str] = None
    state_file: Path
    sync_retry_delay: float = Field(default=0.25, ge=0)

    gemini_api_key: Optional[str] = None
    generation_model: str = "gemini-2.5-flash"
    generation_timeout: float = Field(default=30.0, gt=0)

    relay_webhook_url: Optional[str] = None
    relay_timeout: float = Field(default=15.0, gt=0)
    relay_channels: List[str] = Field(
        default_factory=lambda: ["instagram", "facebook", "linkedin", "twitter"]
    )

    credit_cost_generation: int = Field(default=1, ge=0)
    credit_cost_schedule: int = Field(default=0, ge=0)
    # Granted once, on an owner's first contact
    credit_opening_balance: int = Field(default=20, ge=0)

    blob_connection_string: Optional[str] = None
    asset_container: str = "brief-assets"

    calendar_max_window_days: int = Field(default=366, gt=0)
    history_retention_days: int = Field(default=30, gt=0)

    @classmethod
    def from_env(cls) -> "Settings":
        raw = {
            "cosmos_connection_string": os.getenv("COSMOS_DB_CONNECTION_STRING"),
            "cosmos_database": os.getenv("COSMOS_DB_NAME"),
            "cosmos_records_container": os.getenv("COSMOS_DB_CONTAINER_RECORDS"),
            "state_file": default_state_file(),
            "sync_retry_delay": os.getenv("SYNC_RETRY_DELAY_SECONDS"),
            "gemini_api_key": os.getenv("GEMINI_API_KEY"),
            "generation_model": os.getenv("GENERATION_MODEL"),
            "generation_timeout": os.getenv("GENERATION_TIMEOUT_SECONDS"),
            "relay_webhook_url": os.getenv("RELAY_WEBHOOK_URL"),
            "relay_timeout": os.getenv("RELAY_TIMEOUT_SECONDS"),
            "relay_channels": _csv(os.getenv("RELAY_CHANNELS")),
            "credit_cost_generation": os.getenv("CREDIT_COST_GENERATION"),
            "credit_cost_schedule": os.getenv("CREDIT_COST_SCHEDULE"),
            "credit_opening_balance": os.getenv("CREDIT_OPENING_BALANCE"),
            "blob_connection_string": os.getenv("PUBLIC_BLOB_CONNECTION_STRING"),
            "asset_container": os.getenv("ASSET_CONTAINER"),
            "calendar_max_window_days": os.getenv("CALENDAR_MAX_WINDOW_DAYS"),
            "history_retention_days": os.getenv("HISTORY_RETENTION_DAYS"),
        }
        # Unset variables fall back to the field defaults
        values = {k: v for k, v in raw.items() if v not in (None, "")}
        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigurationError(
                "Invalid runtime configuration",
                details={"errors": exc.errors(include_url=False, include_input=False, include_context=False)},
            ) from exc


def _csv(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [p.strip().lower() for p in value.split(",") if p.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
