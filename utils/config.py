"""Application settings loaded from the environment."""

import os

from functools import lru_cache

from dotenv import load_dotenv

from pydantic import BaseModel, Field

from typing import Annotated, Optional


class Settings(BaseModel):
    """Process-wide configuration, read once at startup."""

    secret_key: Annotated[str, Field(min_length=1)]
    access_token_expire_minutes: Annotated[int, Field(gt=0)] = 15
    refresh_token_expire_days: Annotated[int, Field(gt=0)] = 7
    database_connection_string: str = "mongodb://localhost:27017"
    database_name: str = "notes"
    rate_limit_idle_minutes: Annotated[int, Field(gt=0)] = 10
    rate_limit_max_entries: Annotated[int, Field(gt=0)] = 100_000
    logfire_write_token: Optional[str] = None


def load_settings() -> Settings:
    """Build `Settings` from environment variables (and `.env` if present).

    Raises:
        pydantic.ValidationError: If `SECRET_KEY` is missing or a value is malformed.

    Returns:
        Settings: The loaded settings.
    """
    load_dotenv()

    values = {
        "secret_key": os.getenv("SECRET_KEY", ""),
        "access_token_expire_minutes": os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES"),
        "refresh_token_expire_days": os.getenv("REFRESH_TOKEN_EXPIRE_DAYS"),
        "database_connection_string": os.getenv("DATABASE_CONNECTION_STRING"),
        "database_name": os.getenv("DATABASE_NAME"),
        "rate_limit_idle_minutes": os.getenv("RATE_LIMIT_IDLE_MINUTES"),
        "rate_limit_max_entries": os.getenv("RATE_LIMIT_MAX_ENTRIES"),
        "logfire_write_token": os.getenv("LOGFIRE_WRITE_TOKEN"),
    }

    # Unset variables fall back to the model defaults
    return Settings(**{key: value for key, value in values.items() if value is not None})


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance shared by the application factory."""
    return load_settings()
