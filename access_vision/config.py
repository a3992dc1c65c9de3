"""Configuration for Access Vision, loaded from environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_INTERVAL_MS = 2500
DEFAULT_COOLDOWN_MS = 30_000


@dataclass(frozen=True)
class RecognitionConfig:
    """Connection settings for the hosted recognition function.

    Attributes:
        url: Full URL of the recognition endpoint.
        api_key: Bearer token / anon key sent with each request.
        timeout: Request timeout in seconds.
    """

    url: str = ""
    api_key: str | None = None
    timeout: float = 30.0

    @property
    def is_configured(self) -> bool:
        """Return True when a recognition URL is set."""
        return bool(self.url)


@dataclass(frozen=True)
class DetectionConfig:
    """Detection loop cadence and access-event cooldown.

    Attributes:
        interval_ms: Delay between detection ticks.
        cooldown_ms: Minimum gap between two logged events for one person.
    """

    interval_ms: int = DEFAULT_INTERVAL_MS
    cooldown_ms: int = DEFAULT_COOLDOWN_MS


@dataclass(frozen=True)
class DatabaseConfig:
    """Database configuration for the Postgres roster/log gateway.

    Attributes:
        host: PostgreSQL host address.
        port: PostgreSQL port number.
        database: Database name.
        user: Database user.
        password: Database password.
    """

    host: str = "localhost"
    port: int = 5432
    database: str = "access_vision"
    user: str = "access"
    password: str = "access"


def get_recognition_config_from_env() -> RecognitionConfig:
    """Read RECOGNITION_URL, RECOGNITION_API_KEY and RECOGNITION_TIMEOUT."""
    return RecognitionConfig(
        url=os.getenv("RECOGNITION_URL", ""),
        api_key=os.getenv("RECOGNITION_API_KEY") or None,
        timeout=float(os.getenv("RECOGNITION_TIMEOUT", "30")),
    )


def get_detection_config_from_env() -> DetectionConfig:
    """Read DETECTION_INTERVAL_MS and COOLDOWN_MS."""
    return DetectionConfig(
        interval_ms=int(os.getenv("DETECTION_INTERVAL_MS", str(DEFAULT_INTERVAL_MS))),
        cooldown_ms=int(os.getenv("COOLDOWN_MS", str(DEFAULT_COOLDOWN_MS))),
    )


def get_database_config_from_env() -> DatabaseConfig:
    """Read DB_HOST, DB_PORT, DB_NAME, DB_USER and DB_PASSWORD."""
    return DatabaseConfig(
        host=os.getenv("DB_HOST", "localhost"),
        port=int(os.getenv("DB_PORT", "5432")),
        database=os.getenv("DB_NAME", "access_vision"),
        user=os.getenv("DB_USER", "access"),
        password=os.getenv("DB_PASSWORD", "access"),
    )


def get_allowed_origins_from_env() -> list[str] | str:
    """Return Socket.IO CORS origins from ALLOWED_ORIGINS ("*" allows all)."""
    raw = os.getenv("ALLOWED_ORIGINS", "http://localhost:5000,http://127.0.0.1:5000")
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if origins == ["*"]:
        return "*"
    return origins
