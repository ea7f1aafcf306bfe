"""
backend/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables or a .env file.

Quick start — create a .env file in your project root:
    PASSWORD=change-me
    TIMEZONE=Asia/Shanghai
    DB_PATH=data/xtrafficdash.db
    COUNTER_MODE=history
"""

from __future__ import annotations

import hashlib
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

COUNTER_MODES = ("history", "live")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Storage
    DB_PATH: str = "data/xtrafficdash.db"

    # Calendar: every "today" boundary is computed in this zone
    TIMEZONE: str = "Asia/Shanghai"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 37022
    DEBUG_MODE: bool = False
    CORS_ORIGINS: list[str] = ["*"]

    # Auth
    PASSWORD: str = ""
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 1440

    # Counters: "history" keeps only per-day rows, "live" keeps running
    # per-entity counters that the daily rollover closes out.
    COUNTER_MODE: str = "history"

    # Liveness
    SOURCE_FRESHNESS_SECONDS: int = 30
    ENTITY_FRESHNESS_SECONDS: int = 60

    # Windowed queries
    DEFAULT_WINDOW_DAYS: int = 7
    MAX_WINDOW_DAYS: int = 30

    MASK_IPS: bool = True
    ROLLOVER_ENABLED: bool = True

    # Relay poller (hysteria2 traffic endpoints)
    RELAY_ENABLED: bool = True
    RELAY_POLL_INTERVAL_SECONDS: int = 10
    RELAY_TIMEOUT_SECONDS: float = 15.0

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_origins(cls, v):
        if isinstance(v, str):
            import json as _json
            v = v.strip()
            if v.startswith("["):
                try:
                    return _json.loads(v)
                except Exception:
                    pass
            return [o.strip() for o in v.split(",") if o.strip()]
        return v

    @field_validator("COUNTER_MODE")
    @classmethod
    def check_counter_mode(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in COUNTER_MODES:
            raise ValueError(f"COUNTER_MODE must be one of {COUNTER_MODES}, got {v!r}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalise_log_level(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {v!r}") from exc
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)

    @property
    def jwt_signing_key(self) -> str:
        """Explicit JWT_SECRET, else PASSWORD plus a 16-char MD5 suffix."""
        if self.JWT_SECRET:
            return self.JWT_SECRET
        if not self.PASSWORD:
            return ""
        digest = hashlib.md5(self.PASSWORD.encode()).hexdigest()
        return self.PASSWORD + digest[:16]


settings = Settings()
