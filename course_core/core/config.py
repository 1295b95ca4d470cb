from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _getenv_int(name: str, default: str, *, minimum: int) -> int:
    raw = _getenv(name, default)
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    # XP pool a course hands out for a 0 → 100 improvement when the course
    # itself does not set one.
    course_xp_total: int = 500
    # How many times a ledger write is recomputed after a version conflict.
    ledger_max_retries: int = 5

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if log_json_raw not in ("true", "false", "1", "0"):
        raise ValueError(f"LOG_JSON must be true|false (got {log_json_raw!r})")

    port = _getenv_int("PORT", "8000", minimum=1)
    course_xp_total = _getenv_int("COURSE_XP_TOTAL", "500", minimum=0)
    ledger_max_retries = _getenv_int("LEDGER_MAX_RETRIES", "5", minimum=1)

    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("true", "1"),
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        course_xp_total=course_xp_total,
        ledger_max_retries=ledger_max_retries,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
