from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_DEV_JWT_SECRET = "studyforge-dev-secret"


def _getenv(name: str, default: str) -> str:
    # Centralize env access so casting and validation live in one place
    return os.environ.get(name, default).strip()


def _getint(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


def _getfloat(name: str, default: float) -> float:
    raw = _getenv(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {raw!r})") from None
    if value < 0:
        raise ValueError(f"{name} must be >= 0 (got {value})")
    return value


def _getbool(name: str, default: bool) -> bool:
    return _getenv(name, "true" if default else "false").lower() in (
        "1",
        "true",
        "yes",
        "on",
    )


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    port: int
    database_url: str | None
    redis_url: str | None
    log_json: bool = False

    # Bearer tokens are issued by the identity provider; we only verify them.
    jwt_secret: str = _DEV_JWT_SECRET

    # AI content / grading model
    ai_api_url: str | None = None
    ai_api_key: str | None = None
    ai_timeout_seconds: float = 30.0

    notify_webhook_url: str | None = None

    # Background jobs
    job_max_attempts: int = 3
    job_timeout_seconds: float = 120.0
    job_backoff_seconds: float = 1.0

    # Storage retry wrapper (transient failures only)
    storage_retry_attempts: int = 3
    storage_retry_delay_seconds: float = 1.0

    starting_credits: int = 5

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
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    jwt_secret = _getenv("JWT_SECRET", _DEV_JWT_SECRET)
    if app_env_raw == "prod" and jwt_secret == _DEV_JWT_SECRET:
        raise ValueError("JWT_SECRET must be set when APP_ENV=prod")

    job_max_attempts = _getint("JOB_MAX_ATTEMPTS", 3, minimum=1)
    storage_retry_attempts = _getint("STORAGE_RETRY_ATTEMPTS", 3, minimum=1)

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getbool("LOG_JSON", False),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        jwt_secret=jwt_secret,
        ai_api_url=_getenv("AI_API_URL", "") or None,
        ai_api_key=_getenv("AI_API_KEY", "") or None,
        ai_timeout_seconds=_getfloat("AI_TIMEOUT_SECONDS", 30.0),
        notify_webhook_url=_getenv("NOTIFY_WEBHOOK_URL", "") or None,
        job_max_attempts=job_max_attempts,
        job_timeout_seconds=_getfloat("JOB_TIMEOUT_SECONDS", 120.0),
        job_backoff_seconds=_getfloat("JOB_BACKOFF_SECONDS", 1.0),
        storage_retry_attempts=storage_retry_attempts,
        storage_retry_delay_seconds=_getfloat("STORAGE_RETRY_DELAY_SECONDS", 1.0),
        starting_credits=_getint("STARTING_CREDITS", 5),
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
