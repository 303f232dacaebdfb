"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "pulse.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


@dataclass
class Settings:
    """Tunables for the event core and health monitor."""

    offline_after_seconds: float = 300.0
    stuck_after_seconds: float = 7200.0
    critical_score: int = 40
    webhook_timeout: float = 10.0
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0
    retry_client_errors: bool = False
    history_size: int = 100


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if not value:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    """Build Settings from PULSE_* environment variables."""
    defaults = Settings()
    return Settings(
        offline_after_seconds=_env_float(
            "PULSE_OFFLINE_AFTER_SECONDS", defaults.offline_after_seconds
        ),
        stuck_after_seconds=_env_float(
            "PULSE_STUCK_AFTER_SECONDS", defaults.stuck_after_seconds
        ),
        critical_score=_env_int("PULSE_CRITICAL_SCORE", defaults.critical_score),
        webhook_timeout=_env_float("PULSE_WEBHOOK_TIMEOUT", defaults.webhook_timeout),
        max_attempts=_env_int("PULSE_MAX_ATTEMPTS", defaults.max_attempts),
        base_delay=_env_float("PULSE_BASE_DELAY", defaults.base_delay),
        backoff_multiplier=_env_float(
            "PULSE_BACKOFF_MULTIPLIER", defaults.backoff_multiplier
        ),
        max_delay=_env_float("PULSE_MAX_DELAY", defaults.max_delay),
        retry_client_errors=_env_bool(
            "PULSE_RETRY_CLIENT_ERRORS", defaults.retry_client_errors
        ),
        history_size=_env_int("PULSE_HISTORY_SIZE", defaults.history_size),
    )
