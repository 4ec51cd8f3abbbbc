"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from forked.domain.constraints import SubmissionPolicy, validate_submission_policy


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration.

    Values shared between the client core and the server validator
    (rate limit, geofence radius, accuracy ceiling, quorum) must match on
    both sides for consistent user-facing results.
    """

    app_name: str = "Forked Wait-Time Service"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    database_path: Path = PROJECT_ROOT / "data" / "forked.db"
    local_store_path: Path = PROJECT_ROOT / "data" / "local_store.db"
    database_busy_timeout_seconds: float = 5.0
    seed_demo_halls: bool = True

    admin_token: Optional[str] = None
    admin_session_ttl_seconds: float = 3600.0

    rate_limit_seconds: int = 300
    geofence_meters: float = 150.0
    max_location_accuracy_meters: float = 100.0
    wait_vote_quorum: int = 5
    max_wait_minutes: int = 60
    location_fix_wait_seconds: float = 0.6
    missing_accuracy_meters: float = 999_999.0

    api_base_url: str = "http://127.0.0.1:8000"
    api_timeout_seconds: float = 5.0

    def submission_policy(self) -> SubmissionPolicy:
        policy = SubmissionPolicy(
            rate_limit_seconds=self.rate_limit_seconds,
            geofence_meters=self.geofence_meters,
            max_location_accuracy_meters=self.max_location_accuracy_meters,
            wait_vote_quorum=self.wait_vote_quorum,
            max_wait_minutes=self.max_wait_minutes,
            location_fix_wait_seconds=self.location_fix_wait_seconds,
        )
        validate_submission_policy(policy)
        return policy


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings from the environment once per process."""
    defaults = Settings()
    return Settings(
        app_name=_env_str("APP_NAME", defaults.app_name),
        app_version=_env_str("APP_VERSION", defaults.app_version),
        log_level=_env_str("LOG_LEVEL", defaults.log_level),
        database_path=Path(_env_str("DATABASE_PATH", str(defaults.database_path))),
        local_store_path=Path(_env_str("LOCAL_STORE_PATH", str(defaults.local_store_path))),
        database_busy_timeout_seconds=_env_float(
            "DATABASE_BUSY_TIMEOUT_SECONDS",
            defaults.database_busy_timeout_seconds,
        ),
        seed_demo_halls=_env_bool("SEED_DEMO_HALLS", defaults.seed_demo_halls),
        admin_token=os.getenv("ADMIN_TOKEN") or None,
        admin_session_ttl_seconds=_env_float(
            "ADMIN_SESSION_TTL_SECONDS",
            defaults.admin_session_ttl_seconds,
        ),
        rate_limit_seconds=_env_int("RATE_LIMIT_SECONDS", defaults.rate_limit_seconds),
        geofence_meters=_env_float("GEOFENCE_METERS", defaults.geofence_meters),
        max_location_accuracy_meters=_env_float(
            "MAX_LOCATION_ACCURACY_METERS",
            defaults.max_location_accuracy_meters,
        ),
        wait_vote_quorum=_env_int("WAIT_VOTE_QUORUM", defaults.wait_vote_quorum),
        max_wait_minutes=_env_int("MAX_WAIT_MINUTES", defaults.max_wait_minutes),
        location_fix_wait_seconds=_env_float(
            "LOCATION_FIX_WAIT_SECONDS",
            defaults.location_fix_wait_seconds,
        ),
        api_base_url=_env_str("API_BASE_URL", defaults.api_base_url),
        api_timeout_seconds=_env_float("API_TIMEOUT_SECONDS", defaults.api_timeout_seconds),
    )
