"""
Runtime settings.

All values come from environment variables (a .env file is loaded by the
entry points via python-dotenv before Settings.from_env() is called).
Invalid values fall back to their defaults with a warning.

Relative paths are resolved against the project root.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import time
from pathlib import Path


logger = logging.getLogger(__name__)


# =============================================================================
# Environment Helpers
# =============================================================================

def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Settings] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_time(key: str, default: time) -> time:
    """Get HH:MM value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            hour, minute = val.strip().split(":")
            return time(int(hour), int(minute))
        except ValueError:
            logger.warning(
                f"[Settings] Invalid HH:MM for {key}: {val}, "
                f"using default: {default.strftime('%H:%M')}"
            )
    return default


def get_project_root() -> Path:
    """Project root (this file lives at lectio_sync/infra/settings.py)."""
    return Path(__file__).parent.parent.parent.resolve()


def _resolve_path(value: str) -> Path:
    path = Path(value)
    if not path.is_absolute():
        path = get_project_root() / path
    return path


# =============================================================================
# Settings
# =============================================================================

@dataclass
class Settings:
    """Engine settings. Defaults match production behavior."""

    db_path: Path = field(default_factory=lambda: _resolve_path("data/liturgical_cache.db"))
    remote_url: str = "http://localhost:54321"
    remote_api_key: str = ""
    remote_timeout_seconds: int = 30
    platform: str = "mobile"

    primary_sync_time: time = time(0, 1)
    backup_sync_time: time = time(0, 5)
    fallback_interval_minutes: int = 60
    fallback_cutoff_hour: int = 1
    retry_delay_minutes: int = 30
    recent_success_hours: int = 24
    stale_after_hours: int = 25
    background_window_end_hour: int = 2
    background_min_interval_minutes: int = 15

    cache_days_before: int = 90
    cache_days_after: int = 90
    maintenance_interval_hours: int = 12
    preload_threshold_days: int = 10

    connectivity_enabled: bool = True
    connectivity_probe_url: str = ""
    connectivity_interval_seconds: int = 30

    log_level: str = "INFO"
    log_dir: Path = field(default_factory=lambda: _resolve_path("logs"))

    @classmethod
    def from_env(cls) -> "Settings":
        remote_url = os.getenv("LECTIO_REMOTE_URL", "http://localhost:54321")
        platform = os.getenv("LECTIO_PLATFORM", "mobile").lower()
        if platform not in ("mobile", "web"):
            logger.warning(f"[Settings] Unknown LECTIO_PLATFORM: {platform}, using default: mobile")
            platform = "mobile"

        return cls(
            db_path=_resolve_path(os.getenv("LECTIO_DB_PATH", "data/liturgical_cache.db")),
            remote_url=remote_url,
            remote_api_key=os.getenv("LECTIO_REMOTE_API_KEY", ""),
            remote_timeout_seconds=_get_env_int("LECTIO_REMOTE_TIMEOUT_SECONDS", 30),
            platform=platform,
            primary_sync_time=_get_env_time("LECTIO_PRIMARY_SYNC_TIME", time(0, 1)),
            backup_sync_time=_get_env_time("LECTIO_BACKUP_SYNC_TIME", time(0, 5)),
            fallback_interval_minutes=_get_env_int("LECTIO_FALLBACK_INTERVAL_MINUTES", 60),
            fallback_cutoff_hour=_get_env_int("LECTIO_FALLBACK_CUTOFF_HOUR", 1),
            retry_delay_minutes=_get_env_int("LECTIO_RETRY_DELAY_MINUTES", 30),
            recent_success_hours=_get_env_int("LECTIO_RECENT_SUCCESS_HOURS", 24),
            stale_after_hours=_get_env_int("LECTIO_STALE_AFTER_HOURS", 25),
            background_window_end_hour=_get_env_int("LECTIO_BACKGROUND_WINDOW_END_HOUR", 2),
            background_min_interval_minutes=_get_env_int(
                "LECTIO_BACKGROUND_MIN_INTERVAL_MINUTES", 15
            ),
            cache_days_before=_get_env_int("LECTIO_CACHE_DAYS_BEFORE", 90),
            cache_days_after=_get_env_int("LECTIO_CACHE_DAYS_AFTER", 90),
            maintenance_interval_hours=_get_env_int("LECTIO_MAINTENANCE_INTERVAL_HOURS", 12),
            preload_threshold_days=_get_env_int("LECTIO_PRELOAD_THRESHOLD_DAYS", 10),
            connectivity_enabled=_get_env_bool("LECTIO_CONNECTIVITY_ENABLED", True),
            connectivity_probe_url=os.getenv("LECTIO_CONNECTIVITY_PROBE_URL", remote_url),
            connectivity_interval_seconds=_get_env_int("LECTIO_CONNECTIVITY_INTERVAL_SECONDS", 30),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_dir=_resolve_path(os.getenv("LOG_DIR", "logs")),
        )
