"""
Environment-driven settings for the subscription subsystem.

Usage:
    from backoffice.config.settings import get_settings

    settings = get_settings()
    settings.baseline_plan_slug  # "free"
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer in environment, using default", extra={
            "variable": name,
            "value": raw,
            "default": default,
        })
        return default


@dataclass(frozen=True)
class SubscriptionSettings:
    """Settings consumed by the catalog, overlay manager, sweeper and routes."""

    baseline_plan_slug: str = "free"
    max_batch_size: int = 500
    quota_warning_threshold_pct: int = 80
    sweep_poll_interval_seconds: int = 3600
    admin_api_token: Optional[str] = None
    plan_catalog_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SubscriptionSettings":
        return cls(
            baseline_plan_slug=os.getenv("BASELINE_PLAN_SLUG", "free"),
            max_batch_size=_int_env("MAX_BATCH_UPGRADE_SIZE", 500),
            quota_warning_threshold_pct=_int_env("QUOTA_WARNING_THRESHOLD_PCT", 80),
            sweep_poll_interval_seconds=_int_env("SWEEP_POLL_INTERVAL_SECONDS", 3600),
            admin_api_token=os.getenv("ADMIN_API_TOKEN") or None,
            plan_catalog_path=os.getenv("PLAN_CATALOG_PATH") or None,
        )


@lru_cache(maxsize=1)
def get_settings() -> SubscriptionSettings:
    """Return the process-wide settings, read once from the environment."""
    return SubscriptionSettings.from_env()


def reset_settings() -> None:
    """Clear the cached settings (for tests only)."""
    get_settings.cache_clear()
