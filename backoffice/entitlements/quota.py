"""
Quota checks against plan limits.

A limit is a ceiling on the count *after* the would-be-created resource,
so check_limit() is strictly less-than. A limit that is absent, null or
-1 is unlimited.
"""

import math
from typing import Optional, Union

from backoffice.models.plan import UNLIMITED

DEFAULT_WARNING_THRESHOLD_PCT = 80

Quota = Union[int, float]


def _limit_for(plan, limit_key: str) -> Optional[int]:
    limit = plan.limits.get(limit_key)
    if limit is None or limit == UNLIMITED:
        return None
    return int(limit)


def _has_limits(plan) -> bool:
    return plan is not None and getattr(plan, "limits", None) is not None


def check_limit(plan, limit_key: str, current_value: int) -> bool:
    """
    True if one more resource may be created.

    A missing plan or a plan without a limits mapping is a denial.
    """
    if not _has_limits(plan):
        return False
    limit = _limit_for(plan, limit_key)
    if limit is None:
        return True
    return current_value < limit


def get_remaining_quota(plan, limit_key: str, current_value: int) -> Quota:
    """Remaining headroom; math.inf when unlimited, 0 for a missing plan."""
    if not _has_limits(plan):
        return 0
    limit = _limit_for(plan, limit_key)
    if limit is None:
        return math.inf
    return max(0, limit - current_value)


def get_quota_usage_percentage(plan, limit_key: str, current_value: int) -> int:
    """Usage as a whole percentage capped at 100; 0 when unlimited."""
    if not _has_limits(plan):
        return 0
    limit = _limit_for(plan, limit_key)
    if limit is None:
        return 0
    if limit <= 0:
        return 100
    return min(100, round(current_value / limit * 100))


def is_quota_near_limit(
    plan,
    limit_key: str,
    current_value: int,
    threshold_pct: int = DEFAULT_WARNING_THRESHOLD_PCT,
) -> bool:
    return get_quota_usage_percentage(plan, limit_key, current_value) >= threshold_pct
