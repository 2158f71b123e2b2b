"""
Entitlement resolver - the double-gate authorization decision.

Access is granted only if BOTH:
1. the restaurant's plan includes the feature (plan_has_feature), and
2. the acting role holds the permission (role_has_permission).

Permissions match on "*" or the exact key only. There is no category
wildcard on the permission side: "orders.*" in a role does not grant
"orders.view".

Denials are normal results, never exceptions. Each failed gate is recorded
as an access.denied event; a failure to record never changes the answer.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from backoffice.config.settings import SubscriptionSettings, get_settings
from backoffice.entitlements import quota
from backoffice.entitlements.audit import DenialReason, SubscriptionEventLogger
from backoffice.entitlements.capability import WILDCARD, plan_has_category, plan_has_feature
from backoffice.models.feature_flag import FeatureFlag
from backoffice.models.plan import Plan
from backoffice.platform.clock import Clock
from backoffice.repositories.plans_repo import PlansRepository

logger = logging.getLogger(__name__)


def role_has_permission(permissions: Optional[Iterable[str]], permission_key: Optional[str]) -> bool:
    """True if permissions contain '*' or permission_key verbatim."""
    if not permissions or isinstance(permissions, str):
        return False
    held = set(permissions)
    if WILDCARD in held:
        return True
    return permission_key is not None and permission_key in held


def has_any_permission(permissions: Optional[Iterable[str]], keys: Iterable[str]) -> bool:
    return any(role_has_permission(permissions, key) for key in keys)


def has_all_permissions(permissions: Optional[Iterable[str]], keys: Iterable[str]) -> bool:
    return all(role_has_permission(permissions, key) for key in keys)


@dataclass(frozen=True)
class NavigationItem:
    """A menu entry gated by an optional feature and/or permission."""
    key: str
    required_feature: Optional[str] = None
    required_permission: Optional[str] = None


class EntitlementResolver:
    """
    Authorization checks for UI feature gates and quota enforcement.

    Args:
        db_session: Database session (plans, feature flags, event writes)
        events: Event logger; defaults to one on db_session
        clock: Time source for event timestamps
        settings: Subscription settings (quota warning threshold)
    """

    def __init__(
        self,
        db_session: Session,
        events: Optional[SubscriptionEventLogger] = None,
        clock: Optional[Clock] = None,
        settings: Optional[SubscriptionSettings] = None,
    ):
        self.db = db_session
        self.plans = PlansRepository(db_session)
        self.events = events or SubscriptionEventLogger(db_session, clock)
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Access gates
    # ------------------------------------------------------------------

    def can_access(
        self,
        role_permissions: Optional[Iterable[str]],
        plan: Optional[Plan],
        feature_key: str,
        permission_key: Optional[str],
        *,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> bool:
        """
        plan_has_feature AND role_has_permission.

        tenant_id and user_id only attribute the denial events.
        """
        plan_ok = plan_has_feature(plan, feature_key)
        role_ok = role_has_permission(role_permissions, permission_key)

        if not plan_ok:
            logger.info("Access denied by plan", extra={
                "tenant_id": tenant_id,
                "feature_key": feature_key,
                "plan_slug": getattr(plan, "slug", None),
            })
            self._record_denial(tenant_id, user_id, plan, feature_key, DenialReason.PLAN_RESTRICTION)

        if not role_ok:
            logger.info("Access denied by role", extra={
                "tenant_id": tenant_id,
                "user_id": user_id,
                "permission_key": permission_key,
            })
            self._record_denial(tenant_id, user_id, plan, feature_key, DenialReason.PERMISSION_RESTRICTION)

        return plan_ok and role_ok

    def _record_denial(self, tenant_id, user_id, plan, feature_key, reason) -> None:
        try:
            self.events.access_denied(
                tenant_id, feature_key, reason, plan=plan, user_id=user_id
            )
        except Exception:
            logger.warning("Failed to record access denial", exc_info=True, extra={
                "tenant_id": tenant_id,
                "feature_key": feature_key,
                "reason": reason,
            })

    def plan_has_feature(self, plan: Optional[Plan], feature_key: str) -> bool:
        return plan_has_feature(plan, feature_key)

    def role_has_permission(self, role_permissions, permission_key) -> bool:
        return role_has_permission(role_permissions, permission_key)

    def can_access_category(self, plan: Optional[Plan], category: str) -> bool:
        """Whether the plan reaches at least one feature in a category."""
        return plan_has_category(plan, category)

    def filter_navigation(
        self,
        items: Iterable[NavigationItem],
        role_permissions: Optional[Iterable[str]],
        plan: Optional[Plan],
    ) -> List[NavigationItem]:
        """
        Keep the items the caller may see.

        Items with neither requirement are always visible; items with one
        requirement are checked against that gate alone. Filtering is a
        listing, not an access attempt, so it records no denials.
        """
        permissions = list(role_permissions or [])
        visible = []
        for item in items:
            if item.required_feature and not plan_has_feature(plan, item.required_feature):
                continue
            if item.required_permission and not role_has_permission(permissions, item.required_permission):
                continue
            visible.append(item)
        return visible

    # ------------------------------------------------------------------
    # Feature enumeration
    # ------------------------------------------------------------------

    def get_available_features(
        self,
        role_permissions: Optional[Iterable[str]],
        plan: Optional[Plan],
    ) -> List[FeatureFlag]:
        """
        Active feature flags reachable through both gates.

        A flag without requires_permission is gated by the plan alone.
        """
        permissions = list(role_permissions or [])
        flags = (
            self.db.query(FeatureFlag)
            .filter(FeatureFlag.is_active == True)  # noqa: E712
            .order_by(FeatureFlag.category.asc(), FeatureFlag.key.asc())
            .all()
        )
        return [
            flag for flag in flags
            if plan_has_feature(plan, flag.key)
            and (
                flag.requires_permission is None
                or role_has_permission(permissions, flag.requires_permission)
            )
        ]

    def get_available_features_by_category(
        self,
        role_permissions: Optional[Iterable[str]],
        plan: Optional[Plan],
    ) -> Dict[str, List[FeatureFlag]]:
        grouped: Dict[str, List[FeatureFlag]] = OrderedDict()
        for flag in self.get_available_features(role_permissions, plan):
            grouped.setdefault(flag.category or "other", []).append(flag)
        return grouped

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------

    def check_limit(self, tenant, limit_key: str, current_value: int) -> bool:
        """
        Whether the restaurant may create one more resource.

        Records limit.reached when the check fails against a configured limit.
        """
        plan = getattr(tenant, "plan", None)
        within = quota.check_limit(plan, limit_key, current_value)
        if not within and plan is not None and plan.limits is not None:
            try:
                self.events.limit_reached(
                    getattr(tenant, "id", None),
                    limit_key,
                    current_value,
                    plan.get_limit(limit_key),
                    plan=plan,
                )
            except Exception:
                logger.warning("Failed to record limit reached", exc_info=True, extra={
                    "limit_key": limit_key,
                })
        return within

    def get_remaining_quota(self, tenant, limit_key: str, current_value: int):
        return quota.get_remaining_quota(getattr(tenant, "plan", None), limit_key, current_value)

    def get_quota_usage_percentage(self, tenant, limit_key: str, current_value: int) -> int:
        return quota.get_quota_usage_percentage(getattr(tenant, "plan", None), limit_key, current_value)

    def is_quota_near_limit(self, tenant, limit_key: str, current_value: int) -> bool:
        return quota.is_quota_near_limit(
            getattr(tenant, "plan", None),
            limit_key,
            current_value,
            self.settings.quota_warning_threshold_pct,
        )

    # ------------------------------------------------------------------
    # Upgrade suggestions
    # ------------------------------------------------------------------

    def suggest_upgrade(self, tenant, feature_key: str) -> Optional[Plan]:
        """
        Cheapest visible plan that includes the feature and costs strictly
        more per month than the restaurant's current plan.
        """
        current_plan = getattr(tenant, "plan", None)
        current_price = current_plan.price_monthly if current_plan is not None else 0

        for candidate in self.plans.get_visible_by_price():
            if not plan_has_feature(candidate, feature_key):
                continue
            if candidate.price_monthly > current_price:
                return candidate
        return None
