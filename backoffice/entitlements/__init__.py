"""
Entitlement resolution: capability matching, quotas and the access gates.

Usage:
    from backoffice.entitlements import EntitlementResolver, plan_has_feature

    resolver = EntitlementResolver(db_session)
    if resolver.can_access(role_permissions, tenant.plan, "analytics.advanced",
                           "analytics.view_reports", tenant_id=tenant.id):
        ...
"""

from backoffice.entitlements.capability import (
    Capability,
    CapabilitySet,
    Category,
    Wildcard,
    parse_capability,
    parse_grant,
    plan_has_category,
    plan_has_feature,
)
from backoffice.entitlements.quota import (
    check_limit,
    get_quota_usage_percentage,
    get_remaining_quota,
    is_quota_near_limit,
)
from backoffice.entitlements.errors import (
    EntitlementError,
    NotFoundError,
    PlanNotFoundError,
    TenantNotFoundError,
    OverlayNotFoundError,
    InvalidInputError,
    TrialAlreadyUsedError,
    PlanAlreadyExistsError,
    BatchTooLargeError,
)
from backoffice.entitlements.audit import DenialReason, SubscriptionEventLogger
from backoffice.entitlements.resolver import (
    EntitlementResolver,
    NavigationItem,
    has_all_permissions,
    has_any_permission,
    role_has_permission,
)

__all__ = [
    "Capability",
    "CapabilitySet",
    "Category",
    "Wildcard",
    "parse_capability",
    "parse_grant",
    "plan_has_category",
    "plan_has_feature",
    "check_limit",
    "get_quota_usage_percentage",
    "get_remaining_quota",
    "is_quota_near_limit",
    "EntitlementError",
    "NotFoundError",
    "PlanNotFoundError",
    "TenantNotFoundError",
    "OverlayNotFoundError",
    "InvalidInputError",
    "TrialAlreadyUsedError",
    "PlanAlreadyExistsError",
    "BatchTooLargeError",
    "DenialReason",
    "SubscriptionEventLogger",
    "EntitlementResolver",
    "NavigationItem",
    "has_all_permissions",
    "has_any_permission",
    "role_has_permission",
]
