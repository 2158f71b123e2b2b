"""
Structured error classes for plan and subscription lifecycle operations.

Authorization denials are never errors: can_access() returning False is a
normal outcome. These exceptions cover lookups that do not resolve and
input rejected before any write.
"""

from typing import Any, Dict, Optional

from fastapi import status


class EntitlementError(Exception):
    """Base exception for entitlement errors."""

    code = "entitlement_error"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(EntitlementError):
    """A plan, restaurant or overlay id did not resolve."""

    code = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class PlanNotFoundError(NotFoundError):

    code = "plan_not_found"

    def __init__(self, plan_ref: str):
        self.plan_ref = plan_ref
        super().__init__(f"Plan not found: {plan_ref}", {"plan": plan_ref})


class TenantNotFoundError(NotFoundError):

    code = "restaurant_not_found"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Restaurant not found: {tenant_id}", {"restaurant_id": tenant_id})


class OverlayNotFoundError(NotFoundError):

    code = "temporary_upgrade_not_found"

    def __init__(self, overlay_id: str):
        self.overlay_id = overlay_id
        super().__init__(
            f"Temporary upgrade not found: {overlay_id}",
            {"temporary_upgrade_id": overlay_id},
        )


class InvalidInputError(EntitlementError):
    """Input rejected before any write."""

    code = "invalid_input"
    http_status = status.HTTP_400_BAD_REQUEST


class TrialAlreadyUsedError(InvalidInputError):

    code = "trial_already_used"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(
            f"Restaurant {tenant_id} has already used its trial",
            {"restaurant_id": tenant_id},
        )


class PlanAlreadyExistsError(InvalidInputError):

    code = "plan_already_exists"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"Plan with slug '{slug}' already exists", {"slug": slug})


class BatchTooLargeError(InvalidInputError):

    code = "batch_too_large"

    def __init__(self, size: int, max_size: int):
        self.size = size
        self.max_size = max_size
        super().__init__(
            f"Batch of {size} restaurants exceeds the maximum of {max_size}",
            {"size": size, "max_size": max_size},
        )
