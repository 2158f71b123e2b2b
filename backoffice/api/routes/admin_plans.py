"""
Admin Plans API routes for plan catalog management.

SECURITY: All routes require operator verification.
Changes to features and limits apply to every restaurant on the plan
immediately - no deployment or cache flush required.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator

from backoffice.api.dependencies import (
    OperatorContext,
    get_plan_catalog,
    raise_http_error,
    verify_operator,
)
from backoffice.entitlements.errors import EntitlementError
from backoffice.models.plan import Plan
from backoffice.services.plan_catalog import SLUG_PATTERN, PlanCatalog

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/plans", tags=["admin-plans"])


# Request/Response models

def _check_slug(v: Optional[str]) -> Optional[str]:
    if v is not None and not SLUG_PATTERN.match(v):
        raise ValueError("Slug must contain only lowercase letters, digits, underscores, or hyphens")
    return v


def _check_limits(v: Optional[Dict[str, Optional[int]]]) -> Optional[Dict[str, Optional[int]]]:
    if v is not None:
        for key, value in v.items():
            if value is not None and value < -1:
                raise ValueError(f"Limit '{key}' must be -1 (unlimited) or a non-negative integer")
    return v


class CreatePlanRequest(BaseModel):
    """Request to create a new plan."""
    slug: str = Field(..., description="Stable identifier (e.g., 'pro')", min_length=1, max_length=50)
    name: str = Field(..., description="Display name", min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    price_monthly: Decimal = Field(Decimal("0"), ge=0)
    price_yearly: Decimal = Field(Decimal("0"), ge=0)
    currency: str = Field("EUR", min_length=3, max_length=3)
    features: List[str] = Field(default_factory=list, description="Capability keys; '*' or '<category>.*' allowed")
    limits: Dict[str, Optional[int]] = Field(default_factory=dict, description="Resource quotas; -1 is unlimited")
    is_visible: bool = True
    is_legacy: bool = False
    sort_order: int = 0

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v: str) -> str:
        return _check_slug(v)

    @field_validator("limits")
    @classmethod
    def validate_limits(cls, v):
        return _check_limits(v)


class UpdatePlanRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    slug: Optional[str] = Field(None, min_length=1, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    price_monthly: Optional[Decimal] = Field(None, ge=0)
    price_yearly: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    features: Optional[List[str]] = None
    limits: Optional[Dict[str, Optional[int]]] = None
    is_visible: Optional[bool] = None
    is_legacy: Optional[bool] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, v: Optional[str]) -> Optional[str]:
        return _check_slug(v)

    @field_validator("limits")
    @classmethod
    def validate_limits(cls, v):
        return _check_limits(v)


class FeatureKeyRequest(BaseModel):
    feature_key: str = Field(..., min_length=1, max_length=100)


class PlanResponse(BaseModel):
    """Full plan information."""
    id: str
    slug: str
    name: str
    description: Optional[str]
    price_monthly: float
    price_yearly: float
    currency: str
    features: List[str]
    limits: Dict[str, Optional[int]]
    is_visible: bool
    is_legacy: bool
    is_active: bool
    sort_order: int
    trial_enabled: bool
    trial_days: int
    trial_plan_id: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]


class PlansListResponse(BaseModel):
    plans: List[PlanResponse]
    total: int


class FeatureFlagResponse(BaseModel):
    key: str
    name: str
    category: str
    requires_permission: Optional[str]


class PlanStatisticsResponse(BaseModel):
    plan_id: str
    slug: str
    name: str
    total: int
    by_status: Dict[str, int]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def plan_to_response(plan: Plan) -> PlanResponse:
    return PlanResponse(
        id=plan.id,
        slug=plan.slug,
        name=plan.name,
        description=plan.description,
        price_monthly=float(plan.price_monthly or 0),
        price_yearly=float(plan.price_yearly or 0),
        currency=plan.currency,
        features=list(plan.features or []),
        limits=dict(plan.limits or {}),
        is_visible=plan.is_visible,
        is_legacy=plan.is_legacy,
        is_active=plan.is_active,
        sort_order=plan.sort_order,
        trial_enabled=plan.trial_enabled,
        trial_days=plan.trial_days,
        trial_plan_id=plan.trial_plan_id,
        created_at=_iso(plan.created_at),
        updated_at=_iso(plan.updated_at),
    )


# Routes

@router.get("", response_model=PlansListResponse)
async def list_plans(
    include_inactive: bool = Query(False, description="Include soft-deleted plans"),
    include_hidden: bool = Query(True, description="Include plans hidden from the pricing page"),
    operator: OperatorContext = Depends(verify_operator),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """List plans in display order."""
    plans = catalog.list_plans(include_inactive=include_inactive, include_hidden=include_hidden)
    return PlansListResponse(plans=[plan_to_response(p) for p in plans], total=len(plans))


@router.get("/statistics", response_model=List[PlanStatisticsResponse])
async def plan_statistics(
    operator: OperatorContext = Depends(verify_operator),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """Restaurant counts per plan and status."""
    return [
        PlanStatisticsResponse(
            plan_id=s.plan_id,
            slug=s.slug,
            name=s.name,
            total=s.total,
            by_status=s.by_status,
        )
        for s in catalog.plan_statistics()
    ]


@router.post("", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(
    plan_request: CreatePlanRequest,
    operator: OperatorContext = Depends(verify_operator),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """Create a new plan."""
    logger.info("Operator creating plan", extra={
        "operator_id": operator.operator_id,
        "slug": plan_request.slug,
    })
    try:
        plan = catalog.create_plan(**plan_request.model_dump())
    except EntitlementError as e:
        raise_http_error(e)
    return plan_to_response(plan)


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(
    plan_id: str,
    operator: OperatorContext = Depends(verify_operator),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    try:
        return plan_to_response(catalog.get_by_id(plan_id))
    except EntitlementError as e:
        raise_http_error(e)


@router.patch("/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: str,
    plan_request: UpdatePlanRequest,
    operator: OperatorContext = Depends(verify_operator),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """Merge-update a plan. Only fields present in the body are changed."""
    changes = plan_request.model_dump(exclude_unset=True)
    logger.info("Operator updating plan", extra={
        "operator_id": operator.operator_id,
        "plan_id": plan_id,
        "updated_fields": sorted(changes),
    })
    try:
        plan = catalog.update_plan(plan_id, changes)
    except EntitlementError as e:
        raise_http_error(e)
    return plan_to_response(plan)


@router.delete("/{plan_id}", response_model=PlanResponse)
async def delete_plan(
    plan_id: str,
    operator: OperatorContext = Depends(verify_operator),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """Soft-delete a plan (is_active = false)."""
    logger.info("Operator deactivating plan", extra={
        "operator_id": operator.operator_id,
        "plan_id": plan_id,
    })
    try:
        plan = catalog.soft_delete_plan(plan_id)
    except EntitlementError as e:
        raise_http_error(e)
    return plan_to_response(plan)


@router.get("/{plan_id}/features", response_model=List[FeatureFlagResponse])
async def get_plan_features(
    plan_id: str,
    operator: OperatorContext = Depends(verify_operator),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """Catalogued features the plan grants."""
    try:
        flags = catalog.get_plan_features(plan_id)
    except EntitlementError as e:
        raise_http_error(e)
    return [
        FeatureFlagResponse(
            key=f.key,
            name=f.name,
            category=f.category,
            requires_permission=f.requires_permission,
        )
        for f in flags
    ]


@router.post("/{plan_id}/features", response_model=PlanResponse)
async def add_plan_feature(
    plan_id: str,
    feature_request: FeatureKeyRequest,
    operator: OperatorContext = Depends(verify_operator),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    try:
        plan = catalog.add_feature_to_plan(plan_id, feature_request.feature_key)
    except EntitlementError as e:
        raise_http_error(e)
    return plan_to_response(plan)


@router.delete("/{plan_id}/features/{feature_key}", response_model=PlanResponse)
async def remove_plan_feature(
    plan_id: str,
    feature_key: str,
    operator: OperatorContext = Depends(verify_operator),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    try:
        plan = catalog.remove_feature_from_plan(plan_id, feature_key)
    except EntitlementError as e:
        raise_http_error(e)
    return plan_to_response(plan)
