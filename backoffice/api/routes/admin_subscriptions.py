"""
Admin subscription API routes.

Operator actions on restaurant subscriptions:
- Trial configuration and trial assignment
- Temporary upgrades (single, batch, manual early restore)
- Operator-set subscription status and plan changes
- Manual expiration sweep
- Recent subscription events

SECURITY: All routes require operator verification.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from backoffice.api.dependencies import (
    OperatorContext,
    get_overlay_manager,
    get_plan_catalog,
    raise_http_error,
    verify_operator,
)
from backoffice.database.session import get_db_session
from backoffice.entitlements.errors import EntitlementError
from backoffice.jobs.expiration_sweeper import ExpirationSweeper
from backoffice.models.tenant import SubscriptionStatus, Tenant
from backoffice.models.temporary_upgrade import TemporaryUpgrade
from backoffice.repositories.subscription_events_repo import SubscriptionEventsRepository
from backoffice.repositories.tenants_repo import TenantFilter
from backoffice.services.plan_catalog import PlanCatalog, TrialConfiguration
from backoffice.services.temporal_overlay import RestoreTrigger, TemporalOverlayManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin-subscriptions"])


# Request/Response models

class TrialConfigRequest(BaseModel):
    """Partial trial configuration; omitted fields are left unchanged."""
    enabled: Optional[bool] = None
    days: Optional[int] = Field(None, ge=1, le=365)
    trial_plan_id: Optional[str] = None


class TrialConfigResponse(BaseModel):
    enabled: bool
    days: int
    trial_plan_id: Optional[str]
    trial_plan_slug: Optional[str]


class TemporaryUpgradeRequest(BaseModel):
    plan_id: str = Field(..., description="Plan granted for the duration")
    duration_days: int = Field(..., ge=1, le=3650)
    reason: str = Field("", max_length=500)


class RestaurantFilterRequest(BaseModel):
    plan_id: Optional[str] = None
    no_plan: bool = False
    status: Optional[SubscriptionStatus] = None
    search: Optional[str] = Field(None, max_length=255)


class BatchTemporaryUpgradeRequest(TemporaryUpgradeRequest):
    """Explicit restaurant ids, or a filter selecting them. Not both."""
    restaurant_ids: Optional[List[str]] = None
    filter: Optional[RestaurantFilterRequest] = None

    @model_validator(mode="after")
    def check_target(self):
        if (self.restaurant_ids is None) == (self.filter is None):
            raise ValueError("Provide exactly one of restaurant_ids or filter")
        return self


class TemporaryUpgradeResponse(BaseModel):
    id: str
    restaurant_id: str
    original_plan_id: Optional[str]
    original_status: str
    temporary_plan_id: str
    expires_at: str
    reason: Optional[str]
    is_active: bool
    created_by: Optional[str]
    created_at: Optional[str]
    deactivated_at: Optional[str]


class BatchTemporaryUpgradeResponse(BaseModel):
    succeeded: List[str]
    failed: List[Dict[str, str]]
    succeeded_count: int
    failed_count: int


class RestoreResponse(BaseModel):
    temporary_upgrade_id: str
    restored: bool


class SubscriptionStatusRequest(BaseModel):
    status: SubscriptionStatus
    reason: Optional[str] = Field(None, max_length=500)


class ChangePlanRequest(BaseModel):
    plan_id: str
    reason: Optional[str] = Field(None, max_length=500)
    expires_at: Optional[datetime] = Field(
        None, description="End of the paid period; naive values are read as UTC"
    )


class SubscriptionResponse(BaseModel):
    restaurant_id: str
    plan_id: Optional[str]
    plan_slug: Optional[str]
    status: str
    trial_ends_at: Optional[str]
    expires_at: Optional[str]
    cancelled_at: Optional[str]
    is_trial_used: bool
    active_temporary_upgrade: Optional[TemporaryUpgradeResponse] = None


class SweepResponse(BaseModel):
    expired_trials: List[str]
    expired_subscriptions: List[str]
    expired_temporary_upgrades: List[str]
    processed: int
    errors: List[Dict[str, Any]]
    duration_seconds: float


class SubscriptionEventResponse(BaseModel):
    id: str
    restaurant_id: Optional[str]
    plan_id: Optional[str]
    event_type: str
    event_data: Dict[str, Any]
    created_at: Optional[str]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _trial_response(config: TrialConfiguration) -> TrialConfigResponse:
    return TrialConfigResponse(
        enabled=config.enabled,
        days=config.days,
        trial_plan_id=config.trial_plan_id,
        trial_plan_slug=config.trial_plan_slug,
    )


def _overlay_response(overlay: TemporaryUpgrade) -> TemporaryUpgradeResponse:
    return TemporaryUpgradeResponse(
        id=overlay.id,
        restaurant_id=overlay.restaurant_id,
        original_plan_id=overlay.original_plan_id,
        original_status=overlay.original_status,
        temporary_plan_id=overlay.temporary_plan_id,
        expires_at=overlay.expires_at.isoformat(),
        reason=overlay.reason,
        is_active=overlay.is_active,
        created_by=overlay.created_by,
        created_at=_iso(overlay.created_at),
        deactivated_at=_iso(overlay.deactivated_at),
    )


def _subscription_response(
    tenant: Tenant,
    active: Optional[TemporaryUpgrade] = None,
) -> SubscriptionResponse:
    return SubscriptionResponse(
        restaurant_id=tenant.id,
        plan_id=tenant.subscription_plan_id,
        plan_slug=tenant.plan.slug if tenant.plan else None,
        status=tenant.subscription_status,
        trial_ends_at=_iso(tenant.subscription_trial_ends_at),
        expires_at=_iso(tenant.subscription_expires_at),
        cancelled_at=_iso(tenant.subscription_cancelled_at),
        is_trial_used=tenant.is_trial_used,
        active_temporary_upgrade=_overlay_response(active) if active else None,
    )


# Trial configuration

@router.get("/trial-config", response_model=TrialConfigResponse)
async def get_trial_config(
    operator: OperatorContext = Depends(verify_operator),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    try:
        return _trial_response(catalog.get_trial_configuration())
    except EntitlementError as e:
        raise_http_error(e)


@router.put("/trial-config", response_model=TrialConfigResponse)
async def update_trial_config(
    config_request: TrialConfigRequest,
    operator: OperatorContext = Depends(verify_operator),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    logger.info("Operator updating trial configuration", extra={
        "operator_id": operator.operator_id,
        "trial_enabled": config_request.enabled,
        "trial_days": config_request.days,
    })
    try:
        config = catalog.update_trial_configuration(
            enabled=config_request.enabled,
            days=config_request.days,
            trial_plan_id=config_request.trial_plan_id,
        )
    except EntitlementError as e:
        raise_http_error(e)
    return _trial_response(config)


# Restaurant subscription

@router.get("/restaurants/{restaurant_id}/subscription", response_model=SubscriptionResponse)
async def get_subscription(
    restaurant_id: str,
    operator: OperatorContext = Depends(verify_operator),
    manager: TemporalOverlayManager = Depends(get_overlay_manager),
):
    try:
        tenant = manager.get_tenant(restaurant_id)
    except EntitlementError as e:
        raise_http_error(e)
    return _subscription_response(tenant, manager.get_active_temporary_upgrade(restaurant_id))


@router.post("/restaurants/{restaurant_id}/trial", response_model=SubscriptionResponse)
async def assign_trial(
    restaurant_id: str,
    operator: OperatorContext = Depends(verify_operator),
    manager: TemporalOverlayManager = Depends(get_overlay_manager),
):
    """Start the restaurant's one-time trial (or assign the free plan if trials are off)."""
    try:
        tenant = manager.assign_trial(restaurant_id)
    except EntitlementError as e:
        raise_http_error(e)
    return _subscription_response(tenant)


@router.put("/restaurants/{restaurant_id}/subscription-status", response_model=SubscriptionResponse)
async def set_subscription_status(
    restaurant_id: str,
    status_request: SubscriptionStatusRequest,
    operator: OperatorContext = Depends(verify_operator),
    manager: TemporalOverlayManager = Depends(get_overlay_manager),
):
    logger.info("Operator setting subscription status", extra={
        "operator_id": operator.operator_id,
        "restaurant_id": restaurant_id,
        "status": status_request.status.value,
    })
    try:
        tenant = manager.set_subscription_status(
            restaurant_id, status_request.status.value, status_request.reason
        )
    except EntitlementError as e:
        raise_http_error(e)
    return _subscription_response(tenant)


@router.put("/restaurants/{restaurant_id}/plan", response_model=SubscriptionResponse)
async def change_plan(
    restaurant_id: str,
    plan_request: ChangePlanRequest,
    operator: OperatorContext = Depends(verify_operator),
    manager: TemporalOverlayManager = Depends(get_overlay_manager),
):
    logger.info("Operator changing plan", extra={
        "operator_id": operator.operator_id,
        "restaurant_id": restaurant_id,
        "plan_id": plan_request.plan_id,
        "expires_at": _iso(plan_request.expires_at),
    })
    try:
        tenant = manager.change_plan(
            restaurant_id,
            plan_request.plan_id,
            plan_request.reason,
            expires_at=plan_request.expires_at,
        )
    except EntitlementError as e:
        raise_http_error(e)
    return _subscription_response(tenant)


# Temporary upgrades

@router.post(
    "/restaurants/{restaurant_id}/temporary-upgrades",
    response_model=TemporaryUpgradeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_temporary_upgrade(
    restaurant_id: str,
    upgrade_request: TemporaryUpgradeRequest,
    operator: OperatorContext = Depends(verify_operator),
    manager: TemporalOverlayManager = Depends(get_overlay_manager),
):
    logger.info("Operator granting temporary upgrade", extra={
        "operator_id": operator.operator_id,
        "restaurant_id": restaurant_id,
        "plan_id": upgrade_request.plan_id,
        "duration_days": upgrade_request.duration_days,
    })
    try:
        overlay = manager.create_temporary_upgrade(
            restaurant_id,
            upgrade_request.plan_id,
            upgrade_request.duration_days,
            reason=upgrade_request.reason,
            created_by=operator.operator_id,
        )
    except EntitlementError as e:
        raise_http_error(e)
    return _overlay_response(overlay)


@router.post("/temporary-upgrades/batch", response_model=BatchTemporaryUpgradeResponse)
async def create_batch_temporary_upgrades(
    batch_request: BatchTemporaryUpgradeRequest,
    operator: OperatorContext = Depends(verify_operator),
    manager: TemporalOverlayManager = Depends(get_overlay_manager),
):
    """
    Grant a temporary upgrade to many restaurants.

    Individual failures are reported in 'failed' and do not abort the batch.
    """
    try:
        if batch_request.restaurant_ids is not None:
            restaurant_ids = batch_request.restaurant_ids
        else:
            criteria = batch_request.filter
            restaurant_ids = manager.select_tenant_ids(TenantFilter(
                plan_id=criteria.plan_id,
                no_plan=criteria.no_plan,
                status=criteria.status.value if criteria.status else None,
                search=criteria.search,
            ))

        logger.info("Operator granting batch temporary upgrade", extra={
            "operator_id": operator.operator_id,
            "plan_id": batch_request.plan_id,
            "restaurant_count": len(restaurant_ids),
        })
        result = manager.create_mass_temporary_upgrades(
            restaurant_ids,
            batch_request.plan_id,
            batch_request.duration_days,
            reason=batch_request.reason,
            created_by=operator.operator_id,
        )
    except EntitlementError as e:
        raise_http_error(e)
    return BatchTemporaryUpgradeResponse(**result.to_dict())


@router.get("/temporary-upgrades", response_model=List[TemporaryUpgradeResponse])
async def list_temporary_upgrades(
    restaurant_id: Optional[str] = Query(None),
    active_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=500),
    operator: OperatorContext = Depends(verify_operator),
    manager: TemporalOverlayManager = Depends(get_overlay_manager),
):
    overlays = manager.list_temporary_upgrades(
        tenant_id=restaurant_id, active_only=active_only, limit=limit
    )
    return [_overlay_response(o) for o in overlays]


@router.delete("/temporary-upgrades/{upgrade_id}", response_model=RestoreResponse)
async def end_temporary_upgrade(
    upgrade_id: str,
    operator: OperatorContext = Depends(verify_operator),
    manager: TemporalOverlayManager = Depends(get_overlay_manager),
):
    """End a temporary upgrade early and restore the original plan. Idempotent."""
    logger.info("Operator ending temporary upgrade", extra={
        "operator_id": operator.operator_id,
        "temporary_upgrade_id": upgrade_id,
    })
    try:
        restored = manager.restore_original_plan(upgrade_id, trigger=RestoreTrigger.MANUAL)
    except EntitlementError as e:
        raise_http_error(e)
    return RestoreResponse(temporary_upgrade_id=upgrade_id, restored=restored)


# Sweeper and events

@router.post("/expiration-sweeps", response_model=SweepResponse)
async def run_expiration_sweep(
    operator: OperatorContext = Depends(verify_operator),
    manager: TemporalOverlayManager = Depends(get_overlay_manager),
):
    """Run the expiration sweeper now. Safe to call repeatedly."""
    logger.info("Operator triggered expiration sweep", extra={
        "operator_id": operator.operator_id,
    })
    stats = ExpirationSweeper(manager.db, manager=manager).run()
    return SweepResponse(**stats.to_dict())


@router.get("/subscription-events", response_model=List[SubscriptionEventResponse])
async def list_subscription_events(
    restaurant_id: Optional[str] = Query(None),
    event_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    operator: OperatorContext = Depends(verify_operator),
    db_session: Session = Depends(get_db_session),
):
    """Most recent subscription events, newest first."""
    events = SubscriptionEventsRepository(db_session).list_recent(
        restaurant_id=restaurant_id, event_type=event_type, limit=limit
    )
    return [
        SubscriptionEventResponse(
            id=e.id,
            restaurant_id=e.restaurant_id,
            plan_id=e.plan_id,
            event_type=e.event_type,
            event_data=e.event_data or {},
            created_at=_iso(e.created_at),
        )
        for e in events
    ]
