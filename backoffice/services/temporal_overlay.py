"""
Temporal overlay manager - lifecycle of trials and temporary upgrades.

Handles:
- Trial grant (once per restaurant), with the free-plan fallback when
  trials are disabled
- Temporary upgrades, single and batch, with an exact snapshot of the
  plan reference and status they override
- Restoration of that snapshot (idempotent)
- Demotion to the baseline plan when a trial or subscription lapses
- Operator status and plan changes

Every mutation runs under the per-restaurant lock, reads the restaurant
row with SELECT ... FOR UPDATE, and commits as one transaction. The audit
event is written after the commit; a failure to write it never undoes or
fails the mutation.

Overlapping grants replace: a new temporary upgrade while one is active
deactivates the old row and inherits its snapshot, so expiry always
returns the restaurant to its true nominal state.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from sqlalchemy.orm import Session

from backoffice.config.settings import SubscriptionSettings, get_settings
from backoffice.entitlements.audit import SubscriptionEventLogger, isoformat
from backoffice.entitlements.errors import (
    BatchTooLargeError,
    EntitlementError,
    InvalidInputError,
    OverlayNotFoundError,
    TenantNotFoundError,
    TrialAlreadyUsedError,
)
from backoffice.models.plan import Plan
from backoffice.models.subscription_event import SubscriptionEventType
from backoffice.models.temporary_upgrade import TemporaryUpgrade
from backoffice.models.tenant import SubscriptionStatus, Tenant
from backoffice.platform.clock import Clock, get_clock
from backoffice.platform.locking import tenant_lock
from backoffice.repositories.temporary_upgrades_repo import TemporaryUpgradesRepository
from backoffice.repositories.tenants_repo import TenantFilter, TenantsRepository
from backoffice.services.plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)


class RestoreTrigger:
    """Why an overlay was closed."""
    EXPIRED = "expired"
    MANUAL = "manual"


class DowngradeReason:
    TRIAL_EXPIRED = "trial_expired"
    SUBSCRIPTION_EXPIRED = "subscription_expired"


# Statuses an operator may set directly. 'trial' is only entered via assign_trial.
OPERATOR_STATUSES = frozenset({
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.EXPIRED.value,
    SubscriptionStatus.CANCELLED.value,
    SubscriptionStatus.SUSPENDED.value,
})


@dataclass
class BatchUpgradeResult:
    """Outcome of a batch grant. Failures are data, not exceptions."""
    succeeded: List[str] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "succeeded_count": len(self.succeeded),
            "failed_count": len(self.failed),
        }


class TemporalOverlayManager:
    """
    Creates, queries and tears down time-boxed overlays on a restaurant's plan.

    Args:
        db_session: Database session
        catalog: Plan catalog (baseline plan, trial configuration)
        clock: Time source for every expiry computation
        events: Subscription event logger
        settings: Subscription settings (batch ceiling)
    """

    def __init__(
        self,
        db_session: Session,
        catalog: Optional[PlanCatalog] = None,
        clock: Optional[Clock] = None,
        events: Optional[SubscriptionEventLogger] = None,
        settings: Optional[SubscriptionSettings] = None,
    ):
        self.db = db_session
        self.clock = clock or get_clock()
        self.settings = settings or get_settings()
        self.events = events or SubscriptionEventLogger(db_session, self.clock)
        self.catalog = catalog or PlanCatalog(db_session, self.settings, self.events)
        self.tenants = TenantsRepository(db_session)
        self.overlays = TemporaryUpgradesRepository(db_session)

    @contextmanager
    def _tenant_transaction(self, tenant_id: str) -> Iterator[Tenant]:
        """Lock the restaurant, yield its row, commit on success, roll back on error."""
        with tenant_lock(tenant_id):
            try:
                tenant = self.tenants.get_for_update(tenant_id)
                if tenant is None:
                    raise TenantNotFoundError(tenant_id)
                yield tenant
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

    def get_tenant(self, tenant_id: str) -> Tenant:
        """
        Raises:
            TenantNotFoundError: If the restaurant doesn't exist
        """
        tenant = self.tenants.get_by_id(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(tenant_id)
        return tenant

    # ------------------------------------------------------------------
    # Trial and baseline assignment
    # ------------------------------------------------------------------

    def assign_trial(self, tenant_id: str) -> Tenant:
        """
        Put a restaurant on the configured trial plan.

        Falls back to assign_free_plan() when trials are disabled.

        Raises:
            TenantNotFoundError: If the restaurant doesn't exist
            TrialAlreadyUsedError: If the restaurant has had its trial
            InvalidInputError: If the configured trial plan is inactive
        """
        config = self.catalog.get_trial_configuration()
        if not config.enabled or config.trial_plan_id is None:
            tenant = self.get_tenant(tenant_id)
            if tenant.is_trial_used:
                raise TrialAlreadyUsedError(tenant_id)
            logger.info("Trial disabled, assigning baseline plan", extra={"tenant_id": tenant_id})
            return self.assign_free_plan(tenant_id, reason="trial_disabled")

        trial_plan = self.catalog.get_by_id(config.trial_plan_id)
        if not trial_plan.is_active:
            raise InvalidInputError(
                "Configured trial plan is inactive",
                {"plan_id": trial_plan.id},
            )

        with self._tenant_transaction(tenant_id) as tenant:
            if tenant.is_trial_used:
                raise TrialAlreadyUsedError(tenant_id)
            now = self.clock.now()
            trial_ends_at = now + timedelta(days=config.days)
            closed_id = self._close_active_overlay(tenant_id, now)

            tenant.subscription_plan_id = trial_plan.id
            tenant.subscription_status = SubscriptionStatus.TRIAL.value
            tenant.subscription_trial_ends_at = trial_ends_at
            tenant.subscription_started_at = now
            tenant.is_trial_used = True

        logger.info("Trial started", extra={
            "tenant_id": tenant_id,
            "plan_id": trial_plan.id,
            "trial_days": config.days,
        })
        self.events.record(
            SubscriptionEventType.TRIAL_STARTED,
            tenant_id,
            plan_id=trial_plan.id,
            event_data={
                "trial_days": config.days,
                "trial_ends_at": isoformat(trial_ends_at),
                "plan_slug": trial_plan.slug,
                "closed_temporary_upgrade_id": closed_id,
            },
        )
        return tenant

    def assign_free_plan(self, tenant_id: str, reason: str = "assigned") -> Tenant:
        """
        Put a restaurant on the baseline plan, status active, no trial or expiry.

        An active temporary upgrade is closed without restoring its snapshot.
        """
        baseline = self.catalog.get_baseline_plan()

        with self._tenant_transaction(tenant_id) as tenant:
            now = self.clock.now()
            previous = tenant.snapshot()
            closed_id = self._close_active_overlay(tenant_id, now)
            tenant.subscription_plan_id = baseline.id
            tenant.subscription_status = SubscriptionStatus.ACTIVE.value
            tenant.subscription_trial_ends_at = None
            tenant.subscription_expires_at = None
            tenant.subscription_started_at = now

        self.events.record(
            SubscriptionEventType.ASSIGNED,
            tenant_id,
            plan_id=baseline.id,
            event_data={
                "plan_slug": baseline.slug,
                "reason": reason,
                "previous_plan_id": previous["plan_id"],
                "previous_status": previous["status"],
                "closed_temporary_upgrade_id": closed_id,
            },
        )
        return tenant

    # ------------------------------------------------------------------
    # Temporary upgrades
    # ------------------------------------------------------------------

    def create_temporary_upgrade(
        self,
        tenant_id: str,
        temp_plan_id: str,
        duration_days: int,
        reason: str = "",
        created_by: Optional[str] = None,
    ) -> TemporaryUpgrade:
        """
        Swap a restaurant's live plan for duration_days.

        The status is left as-is. An active overlay is replaced; the new one
        keeps the replaced overlay's snapshot.

        Raises:
            TenantNotFoundError: If the restaurant doesn't exist
            PlanNotFoundError: If the temporary plan doesn't exist
            InvalidInputError: If duration_days < 1, the plan is inactive, or
                it is already the restaurant's live or nominal plan
        """
        if isinstance(duration_days, bool) or not isinstance(duration_days, int) or duration_days < 1:
            raise InvalidInputError(
                "Duration must be a positive number of days",
                {"duration_days": duration_days},
            )
        temp_plan = self.catalog.get_by_id(temp_plan_id)
        if not temp_plan.is_active:
            raise InvalidInputError(
                "Temporary plan is inactive",
                {"plan_id": temp_plan_id},
            )

        with self._tenant_transaction(tenant_id) as tenant:
            now = self.clock.now()
            existing = self.overlays.get_active_for_tenant(tenant_id)

            if existing is not None:
                nominal_plan_id = existing.original_plan_id
                nominal_status = existing.original_status
            else:
                nominal_plan_id = tenant.subscription_plan_id
                nominal_status = tenant.subscription_status

            if temp_plan.id in (tenant.subscription_plan_id, nominal_plan_id):
                raise InvalidInputError(
                    "Restaurant is already on this plan",
                    {"restaurant_id": tenant_id, "plan_id": temp_plan.id},
                )

            replaced_id = None
            if existing is not None:
                existing.is_active = False
                existing.deactivated_at = now
                replaced_id = existing.id

            overlay = self.overlays.add(TemporaryUpgrade(
                restaurant_id=tenant_id,
                original_plan_id=nominal_plan_id,
                original_status=nominal_status,
                temporary_plan_id=temp_plan.id,
                expires_at=now + timedelta(days=duration_days),
                reason=reason,
                is_active=True,
                created_by=created_by,
            ))
            tenant.subscription_plan_id = temp_plan.id
            overlay_id = overlay.id
            expires_at = overlay.expires_at

        logger.info("Temporary upgrade created", extra={
            "tenant_id": tenant_id,
            "temporary_upgrade_id": overlay_id,
            "temporary_plan_id": temp_plan.id,
            "duration_days": duration_days,
            "replaced_upgrade_id": replaced_id,
        })
        if replaced_id is not None:
            self.events.record(
                SubscriptionEventType.TEMPORARY_UPGRADE_SUPERSEDED,
                tenant_id,
                plan_id=temp_plan.id,
                event_data={
                    "temporary_upgrade_id": replaced_id,
                    "replaced_by": overlay_id,
                },
            )
        self.events.record(
            SubscriptionEventType.TEMPORARY_UPGRADE,
            tenant_id,
            plan_id=temp_plan.id,
            event_data={
                "temporary_upgrade_id": overlay_id,
                "original_plan_id": nominal_plan_id,
                "original_status": nominal_status,
                "temporary_plan_id": temp_plan.id,
                "temporary_plan_slug": temp_plan.slug,
                "duration_days": duration_days,
                "expires_at": isoformat(expires_at),
                "reason": reason,
                "created_by": created_by,
                "replaced_upgrade_id": replaced_id,
            },
        )
        return overlay

    def select_tenant_ids(self, criteria: TenantFilter) -> List[str]:
        """Restaurants matching a batch filter, oldest first."""
        if criteria.no_plan and criteria.plan_id:
            raise InvalidInputError("plan_id and no_plan are mutually exclusive")
        return self.tenants.select_ids(criteria)

    def create_mass_temporary_upgrades(
        self,
        tenant_ids: Iterable[str],
        temp_plan_id: str,
        duration_days: int,
        reason: str = "",
        created_by: Optional[str] = None,
    ) -> BatchUpgradeResult:
        """
        Apply create_temporary_upgrade to each restaurant in order.

        One restaurant's failure is recorded and the loop continues. Batches
        larger than the configured maximum are rejected before any write.

        Raises:
            BatchTooLargeError: If the batch exceeds max_batch_size
        """
        ids = list(dict.fromkeys(tenant_ids))
        if len(ids) > self.settings.max_batch_size:
            raise BatchTooLargeError(len(ids), self.settings.max_batch_size)

        result = BatchUpgradeResult()
        for tenant_id in ids:
            try:
                self.create_temporary_upgrade(
                    tenant_id,
                    temp_plan_id,
                    duration_days,
                    reason=reason,
                    created_by=created_by,
                )
                result.succeeded.append(tenant_id)
            except EntitlementError as e:
                result.failed.append({"restaurant_id": tenant_id, "error": e.message})
            except Exception as e:
                logger.error("Batch temporary upgrade failed for restaurant", exc_info=True, extra={
                    "tenant_id": tenant_id,
                })
                result.failed.append({"restaurant_id": tenant_id, "error": str(e)})

        logger.info("Batch temporary upgrade completed", extra={
            "temporary_plan_id": temp_plan_id,
            "succeeded_count": len(result.succeeded),
            "failed_count": len(result.failed),
        })
        return result

    def get_active_temporary_upgrade(self, tenant_id: str) -> Optional[TemporaryUpgrade]:
        """The restaurant's active, unexpired overlay, if any."""
        return self.overlays.get_active_for_tenant(tenant_id, now=self.clock.now())

    def list_temporary_upgrades(
        self,
        tenant_id: Optional[str] = None,
        active_only: bool = False,
        limit: int = 100,
    ) -> List[TemporaryUpgrade]:
        return self.overlays.list(tenant_id=tenant_id, active_only=active_only, limit=limit)

    def restore_original_plan(self, overlay_id: str, trigger: str = RestoreTrigger.MANUAL) -> bool:
        """
        Write an overlay's snapshot back to the restaurant and deactivate it.

        Idempotent: an already inactive overlay is left alone and no event
        is recorded. Returns True if this call restored the snapshot.

        Raises:
            OverlayNotFoundError: If the overlay doesn't exist
        """
        overlay = self.overlays.get_by_id(overlay_id)
        if overlay is None:
            raise OverlayNotFoundError(overlay_id)
        if not overlay.is_active:
            logger.debug("Temporary upgrade already inactive", extra={"temporary_upgrade_id": overlay_id})
            return False

        tenant_id = overlay.restaurant_id
        restored = False
        with self._tenant_transaction(tenant_id) as tenant:
            overlay = self.overlays.get_for_update(overlay_id)
            if overlay.is_active:
                tenant.subscription_plan_id = overlay.original_plan_id
                tenant.subscription_status = overlay.original_status
                overlay.is_active = False
                overlay.deactivated_at = self.clock.now()
                restored = True
                event_data = {
                    "temporary_upgrade_id": overlay.id,
                    "original_plan_id": overlay.original_plan_id,
                    "original_status": overlay.original_status,
                    "temporary_plan_id": overlay.temporary_plan_id,
                    "trigger": trigger,
                }
                plan_id = overlay.original_plan_id

        if not restored:
            return False

        logger.info("Temporary upgrade restored", extra={
            "tenant_id": tenant_id,
            "temporary_upgrade_id": overlay_id,
            "trigger": trigger,
        })
        self.events.record(
            SubscriptionEventType.TEMP_UPGRADE_EXPIRED,
            tenant_id,
            plan_id=plan_id,
            event_data=event_data,
        )
        return True

    # ------------------------------------------------------------------
    # Demotion
    # ------------------------------------------------------------------

    def downgrade_to_free(self, tenant_id: str, reason: str) -> Tenant:
        """
        Reassign the baseline plan with status active and no trial or expiry.

        Any active overlay is closed without restoring its snapshot.

        Raises:
            TenantNotFoundError: If the restaurant doesn't exist
        """
        return self._downgrade(tenant_id, reason)

    def expire_trial_if_due(self, tenant_id: str) -> bool:
        """Demote the restaurant if its trial has elapsed, rechecked under the lock."""
        return self._downgrade(
            tenant_id,
            DowngradeReason.TRIAL_EXPIRED,
            is_due=lambda tenant, now: tenant.is_trial_due(now),
        ) is not None

    def expire_subscription_if_due(self, tenant_id: str) -> bool:
        """Demote the restaurant if its subscription has expired, rechecked under the lock."""
        return self._downgrade(
            tenant_id,
            DowngradeReason.SUBSCRIPTION_EXPIRED,
            is_due=lambda tenant, now: tenant.is_subscription_due(now),
        ) is not None

    def _downgrade(
        self,
        tenant_id: str,
        reason: str,
        is_due: Optional[Callable[[Tenant, datetime], bool]] = None,
    ) -> Optional[Tenant]:
        baseline = self.catalog.get_baseline_plan()

        changed = False
        with self._tenant_transaction(tenant_id) as tenant:
            now = self.clock.now()
            if is_due is None or is_due(tenant, now):
                event_data = self._apply_downgrade(tenant, baseline, now, reason)
                changed = True

        if not changed:
            return None

        logger.info("Restaurant downgraded to baseline plan", extra={
            "tenant_id": tenant_id,
            "reason": reason,
        })
        self.events.record(
            SubscriptionEventType.DOWNGRADED,
            tenant_id,
            plan_id=baseline.id,
            event_data=event_data,
        )
        return tenant

    def _apply_downgrade(self, tenant: Tenant, baseline: Plan, now: datetime, reason: str) -> Dict[str, Any]:
        previous = tenant.snapshot()
        closed_id = self._close_active_overlay(tenant.id, now)

        tenant.subscription_plan_id = baseline.id
        tenant.subscription_status = SubscriptionStatus.ACTIVE.value
        tenant.subscription_trial_ends_at = None
        tenant.subscription_expires_at = None
        tenant.subscription_started_at = now

        return {
            "reason": reason,
            "previous_plan_id": previous["plan_id"],
            "previous_status": previous["status"],
            "closed_temporary_upgrade_id": closed_id,
        }

    def _close_active_overlay(self, tenant_id: str, now: datetime) -> Optional[str]:
        active = self.overlays.get_active_for_tenant(tenant_id)
        if active is None:
            return None
        active.is_active = False
        active.deactivated_at = now
        return active.id

    # ------------------------------------------------------------------
    # Operator changes
    # ------------------------------------------------------------------

    def set_subscription_status(self, tenant_id: str, status: str, reason: Optional[str] = None) -> Tenant:
        """
        Operator-set status. Distinct from the sweeper's automatic demotion,
        which never writes 'expired'.

        While an overlay is active the overlay's status snapshot follows the
        new status, so restoring the overlay keeps the operator's decision.

        Raises:
            TenantNotFoundError: If the restaurant doesn't exist
            InvalidInputError: If status is unknown or 'trial'
        """
        if status not in OPERATOR_STATUSES:
            raise InvalidInputError(
                f"Status must be one of: {', '.join(sorted(OPERATOR_STATUSES))}",
                {"status": status},
            )

        changed = False
        with self._tenant_transaction(tenant_id) as tenant:
            previous_status = tenant.subscription_status
            if previous_status != status:
                now = self.clock.now()
                tenant.subscription_status = status
                if status == SubscriptionStatus.CANCELLED.value:
                    tenant.subscription_cancelled_at = now
                active = self.overlays.get_active_for_tenant(tenant_id)
                if active is not None:
                    active.original_status = status
                changed = True
            plan_id = tenant.subscription_plan_id

        if not changed:
            return tenant

        event_type = (
            SubscriptionEventType.CANCELLED
            if status == SubscriptionStatus.CANCELLED.value
            else SubscriptionEventType.STATUS_CHANGED
        )
        self.events.record(
            event_type,
            tenant_id,
            plan_id=plan_id,
            event_data={
                "previous_status": previous_status,
                "new_status": status,
                "reason": reason,
            },
        )
        return tenant

    def cancel_subscription(self, tenant_id: str, reason: Optional[str] = None) -> Tenant:
        return self.set_subscription_status(tenant_id, SubscriptionStatus.CANCELLED.value, reason)

    def change_plan(
        self,
        tenant_id: str,
        new_plan_id: str,
        reason: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> Tenant:
        """
        Change a restaurant's nominal plan.

        Any active overlay is closed first; the new plan applies immediately.
        expires_at replaces the subscription expiry (None clears it); the
        sweeper demotes the restaurant to the baseline plan once it passes.
        Records subscription.upgraded or subscription.downgraded by monthly price.

        Raises:
            TenantNotFoundError: If the restaurant doesn't exist
            PlanNotFoundError: If the plan doesn't exist
            InvalidInputError: If the plan is inactive or already current, or
                expires_at is not in the future
        """
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= self.clock.now():
                raise InvalidInputError(
                    "Expiry must be in the future",
                    {"expires_at": isoformat(expires_at)},
                )
        new_plan = self.catalog.get_by_id(new_plan_id)
        if not new_plan.is_active:
            raise InvalidInputError("Plan is inactive", {"plan_id": new_plan_id})

        with self._tenant_transaction(tenant_id) as tenant:
            if tenant.subscription_plan_id == new_plan.id:
                raise InvalidInputError(
                    "Restaurant is already on this plan",
                    {"restaurant_id": tenant_id, "plan_id": new_plan.id},
                )
            now = self.clock.now()
            old_plan = tenant.plan
            old_plan_id = tenant.subscription_plan_id
            old_price = old_plan.price_monthly if old_plan is not None else 0
            old_name = old_plan.name if old_plan is not None else None
            closed_id = self._close_active_overlay(tenant_id, now)

            tenant.subscription_plan_id = new_plan.id
            tenant.subscription_started_at = now
            tenant.subscription_expires_at = expires_at

        event_type = (
            SubscriptionEventType.UPGRADED
            if new_plan.price_monthly > old_price
            else SubscriptionEventType.DOWNGRADED
        )
        self.events.record(
            event_type,
            tenant_id,
            plan_id=new_plan.id,
            event_data={
                "old_plan_id": old_plan_id,
                "old_plan_name": old_name,
                "new_plan_id": new_plan.id,
                "new_plan_name": new_plan.name,
                "reason": reason,
                "expires_at": isoformat(expires_at),
                "closed_temporary_upgrade_id": closed_id,
            },
        )
        return tenant
