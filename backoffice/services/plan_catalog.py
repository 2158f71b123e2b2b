"""
Plan Catalog service.

Handles:
- Creating, editing and soft-deleting plans (merge semantics on update)
- Feature membership on a plan
- Trial configuration, held on the baseline plan
- Per-plan restaurant statistics

Feature and limit changes take effect for every restaurant referencing the
plan immediately; nothing is cached per restaurant.
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from backoffice.config.settings import SubscriptionSettings, get_settings
from backoffice.entitlements import quota
from backoffice.entitlements.audit import SubscriptionEventLogger
from backoffice.entitlements.capability import plan_has_feature
from backoffice.entitlements.errors import InvalidInputError, PlanNotFoundError
from backoffice.models.feature_flag import FeatureFlag
from backoffice.models.plan import Plan, UNLIMITED
from backoffice.models.subscription_event import SubscriptionEventType
from backoffice.platform.clock import Clock
from backoffice.repositories.plans_repo import PlansRepository

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,49}$")

UPDATABLE_FIELDS = frozenset({
    "slug", "name", "description", "price_monthly", "price_yearly", "currency",
    "features", "limits", "is_visible", "is_legacy", "is_active", "sort_order",
})


@dataclass
class TrialConfiguration:
    """Trial settings read from the baseline plan."""
    enabled: bool
    days: int
    trial_plan_id: Optional[str]
    trial_plan_slug: Optional[str] = None


@dataclass
class PlanStatistics:
    """Restaurant counts for one plan."""
    plan_id: str
    slug: str
    name: str
    total: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)


class PlanCatalog:
    """
    Owns plan definitions and trial configuration.

    Args:
        db_session: Database session
        settings: Subscription settings (baseline plan slug)
        events: Event logger for catalog audit events
        clock: Time source for event timestamps
    """

    def __init__(
        self,
        db_session: Session,
        settings: Optional[SubscriptionSettings] = None,
        events: Optional[SubscriptionEventLogger] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db_session
        self.repo = PlansRepository(db_session)
        self.settings = settings or get_settings()
        self.events = events or SubscriptionEventLogger(db_session, clock)

    # Matching and limits delegate to the single implementations.
    plan_has_feature = staticmethod(plan_has_feature)
    check_limit = staticmethod(quota.check_limit)
    get_remaining_quota = staticmethod(quota.get_remaining_quota)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, plan_id: str) -> Plan:
        """
        Raises:
            PlanNotFoundError: If the plan doesn't exist
        """
        plan = self.repo.get_by_id(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    def get_by_slug(self, slug: str) -> Plan:
        """
        Raises:
            PlanNotFoundError: If the plan doesn't exist
        """
        plan = self.repo.get_by_slug(slug)
        if plan is None:
            raise PlanNotFoundError(slug)
        return plan

    def get_baseline_plan(self) -> Plan:
        """The floor plan restaurants are demoted to."""
        return self.get_by_slug(self.settings.baseline_plan_slug)

    def list_plans(self, include_inactive: bool = False, include_hidden: bool = True) -> List[Plan]:
        return self.repo.get_all(include_inactive=include_inactive, include_hidden=include_hidden)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create_plan(
        self,
        slug: str,
        name: str,
        price_monthly: Any = 0,
        price_yearly: Any = 0,
        features: Optional[List[str]] = None,
        limits: Optional[Dict[str, int]] = None,
        description: Optional[str] = None,
        currency: str = "EUR",
        is_visible: bool = True,
        is_legacy: bool = False,
        sort_order: int = 0,
    ) -> Plan:
        """
        Create a new plan.

        Raises:
            InvalidInputError: If validation fails
            PlanAlreadyExistsError: If the slug is taken
        """
        fields = {
            "slug": slug,
            "name": name,
            "description": description,
            "price_monthly": price_monthly,
            "price_yearly": price_yearly,
            "currency": currency,
            "features": list(features or []),
            "limits": dict(limits or {}),
            "is_visible": is_visible,
            "is_legacy": is_legacy,
            "is_active": True,
            "sort_order": sort_order,
        }
        fields = self._validate_plan_data(fields)

        try:
            plan = self.repo.create(**fields)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Plan created via catalog", extra={
            "plan_id": plan.id,
            "slug": plan.slug,
            "feature_count": len(plan.features),
        })
        return plan

    def update_plan(self, plan_id: str, changes: Dict[str, Any]) -> Plan:
        """
        Merge-update a plan: only keys present in changes are written.

        Raises:
            PlanNotFoundError: If the plan doesn't exist
            InvalidInputError: If a key is unknown or the merged plan is invalid
        """
        plan = self.get_by_id(plan_id)

        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidInputError(
                f"Unknown plan fields: {', '.join(sorted(unknown))}",
                {"fields": sorted(unknown)},
            )

        if "slug" in changes and changes["slug"] != plan.slug:
            if plan.slug == self.settings.baseline_plan_slug:
                raise InvalidInputError("The baseline plan slug cannot be changed")
            if self.repo.get_by_slug(changes["slug"]) is not None:
                raise InvalidInputError(
                    f"Plan with slug '{changes['slug']}' already exists",
                    {"slug": changes["slug"]},
                )
        if changes.get("is_active") is False:
            self._ensure_deactivatable(plan)

        merged = {key: getattr(plan, key) for key in UPDATABLE_FIELDS}
        merged.update(changes)
        merged = self._validate_plan_data(merged)

        try:
            self.repo.update(plan, {key: merged[key] for key in changes})
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Plan updated via catalog", extra={
            "plan_id": plan_id,
            "updated_fields": sorted(changes),
        })
        return plan

    def soft_delete_plan(self, plan_id: str) -> Plan:
        """
        Deactivate a plan. Restaurants already on it keep the reference.

        Raises:
            PlanNotFoundError: If the plan doesn't exist
            InvalidInputError: If the plan is the baseline or the trial plan
        """
        plan = self.get_by_id(plan_id)
        self._ensure_deactivatable(plan)

        try:
            self.repo.update(plan, {"is_active": False})
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Plan soft-deleted", extra={"plan_id": plan_id, "slug": plan.slug})
        return plan

    def _ensure_deactivatable(self, plan: Plan) -> None:
        if plan.slug == self.settings.baseline_plan_slug:
            raise InvalidInputError(
                "The baseline plan cannot be deactivated",
                {"plan_id": plan.id},
            )
        baseline = self.repo.get_by_slug(self.settings.baseline_plan_slug)
        if baseline is not None and baseline.trial_enabled and baseline.trial_plan_id == plan.id:
            raise InvalidInputError(
                "The plan is the configured trial plan; disable the trial first",
                {"plan_id": plan.id},
            )

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    def add_feature_to_plan(self, plan_id: str, feature_key: str) -> Plan:
        """Append a capability key; no-op if already present."""
        plan = self.get_by_id(plan_id)
        self._validate_features([feature_key])
        if feature_key in (plan.features or []):
            return plan
        return self.update_plan(plan_id, {"features": list(plan.features or []) + [feature_key]})

    def remove_feature_from_plan(self, plan_id: str, feature_key: str) -> Plan:
        """Remove a capability key; no-op if absent."""
        plan = self.get_by_id(plan_id)
        if feature_key not in (plan.features or []):
            return plan
        return self.update_plan(
            plan_id,
            {"features": [f for f in plan.features if f != feature_key]},
        )

    def get_plan_features(self, plan_id: str) -> List[FeatureFlag]:
        """Active feature flags the plan grants, by category then key."""
        plan = self.get_by_id(plan_id)
        flags = (
            self.db.query(FeatureFlag)
            .filter(FeatureFlag.is_active == True)  # noqa: E712
            .order_by(FeatureFlag.category.asc(), FeatureFlag.key.asc())
            .all()
        )
        return [flag for flag in flags if plan_has_feature(plan, flag.key)]

    # ------------------------------------------------------------------
    # Trial configuration
    # ------------------------------------------------------------------

    def get_trial_configuration(self) -> TrialConfiguration:
        baseline = self.get_baseline_plan()
        trial_plan = (
            self.repo.get_by_id(baseline.trial_plan_id) if baseline.trial_plan_id else None
        )
        return TrialConfiguration(
            enabled=bool(baseline.trial_enabled),
            days=baseline.trial_days,
            trial_plan_id=baseline.trial_plan_id,
            trial_plan_slug=trial_plan.slug if trial_plan else None,
        )

    def update_trial_configuration(
        self,
        enabled: Optional[bool] = None,
        days: Optional[int] = None,
        trial_plan_id: Optional[str] = None,
    ) -> TrialConfiguration:
        """
        Merge-update the trial configuration on the baseline plan.

        Raises:
            InvalidInputError: If days < 1, or an enabled trial has no valid trial plan
        """
        baseline = self.get_baseline_plan()

        new_enabled = baseline.trial_enabled if enabled is None else enabled
        new_days = baseline.trial_days if days is None else days
        new_plan_id = baseline.trial_plan_id if trial_plan_id is None else trial_plan_id

        errors = []
        if isinstance(new_days, bool) or not isinstance(new_days, int) or new_days < 1:
            errors.append("Trial days must be a positive integer")
        if new_plan_id is not None:
            trial_plan = self.repo.get_by_id(new_plan_id)
            if trial_plan is None:
                raise PlanNotFoundError(new_plan_id)
            if not trial_plan.is_active:
                errors.append("Trial plan must be active")
            if trial_plan.id == baseline.id:
                errors.append("Trial plan must differ from the baseline plan")
        elif new_enabled:
            errors.append("An enabled trial requires a trial plan")
        if errors:
            raise InvalidInputError("; ".join(errors), {"errors": errors})

        try:
            self.repo.update(baseline, {
                "trial_enabled": new_enabled,
                "trial_days": new_days,
                "trial_plan_id": new_plan_id,
            })
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        config = self.get_trial_configuration()
        logger.info("Trial configuration updated", extra={
            "enabled": config.enabled,
            "days": config.days,
            "trial_plan_id": config.trial_plan_id,
        })
        self.events.record(
            SubscriptionEventType.TRIAL_CONFIGURED,
            None,
            plan_id=baseline.id,
            event_data={
                "enabled": config.enabled,
                "days": config.days,
                "trial_plan_id": config.trial_plan_id,
            },
        )
        return config

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def plan_statistics(self) -> List[PlanStatistics]:
        """Restaurant counts per plan, including inactive plans."""
        counts = self.repo.count_tenants_by_status()
        stats = []
        for plan in self.repo.get_all(include_inactive=True):
            by_status = counts.get(plan.id, {})
            stats.append(PlanStatistics(
                plan_id=plan.id,
                slug=plan.slug,
                name=plan.name,
                total=sum(by_status.values()),
                by_status=dict(by_status),
            ))
        return stats

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_plan_data(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate a full set of plan fields and return them normalized.

        Raises:
            InvalidInputError: With every problem found, joined by '; '
        """
        errors = []
        normalized = dict(fields)

        slug = fields.get("slug")
        if not isinstance(slug, str) or not SLUG_PATTERN.match(slug):
            errors.append(
                "Slug must be 1-50 lowercase letters, digits, '-' or '_' "
                "and start with a letter or digit"
            )

        name = fields.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append("Name is required")

        for price_field in ("price_monthly", "price_yearly"):
            if price_field not in fields:
                continue
            try:
                price = Decimal(str(fields[price_field]))
            except (InvalidOperation, ValueError):
                errors.append(f"{price_field} must be a number")
                continue
            if not price.is_finite() or price < 0:
                errors.append(f"{price_field} must be non-negative")
            else:
                normalized[price_field] = price.quantize(Decimal("0.01"))

        currency = fields.get("currency")
        if currency is not None and (not isinstance(currency, str) or len(currency) != 3):
            errors.append("Currency must be a 3-letter code")

        errors.extend(self._feature_errors(fields.get("features", [])))
        errors.extend(self._limit_errors(fields.get("limits", {})))

        sort_order = fields.get("sort_order", 0)
        if isinstance(sort_order, bool) or not isinstance(sort_order, int):
            errors.append("sort_order must be an integer")

        if errors:
            raise InvalidInputError("; ".join(errors), {"errors": errors})
        return normalized

    def _validate_features(self, features) -> None:
        errors = self._feature_errors(features)
        if errors:
            raise InvalidInputError("; ".join(errors), {"errors": errors})

    @staticmethod
    def _feature_errors(features) -> List[str]:
        if not isinstance(features, list):
            return ["Features must be a list of capability keys"]
        bad = [f for f in features if not isinstance(f, str) or not f.strip()]
        if bad:
            return ["Features must be non-empty strings"]
        return []

    @staticmethod
    def _limit_errors(limits) -> List[str]:
        if not isinstance(limits, dict):
            return ["Limits must be a mapping of resource name to integer"]
        errors = []
        for key, value in limits.items():
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value < UNLIMITED:
                errors.append(f"Limit '{key}' must be an integer >= -1")
        return errors
