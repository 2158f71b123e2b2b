"""
Plans Repository.

Plans are global (not tenant-scoped) - they define available subscription tiers.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.entitlements.errors import PlanAlreadyExistsError
from backoffice.models.plan import Plan
from backoffice.models.tenant import Tenant

logger = logging.getLogger(__name__)


class PlansRepository:
    """Repository for Plan operations."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_by_id(self, plan_id: str) -> Optional[Plan]:
        return self.db.query(Plan).filter(Plan.id == plan_id).first()

    def get_by_slug(self, slug: str) -> Optional[Plan]:
        return self.db.query(Plan).filter(Plan.slug == slug).first()

    def get_all(
        self,
        include_inactive: bool = False,
        include_hidden: bool = True,
    ) -> List[Plan]:
        """
        Get plans ordered for display (sort_order, then monthly price).

        Args:
            include_inactive: Whether to include soft-deleted plans
            include_hidden: Whether to include plans with is_visible=False
        """
        query = self.db.query(Plan)

        if not include_inactive:
            query = query.filter(Plan.is_active == True)  # noqa: E712
        if not include_hidden:
            query = query.filter(Plan.is_visible == True)  # noqa: E712

        return query.order_by(Plan.sort_order.asc(), Plan.price_monthly.asc()).all()

    def get_visible_by_price(self) -> List[Plan]:
        """Visible, active plans, cheapest first."""
        return (
            self.db.query(Plan)
            .filter(Plan.is_active == True, Plan.is_visible == True)  # noqa: E712
            .order_by(Plan.price_monthly.asc(), Plan.sort_order.asc())
            .all()
        )

    def create(self, **fields) -> Plan:
        """
        Insert a plan and flush.

        Raises:
            PlanAlreadyExistsError: If the slug is taken
        """
        slug = fields["slug"]
        if self.get_by_slug(slug):
            raise PlanAlreadyExistsError(slug)

        plan = Plan(**fields)
        try:
            self.db.add(plan)
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            logger.error("Failed to create plan - integrity error", extra={
                "slug": slug,
                "error": str(e),
            })
            raise PlanAlreadyExistsError(slug)

        logger.info("Plan created", extra={"plan_id": plan.id, "slug": slug})
        return plan

    def update(self, plan: Plan, fields: Dict) -> Plan:
        """Apply only the given fields and flush."""
        for key, value in fields.items():
            setattr(plan, key, value)
        self.db.flush()
        return plan

    def count_tenants_by_status(self) -> Dict[str, Dict[str, int]]:
        """Restaurant counts per plan id, broken down by subscription status."""
        rows = (
            self.db.query(
                Tenant.subscription_plan_id,
                Tenant.subscription_status,
                func.count(Tenant.id),
            )
            .group_by(Tenant.subscription_plan_id, Tenant.subscription_status)
            .all()
        )
        counts: Dict[str, Dict[str, int]] = {}
        for plan_id, status, count in rows:
            counts.setdefault(plan_id, {})[status] = count
        return counts
