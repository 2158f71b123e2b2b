"""
Tenants Repository - restaurant subscription state.

get_for_update() takes a row lock (SELECT ... FOR UPDATE) on backends that
support it; every lifecycle mutation reads the restaurant through it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from backoffice.models.tenant import Tenant, SubscriptionStatus

logger = logging.getLogger(__name__)


@dataclass
class TenantFilter:
    """
    Selection criteria for batch operations.

    plan_id and no_plan are mutually exclusive; no_plan selects restaurants
    without any plan reference. search matches name or owner email.
    """
    plan_id: Optional[str] = None
    no_plan: bool = False
    status: Optional[str] = None
    search: Optional[str] = None


class TenantsRepository:
    """Repository for restaurant subscription state."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_by_id(self, tenant_id: str) -> Optional[Tenant]:
        return self.db.query(Tenant).filter(Tenant.id == tenant_id).first()

    def get_for_update(self, tenant_id: str) -> Optional[Tenant]:
        return (
            self.db.query(Tenant)
            .filter(Tenant.id == tenant_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def select_ids(self, criteria: TenantFilter) -> List[str]:
        query = self.db.query(Tenant.id)

        if criteria.no_plan:
            query = query.filter(Tenant.subscription_plan_id.is_(None))
        elif criteria.plan_id:
            query = query.filter(Tenant.subscription_plan_id == criteria.plan_id)

        if criteria.status:
            query = query.filter(Tenant.subscription_status == criteria.status)

        if criteria.search:
            pattern = f"%{criteria.search}%"
            query = query.filter(or_(
                Tenant.name.ilike(pattern),
                Tenant.owner_email.ilike(pattern),
            ))

        return [row[0] for row in query.order_by(Tenant.created_at.asc(), Tenant.id.asc()).all()]

    def find_trials_due(self, now: datetime) -> List[str]:
        """Ids of restaurants whose trial has elapsed."""
        rows = (
            self.db.query(Tenant.id)
            .filter(
                Tenant.subscription_status == SubscriptionStatus.TRIAL.value,
                Tenant.subscription_trial_ends_at.isnot(None),
                Tenant.subscription_trial_ends_at < now,
            )
            .order_by(Tenant.subscription_trial_ends_at.asc())
            .all()
        )
        return [row[0] for row in rows]

    def find_subscriptions_due(self, now: datetime) -> List[str]:
        """Ids of active or trial restaurants past subscription_expires_at."""
        rows = (
            self.db.query(Tenant.id)
            .filter(
                Tenant.subscription_status.in_([
                    SubscriptionStatus.ACTIVE.value,
                    SubscriptionStatus.TRIAL.value,
                ]),
                Tenant.subscription_expires_at.isnot(None),
                Tenant.subscription_expires_at < now,
            )
            .order_by(Tenant.subscription_expires_at.asc())
            .all()
        )
        return [row[0] for row in rows]
