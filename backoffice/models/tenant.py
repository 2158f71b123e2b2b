"""
Tenant (restaurant) model - the entity being entitled.

Only subscription columns are owned by this subsystem; menu, order and
staff data live elsewhere and reference tenants.id.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, Boolean, Enum, ForeignKey
from sqlalchemy.orm import relationship

from backoffice.db_base import Base
from backoffice.models.base import TimestampMixin, UTCDateTime, generate_uuid


class SubscriptionStatus(str, enum.Enum):
    """Subscription status of a restaurant."""
    TRIAL = "trial"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


class Tenant(Base, TimestampMixin):
    """
    A restaurant and its subscription state.

    Invariant: subscription_status == 'trial' implies
    subscription_trial_ends_at is set (in the future, or due for sweeping).
    """

    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    owner_email = Column(String(255), nullable=True, index=True)

    subscription_plan_id = Column(
        String(36),
        ForeignKey("plans.id"),
        nullable=True,
        index=True,
        comment="Live plan reference; swapped by temporary upgrades"
    )
    subscription_status = Column(
        Enum(
            *[s.value for s in SubscriptionStatus],
            name="subscription_status",
            native_enum=False,
        ),
        nullable=False,
        default=SubscriptionStatus.ACTIVE.value,
        index=True
    )
    subscription_started_at = Column(UTCDateTime(), nullable=True)
    subscription_trial_ends_at = Column(UTCDateTime(), nullable=True, index=True)
    subscription_expires_at = Column(UTCDateTime(), nullable=True, index=True)
    subscription_cancelled_at = Column(UTCDateTime(), nullable=True)
    is_trial_used = Column(Boolean, nullable=False, default=False)

    plan = relationship("Plan", foreign_keys=[subscription_plan_id])

    @property
    def is_in_trial(self) -> bool:
        return self.subscription_status == SubscriptionStatus.TRIAL.value

    def is_trial_due(self, now: datetime) -> bool:
        """True when a trial has elapsed and the sweeper should demote."""
        return (
            self.is_in_trial
            and self.subscription_trial_ends_at is not None
            and self.subscription_trial_ends_at < now
        )

    def is_subscription_due(self, now: datetime) -> bool:
        """True when a paid or trial subscription has passed its expiry."""
        return (
            self.subscription_status in (
                SubscriptionStatus.ACTIVE.value,
                SubscriptionStatus.TRIAL.value,
            )
            and self.subscription_expires_at is not None
            and self.subscription_expires_at < now
        )

    def snapshot(self) -> dict:
        """Plan reference and status, as captured by temporary upgrades."""
        return {
            "plan_id": self.subscription_plan_id,
            "status": self.subscription_status,
        }

    def trial_days_remaining(self, now: datetime) -> Optional[int]:
        if not self.is_in_trial or self.subscription_trial_ends_at is None:
            return None
        remaining = self.subscription_trial_ends_at - now
        return max(0, remaining.days)

    def __repr__(self) -> str:
        return (
            f"<Tenant(id={self.id}, plan={self.subscription_plan_id}, "
            f"status={self.subscription_status})>"
        )
