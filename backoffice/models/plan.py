"""
Plan model for subscription tiers.

Plans are GLOBAL (not tenant-scoped) - they define the product offerings.
Features and limits are stored inline on the plan row so that editing a
plan takes effect for every restaurant referencing it immediately.
"""

from sqlalchemy import (
    Column, String, Text, Integer, Boolean, Numeric, JSON, ForeignKey
)

from backoffice.db_base import Base
from backoffice.models.base import TimestampMixin, generate_uuid


UNLIMITED = -1


class Plan(Base, TimestampMixin):
    """
    A named subscription tier bundling a feature set and resource limits.

    Soft-deleted by clearing is_active; never hard-deleted while referenced.
    The baseline ("free") plan also carries the trial configuration.
    """

    __tablename__ = "plans"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    slug = Column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
        comment="Stable identifier (free, starter, pro)"
    )
    name = Column(
        String(100),
        nullable=False,
        comment="Display name"
    )
    description = Column(
        Text,
        nullable=True
    )

    price_monthly = Column(
        Numeric(10, 2),
        nullable=False,
        default=0,
        comment="Monthly price, display currency"
    )
    price_yearly = Column(
        Numeric(10, 2),
        nullable=False,
        default=0,
        comment="Yearly price, display currency"
    )
    currency = Column(
        String(3),
        nullable=False,
        default="EUR"
    )

    features = Column(
        JSON,
        nullable=False,
        default=list,
        comment="Capability keys; '*' grants everything, '<category>.*' a whole category"
    )
    limits = Column(
        JSON,
        nullable=False,
        default=dict,
        comment="Resource name -> quota; -1 means unlimited"
    )

    is_visible = Column(Boolean, nullable=False, default=True)
    is_legacy = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    sort_order = Column(Integer, nullable=False, default=0)

    # Trial configuration (meaningful on the baseline plan only)
    trial_enabled = Column(Boolean, nullable=False, default=False)
    trial_days = Column(Integer, nullable=False, default=14)
    trial_plan_id = Column(
        String(36),
        ForeignKey("plans.id", ondelete="SET NULL"),
        nullable=True,
        comment="Plan granted during the trial period"
    )

    def get_limit(self, limit_key: str):
        """Raw limit value for a resource, or None when not configured."""
        return (self.limits or {}).get(limit_key)

    def __repr__(self) -> str:
        return f"<Plan(id={self.id}, slug={self.slug}, active={self.is_active})>"
