"""
TemporaryUpgrade model - a time-boxed override of a restaurant's plan.

The row snapshots the plan reference and status the restaurant had before
the override so restoration can write them back exactly.
"""

from datetime import datetime

from sqlalchemy import Column, String, Text, Boolean, ForeignKey, Index

from backoffice.db_base import Base
from backoffice.models.base import TimestampMixin, UTCDateTime, generate_uuid


class TemporaryUpgrade(Base, TimestampMixin):
    """
    Time-boxed plan overlay.

    Invariant: at most one is_active row per restaurant_id. Enforced by
    TemporalOverlayManager under the per-restaurant lock.
    """

    __tablename__ = "temporary_upgrades"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    restaurant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Snapshot taken at creation
    original_plan_id = Column(String(36), ForeignKey("plans.id"), nullable=True)
    original_status = Column(String(20), nullable=False)

    temporary_plan_id = Column(String(36), ForeignKey("plans.id"), nullable=False)
    expires_at = Column(UTCDateTime(), nullable=False)
    reason = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(255), nullable=True, comment="Operator identifier")
    deactivated_at = Column(UTCDateTime(), nullable=True)

    __table_args__ = (
        Index("ix_temporary_upgrades_active_expiry", "is_active", "expires_at"),
    )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now

    def __repr__(self) -> str:
        return (
            f"<TemporaryUpgrade(id={self.id}, restaurant_id={self.restaurant_id}, "
            f"active={self.is_active})>"
        )
