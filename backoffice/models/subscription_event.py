"""
SubscriptionEvent model for the subscription audit trail.

CRITICAL: This table is APPEND-ONLY.
Never update or delete subscription events - only insert new ones.
"""

from sqlalchemy import Column, String, JSON, ForeignKey, Index, func

from backoffice.db_base import Base
from backoffice.models.base import UTCDateTime, generate_uuid


class SubscriptionEventType:
    """Subscription event type constants."""
    # Lifecycle
    ASSIGNED = "subscription.assigned"
    TRIAL_STARTED = "subscription.trial_started"
    TEMPORARY_UPGRADE = "subscription.temporary_upgrade"
    TEMPORARY_UPGRADE_SUPERSEDED = "subscription.temporary_upgrade_superseded"
    TEMP_UPGRADE_EXPIRED = "subscription.temp_upgrade_expired"
    DOWNGRADED = "subscription.downgraded"
    UPGRADED = "subscription.upgraded"
    STATUS_CHANGED = "subscription.status_changed"
    CANCELLED = "subscription.cancelled"

    # Catalog
    TRIAL_CONFIGURED = "plan.trial_configured"

    # Authorization
    ACCESS_DENIED = "access.denied"
    LIMIT_REACHED = "limit.reached"


class SubscriptionEvent(Base):
    """
    Immutable audit record of a subscription transition or denial.

    NOTE: Does not use TimestampMixin - there is no updated_at on an
    append-only row.
    """

    __tablename__ = "subscription_events"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    restaurant_id = Column(
        String(36),
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    plan_id = Column(String(36), nullable=True)
    event_type = Column(String(100), nullable=False, index=True)
    event_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now()
    )

    __table_args__ = (
        Index("ix_subscription_events_restaurant_created", "restaurant_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionEvent(type={self.event_type}, restaurant_id={self.restaurant_id})>"
