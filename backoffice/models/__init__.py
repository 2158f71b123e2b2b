"""
Database models for plans, restaurants and the subscription audit trail.
"""

from backoffice.models.base import TimestampMixin, UTCDateTime, generate_uuid
from backoffice.models.plan import Plan, UNLIMITED
from backoffice.models.tenant import Tenant, SubscriptionStatus
from backoffice.models.temporary_upgrade import TemporaryUpgrade
from backoffice.models.subscription_event import SubscriptionEvent, SubscriptionEventType
from backoffice.models.feature_flag import FeatureFlag

__all__ = [
    "TimestampMixin",
    "UTCDateTime",
    "generate_uuid",
    "Plan",
    "UNLIMITED",
    "Tenant",
    "SubscriptionStatus",
    "TemporaryUpgrade",
    "SubscriptionEvent",
    "SubscriptionEventType",
    "FeatureFlag",
]
