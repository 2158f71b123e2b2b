"""
Subscription Events Repository - read side of the append-only audit trail.

Inserts go through SubscriptionEventLogger; this repository never updates
or deletes rows.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from backoffice.models.subscription_event import SubscriptionEvent


class SubscriptionEventsRepository:

    def __init__(self, db_session: Session):
        self.db = db_session

    def list_recent(
        self,
        restaurant_id: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[SubscriptionEvent]:
        query = self.db.query(SubscriptionEvent)
        if restaurant_id:
            query = query.filter(SubscriptionEvent.restaurant_id == restaurant_id)
        if event_type:
            query = query.filter(SubscriptionEvent.event_type == event_type)
        return query.order_by(SubscriptionEvent.created_at.desc()).limit(limit).all()

    def count(
        self,
        restaurant_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> int:
        query = self.db.query(SubscriptionEvent)
        if restaurant_id:
            query = query.filter(SubscriptionEvent.restaurant_id == restaurant_id)
        if event_type:
            query = query.filter(SubscriptionEvent.event_type == event_type)
        return query.count()
