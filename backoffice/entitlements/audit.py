"""
Subscription event logger - append-only audit trail.

Every lifecycle transition, access denial and limit hit is written to
subscription_events. Writes are best-effort: a failure is logged (and the
event is written to the fallback audit logger) but never propagates to the
operation that produced it.

Lifecycle services call record() only after their own transaction has
committed, so a rollback here cannot undo the mutation. Access denials and
limit hits happen in the middle of the caller's request; they go through
record_detached(), which writes on a session of its own and leaves the
caller's transaction untouched.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from backoffice.models.subscription_event import SubscriptionEvent, SubscriptionEventType
from backoffice.platform.clock import Clock, get_clock

logger = logging.getLogger(__name__)

# Dedicated logger for structured audit output and write fallbacks
audit_logger = logging.getLogger("backoffice.subscription_events")


class DenialReason:
    """Which gate failed in an access check."""
    PLAN_RESTRICTION = "plan_restriction"
    PERMISSION_RESTRICTION = "permission_restriction"


@dataclass
class SubscriptionEventRecord:
    """Structured form of an event, used for fallback logging."""

    event_type: str
    restaurant_id: Optional[str]
    plan_id: Optional[str] = None
    event_data: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)


class SubscriptionEventLogger:
    """
    Writes SubscriptionEvent rows.

    Args:
        db_session: The caller's database session
        clock: Time source for created_at (defaults to the system clock)
        session_factory: Opens the sessions used by record_detached();
            defaults to a new Session on db_session's bind
    """

    def __init__(
        self,
        db_session: Session,
        clock: Optional[Clock] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.db = db_session
        self.clock = clock or get_clock()
        self._session_factory = session_factory

    def record(
        self,
        event_type: str,
        restaurant_id: Optional[str],
        plan_id: Optional[str] = None,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[SubscriptionEvent]:
        """
        Append one event on the caller's session and commit it.

        Only call this once the caller's own transaction has committed.
        Returns the row, or None if the write failed. Never raises.
        """
        return self._write(self.db, event_type, restaurant_id, plan_id, event_data or {})

    def record_detached(
        self,
        event_type: str,
        restaurant_id: Optional[str],
        plan_id: Optional[str] = None,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> Optional[SubscriptionEvent]:
        """
        Append one event on a separate session.

        The caller's session is never flushed, committed or rolled back.
        Returns the row, or None if the write failed. Never raises.
        """
        data = event_data or {}
        try:
            session = self._open_session()
        except Exception:
            self._fallback(event_type, restaurant_id, plan_id, data, self.clock.now())
            return None
        try:
            return self._write(session, event_type, restaurant_id, plan_id, data)
        finally:
            session.close()

    def _open_session(self) -> Session:
        if self._session_factory is not None:
            return self._session_factory()
        return Session(bind=self.db.get_bind(), expire_on_commit=False)

    def _write(
        self,
        session: Session,
        event_type: str,
        restaurant_id: Optional[str],
        plan_id: Optional[str],
        data: Dict[str, Any],
    ) -> Optional[SubscriptionEvent]:
        created_at = self.clock.now()
        try:
            event = SubscriptionEvent(
                restaurant_id=restaurant_id,
                plan_id=plan_id,
                event_type=event_type,
                event_data=data,
                created_at=created_at,
            )
            session.add(event)
            session.commit()

            audit_logger.info(event_type, extra={
                "restaurant_id": restaurant_id,
                "plan_id": plan_id,
                "event_type": event_type,
            })
            return event
        except Exception:
            self._rollback_quietly(session)
            self._fallback(event_type, restaurant_id, plan_id, data, created_at)
            return None

    def _fallback(self, event_type, restaurant_id, plan_id, data, created_at: datetime) -> None:
        logger.warning(
            "subscription_events.record_failed",
            exc_info=True,
            extra={"event_type": event_type, "restaurant_id": restaurant_id},
        )
        record = SubscriptionEventRecord(
            event_type=event_type,
            restaurant_id=restaurant_id,
            plan_id=plan_id,
            event_data=data,
            created_at=created_at.isoformat(),
        )
        audit_logger.warning("subscription_events.fallback %s", record.to_json())

    def _rollback_quietly(self, session: Session) -> None:
        try:
            session.rollback()
        except Exception:
            logger.error("subscription_events.rollback_failed", exc_info=True)

    def access_denied(
        self,
        restaurant_id: Optional[str],
        feature_key: str,
        reason: str,
        plan=None,
        user_id: Optional[str] = None,
    ) -> Optional[SubscriptionEvent]:
        """Record an access.denied event tagged with the failed gate."""
        data = {
            "user_id": user_id,
            "feature_key": feature_key,
            "reason": reason,
            "plan_slug": getattr(plan, "slug", None),
            "plan_name": getattr(plan, "name", None),
        }
        if restaurant_id is None:
            # No restaurant to attribute the row to; keep it in the log only.
            audit_logger.info(SubscriptionEventType.ACCESS_DENIED, extra=data)
            return None
        return self.record_detached(
            SubscriptionEventType.ACCESS_DENIED,
            restaurant_id,
            plan_id=getattr(plan, "id", None),
            event_data=data,
        )

    def limit_reached(
        self,
        restaurant_id: Optional[str],
        limit_key: str,
        current_value: int,
        limit_value: int,
        plan=None,
    ) -> Optional[SubscriptionEvent]:
        data = {
            "limit_key": limit_key,
            "current_value": current_value,
            "limit_value": limit_value,
            "plan_slug": getattr(plan, "slug", None),
            "plan_name": getattr(plan, "name", None),
        }
        if restaurant_id is None:
            audit_logger.info(SubscriptionEventType.LIMIT_REACHED, extra=data)
            return None
        return self.record_detached(
            SubscriptionEventType.LIMIT_REACHED,
            restaurant_id,
            plan_id=getattr(plan, "id", None),
            event_data=data,
        )


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Serialize an optional timestamp for event_data."""
    return value.isoformat() if value else None
