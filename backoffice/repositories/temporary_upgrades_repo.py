"""
Temporary Upgrades Repository.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from backoffice.models.temporary_upgrade import TemporaryUpgrade

logger = logging.getLogger(__name__)


class TemporaryUpgradesRepository:
    """Repository for time-boxed plan overlays."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_by_id(self, overlay_id: str) -> Optional[TemporaryUpgrade]:
        return self.db.query(TemporaryUpgrade).filter(TemporaryUpgrade.id == overlay_id).first()

    def get_for_update(self, overlay_id: str) -> Optional[TemporaryUpgrade]:
        return (
            self.db.query(TemporaryUpgrade)
            .filter(TemporaryUpgrade.id == overlay_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_active_for_tenant(
        self,
        tenant_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[TemporaryUpgrade]:
        """
        The restaurant's active overlay, latest first.

        With now given, an overlay already past expires_at (awaiting the
        sweeper) is not returned.
        """
        query = self.db.query(TemporaryUpgrade).filter(
            TemporaryUpgrade.restaurant_id == tenant_id,
            TemporaryUpgrade.is_active == True,  # noqa: E712
        )
        if now is not None:
            query = query.filter(TemporaryUpgrade.expires_at > now)
        return query.order_by(TemporaryUpgrade.created_at.desc()).first()

    def list(
        self,
        tenant_id: Optional[str] = None,
        active_only: bool = False,
        limit: int = 100,
    ) -> List[TemporaryUpgrade]:
        query = self.db.query(TemporaryUpgrade)
        if tenant_id:
            query = query.filter(TemporaryUpgrade.restaurant_id == tenant_id)
        if active_only:
            query = query.filter(TemporaryUpgrade.is_active == True)  # noqa: E712
        return query.order_by(TemporaryUpgrade.created_at.desc()).limit(limit).all()

    def find_due(self, now: datetime) -> List[str]:
        """Ids of active overlays past expires_at."""
        rows = (
            self.db.query(TemporaryUpgrade.id)
            .filter(
                TemporaryUpgrade.is_active == True,  # noqa: E712
                TemporaryUpgrade.expires_at < now,
            )
            .order_by(TemporaryUpgrade.expires_at.asc())
            .all()
        )
        return [row[0] for row in rows]

    def add(self, overlay: TemporaryUpgrade) -> TemporaryUpgrade:
        self.db.add(overlay)
        self.db.flush()
        return overlay
