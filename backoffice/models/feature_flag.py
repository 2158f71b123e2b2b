"""
FeatureFlag model - catalog of known capability keys.

Used to enumerate the features a plan or role can reach. The matcher
itself never reads this table.
"""

from sqlalchemy import Column, String, Text, Boolean

from backoffice.db_base import Base
from backoffice.models.base import TimestampMixin, generate_uuid


class FeatureFlag(Base, TimestampMixin):
    """A capability exposed by the back-office UI."""

    __tablename__ = "feature_flags"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    key = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, index=True)
    requires_permission = Column(
        String(100),
        nullable=True,
        comment="Permission key a role needs to use this feature"
    )
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<FeatureFlag(key={self.key})>"
