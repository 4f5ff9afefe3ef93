"""
TokenRefresh model - credential refresh tracking per company.
"""

import enum
import uuid

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import relationship

from marketplace_hub.utils.timeutils import utcnow, isoformat

from .base import Base


class RefreshStatus(str, enum.Enum):
    """Persisted refresh states. Failed and expired are terminal for scheduling."""
    ACTIVE = "active"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_STATUSES = (RefreshStatus.FAILED.value, RefreshStatus.EXPIRED.value)


class TokenRefresh(Base):
    """
    Refresh record for a company's broker credentials.

    ``next_refresh`` is the token expiry minus the refresh lead window; the
    scheduled job picks up active records whose ``next_refresh`` has passed.
    """

    __tablename__ = "token_refreshes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    company_id = Column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    last_refresh = Column(DateTime, nullable=True)
    next_refresh = Column(DateTime, nullable=False)
    refresh_count = Column(Integer, default=0, nullable=False)
    status = Column(String(20), default=RefreshStatus.ACTIVE.value, nullable=False)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    company = relationship("Company", back_populates="token_refreshes")

    __table_args__ = (
        Index("ix_token_refreshes_due", "status", "next_refresh"),
        Index("ix_token_refreshes_cleanup", "status", "updated_at"),
    )

    def __repr__(self):
        return (
            f"<TokenRefresh(id={self.id}, company={self.company_id}, "
            f"status='{self.status}', count={self.refresh_count})>"
        )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "company_id": str(self.company_id),
            "last_refresh": isoformat(self.last_refresh),
            "next_refresh": isoformat(self.next_refresh),
            "refresh_count": self.refresh_count,
            "status": self.status,
            "error_message": self.error_message,
            "updated_at": isoformat(self.updated_at),
        }
