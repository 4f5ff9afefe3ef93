"""
Company model - an OAuth-authorized tenant of the marketplace.
"""

import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Text, Uuid, Index
from sqlalchemy.orm import relationship

from marketplace_hub.utils.timeutils import utcnow, isoformat

from .base import Base


class Company(Base):
    """
    Tenant authorized against the external provider through the token broker.

    Holds the broker credentials; ``to_dict`` never exposes them.
    """

    __tablename__ = "companies"

    # Primary Key
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # External identity
    company_id = Column(String(255), nullable=False, unique=True, index=True)
    company_name = Column(String(255), nullable=False)

    # Credentials
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_expiry = Column(DateTime, nullable=False)

    # Status
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True, index=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    locations = relationship("Location", back_populates="company", lazy="select")
    token_refreshes = relationship(
        "TokenRefresh", back_populates="company", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_companies_expiry_active", "token_expiry", "is_active"),
    )

    def __repr__(self):
        return f"<Company(id={self.id}, company_id='{self.company_id}', active={self.is_active})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses (credentials excluded)."""
        return {
            "id": str(self.id),
            "company_id": self.company_id,
            "company_name": self.company_name,
            "token_expiry": isoformat(self.token_expiry),
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
