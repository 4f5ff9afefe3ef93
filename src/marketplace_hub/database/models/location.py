"""
Location model - a business location owned by a company.
"""

import uuid

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Text, Uuid, Index
from sqlalchemy.orm import relationship

from marketplace_hub.utils.timeutils import utcnow, isoformat

from .base import Base


# Fields the provider supplies and callers may update
LOCATION_FIELDS = (
    "business_name",
    "business_type",
    "address",
    "city",
    "state",
    "zip_code",
    "country",
    "phone",
    "email",
    "website",
)


class Location(Base):
    """
    Denormalized copy of a provider location.

    ``location_token`` is a per-location credential and is never serialized.
    """

    __tablename__ = "locations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    company_id = Column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    location_id = Column(String(255), nullable=False, unique=True, index=True)
    location_token = Column(Text, nullable=False, default="")

    # Business details
    business_name = Column(String(255), nullable=False)
    business_type = Column(String(255))
    address = Column(String(500))
    city = Column(String(255))
    state = Column(String(100))
    zip_code = Column(String(20))
    country = Column(String(100))
    phone = Column(String(50))
    email = Column(String(255))
    website = Column(String(500))

    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    company = relationship("Company", back_populates="locations")
    contacts = relationship("Contact", back_populates="location")
    products = relationship("Product", back_populates="location")

    __table_args__ = (
        Index("idx_locations_company_active", "company_id", "is_active"),
    )

    def __repr__(self):
        return f"<Location(id={self.id}, location_id='{self.location_id}', company={self.company_id})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses (location token excluded)."""
        data = {
            "id": str(self.id),
            "company_id": str(self.company_id),
            "location_id": self.location_id,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        for field in LOCATION_FIELDS:
            data[field] = getattr(self, field)
        return data
