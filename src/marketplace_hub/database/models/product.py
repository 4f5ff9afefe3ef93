"""
Product model for products and services offered at a location.
"""

from uuid import uuid4

from sqlalchemy import Column, String, Float, DateTime, ForeignKey, Boolean, Text, Uuid, Index
from sqlalchemy.orm import relationship

from marketplace_hub.utils.timeutils import utcnow, isoformat

from .base import Base


class Product(Base):
    """
    Product or service listed by a location.

    Synced from the provider or created through the API; ``sku`` is the
    natural key used when upserting provider data.
    """

    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid4)

    location_id = Column(
        Uuid,
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name = Column(String(500), nullable=False)
    description = Column(Text)
    category = Column(String(255))
    price = Column(Float, default=0.0)
    currency = Column(String(3), default="USD", nullable=False)
    sku = Column(String(255))

    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    location = relationship("Location", back_populates="products")

    __table_args__ = (
        Index("idx_products_location_sku", "location_id", "sku"),
        Index("idx_products_location_active", "location_id", "is_active"),
    )

    def __repr__(self):
        return f"<Product(id={self.id}, location={self.location_id}, sku='{self.sku}', price={self.price})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "location_id": str(self.location_id),
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price": self.price,
            "currency": self.currency,
            "sku": self.sku,
            "is_active": self.is_active,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
