"""
Contact model - a contact person at a location.
"""

import uuid

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from marketplace_hub.utils.timeutils import utcnow, isoformat

from .base import Base


class Contact(Base):
    """Business contact information attached to a location."""

    __tablename__ = "contacts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    location_id = Column(
        Uuid,
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    title = Column(String(255))
    email = Column(String(255), index=True)
    phone = Column(String(50))
    mobile = Column(String(50))
    is_primary = Column(Boolean, default=False, nullable=False)

    deleted_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    location = relationship("Location", back_populates="contacts")

    def __repr__(self):
        return f"<Contact(id={self.id}, location={self.location_id}, email='{self.email}')>"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "location_id": str(self.location_id),
            "first_name": self.first_name,
            "last_name": self.last_name,
            "title": self.title,
            "email": self.email,
            "phone": self.phone,
            "mobile": self.mobile,
            "is_primary": self.is_primary,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
