"""
SQLAlchemy database models for Marketplace Hub.

Models:
- Company: OAuth-authorized tenant with broker credentials
- Location: Business location owned by a company
- Contact: Contact person at a location
- Product: Product or service offered at a location
- TokenRefresh: Credential refresh history and status per company
"""

from .base import Base
from .company import Company
from .location import Location
from .contact import Contact
from .product import Product
from .token_refresh import TokenRefresh, RefreshStatus

__all__ = [
    "Base",
    "Company",
    "Location",
    "Contact",
    "Product",
    "TokenRefresh",
    "RefreshStatus",
]
