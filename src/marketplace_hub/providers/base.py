"""
Interfaces for the external token broker and business-data provider.

The token lifecycle manager only needs a TokenBroker; the business data
service only needs a BusinessDataProvider. The Nango client implements
both, tests substitute doubles.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Dict, Any


@dataclass
class TokenGrant:
    """Credentials returned by a refresh call."""
    access_token: str
    refresh_token: str
    expires_at: datetime  # naive UTC


@dataclass
class AuthorizationGrant(TokenGrant):
    """Credentials plus tenant identity returned by a code exchange."""
    company_id: str = ""
    company_name: str = ""


class TokenBroker(ABC):
    """OAuth token vault that holds and refreshes tenant credentials."""

    @abstractmethod
    def exchange_code(self, code: str) -> AuthorizationGrant:
        """Exchange an authorization code for credentials and tenant identity."""
        pass

    @abstractmethod
    def refresh(self, refresh_token: str, company_id: str) -> TokenGrant:
        """Refresh a tenant's credentials."""
        pass


class BusinessDataProvider(ABC):
    """
    Source of business data for an authorized tenant.

    Each method returns raw provider records (dicts keyed like the store's
    columns); the business data service maps and upserts them.
    """

    @abstractmethod
    def list_locations(self, access_token: str, company_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_contacts(self, location_token: str, location_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_products(self, location_token: str, location_id: str) -> List[Dict[str, Any]]:
        pass
