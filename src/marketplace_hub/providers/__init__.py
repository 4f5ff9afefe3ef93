"""
External collaborators: OAuth token broker and business-data provider.
"""

from .base import AuthorizationGrant, BusinessDataProvider, TokenBroker, TokenGrant
from .nango_client import NangoClient, parse_expiry

__all__ = [
    "AuthorizationGrant",
    "BusinessDataProvider",
    "TokenBroker",
    "TokenGrant",
    "NangoClient",
    "parse_expiry",
]
