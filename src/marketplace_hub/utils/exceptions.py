"""
Custom exceptions for Marketplace Hub.

Every error the core raises derives from MarketplaceHubError so the API
layer can translate them into responses without catching bare Exception.
"""

from typing import Optional, Dict, Any


class MarketplaceHubError(Exception):
    """Base exception for all Marketplace Hub errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception with message and optional details.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(MarketplaceHubError):
    """Raised when configuration is invalid or missing."""
    pass


class ValidationError(MarketplaceHubError):
    """Raised when input to a create/update call is malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else None
        super().__init__(message, details)
        self.field = field


class NotFoundError(MarketplaceHubError):
    """Raised when a tenant, location, contact or product does not exist."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} not found: {identifier}",
            {"resource": resource, "identifier": str(identifier)},
        )
        self.resource = resource
        self.identifier = identifier


class TokenNotDueError(MarketplaceHubError):
    """Raised when an on-demand refresh is requested outside the lead window."""

    def __init__(self, company_id: str, seconds_remaining: float):
        super().__init__(
            f"Token for company {company_id} does not need refreshing yet",
            {"company_id": company_id, "seconds_remaining": int(seconds_remaining)},
        )
        self.company_id = company_id
        self.seconds_remaining = seconds_remaining


class TokenExpiredError(MarketplaceHubError):
    """Raised when refreshing credentials that were marked expired."""

    def __init__(self, company_id: str):
        super().__init__(
            f"Token for company {company_id} is expired; re-authorization required",
            {"company_id": company_id},
        )
        self.company_id = company_id


class BrokerError(MarketplaceHubError):
    """Raised when a call to the OAuth token broker fails."""

    def __init__(self, message: str, endpoint: Optional[str] = None,
                 status_code: Optional[int] = None):
        details = {}
        if endpoint:
            details["endpoint"] = endpoint
        if status_code:
            details["status_code"] = status_code
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class CacheUnavailableError(MarketplaceHubError):
    """Raised by remote-only cache operations when Redis is not reachable."""

    def __init__(self, operation: str):
        super().__init__(
            f"Redis not available for {operation}",
            {"operation": operation},
        )
        self.operation = operation


class UnimplementedError(MarketplaceHubError):
    """Raised by provider operations that have no upstream endpoint."""

    def __init__(self, operation: str):
        super().__init__(f"{operation} is not implemented", {"operation": operation})
        self.operation = operation


class SchedulingError(MarketplaceHubError):
    """Raised when a job cannot be registered or the scheduler misbehaves."""
    pass
