"""
Nango token broker client.

Talks to the hosted OAuth broker for code exchange, token refresh and the
locations listing. The broker exposes no contacts or products endpoints,
so those provider calls raise UnimplementedError.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import requests

from marketplace_hub.providers.base import (
    AuthorizationGrant,
    BusinessDataProvider,
    TokenBroker,
    TokenGrant,
)
from marketplace_hub.utils.exceptions import BrokerError, UnimplementedError
from marketplace_hub.utils.logger import get_logger
from marketplace_hub.utils.timeutils import to_naive_utc, utcnow

logger = get_logger(__name__)

# Broker request timeout in seconds
DEFAULT_TIMEOUT = 30


def parse_expiry(payload: Dict[str, Any]) -> datetime:
    """
    Read token expiry from a broker payload.

    Accepts ``expires_at`` as an RFC 3339 timestamp or ``expires_in`` as
    seconds from now.

    Raises:
        BrokerError: If neither field is usable
    """
    expires_at = payload.get("expires_at")
    if expires_at:
        try:
            parsed = datetime.fromisoformat(str(expires_at).replace("Z", "+00:00"))
            return to_naive_utc(parsed)
        except ValueError:
            raise BrokerError(f"Invalid expires_at in broker response: {expires_at!r}")

    expires_in = payload.get("expires_in")
    if expires_in is not None:
        try:
            return utcnow() + timedelta(seconds=int(expires_in))
        except (TypeError, ValueError):
            raise BrokerError(f"Invalid expires_in in broker response: {expires_in!r}")

    raise BrokerError("Broker response has no token expiry")


class NangoClient(TokenBroker, BusinessDataProvider):
    """HTTP client for the Nango OAuth broker."""

    def __init__(
        self,
        server_url: str,
        public_key: str = "",
        secret_key: str = "",
        timeout: int = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            server_url: Broker base URL
            public_key: OAuth client id registered with the broker
            secret_key: OAuth client secret
            timeout: Request timeout in seconds
            session: Pre-built requests session (tests inject a mock)
        """
        self.server_url = server_url.rstrip("/")
        self.public_key = public_key
        self.secret_key = secret_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> Any:
        url = f"{self.server_url}{path}"
        headers = {}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            response = self.session.request(
                method, url, json=payload, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Broker request {method} {path} failed: {e}")
            raise BrokerError(f"Request failed: {e}", endpoint=path) from e

        if response.status_code >= 400:
            logger.error(f"Broker request {method} {path} returned {response.status_code}")
            raise BrokerError(
                f"API request failed with status {response.status_code}",
                endpoint=path,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise BrokerError(f"Failed to decode response: {e}", endpoint=path) from e

    # TokenBroker

    def exchange_code(self, code: str) -> AuthorizationGrant:
        data = self._request("POST", "/oauth/token", {
            "code": code,
            "client_id": self.public_key,
            "client_secret": self.secret_key,
            "grant_type": "authorization_code",
        })

        company_id = data.get("company_id")
        if not company_id or not data.get("access_token"):
            raise BrokerError("Token exchange response is missing credentials", endpoint="/oauth/token")

        return AuthorizationGrant(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            expires_at=parse_expiry(data),
            company_id=company_id,
            company_name=data.get("company_name") or company_id,
        )

    def refresh(self, refresh_token: str, company_id: str) -> TokenGrant:
        data = self._request("POST", "/oauth/refresh", {
            "refresh_token": refresh_token,
            "company_id": company_id,
        })

        if not data.get("access_token"):
            raise BrokerError("Refresh response is missing access token", endpoint="/oauth/refresh")

        logger.info(f"Broker refreshed credentials for company {company_id}")
        return TokenGrant(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or refresh_token,
            expires_at=parse_expiry(data),
        )

    # BusinessDataProvider

    def list_locations(self, access_token: str, company_id: str) -> List[Dict[str, Any]]:
        data = self._request(
            "GET", f"/api/v2/companies/{company_id}/locations", access_token=access_token
        )
        if not isinstance(data, list):
            raise BrokerError(
                "Locations response is not a list",
                endpoint=f"/api/v2/companies/{company_id}/locations",
            )
        logger.info(f"Fetched {len(data)} locations for company {company_id}")
        return data

    def list_contacts(self, location_token: str, location_id: str) -> List[Dict[str, Any]]:
        raise UnimplementedError("list_contacts")

    def list_products(self, location_token: str, location_id: str) -> List[Dict[str, Any]]:
        raise UnimplementedError("list_products")
