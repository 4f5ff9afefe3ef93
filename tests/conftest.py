"""
Test configuration and fixtures for Marketplace Hub
"""
import fnmatch
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import redis

from marketplace_hub.cache import TwoTierCache
from marketplace_hub.database.connection import (
    create_db_engine,
    create_session_factory,
    init_db,
    session_scope,
)
from marketplace_hub.database.models import Company, TokenRefresh
from marketplace_hub.providers import BusinessDataProvider, TokenBroker, TokenGrant
from marketplace_hub.services import BusinessDataService, TokenLifecycleManager
from marketplace_hub.utils.timeutils import utcnow


# =============================================================================
# Test Database Setup
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite engine with all tables"""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return create_session_factory(engine)


# =============================================================================
# Test Redis Setup
# =============================================================================

class FakeRedis:
    """
    In-memory stand-in for a decode_responses=True redis.Redis client.

    Set ``available = False`` to make every call raise ConnectionError.
    """

    def __init__(self):
        self.available = True
        self.data = {}
        self.expiry = {}

    def _check(self):
        if not self.available:
            raise redis.ConnectionError("Connection refused")

    def _purge(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.data.pop(key, None)
            self.expiry.pop(key, None)

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        self._purge(key)
        return self.data.get(key)

    def set(self, key, value):
        self._check()
        self.data[key] = str(value)
        self.expiry.pop(key, None)
        return True

    def setex(self, key, seconds, value):
        self.set(key, value)
        self.expiry[key] = time.monotonic() + seconds
        return True

    def delete(self, *keys):
        self._check()
        deleted = 0
        for key in keys:
            self._purge(key)
            if self.data.pop(key, None) is not None:
                deleted += 1
            self.expiry.pop(key, None)
        return deleted

    def keys(self, pattern="*"):
        self._check()
        for key in list(self.data):
            self._purge(key)
        return [key for key in self.data if fnmatch.fnmatchcase(key, pattern)]

    def exists(self, key):
        self._check()
        self._purge(key)
        return 1 if key in self.data else 0

    def incrby(self, key, amount=1):
        self._check()
        self._purge(key)
        value = int(self.data.get(key, 0)) + amount
        self.data[key] = str(value)
        return value

    def expire(self, key, seconds):
        self._check()
        if key not in self.data:
            return False
        self.expiry[key] = time.monotonic() + seconds
        return True

    def ttl(self, key):
        self._check()
        self._purge(key)
        if key not in self.data:
            return -2
        if key not in self.expiry:
            return -1
        return int(round(self.expiry[key] - time.monotonic()))

    def flushdb(self):
        self._check()
        self.data.clear()
        self.expiry.clear()
        return True

    def info(self, section=None):
        self._check()
        return {"used_memory_human": "1.00M"}

    def close(self):
        pass


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return TwoTierCache(client=fake_redis, default_ttl=3600)


# =============================================================================
# External Collaborators
# =============================================================================

@pytest.fixture
def broker():
    """Token broker whose refresh grants a token valid for one hour"""
    broker = MagicMock(spec=TokenBroker)
    broker.refresh.side_effect = lambda refresh_token, company_id: TokenGrant(
        access_token=f"access-{company_id}-new",
        refresh_token=f"refresh-{company_id}-new",
        expires_at=utcnow() + timedelta(seconds=3600),
    )
    return broker


@pytest.fixture
def provider():
    provider = MagicMock(spec=BusinessDataProvider)
    provider.list_locations.return_value = []
    provider.list_contacts.return_value = []
    provider.list_products.return_value = []
    return provider


# =============================================================================
# Services
# =============================================================================

@pytest.fixture
def token_manager(session_factory, broker):
    return TokenLifecycleManager(session_factory, broker)


@pytest.fixture
def business_service(session_factory, provider, cache):
    # One worker: the in-memory database shares a single connection
    service = BusinessDataService(session_factory, provider, cache, max_workers=1)
    yield service
    service.shutdown()


# =============================================================================
# Seed Data
# =============================================================================

@pytest.fixture
def make_company(session_factory):
    """
    Factory inserting a company with a refresh record.

    Args:
        company_id: External company id
        expires_in: Time until token expiry (negative for expired)
        status: Refresh record status, or None for no record
        next_refresh: Defaults to expiry minus 24 hours
        updated_at: Refresh record update time
    """
    def _make(
        company_id,
        expires_in=timedelta(days=7),
        status="active",
        next_refresh=None,
        updated_at=None,
        refresh_count=0,
        is_active=True,
    ):
        expiry = utcnow() + expires_in
        with session_scope(session_factory) as db:
            company = Company(
                company_id=company_id,
                company_name=f"Company {company_id}",
                access_token=f"access-{company_id}",
                refresh_token=f"refresh-{company_id}",
                token_expiry=expiry,
                is_active=is_active,
            )
            db.add(company)
            db.flush()

            if status is not None:
                record = TokenRefresh(
                    company_id=company.id,
                    next_refresh=next_refresh or expiry - timedelta(hours=24),
                    refresh_count=refresh_count,
                    status=status,
                    error_message="previous failure" if status == "failed" else None,
                )
                if updated_at is not None:
                    record.created_at = updated_at
                    record.updated_at = updated_at
                db.add(record)
        return company_id

    return _make


@pytest.fixture
def get_record(session_factory):
    """Load the refresh record of a company by external id"""
    def _get(company_id):
        with session_scope(session_factory) as db:
            return (
                db.query(TokenRefresh)
                .join(Company, TokenRefresh.company_id == Company.id)
                .filter(Company.company_id == company_id)
                .one()
            )

    return _get


@pytest.fixture
def get_company(session_factory):
    def _get(company_id):
        with session_scope(session_factory) as db:
            return db.query(Company).filter(Company.company_id == company_id).one()

    return _get
