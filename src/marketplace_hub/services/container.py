"""
Service composition.

build_services() wires every component with its collaborators from a
HubConfig. Tests pass doubles for the Redis client, broker and provider.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import redis
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from marketplace_hub.cache import RateLimiter, TwoTierCache
from marketplace_hub.database.connection import (
    check_database,
    create_db_engine,
    create_session_factory,
)
from marketplace_hub.providers import BusinessDataProvider, NangoClient, TokenBroker
from marketplace_hub.services.business_service import BusinessDataService
from marketplace_hub.services.scheduler import SchedulerService
from marketplace_hub.services.token_manager import TokenLifecycleManager
from marketplace_hub.utils.config import HubConfig
from marketplace_hub.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Services:
    """Running set of services sharing one engine and cache."""
    config: HubConfig
    engine: Engine
    session_factory: sessionmaker
    cache: TwoTierCache
    rate_limiter: RateLimiter
    broker: TokenBroker
    token_manager: TokenLifecycleManager
    scheduler: SchedulerService
    business: BusinessDataService

    def start(self) -> None:
        self.scheduler.start()
        logger.info("Services started")

    def stop(self) -> None:
        """Stop the scheduler, drain background work and release connections."""
        self.scheduler.stop()
        self.business.shutdown()
        self.cache.close()
        self.engine.dispose()
        logger.info("Services stopped")

    def health(self) -> Dict[str, Any]:
        database = check_database(self.engine)
        cache = self.cache.health()
        scheduler = asdict(self.scheduler.stats())
        for field in ("next_job_time", "last_job_time"):
            if scheduler[field] is not None:
                scheduler[field] = scheduler[field].isoformat()

        return {
            "healthy": database and cache["healthy"],
            "database": database,
            "cache": cache,
            "scheduler": scheduler,
        }


def build_services(
    config: HubConfig,
    engine: Optional[Engine] = None,
    redis_client: Optional[redis.Redis] = None,
    broker: Optional[TokenBroker] = None,
    provider: Optional[BusinessDataProvider] = None,
) -> Services:
    """
    Construct all services from configuration.

    Args:
        config: Application configuration
        engine: Pre-built engine, created from config when omitted
        redis_client: Pre-built Redis client, connected from config when omitted
        broker: Token broker, a NangoClient when omitted
        provider: Business-data provider, the broker when omitted and it
            implements the provider interface

    Returns:
        Services container (not started)
    """
    if engine is None:
        engine = create_db_engine(
            config.database_url,
            pool_size=config.database_pool_size,
            echo=config.database_echo,
        )
    session_factory = create_session_factory(engine)

    cache = TwoTierCache(
        redis_url=None if redis_client is not None else config.redis_url,
        client=redis_client,
        default_ttl=config.cache_expiration_minutes * 60,
        max_connections=config.redis_max_connections,
    )
    rate_limiter = RateLimiter(
        cache,
        limit=config.rate_limit_requests,
        window_seconds=config.rate_limit_window_seconds,
    )

    if broker is None:
        broker = NangoClient(
            config.nango_server_url,
            public_key=config.nango_public_key,
            secret_key=config.nango_secret_key,
            timeout=config.nango_timeout,
        )
    if provider is None:
        if not isinstance(broker, BusinessDataProvider):
            raise TypeError("A business-data provider is required when the broker does not provide one")
        provider = broker

    token_manager = TokenLifecycleManager(
        session_factory,
        broker,
        lead_window=config.refresh_lead_window,
        safety_margin=config.safety_margin,
        retention_days=config.token_retention_days,
    )
    scheduler = SchedulerService(
        token_manager,
        timezone=config.scheduler_timezone,
        max_workers=config.scheduler_max_workers,
        shutdown_timeout=config.scheduler_shutdown_timeout,
    )
    business = BusinessDataService(
        session_factory,
        provider,
        cache,
        max_workers=config.sync_max_workers,
    )

    logger.info("Services built")
    return Services(
        config=config,
        engine=engine,
        session_factory=session_factory,
        cache=cache,
        rate_limiter=rate_limiter,
        broker=broker,
        token_manager=token_manager,
        scheduler=scheduler,
        business=business,
    )
