"""
Core services: token lifecycle, scheduling and business data.
"""

from .token_manager import TokenLifecycleManager, TokenExpiryInfo, RefreshBatchResult
from .scheduler import SchedulerService, SchedulerStats, parse_cron
from .business_service import BusinessDataService
from .container import Services, build_services

__all__ = [
    "TokenLifecycleManager",
    "TokenExpiryInfo",
    "RefreshBatchResult",
    "SchedulerService",
    "SchedulerStats",
    "parse_cron",
    "BusinessDataService",
    "Services",
    "build_services",
]
