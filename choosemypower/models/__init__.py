"""Database models for the ChooseMyPower routing API"""

from .zip_mapping import ZipMapping, MarketZone, DataSource
from .plan_cache import PlanCacheEntry
from .api_log import ApiLog
from .navigation_event import ZipNavigationEvent, NavigationEventType

__all__ = [
    "ZipMapping", "MarketZone", "DataSource",
    "PlanCacheEntry",
    "ApiLog",
    "ZipNavigationEvent", "NavigationEventType",
]
