"""Pydantic schemas for the ChooseMyPower routing API"""

from .common import ErrorDetail, ErrorResponse
from .zip_routing import (
    ZipResolution, ZipResolveResponse, BulkResolveRequest, BulkResolveItem, BulkResolveResponse,
    DeregulatedCity, DeregulatedAreasResponse,
)
from .plans import PlanSnapshot, PlanSnapshotResponse, CacheStats, CacheCleanupResult
from .analytics import (
    TopZipCode, CoverageGap, PerformanceMetrics, UpstreamPerformance,
    NavigationInsights, TimeRange, NavigationAnalyticsData, NavigationAnalyticsResponse,
    NavigationEventCreate,
)

__all__ = [
    "ErrorDetail", "ErrorResponse",
    "ZipResolution", "ZipResolveResponse", "BulkResolveRequest", "BulkResolveItem", "BulkResolveResponse",
    "DeregulatedCity", "DeregulatedAreasResponse",
    "PlanSnapshot", "PlanSnapshotResponse", "CacheStats", "CacheCleanupResult",
    "TopZipCode", "CoverageGap", "PerformanceMetrics", "UpstreamPerformance",
    "NavigationInsights", "TimeRange", "NavigationAnalyticsData", "NavigationAnalyticsResponse",
    "NavigationEventCreate",
]
