"""ZIP navigation analytics schemas.

Response fields are serialized with the camelCase names the site's
JavaScript consumes.
"""

from typing import Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

from choosemypower.models.navigation_event import NavigationEventType


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TopZipCode(_CamelModel):
    zip_code: str = Field(..., alias="zipCode")
    count: int
    avg_response_time: float = Field(..., alias="avgResponseTime")


class CoverageGap(_CamelModel):
    zip_code: str = Field(..., alias="zipCode")
    request_count: int = Field(..., alias="requestCount")
    first_requested: datetime = Field(..., alias="firstRequested")
    last_requested: datetime = Field(..., alias="lastRequested")
    priority: str


class UpstreamPerformance(_CamelModel):
    avg_response_time: float = Field(..., alias="avgResponseTime")
    p95_response_time: float = Field(..., alias="p95ResponseTime")
    p99_response_time: float = Field(..., alias="p99ResponseTime")
    error_rate: float = Field(..., alias="errorRate")
    total_requests: int = Field(..., alias="totalRequests")
    slow_queries: int = Field(..., alias="slowQueries")


class PerformanceMetrics(_CamelModel):
    average_response_time: float = Field(..., alias="averageResponseTime")
    fast_routes_count: int = Field(..., alias="fastRoutesCount")
    cache_effectiveness: float = Field(..., alias="cacheEffectiveness")
    upstream: UpstreamPerformance


class NavigationInsights(_CamelModel):
    total_events: int = Field(..., alias="totalEvents")
    event_distribution: Dict[str, int] = Field(..., alias="eventDistribution")
    error_rate: float = Field(..., alias="errorRate")
    top_zip_codes: List[TopZipCode] = Field(..., alias="topZIPCodes")
    coverage_gaps: List[CoverageGap] = Field(..., alias="coverageGaps")
    performance: Optional[PerformanceMetrics] = None


class TimeRange(_CamelModel):
    hours: int
    start: datetime
    end: datetime


class NavigationAnalyticsData(_CamelModel):
    time_range: TimeRange = Field(..., alias="timeRange")
    insights: NavigationInsights


class NavigationAnalyticsResponse(_CamelModel):
    success: bool = True
    data: NavigationAnalyticsData


class NavigationEventCreate(_CamelModel):
    """Client-reported ZIP navigation event"""
    zip_code: str = Field(..., alias="zipCode", min_length=1, max_length=10)
    event_type: str = Field(..., alias="eventType")
    response_time: float = Field(default=0.0, alias="responseTime", ge=0)
    city_resolved: Optional[str] = Field(None, alias="cityResolved", max_length=100)
    error_code: Optional[str] = Field(None, alias="errorCode", max_length=50)
    user_agent: Optional[str] = Field(None, alias="userAgent")
    referrer: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("event_type")
    @classmethod
    def validate_event_type(cls, v):
        allowed = [t.value for t in NavigationEventType]
        if v not in allowed:
            raise ValueError(f"eventType must be one of {', '.join(allowed)}")
        return v
