"""ZIP navigation analytics events"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Float, Boolean, DateTime, Text, Index, Uuid

from choosemypower.database import Base


class NavigationEventType(str, enum.Enum):
    LOOKUP_SUCCESS = "zip_lookup_success"
    LOOKUP_FAILED = "zip_lookup_failed"
    ROUTING_REDIRECT = "zip_routing_redirect"
    COVERAGE_GAP = "zip_coverage_gap"


ERROR_EVENT_TYPES = {NavigationEventType.LOOKUP_FAILED.value, NavigationEventType.COVERAGE_GAP.value}


class ZipNavigationEvent(Base):
    """A single ZIP lookup outcome reported by the site or the resolve endpoint"""

    __tablename__ = "zip_navigation_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    zip_code = Column(String(10), nullable=False)
    event_type = Column(String(32), nullable=False)
    city_slug = Column(String(100), nullable=True)
    error_code = Column(String(50), nullable=True)
    error_flag = Column(Boolean, nullable=False, default=False)
    response_time_ms = Column(Float, nullable=False, default=0.0)
    user_agent = Column(Text, nullable=True)
    referrer = Column(Text, nullable=True)
    occurred_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_nav_events_occurred_at", "occurred_at"),
        Index("idx_nav_events_type_occurred_at", "event_type", "occurred_at"),
        Index("idx_nav_events_zip_occurred_at", "zip_code", "occurred_at"),
    )

    def __repr__(self):
        return f"<ZipNavigationEvent(zip_code='{self.zip_code}', event_type='{self.event_type}')>"
