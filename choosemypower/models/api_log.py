"""Append-only log of upstream API calls and plan cache lookups"""

import uuid
from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, Text, Index, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from choosemypower.database import Base


class ApiLog(Base):
    """One upstream call or cache lookup"""

    __tablename__ = "api_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    endpoint = Column(String(255), nullable=False)
    params = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)
    response_status = Column(Integer, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_api_logs_monitoring", "endpoint", "created_at"),
        Index("idx_api_logs_created_at", "created_at"),
    )
