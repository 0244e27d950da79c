"""Plan cache model for upstream pricing API snapshots"""

import uuid
from datetime import datetime

from sqlalchemy import Column, String, Integer, Float, DateTime, Index, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from choosemypower.database import Base


class PlanCacheEntry(Base):
    """Snapshot of plans for one canonical query (TDSP + usage parameters)"""

    __tablename__ = "plan_cache"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    cache_key = Column(String(500), nullable=False, unique=True)
    tdsp_duns = Column(String(20), nullable=False)
    plans_data = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    plan_count = Column(Integer, nullable=False)
    lowest_rate = Column(Float, nullable=False)  # cents per kWh at the requested usage tier
    cached_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_plan_cache_expires", "expires_at"),
        Index("idx_plan_cache_tdsp", "tdsp_duns"),
    )

    def __repr__(self):
        return f"<PlanCacheEntry(cache_key='{self.cache_key}', plan_count={self.plan_count}, expires_at={self.expires_at})>"
