"""ZIP code to city / TDSP territory mapping"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Float, Boolean, DateTime, Index, UniqueConstraint, Uuid

from choosemypower.database import Base


class MarketZone(str, enum.Enum):
    """ERCOT geographic market zones"""

    NORTH = "North"
    CENTRAL = "Central"
    COAST = "Coast"
    SOUTH = "South"
    WEST = "West"


class DataSource(str, enum.Enum):
    """Provenance of a mapping row"""

    USPS = "USPS"
    TDU = "TDU"
    MANUAL = "MANUAL"
    PUCT = "PUCT"


class ZipMapping(Base):
    """ZIP code to city and utility territory mapping.

    A boundary ZIP may appear once per city slug; the resolver disambiguates
    with ``zip_plus4_pattern`` and ``priority``.
    """

    __tablename__ = "zip_mappings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    zip_code = Column(String(5), nullable=False)
    zip_plus4_pattern = Column(String(10), nullable=True)  # glob, e.g. "75201-12*"
    city_name = Column(String(100), nullable=False)
    city_slug = Column(String(100), nullable=False)
    county_name = Column(String(100), nullable=True)
    tdsp_territory = Column(String(100), nullable=False)
    tdsp_duns = Column(String(20), nullable=False)
    is_deregulated = Column(Boolean, nullable=False, default=True)
    market_zone = Column(String(10), nullable=False)  # North, Central, Coast, South, West
    priority = Column(Float, nullable=False, default=1.0)  # 1.0 = major metro, 0.3 = rural
    last_validated = Column(DateTime, nullable=True)
    data_source = Column(String(10), nullable=False, default=DataSource.MANUAL.value)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("zip_code", "city_slug", name="uq_zip_mappings_zip_city"),
        Index("idx_zip_mappings_zip_code", "zip_code"),
        Index("idx_zip_mappings_city_slug", "city_slug"),
        Index("idx_zip_mappings_tdsp_duns", "tdsp_duns"),
        Index("idx_zip_mappings_market_zone", "market_zone"),
        Index("idx_zip_mappings_is_deregulated", "is_deregulated"),
    )

    def __repr__(self):
        return f"<ZipMapping(zip_code='{self.zip_code}', city_slug='{self.city_slug}', priority={self.priority})>"
