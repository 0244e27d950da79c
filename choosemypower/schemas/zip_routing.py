"""ZIP routing Pydantic schemas"""

from typing import List, Optional
from pydantic import BaseModel, Field

from .common import ErrorDetail


class ZipResolution(BaseModel):
    """Resolved city and utility territory for a ZIP code"""
    zip_code: str = Field(..., description="5-digit ZIP code")
    city_slug: str = Field(..., description="URL-safe city identifier (e.g. dallas-tx)")
    city_name: str = Field(..., description="City display name")
    county_name: Optional[str] = Field(None, description="Texas county")
    tdsp_duns: str = Field(..., description="TDSP DUNS number used for pricing API calls")
    tdsp_territory: str = Field(..., description="TDSP display name")
    market_zone: str = Field(..., description="North, Central, Coast, South or West")
    is_deregulated: bool = Field(..., description="Whether the ZIP is in a competitive market")
    is_competitive: bool = Field(..., description="False when the caller should show a regulated-market message")
    match_method: str = Field(..., description="zip5, zip+4 or priority")
    candidate_count: int = Field(..., description="Number of mapping rows for this ZIP")
    redirect_url: str = Field(..., description="Site path for the city's plan listing")
    plan_count: Optional[int] = Field(None, description="Plans in the live cache for the TDSP (only when requested)")
    has_plans: Optional[bool] = Field(None, description="Whether any plans are cached for the TDSP (only when requested)")


class ZipResolveResponse(BaseModel):
    success: bool = Field(default=True)
    data: ZipResolution


class BulkResolveRequest(BaseModel):
    """Batch of ZIP codes to resolve"""
    zip_codes: List[str] = Field(..., min_length=1, max_length=100, description="5-digit ZIP codes")
    include_plan_count: bool = Field(default=False)


class BulkResolveItem(BaseModel):
    zip_code: str
    success: bool
    data: Optional[ZipResolution] = None
    error: Optional[ErrorDetail] = None


class BulkResolveResponse(BaseModel):
    success: bool = Field(default=True)
    total: int
    resolved: int
    results: List[BulkResolveItem]


class DeregulatedCity(BaseModel):
    """City entry in the deregulated market directory"""
    city_name: str
    city_slug: str
    market_zone: str
    tdsp_territory: str
    tdsp_duns: str
    zip_code_count: int


class DeregulatedAreasResponse(BaseModel):
    success: bool = Field(default=True)
    total_cities: int
    total_zip_codes: int
    cities: List[DeregulatedCity]
