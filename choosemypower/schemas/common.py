"""Common Pydantic schemas"""

from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Structured error body"""
    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


class ErrorResponse(BaseModel):
    """Error response envelope"""
    success: bool = Field(default=False, description="Always false for errors")
    error: ErrorDetail = Field(..., description="Error information")
