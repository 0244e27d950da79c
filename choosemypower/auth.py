"""Authentication utilities"""

from typing import Optional
from fastapi import HTTPException, Header
from choosemypower.config import settings


async def verify_api_key(x_api_key: Optional[str] = Header(None)) -> str:
    """Verify API key from header (ops endpoints only; public routes stay open)"""
    if not x_api_key:
        raise HTTPException(
            status_code=401,
            detail="API key required"
        )

    if x_api_key not in settings.get_api_keys():
        raise HTTPException(
            status_code=401,
            detail="Invalid API key"
        )

    return x_api_key
