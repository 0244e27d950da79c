"""Health check endpoints"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from choosemypower.database import get_db
from choosemypower.services.pricing_api import PricingAPIClient, get_pricing_client

router = APIRouter()


@router.get("/healthz")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "choosemypower-api"}


@router.get("/readyz")
async def readiness_check(
    db: Session = Depends(get_db),
    client: PricingAPIClient = Depends(get_pricing_client),
):
    """Readiness check with dependencies"""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise HTTPException(
            status_code=503,
            detail=f"Service not ready: {str(e)}"
        )

    # Stale cache rows can still be served while the pricing API is down
    pricing_ok = await client.health_check()

    return {
        "status": "ready",
        "service": "choosemypower-api",
        "dependencies": {
            "database": "healthy",
            "pricing_api": "healthy" if pricing_ok else "degraded"
        }
    }
