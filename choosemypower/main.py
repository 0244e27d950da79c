"""Main FastAPI application for the ChooseMyPower routing API"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, HTTPException, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response as StarletteResponse

from choosemypower.config import settings
from choosemypower.database import engine, Base
from choosemypower.errors import ChooseMyPowerError
from choosemypower.log_config import configure_logging
from choosemypower.middleware import LoggingMiddleware, SecurityMiddleware
from choosemypower.ratelimit import limiter
from choosemypower.routers import analytics, health, plans, zip_routing
from choosemypower.auth import verify_api_key
import choosemypower.models  # noqa: F401  registers tables on Base.metadata

# Configure structured logging
configure_logging()

logger = structlog.get_logger()

# Prometheus metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code']
)
REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration',
    ['method', 'endpoint']
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting ChooseMyPower routing API", version=settings.app_version)

    Base.metadata.create_all(bind=engine)

    logger.info("ChooseMyPower routing API started successfully")

    yield

    logger.info("Shutting down ChooseMyPower routing API")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="ZIP-to-city routing, plan cache and ZIP navigation analytics for ChooseMyPower.org",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(LoggingMiddleware)
app.add_middleware(SecurityMiddleware)

# Include routers
app.include_router(zip_routing.router, prefix="/api/zip", tags=["zip-routing"])
app.include_router(plans.router, prefix="/api/plans", tags=["plans"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["analytics"])
app.include_router(health.router, prefix="", tags=["health"])


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Middleware to collect Prometheus metrics"""
    start_time = time.time()

    response = await call_next(request)

    # Label by route template so path parameters don't explode cardinality
    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    REQUEST_DURATION.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(time.time() - start_time)

    REQUEST_COUNT.labels(
        method=request.method,
        endpoint=endpoint,
        status_code=response.status_code
    ).inc()

    return response


@app.get("/metrics")
async def metrics(api_key: str = Depends(verify_api_key)):
    """Prometheus metrics endpoint"""
    return StarletteResponse(
        generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@app.exception_handler(ChooseMyPowerError)
async def domain_exception_handler(request: Request, exc: ChooseMyPowerError):
    """Render routing, cache and analytics errors as {success: false, error: {...}}"""
    run_id = getattr(request.state, 'run_id', str(uuid.uuid4()))

    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request rejected",
        run_id=run_id,
        status_code=exc.status_code,
        code=exc.code,
        detail=exc.message,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Query/body validation failures use the same error envelope as domain errors"""
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": {"code": "INVALID_PARAMETER", "message": "Invalid request parameters", "details": errors},
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Global HTTP exception handler"""
    run_id = getattr(request.state, 'run_id', str(uuid.uuid4()))

    logger.error(
        "HTTP exception",
        run_id=run_id,
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {"code": f"HTTP_{exc.status_code}", "message": exc.detail},
            "trace_id": run_id
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    run_id = getattr(request.state, 'run_id', str(uuid.uuid4()))

    logger.error(
        "Unhandled exception",
        run_id=run_id,
        exception=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"},
            "trace_id": run_id
        }
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "choosemypower.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
