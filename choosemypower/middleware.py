"""Custom middleware for the ChooseMyPower routing API"""

import time
import uuid
from typing import Callable
import structlog

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger()


class LoggingMiddleware(BaseHTTPMiddleware):
    """Structured request/response logging with a per-request run id"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        run_id = str(uuid.uuid4())
        request.state.run_id = run_id

        start_time = time.time()
        logger.info(
            "Request started",
            run_id=run_id,
            method=request.method,
            path=request.url.path,
            query_params=dict(request.query_params),
            client_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "Request failed",
                run_id=run_id,
                exception=str(exc),
                duration_ms=int((time.time() - start_time) * 1000),
                exc_info=True
            )
            raise

        logger.info(
            "Request completed",
            run_id=run_id,
            status_code=response.status_code,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        response.headers["X-Run-ID"] = run_id
        return response


class SecurityMiddleware(BaseHTTPMiddleware):
    """Security headers on every response"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response
