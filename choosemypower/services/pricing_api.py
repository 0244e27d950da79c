"""Client for the upstream electricity pricing API (ComparePower)"""

import asyncio
import time
from typing import Any, Dict, List, Optional

import httpx
import structlog
from prometheus_client import Counter, Histogram

from choosemypower.config import settings
from choosemypower.errors import UpstreamFetchError

logger = structlog.get_logger()

PLANS_PATH = "/api/plans/current"
USAGE_TIERS = (500, 1000, 2000)

UPSTREAM_REQUESTS = Counter(
    "pricing_api_requests_total",
    "Upstream pricing API requests",
    ["outcome"]
)
UPSTREAM_DURATION = Histogram(
    "pricing_api_request_duration_seconds",
    "Upstream pricing API request duration"
)


def _rate_cents(pricing: Optional[Dict[str, Any]]) -> float:
    """Rate in cents/kWh from a display_pricing block (avg is dollars/kWh)"""
    if not pricing:
        return 0.0
    if pricing.get("avg_cents"):
        return float(pricing["avg_cents"])
    return round(float(pricing.get("avg") or 0) * 100, 4)


def normalize_plan(raw: Dict[str, Any], display_usage: int) -> Optional[Dict[str, Any]]:
    """
    Convert one upstream plan object into the cached plan shape.

    Accepts the raw ComparePower shape (``_id``/``product``/``display_pricing_*``)
    or an already-normalized plan (``id``/``name``/``provider``/``pricing``).
    Returns None for plans without a provider name.
    """
    if "product" in raw:
        product = raw.get("product") or {}
        brand = product.get("brand") or {}
        if not brand.get("name"):
            return None

        pricing: Dict[str, Any] = {}
        for tier in USAGE_TIERS:
            block = raw.get(f"display_pricing_{tier}") or {}
            pricing[f"rate_{tier}kwh"] = _rate_cents(block)
            pricing[f"total_{tier}kwh"] = float(block.get("total") or 0)

        tier = display_usage if display_usage in USAGE_TIERS else 1000
        pricing["rate"] = pricing[f"rate_{tier}kwh"]
        pricing["total"] = pricing[f"total_{tier}kwh"]

        return {
            "id": raw.get("_id"),
            "name": product.get("name"),
            "provider": {
                "name": brand["name"],
                "logo": brand.get("logo"),
                "rating": 0,
                "review_count": 0,
            },
            "pricing": pricing,
            "contract": {
                "term_months": product.get("term"),
                "early_termination_fee": product.get("early_termination_fee") or 0,
            },
            "green_percent": product.get("percent_green") or 0,
            "tdsp": (raw.get("tdsp") or {}).get("name"),
        }

    provider = raw.get("provider") or {}
    if not provider.get("name"):
        return None
    pricing = dict(raw.get("pricing") or {})
    pricing["rate"] = float(pricing.get("rate") or pricing.get("rate_per_kwh") or 0)
    pricing["total"] = float(pricing.get("total") or 0)
    return {
        "id": raw.get("id"),
        "name": raw.get("name"),
        "provider": {
            "name": provider["name"],
            "logo": provider.get("logo"),
            "rating": provider.get("rating", 0),
            "review_count": provider.get("reviewCount", provider.get("review_count", 0)),
        },
        "pricing": pricing,
    }


class PricingAPIClient:
    """Fetches current plans for a TDSP and usage tier"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff: Optional[List[float]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.pricing_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.pricing_api_key
        self.timeout_seconds = timeout_seconds or settings.pricing_api_timeout_seconds
        self.retry_attempts = max(1, retry_attempts or settings.pricing_api_retry_attempts)
        self.retry_backoff = retry_backoff if retry_backoff is not None else settings.get_retry_backoff()
        self.transport = transport
        self.last_status: Optional[int] = None

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": "ChooseMyPower.org/1.0",
        }
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout_seconds,
            transport=self.transport,
        )

    async def fetch_plans(self, tdsp_duns: str, usage_params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Fetch and normalize plans.

        Raises:
            UpstreamFetchError: non-2xx response, timeout, transport failure,
                non-array body, or no usable plans
        """
        display_usage = int(usage_params.get("display_usage") or settings.default_display_usage)
        query = {"group": "default", "tdsp_duns": tdsp_duns, "display_usage": str(display_usage)}
        for key, value in usage_params.items():
            if key not in query and value is not None:
                query[key] = str(value).lower() if isinstance(value, bool) else str(value)

        data = await self._get_with_retry(PLANS_PATH, query)

        plans = []
        for raw in data:
            if not isinstance(raw, dict):
                continue
            try:
                plan = normalize_plan(raw, display_usage)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(
                    "Dropping malformed upstream plan",
                    tdsp_duns=tdsp_duns,
                    plan_id=raw.get("id") or raw.get("_id"),
                    error=str(e),
                )
                continue
            if plan:
                plans.append(plan)

        skipped = len(data) - len(plans)
        if skipped:
            logger.warning("Skipped unusable upstream plans", tdsp_duns=tdsp_duns, skipped=skipped)
        if not plans:
            UPSTREAM_REQUESTS.labels(outcome="failure").inc()
            raise UpstreamFetchError(
                f"Pricing API returned no usable plans for TDSP {tdsp_duns}",
                upstream_status=self.last_status,
            )

        UPSTREAM_REQUESTS.labels(outcome="success").inc()
        return plans

    async def _get_with_retry(self, path: str, query: Dict[str, str]) -> List[Dict[str, Any]]:
        last_error: Optional[UpstreamFetchError] = None

        async with self._client() as client:
            for attempt in range(1, self.retry_attempts + 1):
                start_time = time.time()
                try:
                    response = await client.get(path, params=query)
                except httpx.TimeoutException as e:
                    last_error = UpstreamFetchError(f"Pricing API timed out after {self.timeout_seconds}s")
                    self.last_status = None
                    logger.warning("Pricing API timeout", attempt=attempt, error=str(e))
                except httpx.HTTPError as e:
                    last_error = UpstreamFetchError(f"Pricing API unreachable: {e}")
                    self.last_status = None
                    logger.warning("Pricing API transport error", attempt=attempt, error=str(e))
                else:
                    UPSTREAM_DURATION.observe(time.time() - start_time)
                    self.last_status = response.status_code
                    if response.is_success:
                        try:
                            return self._parse_body(response)
                        except UpstreamFetchError:
                            UPSTREAM_REQUESTS.labels(outcome="failure").inc()
                            raise

                    last_error = UpstreamFetchError(
                        f"Pricing API returned HTTP {response.status_code}",
                        upstream_status=response.status_code,
                    )
                    logger.warning("Pricing API error response", attempt=attempt, status_code=response.status_code)
                    # Client errors will not improve on retry
                    if response.status_code < 500:
                        break

                if attempt < self.retry_attempts:
                    delay = self._backoff(attempt)
                    if delay:
                        await asyncio.sleep(delay)

        UPSTREAM_REQUESTS.labels(outcome="failure").inc()
        raise last_error

    def _backoff(self, attempt: int) -> float:
        if not self.retry_backoff:
            return 0.0
        return self.retry_backoff[min(attempt - 1, len(self.retry_backoff) - 1)]

    def _parse_body(self, response: httpx.Response) -> List[Dict[str, Any]]:
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamFetchError("Pricing API returned invalid JSON", upstream_status=response.status_code) from e
        if not isinstance(data, list):
            raise UpstreamFetchError(
                "Invalid pricing API response format - expected array",
                upstream_status=response.status_code,
            )
        if not data:
            raise UpstreamFetchError("Pricing API returned an empty plan list", upstream_status=response.status_code)
        return data

    async def health_check(self) -> bool:
        """True when the pricing API health endpoint answers 2xx"""
        try:
            async with self._client() as client:
                response = await client.get("/health")
            return response.is_success
        except httpx.HTTPError as e:
            logger.warning("Pricing API health check failed", error=str(e))
            return False


def get_pricing_client() -> PricingAPIClient:
    """Dependency to get the upstream pricing client"""
    return PricingAPIClient()
