"""Upstream pricing API client tests (httpx.MockTransport)"""

import httpx
import pytest
from prometheus_client import REGISTRY

from choosemypower.errors import UpstreamFetchError
from choosemypower.services.pricing_api import PricingAPIClient, normalize_plan

DUNS = "1039940674000"

RAW_PLAN = {
    "_id": "abc123",
    "product": {
        "name": "Power Saver 12",
        "term": 12,
        "early_termination_fee": 150,
        "percent_green": 100,
        "brand": {"name": "Gexa Energy", "logo": "https://example.com/gexa.png"},
    },
    "tdsp": {"name": "Oncor"},
    "display_pricing_500": {"avg": 0.152, "total": 76.0},
    "display_pricing_1000": {"avg": 0.123, "total": 123.0},
    "display_pricing_2000": {"avg_cents": 11.9, "total": 238.0},
}

NORMALIZED_PLAN = {
    "id": "plan-1",
    "name": "Fixed 24",
    "provider": {"name": "TXU Energy", "rating": 4, "reviewCount": 120},
    "pricing": {"rate": 13.4, "total": 134.0},
}


class Upstream:
    """Scripted upstream: each call pops the next response (or exception)"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_client(upstream: Upstream, attempts: int = 3) -> PricingAPIClient:
    return PricingAPIClient(
        base_url="https://pricing.test",
        api_key="secret",
        timeout_seconds=1.0,
        retry_attempts=attempts,
        retry_backoff=[0],
        transport=httpx.MockTransport(upstream),
    )


class TestNormalizePlan:

    def test_raw_comparepower_shape(self):
        plan = normalize_plan(RAW_PLAN, 1000)

        assert plan["id"] == "abc123"
        assert plan["provider"]["name"] == "Gexa Energy"
        assert plan["pricing"]["rate"] == pytest.approx(12.3)
        assert plan["pricing"]["rate_500kwh"] == pytest.approx(15.2)
        assert plan["pricing"]["rate_2000kwh"] == 11.9
        assert plan["pricing"]["total"] == 123.0
        assert plan["contract"]["term_months"] == 12
        assert plan["tdsp"] == "Oncor"

    def test_rate_follows_usage_tier(self):
        assert normalize_plan(RAW_PLAN, 2000)["pricing"]["rate"] == 11.9

    def test_normalized_shape_passes_through(self):
        plan = normalize_plan(NORMALIZED_PLAN, 1000)

        assert plan["provider"]["review_count"] == 120
        assert plan["pricing"]["rate"] == 13.4

    def test_plan_without_provider_dropped(self):
        assert normalize_plan({"id": "x", "pricing": {"rate": 1}}, 1000) is None
        assert normalize_plan({"_id": "x", "product": {"brand": {}}}, 1000) is None


class TestPricingAPIClient:

    @pytest.mark.asyncio
    async def test_fetch_sends_expected_request(self):
        upstream = Upstream(httpx.Response(200, json=[RAW_PLAN, NORMALIZED_PLAN]))

        plans = await make_client(upstream).fetch_plans(DUNS, {"display_usage": 1000})

        assert len(plans) == 2
        request = upstream.requests[0]
        assert request.url.path == "/api/plans/current"
        assert request.url.params["group"] == "default"
        assert request.url.params["tdsp_duns"] == DUNS
        assert request.url.params["display_usage"] == "1000"
        assert request.headers["X-API-Key"] == "secret"
        assert request.headers["User-Agent"] == "ChooseMyPower.org/1.0"

    @pytest.mark.asyncio
    async def test_extra_usage_params_forwarded(self):
        upstream = Upstream(httpx.Response(200, json=[NORMALIZED_PLAN]))

        await make_client(upstream).fetch_plans(DUNS, {"display_usage": 2000, "prepaid": True, "term": 12})

        params = upstream.requests[0].url.params
        assert params["prepaid"] == "true"
        assert params["term"] == "12"

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        upstream = Upstream(httpx.Response(503), httpx.Response(200, json=[NORMALIZED_PLAN]))
        client = make_client(upstream)

        plans = await client.fetch_plans(DUNS, {"display_usage": 1000})

        assert len(upstream.requests) == 2
        assert plans[0]["name"] == "Fixed 24"
        assert client.last_status == 200

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        upstream = Upstream(httpx.Response(404))

        with pytest.raises(UpstreamFetchError) as exc_info:
            await make_client(upstream).fetch_plans(DUNS, {"display_usage": 1000})

        assert len(upstream.requests) == 1
        assert exc_info.value.upstream_status == 404
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_timeout_exhausts_retries(self):
        upstream = Upstream(httpx.ReadTimeout("timed out"))

        with pytest.raises(UpstreamFetchError) as exc_info:
            await make_client(upstream, attempts=3).fetch_plans(DUNS, {"display_usage": 1000})

        assert len(upstream.requests) == 3
        assert "timed out" in exc_info.value.message

    @pytest.mark.parametrize("body", [{"plans": []}, [], "nope"])
    @pytest.mark.asyncio
    async def test_unusable_body_is_fetch_failure(self, body):
        upstream = Upstream(httpx.Response(200, json=body))

        with pytest.raises(UpstreamFetchError):
            await make_client(upstream).fetch_plans(DUNS, {"display_usage": 1000})

        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_all_plans_without_provider_is_fetch_failure(self):
        upstream = Upstream(httpx.Response(200, json=[{"id": "x", "pricing": {"rate": 10}}]))

        with pytest.raises(UpstreamFetchError):
            await make_client(upstream).fetch_plans(DUNS, {"display_usage": 1000})

    @pytest.mark.asyncio
    async def test_health_check(self):
        assert await make_client(Upstream(httpx.Response(200, json={"status": "ok"}))).health_check()
        assert not await make_client(Upstream(httpx.ConnectError("refused"))).health_check()

    @pytest.mark.asyncio
    async def test_malformed_plans_dropped(self):
        bad_rate = {"id": "bad", "provider": {"name": "P"}, "pricing": {"rate": "N/A"}}
        upstream = Upstream(httpx.Response(200, json=["not-an-object", bad_rate, NORMALIZED_PLAN]))

        plans = await make_client(upstream).fetch_plans(DUNS, {"display_usage": 1000})

        assert [plan["id"] for plan in plans] == ["plan-1"]

    @pytest.mark.parametrize("body", [
        [{"provider": {"name": "P"}, "pricing": {"rate": "N/A"}}],
        ["not-an-object"],
        [{"_id": "x", "product": {"brand": {"name": "B"}}, "display_pricing_1000": {"avg": "n/a"}}],
    ])
    @pytest.mark.asyncio
    async def test_only_malformed_plans_is_fetch_failure(self, body):
        upstream = Upstream(httpx.Response(200, json=body))

        with pytest.raises(UpstreamFetchError) as exc_info:
            await make_client(upstream).fetch_plans(DUNS, {"display_usage": 1000})

        assert exc_info.value.upstream_status == 200


class TestUpstreamFailureMetrics:
    """Every failed fetch increments the failure counter once"""

    @staticmethod
    def failures() -> float:
        return REGISTRY.get_sample_value("pricing_api_requests_total", {"outcome": "failure"}) or 0.0

    @pytest.mark.parametrize("response", [
        httpx.Response(200, content=b"<html>"),
        httpx.Response(200, json={"plans": []}),
        httpx.Response(200, json=[]),
        httpx.Response(200, json=[{"id": "x", "pricing": {"rate": 10}}]),
        httpx.Response(404),
    ])
    @pytest.mark.asyncio
    async def test_failure_counted(self, response):
        before = self.failures()

        with pytest.raises(UpstreamFetchError):
            await make_client(Upstream(response)).fetch_plans(DUNS, {"display_usage": 1000})

        assert self.failures() == before + 1
