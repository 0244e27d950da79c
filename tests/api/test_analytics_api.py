"""ZIP navigation analytics endpoint tests"""

from unittest.mock import patch

import pytest

from choosemypower.services.analytics import AnalyticsService

URL = "/api/analytics/zip-navigation"


class TestNavigationInsights:

    def test_default_window(self, client):
        client.post(URL, json={"zipCode": "75201", "eventType": "zip_lookup_success", "responseTime": 42})

        response = client.get(URL)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["timeRange"]["hours"] == 24
        insights = body["data"]["insights"]
        assert insights["totalEvents"] == 1
        assert insights["topZIPCodes"][0] == {"zipCode": "75201", "count": 1, "avgResponseTime": 42.0}
        assert insights["performance"]["fastRoutesCount"] == 1

    def test_performance_disabled(self, client):
        response = client.get(URL, params={"hours": "6", "performance": "false"})

        assert response.status_code == 200
        assert response.json()["data"]["insights"]["performance"] is None

    @pytest.mark.parametrize("hours", ["0", "169", "abc", "-1", "2.5"])
    def test_invalid_hours_returns_400(self, client, hours):
        response = client.get(URL, params={"hours": hours})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "INVALID_PARAMETER"

    def test_unexpected_failure_returns_analytics_error(self, client):
        with patch.object(AnalyticsService, "summarize", side_effect=RuntimeError("boom")):
            response = client.get(URL)

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "ANALYTICS_ERROR"

    def test_coverage_gap_reported(self, client):
        for _ in range(3):
            client.post(URL, json={"zipCode": "00000", "eventType": "zip_coverage_gap"})

        gaps = client.get(URL).json()["data"]["insights"]["coverageGaps"]

        assert gaps[0]["zipCode"] == "00000"
        assert gaps[0]["requestCount"] == 3
        assert gaps[0]["priority"] == "MEDIUM"


class TestTrackEvent:

    def test_event_recorded(self, client):
        response = client.post(URL, json={
            "zipCode": "77002",
            "eventType": "zip_lookup_success",
            "responseTime": 85.5,
            "cityResolved": "houston-tx",
            "timestamp": "2026-10-18T12:00:00Z",
        })

        assert response.status_code == 201
        assert response.json()["data"]["recorded"] is True
        assert response.json()["data"]["eventId"]

    def test_unknown_event_type_returns_400(self, client):
        response = client.post(URL, json={"zipCode": "77002", "eventType": "page_view"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PARAMETER"


def test_options_returns_cors_headers(client):
    response = client.options(URL)

    assert response.status_code == 204
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert "GET" in response.headers["Access-Control-Allow-Methods"]
