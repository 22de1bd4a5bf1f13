"""Tests for publishers/http.py."""

from __future__ import annotations

import json

import httpx
import pytest

from hardengate.core.aggregator import aggregate
from hardengate.publishers.http import ReportPublisher

URL = "https://artifacts.example.com/compliance"


@pytest.fixture
def report(make_verification):
    return aggregate([make_verification("9.1.1", "pass")], target="ip-10-0-0-1")


def make_publisher(handler, **config) -> tuple[ReportPublisher, list[float]]:
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    publisher = ReportPublisher(
        {"publish_url": URL, "retry_attempts": 3, "retry_delay_seconds": 5, **config},
        transport=httpx.MockTransport(handler),
    )
    publisher._sleep = fake_sleep
    return publisher, sleeps


class TestReportPublisher:
    def test_disabled_without_url(self):
        assert not ReportPublisher({}).enabled
        assert ReportPublisher({"publish_url": URL}).enabled

    @pytest.mark.asyncio
    async def test_posts_report(self, report, monkeypatch):
        monkeypatch.setenv("HARDENGATE_PUBLISH_TOKEN", "s3cret")
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201)

        publisher, sleeps = make_publisher(handler)
        result = await publisher.publish(report)
        assert result.success
        assert result.status_code == 201
        assert result.attempts == 1
        assert sleeps == []
        assert requests[0].headers["authorization"] == "Bearer s3cret"
        assert json.loads(requests[0].content)["target"] == "ip-10-0-0-1"

    @pytest.mark.asyncio
    async def test_no_token_no_auth_header(self, report, monkeypatch):
        monkeypatch.delenv("HARDENGATE_PUBLISH_TOKEN", raising=False)
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200)

        publisher, _ = make_publisher(handler)
        await publisher.publish(report)
        assert "authorization" not in requests[0].headers

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, report):
        responses = iter([httpx.Response(503), httpx.Response(502), httpx.Response(200)])
        publisher, sleeps = make_publisher(lambda request: next(responses))
        result = await publisher.publish(report)
        assert result.success
        assert result.attempts == 3
        assert sleeps == [5, 10]

    @pytest.mark.asyncio
    async def test_rate_limit_backs_off_harder(self, report):
        responses = iter([httpx.Response(429), httpx.Response(200)])
        publisher, sleeps = make_publisher(lambda request: next(responses))
        await publisher.publish(report)
        assert sleeps == [30]

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, report):
        publisher, sleeps = make_publisher(lambda request: httpx.Response(403, text="forbidden"))
        result = await publisher.publish(report)
        assert not result.success
        assert result.attempts == 1
        assert result.status_code == 403
        assert "forbidden" in result.error
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, report):
        publisher, sleeps = make_publisher(lambda request: httpx.Response(500))
        result = await publisher.publish(report)
        assert not result.success
        assert result.attempts == 3
        assert len(sleeps) == 2

    @pytest.mark.asyncio
    async def test_connection_error_retried(self, report):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        publisher, sleeps = make_publisher(handler, retry_attempts=2)
        result = await publisher.publish(report)
        assert not result.success
        assert result.status_code is None
        assert "ConnectError" in result.error
        assert sleeps == [5]
