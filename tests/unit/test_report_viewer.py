"""Unit tests for report_viewer module."""
from __future__ import annotations

import httpx
import pytest

from config import ReportingConfig
from report_viewer import ReportViewer, RetryPolicy, cache_busted


def _viewer(handler, attempts: int = 3) -> tuple[ReportViewer, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(len(seen))

    client = httpx.AsyncClient(transport=httpx.MockTransport(_record), base_url="http://reports.test")
    clock = iter(range(1000, 100000, 7))
    viewer = ReportViewer(
        policy=RetryPolicy(max_attempts=attempts, backoff_seconds=0),
        client=client,
        clock=lambda: next(clock),
    )
    return viewer, seen


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.backoff_seconds == 1.0

    @pytest.mark.parametrize("attempts,backoff", [(0, 1.0), (1, -1.0)])
    def test_rejects_invalid(self, attempts, backoff):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=attempts, backoff_seconds=backoff)


class TestCacheBusted:
    def test_appends_query(self):
        assert cache_busted("/report/a.html", 5) == "/report/a.html?_t=5"
        assert cache_busted("/report/a.html?x=1", 5) == "/report/a.html?x=1&_t=5"


class TestReportViewer:
    """Tests for ReportViewer.fetch."""

    @pytest.mark.asyncio
    async def test_loads_first_try(self):
        viewer, seen = _viewer(lambda n: httpx.Response(200, text="<html>ok</html>"))

        state = await viewer.fetch("/report/a.html")

        assert state.loaded
        assert state.attempts == 1
        assert state.content == "<html>ok</html>"
        assert "_t" in seen[0].url.params

    @pytest.mark.asyncio
    async def test_retries_with_fresh_cache_buster(self):
        viewer, seen = _viewer(lambda n: httpx.Response(404) if n < 3 else httpx.Response(200, text="ok"))

        state = await viewer.fetch("/report/a.html")

        assert state.loaded
        assert state.attempts == 3
        busters = [request.url.params["_t"] for request in seen]
        assert len(set(busters)) == 3

    @pytest.mark.asyncio
    async def test_gives_up_with_error_state(self):
        viewer, seen = _viewer(lambda n: httpx.Response(500), attempts=2)

        state = await viewer.fetch("/report/a.html")

        assert state.status == "error"
        assert state.attempts == 2
        assert len(seen) == 2
        assert "500" in state.error

    @pytest.mark.asyncio
    async def test_empty_url(self):
        viewer, seen = _viewer(lambda n: httpx.Response(200))

        state = await viewer.fetch("")

        assert state.status == "error"
        assert seen == []

    def test_from_config(self):
        viewer = ReportViewer.from_config(
            ReportingConfig(viewer_max_attempts=5, viewer_backoff_seconds=0.5), base_url="http://host:9000/"
        )
        assert viewer.policy == RetryPolicy(max_attempts=5, backoff_seconds=0.5)
        assert viewer.base_url == "http://host:9000"
