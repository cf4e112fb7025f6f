"""Bounded, cache-busting retry for loading a published report."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from config import ReportingConfig


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to load a report and how long to pause in between."""

    max_attempts: int = 3
    backoff_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must not be negative")


@dataclass
class ReportViewState:
    status: str  # "loaded" | "error"
    url: str
    attempts: int = 0
    content: str = ""
    error: Optional[str] = None

    @property
    def loaded(self) -> bool:
        return self.status == "loaded"


def cache_busted(url: str, now_ms: int) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}_t={now_ms}"


class ReportViewer:
    """Loads ``/report/<name>.html`` URLs the way an embedding UI would.

    Every attempt appends a fresh ``_t=<ms>`` query parameter so a stale or
    half-written cached copy is never served twice. After the last failed
    attempt ``fetch`` returns an error state instead of raising.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.policy = policy or RetryPolicy()
        self.timeout = timeout
        self._client = client
        self._clock = clock
        self.logger = logger or logging.getLogger("report_viewer")

    @classmethod
    def from_config(cls, reporting: ReportingConfig, base_url: str = "http://localhost:8000") -> "ReportViewer":
        policy = RetryPolicy(reporting.viewer_max_attempts, reporting.viewer_backoff_seconds)
        return cls(base_url=base_url, policy=policy)

    def _absolute(self, report_url: str) -> str:
        if report_url.startswith(("http://", "https://")) or self._client is not None:
            return report_url
        return f"{self.base_url}/{report_url.lstrip('/')}"

    async def _get(self, client: httpx.AsyncClient, report_url: str) -> httpx.Response:
        url = cache_busted(self._absolute(report_url), int(self._clock() * 1000))
        self.logger.debug(f"Loading report {url}")
        response = await client.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response

    async def _fetch_with(self, client: httpx.AsyncClient, report_url: str) -> ReportViewState:
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.policy.max_attempts),
                wait=wait_fixed(self.policy.backoff_seconds),
                retry=retry_if_exception_type(httpx.HTTPError),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    response = await self._get(client, report_url)
        except httpx.HTTPError as exc:
            self.logger.warning(f"Report {report_url} failed to load after {attempts} attempt(s): {exc}")
            return ReportViewState(status="error", url=report_url, attempts=attempts, error=str(exc))
        return ReportViewState(status="loaded", url=report_url, attempts=attempts, content=response.text)

    async def fetch(self, report_url: str) -> ReportViewState:
        if not report_url:
            return ReportViewState(status="error", url="", error="No report URL")
        if self._client is not None:
            return await self._fetch_with(self._client, report_url)
        async with httpx.AsyncClient() as client:
            return await self._fetch_with(client, report_url)
