"""Cheap availability probes for the three extraction backends."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Mapping

import httpx
from tavily import AsyncTavilyClient
from tavily.errors import InvalidAPIKeyError, MissingAPIKeyError

from resilient_extractor.config import settings
from resilient_extractor.models.extraction import ServiceHealth
from resilient_extractor.models.services import Backend
from resilient_extractor.tools.jina_reader import DEFAULT_USER_AGENT, reader_url_for

ProbeFn = Callable[[], Awaitable[ServiceHealth]]

INVALID_CREDENTIALS = "invalid_credentials"
NOT_CONFIGURED = "not configured"


def all_down(health: Mapping[str, ServiceHealth]) -> bool:
    return bool(health) and not any(status.available for status in health.values())


def _credential_failure(exc: Exception) -> bool:
    if isinstance(exc, (InvalidAPIKeyError, MissingAPIKeyError)):
        return True
    text = f"{type(exc).__name__} {exc}".lower()
    return any(marker in text for marker in ("401", "403", "forbidden", "unauthorized"))


class HealthProber:
    """Runs one bounded probe per backend, concurrently and independently."""

    def __init__(
        self,
        *,
        timeout_ms: int | None = None,
        check_url: str | None = None,
        tavily_client_factory: Callable[[str], AsyncTavilyClient] | None = None,
    ):
        self.timeout_ms = timeout_ms or settings.health_check_timeout_ms
        self.check_url = check_url or settings.health_check_url
        self._tavily_client_factory = tavily_client_factory or (lambda key: AsyncTavilyClient(api_key=key))

    async def probe(self) -> dict[str, ServiceHealth]:
        checks: dict[Backend, ProbeFn] = {
            Backend.TAVILY: self._probe_tavily,
            Backend.JINA_PUBLIC: self._probe_jina_public,
            Backend.JINA_API: self._probe_jina_api,
        }
        statuses = await asyncio.gather(*(self._bounded(fn) for fn in checks.values()))
        return {backend.value: status for backend, status in zip(checks, statuses)}

    async def _bounded(self, fn: ProbeFn) -> ServiceHealth:
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            return ServiceHealth(available=False, error=f"timeout after {self.timeout_ms}ms")
        except Exception as exc:
            # A broken probe marks its own backend unavailable and nothing else.
            return ServiceHealth(available=False, error=f"{type(exc).__name__}: {exc}")

    async def _probe_tavily(self) -> ServiceHealth:
        api_key = settings.tavily_api_key
        if not api_key:
            return ServiceHealth(available=False, error=NOT_CONFIGURED)
        client = self._tavily_client_factory(api_key)
        try:
            await client.search(query="health check", max_results=1)
        except Exception as exc:
            if _credential_failure(exc):
                return ServiceHealth(available=False, error=f"{INVALID_CREDENTIALS}: {exc}")
            raise
        return ServiceHealth(available=True)

    async def _probe_reader(self, headers: dict[str, str]) -> ServiceHealth:
        async with httpx.AsyncClient(timeout=self.timeout_ms / 1000.0, follow_redirects=True) as client:
            response = await client.get(reader_url_for(self.check_url), headers=headers)
        if response.status_code in (401, 403) and "Authorization" in headers:
            return ServiceHealth(available=False, error=f"{INVALID_CREDENTIALS}: HTTP {response.status_code}")
        if not 200 <= response.status_code < 300:
            return ServiceHealth(available=False, error=f"HTTP {response.status_code}")
        return ServiceHealth(available=True)

    async def _probe_jina_public(self) -> ServiceHealth:
        return await self._probe_reader({"User-Agent": DEFAULT_USER_AGENT})

    async def _probe_jina_api(self) -> ServiceHealth:
        api_key = settings.jina_api_key
        if not api_key:
            return ServiceHealth(available=False, error=NOT_CONFIGURED)
        return await self._probe_reader(
            {"User-Agent": DEFAULT_USER_AGENT, "Authorization": f"Bearer {api_key}"}
        )
