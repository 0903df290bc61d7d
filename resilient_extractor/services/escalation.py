"""Ultra-resilient escalation ladder.

Runs only after every standard attempt came back failed or empty and the 404
policy allowed it. Tactics run in order and stop at the first acceptable result:

1. alternate browser headers against the primary backend
2. web cache / archive services fetched through the free reader
3. alternate reader URL shapes
4. connection/SSL workarounds with the remaining header sets

Every attempt lands in the shared AttemptLog whatever its outcome.
"""
from __future__ import annotations

import asyncio
import random
import re
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Mapping, Sequence
from urllib.parse import quote

import httpx

from resilient_extractor.config import settings
from resilient_extractor.models.extraction import AttemptResult, ExtractionOptions, Policy404Config
from resilient_extractor.models.services import Backend
from resilient_extractor.services import logger as log_service
from resilient_extractor.services.attempt_log import AttemptLog
from resilient_extractor.tools.attempts import AUTH_ERROR_CODES, failed_attempt, guarded_extract
from resilient_extractor.tools.backends import Extractor, resolve_extractor
from resilient_extractor.tools.headers import alternate_header_sets
from resilient_extractor.tools.jina_reader import reader_url_for

STAGE = "ultra_resilient"
MIN_CACHE_CONTENT = 100
MIN_READER_SHAPE_CONTENT = 50
MAX_ARCHIVE_ATTEMPTS = 5

_CONNECTION_PROBLEM = re.compile(
    r"certificate|ssl|tls|econnrefused|connection refused|timeout|timed out", re.I
)


@dataclass(frozen=True, slots=True)
class TemplateCache:
    """Cache service whose URL is a pure function of the target URL."""
    name: str
    build: Callable[[str], str]


@dataclass(frozen=True, slots=True)
class LookupCache:
    """Cache service that must ask the network for a usable URL first."""
    name: str
    lookup: Callable[[str, int], Awaitable[str | None]]


CacheService = TemplateCache | LookupCache


async def wayback_lookup(url: str, timeout_ms: int) -> str | None:
    """Ask the Wayback Machine availability API for the closest snapshot."""
    async with httpx.AsyncClient(timeout=timeout_ms / 1000.0) as client:
        response = await client.get(settings.wayback_availability_url, params={"url": url})
        response.raise_for_status()
        data = response.json()
    snapshots = data.get("archived_snapshots") if isinstance(data, dict) else None
    closest = snapshots.get("closest") if isinstance(snapshots, dict) else None
    if isinstance(closest, dict) and closest.get("available") and closest.get("url"):
        return str(closest["url"])
    return None


def _google_cache(url: str) -> str:
    return f"https://webcache.googleusercontent.com/search?q=cache:{url}"


def _archive_today(url: str) -> str:
    return f"https://archive.ph/newest/{url}"


def _wayback_direct(url: str) -> str:
    return f"https://web.archive.org/web/2/{url}"


def _bing_cache(url: str) -> str:
    return f"https://cc.bingj.com/cache.aspx?q={quote(url, safe='')}&url={quote(url, safe='')}"


# Priority order.
BUILTIN_CACHE_SERVICES: tuple[CacheService, ...] = (
    TemplateCache("google_cache", _google_cache),
    LookupCache("wayback_machine", wayback_lookup),
    TemplateCache("archive_today", _archive_today),
    TemplateCache("wayback_direct", _wayback_direct),
    TemplateCache("bing_cache", _bing_cache),
)


def configured_cache_services(names: Sequence[str] | None = None) -> tuple[CacheService, ...]:
    """Built-in cache services filtered and ordered by name; empty selects all of them."""
    names = list(names if names is not None else settings.cache_service_list)
    if not names:
        return BUILTIN_CACHE_SERVICES
    by_name = {service.name: service for service in BUILTIN_CACHE_SERVICES}
    return tuple(by_name[name] for name in names if name in by_name)


def _schemeless(url: str) -> str:
    return re.sub(r"^https?://", "", url, flags=re.I)


READER_URL_SHAPES: tuple[tuple[str, Callable[[str], str]], ...] = (
    ("reader_direct", lambda url: reader_url_for(_schemeless(url))),
    ("reader_single_redirect", lambda url: reader_url_for(reader_url_for(url))),
    ("reader_double_redirect", lambda url: reader_url_for(reader_url_for(reader_url_for(url)))),
)


def _accepted(result: AttemptResult, min_length: int = 0) -> bool:
    return result.success and result.content_length > min_length


class EscalationLadder:
    def __init__(
        self,
        extractors: Mapping[Backend, Extractor],
        *,
        rng: random.Random | None = None,
        cache_services: Sequence[CacheService] | None = None,
        max_user_agent_retries: int | None = None,
        cache_timeout_ms: int | None = None,
    ):
        self.extractors = extractors
        self.rng = rng or random.Random()
        self.cache_services = tuple(cache_services) if cache_services is not None else configured_cache_services()
        self.max_user_agent_retries = (
            max_user_agent_retries if max_user_agent_retries is not None else settings.max_user_agent_retries
        )
        self.cache_timeout_ms = cache_timeout_ms or settings.cache_service_timeout_ms

    async def run(
        self,
        url: str,
        options: ExtractionOptions,
        log: AttemptLog,
        policy: Policy404Config,
        *,
        max_archive_attempts: int | None = None,
    ) -> AttemptResult | None:
        """Run the tactics in order and return the first acceptable result, if any."""
        header_sets = alternate_header_sets(self.rng)
        if self._auth_failed(url, log):
            leftover_sets = header_sets
        else:
            user_agent_sets = header_sets[: self.max_user_agent_retries]
            leftover_sets = header_sets[self.max_user_agent_retries :]
            result = await self._alternate_user_agents(url, options, log, user_agent_sets)
            if result is not None:
                return result

        cap = policy.max_archive_attempts if max_archive_attempts is None else max_archive_attempts
        cap = min(max(int(cap), 0), MAX_ARCHIVE_ATTEMPTS)
        result = await self._cache_services(url, options, log, cap)
        if result is not None:
            return result

        result = await self._reader_url_shapes(url, options, log)
        if result is not None:
            return result

        return await self._connection_workarounds(url, options, log, leftover_sets)

    def _auth_failed(self, url: str, log: AttemptLog) -> bool:
        first_failure = next((a for a in log if a.error is not None), None)
        if first_failure is None or first_failure.error_code not in AUTH_ERROR_CODES:
            return False
        log_service.log_event(
            "escalation_skip",
            "Skipping alternate user agents after auth failure",
            url=url,
            error_code=first_failure.error_code,
        )
        return True

    async def _alternate_user_agents(
        self,
        url: str,
        options: ExtractionOptions,
        log: AttemptLog,
        header_sets: list[dict[str, str]],
    ) -> AttemptResult | None:
        extractor = resolve_extractor(self.extractors, Backend.TAVILY)
        for headers in header_sets:
            result = await guarded_extract(
                extractor, Backend.TAVILY.value, url, options.with_headers(headers)
            )
            tagged = log.record(result, STAGE, tactic="alternate_user_agent", userAgent=headers["User-Agent"])
            if _accepted(tagged):
                return tagged
        return None

    async def _cache_services(
        self,
        url: str,
        options: ExtractionOptions,
        log: AttemptLog,
        cap: int,
    ) -> AttemptResult | None:
        for service in self.cache_services[:cap]:
            result = await self._try_cache_service(service, url, options)
            tagged = log.record(result, STAGE, tactic="cache_service", cacheService=service.name)
            if _accepted(tagged, MIN_CACHE_CONTENT):
                return tagged
        return None

    async def _try_cache_service(
        self,
        service: CacheService,
        url: str,
        options: ExtractionOptions,
    ) -> AttemptResult:
        started = time.monotonic()
        if isinstance(service, LookupCache):
            try:
                cache_url = await asyncio.wait_for(
                    service.lookup(url, self.cache_timeout_ms),
                    timeout=self.cache_timeout_ms / 1000.0,
                )
            except asyncio.TimeoutError:
                return failed_attempt(
                    service.name, url, f"Archive lookup timeout after {self.cache_timeout_ms}ms", started
                )
            except (httpx.HTTPError, ValueError) as exc:
                return failed_attempt(service.name, url, f"Archive lookup failed: {type(exc).__name__}: {exc}", started)
            if not cache_url:
                return failed_attempt(
                    service.name, url, "No archived snapshot available", started, code="NOT_ARCHIVED"
                )
        else:
            cache_url = service.build(url)

        extractor = resolve_extractor(self.extractors, Backend.JINA_PUBLIC)
        result = await guarded_extract(
            extractor,
            Backend.JINA_PUBLIC.value,
            url,
            options,
            self.cache_timeout_ms,
            reader_url=reader_url_for(cache_url),
        )
        return replace(result, service=service.name, metadata={**result.metadata, "cacheUrl": cache_url})

    async def _reader_url_shapes(
        self,
        url: str,
        options: ExtractionOptions,
        log: AttemptLog,
    ) -> AttemptResult | None:
        extractor = resolve_extractor(self.extractors, Backend.JINA_PUBLIC)
        for name, shape in READER_URL_SHAPES:
            result = await guarded_extract(
                extractor, Backend.JINA_PUBLIC.value, url, options, reader_url=shape(url)
            )
            tagged = log.record(result, STAGE, tactic="reader_url_shape", urlShape=name)
            if _accepted(tagged, MIN_READER_SHAPE_CONTENT):
                return tagged
        return None

    async def _connection_workarounds(
        self,
        url: str,
        options: ExtractionOptions,
        log: AttemptLog,
        header_sets: list[dict[str, str]],
    ) -> AttemptResult | None:
        last_failure = log.last_failure()
        if last_failure is None or not _CONNECTION_PROBLEM.search(last_failure.error.message):
            return None

        extractor = resolve_extractor(self.extractors, Backend.JINA_PUBLIC)
        for headers in header_sets:
            result = await guarded_extract(
                extractor, Backend.JINA_PUBLIC.value, url, options.with_headers(headers)
            )
            tagged = log.record(result, STAGE, tactic="connection_workaround", userAgent=headers["User-Agent"])
            if _accepted(tagged):
                return tagged
        return None
