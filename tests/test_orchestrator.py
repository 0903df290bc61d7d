from __future__ import annotations

import random
from dataclasses import replace

import pytest

from resilient_extractor.models.extraction import (
    AttemptError,
    AttemptResult,
    ContentReason,
    ExtractionOptions,
    ServiceHealth,
)
from resilient_extractor.models.services import Backend
from resilient_extractor.services import orchestrator
from resilient_extractor.services.escalation import TemplateCache
from resilient_extractor.services.orchestrator import (
    ExtractionEngine,
    extract_content,
    is_documentation_site,
    is_problematic_domain,
    select_strategy,
)

DOC_URL = "https://docs.python.org/3/library/asyncio.html"
BLOG_URL = "https://blog.acme.io/posts/launch"

PROSE = (
    "Asyncio provides infrastructure for writing concurrent code using the async and await syntax. "
    "It underpins multiple Python frameworks offering high performance network servers, database "
    "connection libraries, distributed task queues, and interactive tooling for event driven applications."
)

ALL_CREDENTIALS = {Backend.TAVILY: True, Backend.JINA_PUBLIC: True, Backend.JINA_API: True}
NO_AUTH_READER = {Backend.TAVILY: True, Backend.JINA_PUBLIC: True, Backend.JINA_API: False}
NO_HEALTH = {"performHealthCheck": False}


def ok(service: str, content: str, **metadata) -> AttemptResult:
    return AttemptResult(success=True, service=service, url="", content=content, metadata=metadata)


def fail(service: str, code: str, message: str) -> AttemptResult:
    return AttemptResult(success=False, service=service, url="", error=AttemptError(code, message))


class Scripted:
    """Extractor double replaying results in order, repeating the last one."""

    def __init__(self, *results: AttemptResult):
        self.results = list(results)
        self.calls: list[dict] = []

    async def __call__(self, url, options, timeout_ms=None, **kwargs):
        self.calls.append({"url": url, "options": options, **kwargs})
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        return replace(result, url=url)


class Exploding:
    def __init__(self):
        self.calls = 0

    async def __call__(self, url, options, timeout_ms=None, **kwargs):
        self.calls += 1
        raise RuntimeError("socket went away")


class StaticProber:
    def __init__(self, **statuses: bool):
        self.statuses = statuses
        self.calls = 0

    async def probe(self) -> dict[str, ServiceHealth]:
        self.calls += 1
        return {
            name: ServiceHealth(available=up, error=None if up else "HTTP 503")
            for name, up in self.statuses.items()
        }


async def public_resolver(_host: str) -> list[str]:
    return ["151.101.0.223"]


def make_engine(tavily, jina_public, jina_api=None, *, credentials=NO_AUTH_READER, prober=None, **kwargs):
    extractors = {
        Backend.TAVILY: tavily,
        Backend.JINA_PUBLIC: jina_public,
        Backend.JINA_API: jina_api or Scripted(fail("jina_api", "NOT_CONFIGURED", "Jina.ai API key not configured")),
    }
    kwargs.setdefault("cache_services", ())
    return ExtractionEngine(
        extractors=extractors,
        prober=prober or StaticProber(tavily=True, jina_public=True, jina_api=True),
        resolver=public_resolver,
        rng=random.Random(3),
        credentials=lambda: credentials,
        **kwargs,
    )


def test_site_classification():
    assert is_documentation_site(DOC_URL) is True
    assert is_documentation_site("https://acme.readthedocs.io/en/latest/") is True
    assert is_documentation_site(BLOG_URL) is False
    assert is_problematic_domain("https://www.reddit.com/r/python/") is True
    assert is_problematic_domain(DOC_URL) is False


def test_strategy_defaults_to_free_reader_then_auth_reader():
    strategy = select_strategy(BLOG_URL, ExtractionOptions(), ALL_CREDENTIALS)
    assert strategy.primary is Backend.TAVILY
    assert strategy.fallback is Backend.JINA_PUBLIC
    assert strategy.fallback_reason == "default"
    assert strategy.final is Backend.JINA_API


def test_strategy_for_documentation_sites():
    strategy = select_strategy(DOC_URL, ExtractionOptions(), NO_AUTH_READER)
    assert strategy.fallback is Backend.JINA_PUBLIC
    assert strategy.fallback_reason == "documentation site"
    assert strategy.final is None
    assert strategy.to_dict()["isDocumentationSite"] is True


def test_strategy_for_cost_tracking():
    strategy = select_strategy(BLOG_URL, ExtractionOptions(high_volume=True), ALL_CREDENTIALS)
    assert strategy.fallback is Backend.JINA_API
    assert strategy.fallback_reason == "cost tracking requested"
    assert strategy.final is None
    assert strategy.cost_tracking is True


def test_strategy_cost_tracking_without_auth_reader_uses_free_reader():
    strategy = select_strategy(BLOG_URL, ExtractionOptions(cost_tracking=True), NO_AUTH_READER)
    assert strategy.fallback is Backend.JINA_PUBLIC


@pytest.mark.asyncio
async def test_private_address_is_rejected_without_network_io():
    tavily = Scripted(ok("tavily", PROSE))
    reader = Scripted(ok("jina_public", PROSE))
    prober = StaticProber(tavily=True)
    engine = make_engine(tavily, reader, prober=prober)

    response = await engine.extract("http://127.0.0.1")

    assert response.technical_success is False
    assert response.error["code"] == "INVALID_URL"
    assert "private_ip_detected" in response.validation.issues
    assert response.attempts == ()
    assert tavily.calls == [] and reader.calls == []
    assert prober.calls == 0


@pytest.mark.asyncio
async def test_not_found_text_is_technical_but_not_meaningful_success():
    engine = make_engine(Scripted(ok("tavily", "404: Not Found")), Scripted(ok("jina_public", PROSE)))

    response = await engine.extract(DOC_URL, NO_HEALTH)

    assert response.technical_success is True
    assert response.meaningful_success is False
    assert response.content_validation.reason is ContentReason.USELESS_PATTERN
    assert response.content_validation.pattern == "404: not found"
    assert response.fallback_level == "primary"
    assert len(response.attempts) == 1


@pytest.mark.asyncio
async def test_forbidden_primary_falls_back_to_reader_for_docs():
    tavily = Scripted(fail("tavily", "403", "Tavily API error: 403 - Forbidden"))
    reader = Scripted(ok("jina_public", PROSE))
    engine = make_engine(tavily, reader)

    response = await engine.extract(DOC_URL, NO_HEALTH)

    assert response.fallback_level == "secondary"
    assert response.meaningful_success is True
    assert response.service == "jina_public"
    assert response.strategy["fallbackReason"] == "documentation site"
    assert [a.stage for a in response.attempts] == ["primary", "fallback"]
    assert response.error is None


@pytest.mark.asyncio
async def test_all_empty_with_policy_disabled_never_escalates():
    tavily = Scripted(ok("tavily", ""))
    reader = Scripted(ok("jina_public", ""))
    auth_reader = Scripted(ok("jina_api", ""))
    engine = make_engine(
        tavily,
        reader,
        auth_reader,
        credentials=ALL_CREDENTIALS,
        cache_services=(TemplateCache("cache_one", lambda url: f"https://cache-one.io/{url}"),),
    )

    response = await engine.extract(BLOG_URL, {**NO_HEALTH, "config404": {"mode": "disabled"}})

    assert response.technical_success is False
    assert response.escalation_attempts == 0
    assert [a.stage for a in response.attempts] == ["primary", "fallback", "final_fallback"]
    assert len(tavily.calls) == 1
    assert len(reader.calls) == 1
    assert response.metadata["policy404"]["mode"] == "disabled"


@pytest.mark.asyncio
async def test_skip_empty_fallback_accepts_empty_primary():
    reader = Scripted(ok("jina_public", PROSE))
    engine = make_engine(Scripted(ok("tavily", "")), reader)

    response = await engine.extract(
        BLOG_URL, {**NO_HEALTH, "skipEmptyFallback": True, "config404": {"mode": "disabled"}}
    )

    assert reader.calls == []
    assert response.technical_success is False


@pytest.mark.asyncio
async def test_unavailable_backends_fail_fast():
    tavily = Scripted(ok("tavily", PROSE))
    engine = make_engine(
        tavily,
        Scripted(ok("jina_public", PROSE)),
        prober=StaticProber(tavily=False, jina_public=False, jina_api=False),
    )

    response = await engine.extract(DOC_URL)

    assert response.error["code"] == "ALL_SERVICES_DOWN"
    assert set(response.error["services"]) == {"tavily", "jina_public", "jina_api"}
    assert tavily.calls == []


@pytest.mark.asyncio
async def test_partially_unavailable_backends_are_still_tried():
    tavily = Scripted(ok("tavily", PROSE))
    engine = make_engine(
        tavily,
        Scripted(ok("jina_public", PROSE)),
        prober=StaticProber(tavily=False, jina_public=True, jina_api=False),
    )

    response = await engine.extract(DOC_URL)

    assert response.service == "tavily"
    assert response.fallback_level == "primary"
    assert response.metadata["healthSnapshot"]["tavily"]["available"] is False


@pytest.mark.asyncio
async def test_extractor_exception_becomes_attempt_and_cascade_continues():
    boom = Exploding()
    engine = make_engine(boom, Scripted(ok("jina_public", PROSE)))

    response = await engine.extract(DOC_URL, NO_HEALTH)

    assert boom.calls == 1
    assert response.attempts[0].error_code == "EXCEPTION"
    assert response.service == "jina_public"
    assert response.meaningful_success is True


@pytest.mark.asyncio
async def test_cost_tracking_routes_to_auth_reader_and_sums_tokens():
    auth_reader = Scripted(ok("jina_api", PROSE, tokenUsage=321))
    reader = Scripted(ok("jina_public", PROSE))
    engine = make_engine(
        Scripted(fail("tavily", "429", "Tavily API error: 429 - slow down")),
        reader,
        auth_reader,
        credentials=ALL_CREDENTIALS,
    )

    response = await engine.extract(BLOG_URL, {**NO_HEALTH, "costTracking": True})

    assert response.service == "jina_api"
    assert response.metadata["totalTokensUsed"] == 321
    assert response.strategy["costTrackingEnabled"] is True
    assert reader.calls == []


@pytest.mark.asyncio
async def test_final_fallback_runs_when_first_two_fail():
    engine = make_engine(
        Scripted(fail("tavily", "TIMEOUT", "Request timeout after 15000ms (ReadTimeout)")),
        Scripted(fail("jina_public", "451", "Jina.ai Public error: 451 - blocked")),
        Scripted(ok("jina_api", PROSE)),
        credentials=ALL_CREDENTIALS,
    )

    response = await engine.extract(BLOG_URL, NO_HEALTH)

    assert response.fallback_level == "tertiary"
    assert response.service == "jina_api"


@pytest.mark.asyncio
async def test_escalation_recovers_from_cache_and_reports_ultra_resilient():
    def reader_answer():
        async def read(url, options, timeout_ms=None, *, reader_url=None):
            if reader_url and "cache-one" in reader_url:
                return ok("jina_public", PROSE)
            return fail("jina_public", "404", "Jina.ai Public error: 404 - Not Found")

        return read

    engine = make_engine(
        Scripted(fail("tavily", "404", "Tavily API error: 404 - Not Found")),
        reader_answer(),
        cache_services=(TemplateCache("cache_one", lambda url: f"https://cache-one.io/{url}"),),
    )

    response = await engine.extract("https://github.com/acme/widgets/wiki/Setup", NO_HEALTH)

    assert response.service == "cache_one"
    assert response.meaningful_success is True
    assert response.fallback_level == "ultra_resilient"
    assert response.escalation_attempts == 3
    assert response.to_dict()["ultraResilientAttempts"] == 3
    assert response.detection_404 is not None


@pytest.mark.asyncio
async def test_total_failure_carries_per_service_breakdown():
    engine = make_engine(
        Scripted(fail("tavily", "403", "Tavily API error: 403 - Forbidden")),
        Scripted(fail("jina_public", "403", "Jina.ai Public error: 403 - Forbidden")),
    )

    response = await engine.extract(BLOG_URL, {**NO_HEALTH, "config404": {"mode": "disabled"}})

    assert response.has_any_successful_service is False
    assert response.fallback_level == "unknown"
    assert response.error["code"] == "ALL_EXTRACTIONS_FAILED"
    assert [s["service"] for s in response.error["services"]] == ["tavily", "jina_public"]
    assert all(s["code"] == "403" for s in response.error["services"])


@pytest.mark.asyncio
async def test_to_dict_exposes_harness_fields():
    engine = make_engine(Scripted(ok("tavily", PROSE)), Scripted(ok("jina_public", PROSE)))

    payload = (await engine.extract(DOC_URL, NO_HEALTH)).to_dict()

    assert payload["success"] is True
    assert payload["content"] == PROSE
    assert payload["contentLength"] == len(PROSE)
    assert payload["technicalSuccess"] is True
    assert payload["meaningfulSuccess"] is True
    assert payload["fallbackLevel"] == "primary"
    assert payload["totalAttempts"] == 1
    assert payload["validation"]["valid"] is True
    assert payload["allResults"][0]["metadata"]["stage"] == "primary"


@pytest.mark.asyncio
async def test_module_level_extract_content_uses_shared_engine(monkeypatch):
    engine = make_engine(Scripted(ok("tavily", PROSE)), Scripted(ok("jina_public", PROSE)))
    monkeypatch.setattr(orchestrator, "_engine", engine)

    response = await extract_content(DOC_URL, ExtractionOptions(perform_health_check=False))

    assert response.service == "tavily"


@pytest.mark.asyncio
async def test_ladder_winner_beats_earlier_short_cache_hit():
    short = "This page is not cached here, sorry."

    async def read(url, options, timeout_ms=None, *, reader_url=None):
        if reader_url and "cache-one" in reader_url:
            return ok("jina_public", short)
        if reader_url and "cache-two" in reader_url:
            return ok("jina_public", PROSE)
        return fail("jina_public", "404", "Jina.ai Public error: 404 - Not Found")

    engine = make_engine(
        Scripted(fail("tavily", "404", "Tavily API error: 404 - Not Found")),
        read,
        cache_services=(
            TemplateCache("cache_one", lambda url: f"https://cache-one.io/{url}"),
            TemplateCache("cache_two", lambda url: f"https://cache-two.io/{url}"),
        ),
        policy_mode="aggressive",
    )

    response = await engine.extract("https://github.com/acme/widgets/wiki/Setup", NO_HEALTH)

    assert [(a.service, a.content_length) for a in response.attempts][-2:] == [
        ("cache_one", len(short)),
        ("cache_two", len(PROSE)),
    ]
    assert response.service == "cache_two"
    assert response.meaningful_success is True
    assert response.fallback_level == "ultra_resilient"


@pytest.mark.asyncio
async def test_health_snapshot_is_reused_within_ttl():
    prober = StaticProber(tavily=True, jina_public=True, jina_api=False)
    engine = make_engine(Scripted(ok("tavily", PROSE)), Scripted(ok("jina_public", PROSE)), prober=prober)

    batch = await engine.extract_batch([DOC_URL, BLOG_URL, DOC_URL], {"concurrency": 3})

    assert batch.summary.successful == 3
    assert prober.calls == 1


@pytest.mark.asyncio
async def test_health_is_checked_again_once_ttl_expires():
    prober = StaticProber(tavily=True, jina_public=True, jina_api=False)
    engine = make_engine(
        Scripted(ok("tavily", PROSE)),
        Scripted(ok("jina_public", PROSE)),
        prober=prober,
        health_ttl_seconds=0,
    )

    await engine.extract(DOC_URL)
    await engine.extract(DOC_URL)

    assert prober.calls == 2
