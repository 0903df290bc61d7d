"""Extraction orchestrator.

validate -> health-check -> select strategy -> primary -> fallback -> final fallback
-> escalation ladder -> classify -> response. Expected failures come back as data;
nothing in the normal failure paths raises.
"""
from __future__ import annotations

import asyncio
import random
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

from resilient_extractor.config import settings
from resilient_extractor.models.extraction import (
    AttemptError,
    AttemptResult,
    BatchResult,
    ExtractionOptions,
    ExtractionResponse,
    FallbackLevel,
    ServiceHealth,
    URLValidation,
)
from resilient_extractor.models.services import Backend
from resilient_extractor.services import logger as log_service
from resilient_extractor.services.attempt_log import AttemptLog
from resilient_extractor.services.batch import run_batch
from resilient_extractor.services.content_validator import classify_content
from resilient_extractor.services.escalation import CacheService, EscalationLadder
from resilient_extractor.services.health import HealthProber, all_down
from resilient_extractor.services.policy_404 import build_policy, detect_404, should_try_archives
from resilient_extractor.services.url_validator import Resolver, validate_url
from resilient_extractor.tools.attempts import ESCALATING_ERROR_CODES, guarded_extract
from resilient_extractor.tools.backends import (
    Extractor,
    configured_credentials,
    default_extractors,
    resolve_extractor,
)

DOCUMENTATION_PATTERNS = tuple(
    re.compile(p)
    for p in (
        r"docs?\.",
        r"documentation",
        r"api.*docs",
        r"developer",
        r"reference",
        r"guide",
        r"tutorial",
        r"swagger",
        r"openapi",
        r"postman",
        r"readthedocs",
        r"gitbook",
    )
)

PROBLEMATIC_PATTERNS = tuple(
    re.compile(p)
    for p in (
        r"reddit\.com",
        r"finance\.yahoo\.com",
        r"twitter\.com",
        r"x\.com/",
        r"facebook\.com",
        r"instagram\.com",
        r"linkedin\.com",
        r"medium\.com",
        r"news\.",
        r"coingecko\.com",
        r"binance\.com",
    )
)

STAGE_LEVELS: dict[str, FallbackLevel] = {
    "primary": "primary",
    "fallback": "secondary",
    "final_fallback": "tertiary",
    "ultra_resilient": "ultra_resilient",
}
ULTRA_RESILIENT_ATTEMPT_THRESHOLD = 4


def is_documentation_site(url: str) -> bool:
    lowered = url.lower()
    return any(p.search(lowered) for p in DOCUMENTATION_PATTERNS)


def is_problematic_domain(url: str) -> bool:
    lowered = url.lower()
    return any(p.search(lowered) for p in PROBLEMATIC_PATTERNS)


@dataclass(frozen=True, slots=True)
class Strategy:
    primary: Backend
    fallback: Backend
    fallback_reason: str
    final: Backend | None
    is_documentation_site: bool
    is_problematic_domain: bool
    cost_tracking: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "primaryService": self.primary.value,
            "fallbackService": self.fallback.value,
            "fallbackReason": self.fallback_reason,
            "finalService": self.final.value if self.final else None,
            "isDocumentationSite": self.is_documentation_site,
            "isProblematicDomain": self.is_problematic_domain,
            "costTrackingEnabled": self.cost_tracking,
        }


def select_strategy(
    url: str,
    options: ExtractionOptions,
    credentials: Mapping[Backend, bool],
) -> Strategy:
    """Pick the backend order for a URL. The paid primary always goes first."""
    cost_tracking = options.use_cost_tracking
    is_doc = is_documentation_site(url)

    if cost_tracking and credentials.get(Backend.JINA_API):
        fallback, reason = Backend.JINA_API, "cost tracking requested"
    elif is_doc:
        fallback, reason = Backend.JINA_PUBLIC, "documentation site"
    else:
        fallback, reason = Backend.JINA_PUBLIC, "default"

    final: Backend | None = None
    if not cost_tracking:
        remaining = Backend.JINA_API if fallback is Backend.JINA_PUBLIC else Backend.JINA_PUBLIC
        if credentials.get(remaining):
            final = remaining

    return Strategy(
        primary=Backend.TAVILY,
        fallback=fallback,
        fallback_reason=reason,
        final=final,
        is_documentation_site=is_doc,
        is_problematic_domain=is_problematic_domain(url),
        cost_tracking=cost_tracking,
    )


def needs_fallback(primary: AttemptResult, options: ExtractionOptions) -> bool:
    if not primary.success:
        return True
    if primary.error_code in ESCALATING_ERROR_CODES:
        return True
    if primary.content_length == 0 and not options.skip_empty_fallback:
        return True
    return options.use_cost_tracking and not primary.success


def _has_content(result: AttemptResult) -> bool:
    return result.success and result.content_length > 0


def select_winner(attempts: Sequence[AttemptResult], cost_tracking: bool) -> AttemptResult | None:
    return next(
        (a for a in attempts if a.success and (a.content_length > 0 or cost_tracking)),
        None,
    )


def fallback_level_for(winner: AttemptResult, total_attempts: int) -> FallbackLevel:
    if not winner.success:
        return "unknown"
    if total_attempts > ULTRA_RESILIENT_ATTEMPT_THRESHOLD:
        return "ultra_resilient"
    return STAGE_LEVELS.get(winner.stage or "", "unknown")


def coerce_options(options: ExtractionOptions | Mapping[str, Any] | None) -> ExtractionOptions:
    if isinstance(options, ExtractionOptions):
        return options
    return ExtractionOptions.from_mapping(options)


class ExtractionEngine:
    """Ties validation, health probing, backend cascade, escalation and classification together."""

    def __init__(
        self,
        *,
        extractors: Mapping[Backend, Extractor] | None = None,
        prober: HealthProber | None = None,
        resolver: Resolver | None = None,
        rng: random.Random | None = None,
        cache_services: Sequence[CacheService] | None = None,
        credentials: Callable[[], Mapping[Backend, bool]] | None = None,
        policy_mode: str | None = None,
        sleep: Callable[[float], Any] | None = None,
        health_ttl_seconds: float | None = None,
    ):
        self.extractors = extractors or default_extractors()
        self.prober = prober or HealthProber()
        self.resolver = resolver
        self.rng = rng or random.Random()
        self.credentials = credentials or configured_credentials
        self.policy_mode = policy_mode
        self.sleep = sleep
        self.health_ttl_seconds = (
            settings.health_cache_ttl_seconds if health_ttl_seconds is None else health_ttl_seconds
        )
        self._health_snapshot: tuple[float, dict[str, ServiceHealth]] | None = None
        self._health_lock = asyncio.Lock()
        self.ladder = EscalationLadder(self.extractors, rng=self.rng, cache_services=cache_services)

    async def _probe_health(self) -> dict[str, ServiceHealth]:
        """Probe backends, reusing the last snapshot while it is younger than the TTL."""
        async with self._health_lock:
            if self._health_snapshot is not None:
                taken_at, snapshot = self._health_snapshot
                if time.monotonic() - taken_at < self.health_ttl_seconds:
                    return snapshot
            snapshot = await self.prober.probe()
            self._health_snapshot = (time.monotonic(), snapshot)
            return snapshot

    async def _attempt(self, backend: Backend, url: str, options: ExtractionOptions) -> AttemptResult:
        extractor = resolve_extractor(self.extractors, backend)
        return await guarded_extract(extractor, backend.value, url, options)

    async def extract(
        self,
        url: str,
        options: ExtractionOptions | Mapping[str, Any] | None = None,
    ) -> ExtractionResponse:
        options = coerce_options(options)
        started = time.monotonic()
        log_service.log_event("extraction_started", f"Extracting content from {url}", url=url)

        validation = await validate_url(url, resolver=self.resolver)
        if not validation.valid:
            log_service.log_event(
                "url_rejected",
                validation.error or "Invalid URL",
                url=url,
                issues=list(validation.issues),
            )
            return self._early_exit(
                url,
                "INVALID_URL",
                validation.error or "Invalid URL",
                started,
                validation=validation,
                extra={"issues": list(validation.issues)},
            )
        target = validation.normalized_url

        health: dict[str, ServiceHealth] = {}
        if options.perform_health_check:
            health = await self._probe_health()
            log_service.log_event(
                "health_checked",
                "Backend health probed",
                url=target,
                services={name: h.to_dict() for name, h in health.items()},
            )
            if all_down(health):
                log_service.log_event("all_services_down", "Every backend failed its health probe", url=target)
                return self._early_exit(
                    target,
                    "ALL_SERVICES_DOWN",
                    "All extraction services are currently unavailable",
                    started,
                    validation=validation,
                    health=health,
                    extra={"services": {name: h.to_dict() for name, h in health.items()}},
                )

        cost_tracking = options.use_cost_tracking
        strategy = select_strategy(target, options, self.credentials())
        log_service.log_event("strategy_selected", "Extraction strategy selected", url=target, **strategy.to_dict())

        log = AttemptLog()
        current = log.record(await self._attempt(strategy.primary, target, options), "primary")

        if needs_fallback(current, options):
            fallback = log.record(await self._attempt(strategy.fallback, target, options), "fallback")
            if fallback.success and (fallback.content_length > 0 or cost_tracking):
                current = fallback

        if strategy.final is not None and not cost_tracking and not _has_content(current):
            final = log.record(await self._attempt(strategy.final, target, options), "final_fallback")
            if _has_content(final):
                current = final

        detection = None
        policy = None
        escalated: AttemptResult | None = None
        if not any(_has_content(a) for a in log):
            detection = detect_404(target, (a.content for a in log if a.content))
            policy = build_policy(self.policy_mode, options.config_404)
            if should_try_archives(target, detection, policy, self.rng):
                log_service.log_event(
                    "escalation_started",
                    "Standard attempts exhausted, starting escalation ladder",
                    url=target,
                    policy_mode=policy.mode,
                    is_404=detection.is_404,
                )
                escalated = await self.ladder.run(
                    target,
                    options,
                    log,
                    policy,
                    max_archive_attempts=options.max_archive_attempts,
                )
            else:
                log_service.log_event(
                    "escalation_skipped",
                    "404 policy declined escalation",
                    url=target,
                    policy_mode=policy.mode,
                    is_404=detection.is_404,
                )

        attempts = log.snapshot()
        standard = [a for a in attempts if a.stage != "ultra_resilient"]
        winner = escalated or select_winner(standard, cost_tracking) or attempts[-1]
        technical_success = _has_content(winner)
        content_validation = classify_content(winner.content, winner.service)
        meaningful_success = technical_success and content_validation.is_meaningful

        error = None
        if not any(a.success for a in attempts):
            error = {
                "code": "ALL_EXTRACTIONS_FAILED",
                "message": f"All {len(attempts)} extraction attempts failed for {target}",
                "services": [
                    {
                        "service": a.service,
                        "stage": a.stage,
                        "code": a.error_code,
                        "message": a.error.message if a.error else None,
                    }
                    for a in attempts
                ],
            }

        metadata: dict[str, Any] = {
            "extractionStrategy": "primary_first_cascading_fallback",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "totalTokensUsed": sum(int(a.metadata.get("tokenUsage") or 0) for a in attempts),
        }
        if health:
            metadata["healthSnapshot"] = {name: h.to_dict() for name, h in health.items()}
        if policy is not None:
            metadata["policy404"] = policy.to_dict()

        response = ExtractionResponse(
            url=target,
            result=winner,
            technical_success=technical_success,
            meaningful_success=meaningful_success,
            fallback_level=fallback_level_for(winner, len(attempts)),
            attempts=attempts,
            validation=validation,
            content_validation=content_validation,
            detection_404=detection,
            strategy=strategy.to_dict(),
            health=health,
            escalation_attempts=log.count("ultra_resilient"),
            total_response_time_ms=int((time.monotonic() - started) * 1000),
            error=error,
            metadata=metadata,
        )
        log_service.log_extraction(response)
        return response

    async def extract_batch(
        self,
        urls: Sequence[str],
        options: ExtractionOptions | Mapping[str, Any] | None = None,
    ) -> BatchResult:
        options = coerce_options(options)
        kwargs: dict[str, Any] = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        return await run_batch(self.extract, urls, options, **kwargs)

    def _early_exit(
        self,
        url: str,
        code: str,
        message: str,
        started: float,
        *,
        validation: URLValidation | None = None,
        health: dict[str, ServiceHealth] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> ExtractionResponse:
        result = AttemptResult(
            success=False,
            service="none",
            url=url,
            error=AttemptError(code=code, message=message),
        )
        response = ExtractionResponse(
            url=url,
            result=result,
            technical_success=False,
            meaningful_success=False,
            fallback_level="unknown",
            validation=validation,
            health=health or {},
            total_response_time_ms=int((time.monotonic() - started) * 1000),
            error={"code": code, "message": message, **(extra or {})},
        )
        log_service.log_extraction(response)
        return response


_engine: ExtractionEngine | None = None


def get_engine() -> ExtractionEngine:
    global _engine
    if _engine is None:
        _engine = ExtractionEngine()
    return _engine


async def extract_content(
    url: str,
    options: ExtractionOptions | Mapping[str, Any] | None = None,
) -> ExtractionResponse:
    """Extract readable content from one URL using the shared default engine."""
    return await get_engine().extract(url, options)


async def extract_content_batch(
    urls: Sequence[str],
    options: ExtractionOptions | Mapping[str, Any] | None = None,
) -> BatchResult:
    """Extract many URLs in bounded-concurrency chunks using the shared default engine."""
    return await get_engine().extract_batch(urls, options)
