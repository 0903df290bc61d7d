"""Chunked, bounded-concurrency batch extraction."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence

from resilient_extractor.config import settings
from resilient_extractor.models.extraction import (
    AttemptError,
    AttemptResult,
    BatchResult,
    BatchSummary,
    ExtractionOptions,
    ExtractionResponse,
)
from resilient_extractor.services import logger as log_service

ExtractFn = Callable[[str, ExtractionOptions], Awaitable[ExtractionResponse]]


def batch_failure(url: str, exc: BaseException) -> ExtractionResponse:
    """Stand-in response for a URL whose extraction raised instead of returning."""
    message = f"{type(exc).__name__}: {exc}"
    return ExtractionResponse(
        url=url,
        result=AttemptResult(
            success=False,
            service="batch_failed",
            url=url,
            error=AttemptError(code="BATCH_ERROR", message=message),
        ),
        technical_success=False,
        meaningful_success=False,
        fallback_level="unknown",
        error={"code": "BATCH_ERROR", "message": message},
    )


def summarize(results: Sequence[ExtractionResponse], cost_tracking: bool) -> BatchSummary:
    total = len(results)
    successful = sum(
        1 for r in results if r.success and (r.content_length > 0 or cost_tracking)
    )
    return BatchSummary(
        total=total,
        successful=successful,
        failed=total - successful,
        success_rate=round(successful / total * 100) if total else 0,
    )


async def run_batch(
    extract: ExtractFn,
    urls: Sequence[str],
    options: ExtractionOptions,
    *,
    concurrency: int | None = None,
    delay_seconds: float | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> BatchResult:
    """Extract URLs in chunks; results keep input order and one failure never sinks the batch."""
    size = max(1, concurrency or options.concurrency or settings.batch_concurrency)
    delay = settings.batch_delay_seconds if delay_seconds is None else delay_seconds
    urls = list(urls)

    results: list[ExtractionResponse] = []
    for start in range(0, len(urls), size):
        if start and delay > 0:
            await sleep(delay)
        chunk = urls[start : start + size]
        outcomes = await asyncio.gather(
            *(extract(url, options) for url in chunk), return_exceptions=True
        )
        for url, outcome in zip(chunk, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                log_service.logger.opt(exception=outcome).error(f"Batch extraction failed for {url}")
                outcome = batch_failure(url, outcome)
            results.append(outcome)

    summary = summarize(results, options.use_cost_tracking)
    log_service.log_event(
        "batch_completed",
        f"Batch of {summary.total} URLs finished",
        **summary.to_dict(),
    )
    return BatchResult(results=results, summary=summary)
