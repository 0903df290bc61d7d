from __future__ import annotations

import asyncio

import pytest

from resilient_extractor.models.extraction import AttemptResult, ExtractionOptions, ExtractionResponse
from resilient_extractor.services.batch import run_batch, summarize


def _response(url: str, content: str = "body text", success: bool = True) -> ExtractionResponse:
    return ExtractionResponse(
        url=url,
        result=AttemptResult(success=success, service="tavily", url=url, content=content),
        technical_success=success and bool(content),
        meaningful_success=False,
        fallback_level="primary" if success else "unknown",
    )


class _Recorder:
    def __init__(self, failing: set[str] | None = None, empty: set[str] | None = None):
        self.failing = failing or set()
        self.empty = empty or set()
        self.in_flight = 0
        self.max_in_flight = 0
        self.order: list[str] = []

    async def __call__(self, url: str, options: ExtractionOptions) -> ExtractionResponse:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.order.append(url)
        await asyncio.sleep(0)
        self.in_flight -= 1
        if url in self.failing:
            raise RuntimeError(f"cannot handle {url}")
        return _response(url, "" if url in self.empty else "body text")


@pytest.mark.asyncio
async def test_results_keep_input_order_and_chunks_are_bounded():
    urls = [f"https://docs.python.org/{i}" for i in range(5)]
    extract = _Recorder()
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    batch = await run_batch(extract, urls, ExtractionOptions(), concurrency=2, delay_seconds=0.25, sleep=fake_sleep)

    assert [r.url for r in batch.results] == urls
    assert extract.max_in_flight <= 2
    assert sleeps == [0.25, 0.25]
    assert batch.summary.to_dict() == {"total": 5, "successful": 5, "failed": 0, "successRate": 100}


@pytest.mark.asyncio
async def test_one_failure_does_not_sink_the_batch():
    urls = ["https://a.io/1", "https://a.io/2", "https://a.io/3"]
    extract = _Recorder(failing={"https://a.io/2"})

    async def no_sleep(_seconds: float) -> None:
        return None

    batch = await run_batch(extract, urls, ExtractionOptions(concurrency=3), sleep=no_sleep)

    failed = batch.results[1]
    assert failed.service == "batch_failed"
    assert failed.result.error_code == "BATCH_ERROR"
    assert "cannot handle" in failed.error["message"]
    assert batch.summary.successful == 2
    assert batch.summary.failed == 1
    assert batch.summary.success_rate == 67


@pytest.mark.asyncio
async def test_empty_batch():
    batch = await run_batch(_Recorder(), [], ExtractionOptions(), delay_seconds=0)
    assert batch.results == []
    assert batch.summary.success_rate == 0


def test_empty_content_only_counts_under_cost_tracking():
    results = [_response("https://a.io/1", ""), _response("https://a.io/2")]
    assert summarize(results, cost_tracking=False).successful == 1
    assert summarize(results, cost_tracking=True).successful == 2
