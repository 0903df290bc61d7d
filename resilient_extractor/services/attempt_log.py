from __future__ import annotations

from dataclasses import replace
from typing import Any, Iterator

from resilient_extractor.models.extraction import AttemptResult, Stage
from resilient_extractor.services import logger as log_service


class AttemptLog:
    """Append-only record of every attempt made during one extraction, in attempt order."""

    def __init__(self) -> None:
        self._attempts: list[AttemptResult] = []

    def record(self, result: AttemptResult, stage: Stage, **metadata: Any) -> AttemptResult:
        tagged = replace(result, metadata={**result.metadata, **metadata, "stage": stage})
        self._attempts.append(tagged)
        log_service.log_attempt(tagged, stage)
        return tagged

    def count(self, stage: str) -> int:
        return sum(1 for attempt in self._attempts if attempt.stage == stage)

    def last_failure(self) -> AttemptResult | None:
        return next((a for a in reversed(self._attempts) if a.error is not None), None)

    def snapshot(self) -> tuple[AttemptResult, ...]:
        return tuple(self._attempts)

    def __iter__(self) -> Iterator[AttemptResult]:
        return iter(self._attempts)

    def __len__(self) -> int:
        return len(self._attempts)

    def __getitem__(self, index: int) -> AttemptResult:
        return self._attempts[index]
