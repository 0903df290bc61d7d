from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Literal, Mapping

FallbackLevel = Literal["primary", "secondary", "tertiary", "ultra_resilient", "unknown"]
Stage = Literal["primary", "fallback", "final_fallback", "ultra_resilient"]

_OPTION_KEYS = {
    "costTracking": "cost_tracking",
    "highVolume": "high_volume",
    "skipEmptyFallback": "skip_empty_fallback",
    "performHealthCheck": "perform_health_check",
    "config404": "config_404",
    "maxArchiveAttempts": "max_archive_attempts",
    "extractDepth": "extract_depth",
    "includeImages": "include_images",
    "headers": "headers",
    "concurrency": "concurrency",
}


class ContentReason(str, Enum):
    MEANINGFUL = "meaningful"
    EMPTY = "empty_content"
    USELESS_PATTERN = "useless_pattern_detected"
    TOO_SHORT = "content_too_short"
    INSUFFICIENT_TEXT = "insufficient_text_content"
    REPETITIVE = "repetitive_content"


@dataclass(frozen=True, slots=True)
class ExtractionOptions:
    """Per-call configuration bag. Immutable for the lifetime of one extraction."""
    cost_tracking: bool = False
    high_volume: bool = False
    skip_empty_fallback: bool = False
    perform_health_check: bool = True
    config_404: dict[str, Any] = field(default_factory=dict)
    max_archive_attempts: int | None = None
    extract_depth: str | None = None
    include_images: bool = False
    headers: dict[str, str] = field(default_factory=dict)
    concurrency: int | None = None

    @property
    def use_cost_tracking(self) -> bool:
        return self.cost_tracking or self.high_volume

    def with_headers(self, headers: Mapping[str, str]) -> ExtractionOptions:
        return replace(self, headers={**self.headers, **headers})

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> ExtractionOptions:
        """Build options from either camelCase harness keys or snake_case field names."""
        if not mapping:
            return cls()
        known = set(_OPTION_KEYS.values())
        kwargs: dict[str, Any] = {}
        for key, value in mapping.items():
            name = _OPTION_KEYS.get(key, key)
            if name not in known or value is None:
                continue
            kwargs[name] = value
        if "headers" in kwargs:
            kwargs["headers"] = {str(k): str(v) for k, v in dict(kwargs["headers"]).items()}
        if "config_404" in kwargs:
            kwargs["config_404"] = dict(kwargs["config_404"])
        return cls(**kwargs)


@dataclass(frozen=True, slots=True)
class AttemptError:
    code: str
    message: str


@dataclass(frozen=True, slots=True)
class AttemptResult:
    """Outcome of one backend invocation for one URL."""
    success: bool
    service: str
    url: str
    content: str = ""
    response_time_ms: int = 0
    error: AttemptError | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def content_length(self) -> int:
        return len(self.content)

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error else None

    @property
    def stage(self) -> str | None:
        return self.metadata.get("stage")

    def to_dict(self, *, include_content: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "contentLength": self.content_length,
            "service": self.service,
            "url": self.url,
            "responseTime": self.response_time_ms,
            "metadata": dict(self.metadata),
        }
        if include_content:
            payload["content"] = self.content
        if self.error:
            payload["error"] = {"code": self.error.code, "message": self.error.message}
        return payload


@dataclass(frozen=True, slots=True)
class URLValidation:
    valid: bool
    original_url: str
    normalized_url: str
    issues: tuple[str, ...] = ()
    has_fixes: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "valid": self.valid,
            "issues": list(self.issues),
            "originalURL": self.original_url,
            "normalizedURL": self.normalized_url,
            "hasFixes": self.has_fixes,
        }
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True, slots=True)
class ContentValidation:
    is_meaningful: bool
    reason: ContentReason
    content_length: int
    text_length: int = 0
    pattern: str | None = None
    diversity_ratio: float | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "isMeaningful": self.is_meaningful,
            "reason": self.reason.value,
            "contentLength": self.content_length,
            "textLength": self.text_length,
        }
        if self.pattern is not None:
            payload["pattern"] = self.pattern
        if self.diversity_ratio is not None:
            payload["diversityRatio"] = self.diversity_ratio
        return payload


@dataclass(frozen=True, slots=True)
class Detection404:
    is_404: bool
    confidence: float = 0.0
    matched: tuple[str, ...] = ()
    source: Literal["content", "url", "none"] = "none"

    def to_dict(self) -> dict[str, Any]:
        return {
            "is404": self.is_404,
            "confidence": self.confidence,
            "matched": list(self.matched),
            "source": self.source,
        }


@dataclass(frozen=True, slots=True)
class Policy404Config:
    mode: str
    enabled: bool
    archive_probability: float
    max_archive_attempts: int
    high_value_domains: tuple[str, ...] = ()
    low_value_patterns: tuple[str, ...] = ()
    custom_rules: dict[str, Literal["always", "try", "never"]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "enabled": self.enabled,
            "archiveProbability": self.archive_probability,
            "maxArchiveAttempts": self.max_archive_attempts,
            "highValueDomains": list(self.high_value_domains),
            "lowValuePatterns": list(self.low_value_patterns),
            "customRules": dict(self.custom_rules),
        }


@dataclass(frozen=True, slots=True)
class ServiceHealth:
    available: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"available": self.available}
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True, slots=True)
class ExtractionResponse:
    """Final aggregate of one orchestration run."""
    url: str
    result: AttemptResult
    technical_success: bool
    meaningful_success: bool
    fallback_level: FallbackLevel
    attempts: tuple[AttemptResult, ...] = ()
    validation: URLValidation | None = None
    content_validation: ContentValidation | None = None
    detection_404: Detection404 | None = None
    strategy: dict[str, Any] = field(default_factory=dict)
    health: dict[str, ServiceHealth] = field(default_factory=dict)
    escalation_attempts: int = 0
    total_response_time_ms: int = 0
    error: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.result.success

    @property
    def content(self) -> str:
        return self.result.content

    @property
    def content_length(self) -> int:
        return self.result.content_length

    @property
    def service(self) -> str:
        return self.result.service

    @property
    def has_any_successful_service(self) -> bool:
        return any(attempt.success for attempt in self.attempts)

    def to_dict(self) -> dict[str, Any]:
        payload = self.result.to_dict()
        payload.update(
            {
                "url": self.url,
                "technicalSuccess": self.technical_success,
                "meaningfulSuccess": self.meaningful_success,
                "fallbackLevel": self.fallback_level,
                "totalAttempts": len(self.attempts),
                "ultraResilientAttempts": self.escalation_attempts,
                "totalResponseTime": self.total_response_time_ms,
                "hasAnySuccessfulService": self.has_any_successful_service,
                "strategy": dict(self.strategy),
                "allResults": [a.to_dict(include_content=False) for a in self.attempts],
                "health": {name: h.to_dict() for name, h in self.health.items()},
                "metadata": {**self.result.metadata, **self.metadata},
            }
        )
        if self.validation is not None:
            payload["validation"] = self.validation.to_dict()
        if self.content_validation is not None:
            payload["contentValidation"] = self.content_validation.to_dict()
        if self.detection_404 is not None:
            payload["detection404"] = self.detection_404.to_dict()
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True, slots=True)
class BatchSummary:
    total: int
    successful: int
    failed: int
    success_rate: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "successRate": self.success_rate,
        }


@dataclass(frozen=True, slots=True)
class BatchResult:
    results: list[ExtractionResponse]
    summary: BatchSummary

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary.to_dict(),
        }
