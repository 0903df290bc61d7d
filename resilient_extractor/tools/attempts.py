from __future__ import annotations

import re
import time
from typing import Any, Awaitable, Callable

import httpx

from resilient_extractor.models.extraction import AttemptError, AttemptResult

_STATUS_CODES = ("403", "429", "451", "400", "404", "401")

AUTH_ERROR_CODES = frozenset({"401", "403", "FORBIDDEN", "NOT_CONFIGURED"})
ESCALATING_ERROR_CODES = AUTH_ERROR_CODES | {"429", "EXCEPTION"}


def extract_error_code(message: str) -> str:
    """Map a raw error message onto a canonical error code."""
    for code in _STATUS_CODES:
        if re.search(rf"\b{code}\b", message):
            return code
    lowered = message.lower()
    if "timeout" in lowered or "timed out" in lowered:
        return "TIMEOUT"
    if "econnrefused" in lowered or "connection refused" in lowered:
        return "ECONNREFUSED"
    if "incorrect header check" in lowered:
        return "HEADER_CHECK"
    if "securitycompromise" in lowered:
        return "SECURITY_COMPROMISE"
    if "forbidden" in lowered:
        return "FORBIDDEN"
    if "unauthorized" in lowered:
        return "401"
    if "not configured" in lowered:
        return "NOT_CONFIGURED"
    return "UNKNOWN"


def elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def describe_http_error(exc: httpx.HTTPError, timeout_ms: int) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return f"Request timeout after {timeout_ms}ms ({type(exc).__name__})"
    return f"{type(exc).__name__}: {exc}"


def status_error_message(label: str, response: httpx.Response) -> str:
    detail = ""
    try:
        payload = response.json()
        if isinstance(payload, dict):
            detail = str(payload.get("error") or payload.get("detail") or payload.get("message") or "")
    except ValueError:
        detail = response.text[:200].strip()
    return f"{label} error: {response.status_code} - {detail or response.reason_phrase}"


async def guarded_extract(
    extractor: Callable[..., Awaitable[AttemptResult]],
    service: str,
    url: str,
    *args: Any,
    **kwargs: Any,
) -> AttemptResult:
    """Run an extractor, turning anything it raises into an EXCEPTION-coded attempt."""
    started = time.monotonic()
    try:
        return await extractor(url, *args, **kwargs)
    except Exception as exc:
        return failed_attempt(
            service,
            url,
            f"Unexpected extractor failure: {type(exc).__name__}: {exc}",
            started,
            code="EXCEPTION",
        )


def failed_attempt(
    service: str,
    url: str,
    message: str,
    started: float,
    *,
    code: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AttemptResult:
    return AttemptResult(
        success=False,
        service=service,
        url=url,
        content="",
        response_time_ms=elapsed_ms(started),
        error=AttemptError(code=code or extract_error_code(message), message=message),
        metadata=metadata or {},
    )
