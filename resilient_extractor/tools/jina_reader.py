from __future__ import annotations

import json
import re
import time
from typing import Any

import httpx

from resilient_extractor.config import settings
from resilient_extractor.models.extraction import AttemptResult, ExtractionOptions
from resilient_extractor.models.services import SERVICES, Backend
from resilient_extractor.tools.attempts import (
    describe_http_error,
    elapsed_ms,
    failed_attempt,
    status_error_message,
)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; ResilientExtractor/1.0)"

_TITLE_LINE = re.compile(r"^Title:\s*(.+)$", re.MULTILINE)


def reader_url_for(url: str, base_url: str | None = None) -> str:
    """Build the public reader URL for a target: the target is appended to the reader base."""
    base = base_url or settings.jina_reader_base_url
    if "{url}" in base:
        return base.format(url=url)
    return base.rstrip("/") + "/" + url


def _title_from_markdown(content: str) -> str | None:
    match = _TITLE_LINE.search(content[:2000])
    return match.group(1).strip() if match else None


async def extract_public(
    url: str,
    options: ExtractionOptions,
    timeout_ms: int | None = None,
    *,
    reader_url: str | None = None,
) -> AttemptResult:
    """Scrape a URL through the public Jina Reader.

    API: GET https://r.jina.ai/<url>
    The whole response body is the extracted markdown. `reader_url` replaces the
    default reader URL shape (used for cache services and alternate URL shapes).
    """
    timeout_ms = timeout_ms or settings.reader_timeout_ms
    started = time.monotonic()
    service = Backend.JINA_PUBLIC.value
    target = reader_url or reader_url_for(url)
    metadata: dict[str, Any] = {"service": SERVICES[Backend.JINA_PUBLIC].name, "fetchedUrl": target}

    headers = {"User-Agent": DEFAULT_USER_AGENT, **options.headers}

    try:
        async with httpx.AsyncClient(timeout=timeout_ms / 1000.0, follow_redirects=True) as client:
            response = await client.get(target, headers=headers)
            if response.status_code >= 400:
                return failed_attempt(
                    service,
                    url,
                    status_error_message("Jina.ai Public", response),
                    started,
                    metadata=metadata,
                )
            content = response.text
    except httpx.HTTPError as exc:
        return failed_attempt(service, url, describe_http_error(exc, timeout_ms), started, metadata=metadata)

    return AttemptResult(
        success=True,
        service=service,
        url=url,
        content=content,
        response_time_ms=elapsed_ms(started),
        metadata={
            **metadata,
            "responseStatus": response.status_code,
            "contentType": response.headers.get("content-type"),
            "title": _title_from_markdown(content),
        },
    )


def _api_content(data: Any) -> str:
    if not isinstance(data, dict):
        return json.dumps(data)
    inner = data.get("data")
    if isinstance(inner, dict):
        for key in ("content", "text", "markdown"):
            value = inner.get(key)
            if isinstance(value, str) and value:
                return value
    for key in ("content", "text", "markdown"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    if isinstance(inner, str):
        return inner
    return json.dumps(data)


def _token_usage(data: Any) -> int | None:
    if not isinstance(data, dict):
        return None
    for holder in (data.get("meta"), data, data.get("data")):
        usage = holder.get("usage") if isinstance(holder, dict) else None
        if isinstance(usage, dict) and isinstance(usage.get("tokens"), int):
            return usage["tokens"]
    return None


async def extract_api(
    url: str,
    options: ExtractionOptions,
    timeout_ms: int | None = None,
) -> AttemptResult:
    """Scrape a URL through the authenticated Jina Reader API.

    API: POST https://r.jina.ai/ with {"url": <url>}
    Headers:
        - Authorization: Bearer <api_key>
        - Accept: application/json
    Token usage is kept in metadata for cost accounting.
    """
    timeout_ms = timeout_ms or settings.reader_timeout_ms
    started = time.monotonic()
    service = Backend.JINA_API.value
    metadata: dict[str, Any] = {"service": SERVICES[Backend.JINA_API].name}

    api_key = settings.jina_api_key
    if not api_key:
        return failed_attempt(service, url, "Jina.ai API key not configured", started, metadata=metadata)

    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "Accept": "application/json",
        **options.headers,
    }

    try:
        async with httpx.AsyncClient(timeout=timeout_ms / 1000.0, follow_redirects=True) as client:
            response = await client.post(settings.jina_reader_base_url, json={"url": url}, headers=headers)
            if response.status_code >= 400:
                return failed_attempt(
                    service,
                    url,
                    status_error_message("Jina.ai API", response),
                    started,
                    metadata=metadata,
                )
            data = response.json()
    except httpx.HTTPError as exc:
        return failed_attempt(service, url, describe_http_error(exc, timeout_ms), started, metadata=metadata)
    except ValueError:
        return failed_attempt(service, url, "Jina.ai API returned malformed JSON", started, metadata=metadata)

    inner = data.get("data") if isinstance(data, dict) else None
    return AttemptResult(
        success=True,
        service=service,
        url=url,
        content=_api_content(data),
        response_time_ms=elapsed_ms(started),
        metadata={
            **metadata,
            "tokenUsage": _token_usage(data),
            "title": inner.get("title") if isinstance(inner, dict) else None,
        },
    )
