from __future__ import annotations

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


def _first_result(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    results = data.get("results")
    if isinstance(results, list) and results and isinstance(results[0], dict):
        return results[0]
    return {}


async def extract(
    url: str,
    options: ExtractionOptions,
    timeout_ms: int | None = None,
) -> AttemptResult:
    """Extract a URL with the Tavily Extract API.

    API: POST https://api.tavily.com/extract
    Body:
        - urls: [<url>]
        - extract_depth / include_images (optional passthrough)
    Content comes from results[0].content, falling back to results[0].raw_content.
    """
    timeout_ms = timeout_ms or settings.primary_timeout_ms
    started = time.monotonic()
    service = Backend.TAVILY.value
    metadata: dict[str, Any] = {"service": SERVICES[Backend.TAVILY].name}

    api_key = settings.tavily_api_key
    if not api_key:
        return failed_attempt(service, url, "Tavily API key not configured", started, metadata=metadata)

    body: dict[str, Any] = {"api_key": api_key, "urls": [url.strip()]}
    if options.include_images:
        body["include_images"] = True
    if options.extract_depth:
        body["extract_depth"] = options.extract_depth

    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
        **options.headers,
    }

    try:
        async with httpx.AsyncClient(timeout=timeout_ms / 1000.0) as client:
            response = await client.post(settings.tavily_extract_url, json=body, headers=headers)
            if response.status_code >= 400:
                return failed_attempt(
                    service,
                    url,
                    status_error_message("Tavily API", response),
                    started,
                    metadata=metadata,
                )
            data = response.json()
    except httpx.HTTPError as exc:
        return failed_attempt(service, url, describe_http_error(exc, timeout_ms), started, metadata=metadata)
    except ValueError:
        return failed_attempt(service, url, "Tavily API returned malformed JSON", started, metadata=metadata)

    first = _first_result(data)
    content = str(first.get("content") or first.get("raw_content") or "")
    results = data.get("results") if isinstance(data, dict) else None

    return AttemptResult(
        success=True,
        service=service,
        url=url,
        content=content,
        response_time_ms=elapsed_ms(started),
        metadata={
            **metadata,
            "hasResults": bool(results),
            "title": first.get("title"),
        },
    )
