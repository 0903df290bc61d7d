"""Thin web-search passthrough to the primary backend's search endpoint."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from tavily import AsyncTavilyClient

from resilient_extractor.config import settings
from resilient_extractor.services import logger as log_service


class SearchNotConfiguredError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class SearchHit:
    title: str
    url: str
    snippet: str
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {"title": self.title, "url": self.url, "snippet": self.snippet, "score": self.score}


async def search(
    query: str,
    *,
    max_results: int = 5,
    search_depth: str = "basic",
    include_domains: list[str] | None = None,
    client_factory: Callable[[str], AsyncTavilyClient] | None = None,
) -> list[SearchHit]:
    """Search the web and return hits whose URLs can be fed straight into extraction."""
    if not settings.tavily_api_key:
        raise SearchNotConfiguredError("Tavily API key not configured")

    factory = client_factory or (lambda key: AsyncTavilyClient(api_key=key))
    client = factory(settings.tavily_api_key)

    kwargs: dict[str, Any] = {
        "query": query,
        "max_results": max_results,
        "search_depth": search_depth,
    }
    if include_domains:
        kwargs["include_domains"] = include_domains

    response = await client.search(**kwargs)
    hits = [
        SearchHit(
            title=r.get("title", ""),
            url=r.get("url", ""),
            snippet=r.get("content", ""),
            score=float(r.get("score") or 0.0),
        )
        for r in response.get("results", [])
        if r.get("url")
    ]
    log_service.log_event("search_completed", f"Search returned {len(hits)} hits", query=query)
    return hits
