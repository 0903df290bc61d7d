from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from resilient_extractor.config import settings
from resilient_extractor.models.extraction import AttemptResult
from resilient_extractor.models.services import Backend
from resilient_extractor.tools import jina_reader, tavily_extract

# (url, options, timeout_ms, **backend specific kwargs) -> AttemptResult
Extractor = Callable[..., Awaitable[AttemptResult]]


def default_extractors() -> dict[Backend, Extractor]:
    return {
        Backend.TAVILY: tavily_extract.extract,
        Backend.JINA_PUBLIC: jina_reader.extract_public,
        Backend.JINA_API: jina_reader.extract_api,
    }


def configured_credentials() -> dict[Backend, bool]:
    """Which backends can run with the credentials present in the environment."""
    return {
        Backend.TAVILY: bool(settings.tavily_api_key),
        Backend.JINA_PUBLIC: True,
        Backend.JINA_API: bool(settings.jina_api_key),
    }


def resolve_extractor(extractors: Mapping[Backend, Extractor], backend: Backend) -> Extractor:
    try:
        return extractors[backend]
    except KeyError:
        raise ValueError(f"No extractor registered for backend: {backend.value}") from None
