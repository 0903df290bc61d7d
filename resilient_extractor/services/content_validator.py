"""Decides whether extracted text is real content or an error page in disguise."""
from __future__ import annotations

import re

from resilient_extractor.models.extraction import ContentReason, ContentValidation
from resilient_extractor.tools.web_utils import strip_html

MIN_CONTENT_LENGTH = 100
MIN_TEXT_LENGTH = 50
MIN_WORDS_FOR_DIVERSITY = 10
MIN_DIVERSITY_RATIO = 0.3

# (label, pattern) pairs, checked against lower-cased content in order.
USELESS_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (phrase, re.compile(re.escape(phrase)))
    for phrase in (
        # generic HTTP errors
        "404: not found",
        "404 not found",
        "403 forbidden",
        "500 internal server error",
        "502 bad gateway",
        "503 service unavailable",
        "access denied",
        "too many requests",
        "rate limit exceeded",
        # search pages with nothing on them
        "no results found",
        "did not match any documents",
        "your search returned no results",
        # reader failures
        "failed to fetch",
        "unable to extract content",
        "error fetching url",
        "could not retrieve the content",
        "the target url returned error",
        # cache/archive boilerplate
        "wayback machine has not archived that url",
        "this page is not cached",
        "no cached version",
        "this url has been excluded from the wayback machine",
    )
) + (
    # Reader scaffolding with nothing underneath it.
    ("markdown content:", re.compile(r"markdown content:\s*$")),
)

_WORD = re.compile(r"\b\w+\b")


def classify_content(content: str | None, source: str = "") -> ContentValidation:
    """Classify extracted content. Pure and deterministic; `source` is informational only."""
    content = content or ""
    content_length = len(content)
    trimmed = content.strip()

    if not trimmed:
        return ContentValidation(
            is_meaningful=False,
            reason=ContentReason.EMPTY,
            content_length=content_length,
        )

    lowered = trimmed.lower()
    for label, pattern in USELESS_PATTERNS:
        if pattern.search(lowered):
            return ContentValidation(
                is_meaningful=False,
                reason=ContentReason.USELESS_PATTERN,
                content_length=content_length,
                pattern=label,
            )

    if len(trimmed) < MIN_CONTENT_LENGTH:
        return ContentValidation(
            is_meaningful=False,
            reason=ContentReason.TOO_SHORT,
            content_length=content_length,
        )

    text = strip_html(trimmed)
    text_length = len(text)
    if text_length < MIN_TEXT_LENGTH:
        return ContentValidation(
            is_meaningful=False,
            reason=ContentReason.INSUFFICIENT_TEXT,
            content_length=content_length,
            text_length=text_length,
        )

    words = [w for w in _WORD.findall(text.lower()) if len(w) > 3]
    if len(words) > MIN_WORDS_FOR_DIVERSITY:
        ratio = len(set(words)) / len(words)
        if ratio < MIN_DIVERSITY_RATIO:
            return ContentValidation(
                is_meaningful=False,
                reason=ContentReason.REPETITIVE,
                content_length=content_length,
                text_length=text_length,
                diversity_ratio=round(ratio, 3),
            )

    return ContentValidation(
        is_meaningful=True,
        reason=ContentReason.MEANINGFUL,
        content_length=content_length,
        text_length=text_length,
    )
