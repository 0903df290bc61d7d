from __future__ import annotations

import pytest

from resilient_extractor.models.extraction import ContentReason
from resilient_extractor.services.content_validator import classify_content

PROSE = (
    "Asyncio provides infrastructure for writing concurrent code using the async and await syntax. "
    "It underpins multiple Python frameworks offering high performance network servers, database "
    "connection libraries, distributed task queues, and interactive tooling for event driven applications."
)


@pytest.mark.parametrize("content", [None, "", "   \n\t  "])
def test_empty_content(content):
    result = classify_content(content)
    assert result.is_meaningful is False
    assert result.reason is ContentReason.EMPTY


def test_not_found_page_is_useless_even_when_short():
    result = classify_content("404: Not Found")
    assert result.is_meaningful is False
    assert result.reason is ContentReason.USELESS_PATTERN
    assert result.pattern == "404: not found"


def test_pattern_wins_over_length():
    content = PROSE + " Unfortunately access denied for this resource."
    result = classify_content(content)
    assert result.reason is ContentReason.USELESS_PATTERN
    assert result.pattern == "access denied"


def test_short_content():
    result = classify_content("A short but otherwise fine sentence.")
    assert result.is_meaningful is False
    assert result.reason is ContentReason.TOO_SHORT


def test_markup_without_text():
    html = (
        "<html><head><style>body { margin: 0; padding: 0; font-family: sans-serif; }</style>"
        "</head><body><p>Hello</p></body></html>"
    )
    result = classify_content(html)
    assert result.is_meaningful is False
    assert result.reason is ContentReason.INSUFFICIENT_TEXT
    assert result.text_length == len("Hello")


def test_repetitive_content():
    result = classify_content("lorem ipsum " * 30)
    assert result.is_meaningful is False
    assert result.reason is ContentReason.REPETITIVE
    assert result.diversity_ratio is not None
    assert result.diversity_ratio < 0.3


def test_meaningful_prose():
    result = classify_content(PROSE, "jina_public")
    assert result.is_meaningful is True
    assert result.reason is ContentReason.MEANINGFUL
    assert result.content_length == len(PROSE)
    assert result.text_length > 50


def test_reader_scaffolding_alone_is_useless():
    content = "Title: Something\n\nURL Source: https://docs.python.org/\n\n" + "x" * 60 + "\n\nMarkdown Content:\n"
    result = classify_content(content)
    assert result.reason is ContentReason.USELESS_PATTERN
    assert result.pattern == "markdown content:"


def test_reader_scaffolding_with_body_is_fine():
    content = "Title: Asyncio\n\nMarkdown Content:\n" + PROSE
    assert classify_content(content).is_meaningful is True


def test_to_dict_uses_camel_case():
    payload = classify_content("lorem ipsum " * 30).to_dict()
    assert payload["isMeaningful"] is False
    assert payload["reason"] == "repetitive_content"
    assert "diversityRatio" in payload


@pytest.mark.parametrize(
    ("content", "reason"),
    [
        ("", ContentReason.EMPTY),
        ("404: Not Found", ContentReason.USELESS_PATTERN),
        ("A short but otherwise fine sentence.", ContentReason.TOO_SHORT),
        ("lorem ipsum " * 30, ContentReason.REPETITIVE),
        (PROSE, ContentReason.MEANINGFUL),
    ],
)
def test_classification_is_repeatable(content, reason):
    first = classify_content(content)
    assert first == classify_content(content)
    assert first.reason is reason
