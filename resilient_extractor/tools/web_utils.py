from __future__ import annotations

import re
import warnings
from urllib.parse import urlparse

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning


def extract_domain(url: str) -> str:
    """Lower-cased hostname without a leading www."""
    try:
        host = (urlparse(url).hostname or "").lower().strip()
    except ValueError:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def domain_matches(host: str, domain: str) -> bool:
    """True when host is the domain itself or one of its subdomains."""
    domain = domain.lower().strip().lstrip(".")
    return bool(domain) and (host == domain or host.endswith("." + domain))


def collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def strip_html(content: str) -> str:
    """Drop markup and collapse whitespace, leaving the readable text."""
    if "<" not in content:
        return collapse_whitespace(content)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
        soup = BeautifulSoup(content, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return collapse_whitespace(soup.get_text(" "))
