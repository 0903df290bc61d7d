"""404 detection and the policy deciding whether archive recovery is worth it."""
from __future__ import annotations

import random
import re
from typing import Any, Iterable, Mapping

from resilient_extractor.config import settings
from resilient_extractor.models.extraction import Detection404, Policy404Config
from resilient_extractor.tools.web_utils import domain_matches, extract_domain

# mode -> (enabled, archive_probability, max_archive_attempts)
POLICY_PRESETS: dict[str, tuple[bool, float, int]] = {
    "disabled": (False, 0.0, 0),
    "conservative": (True, 0.1, 1),
    "normal": (True, 0.3, 2),
    "aggressive": (True, 1.0, 5),
}
DEFAULT_MODE = "normal"
MAX_ARCHIVE_ATTEMPTS = 5

DEFAULT_HIGH_VALUE_DOMAINS = (
    "github.com",
    "stackoverflow.com",
    "wikipedia.org",
    "arxiv.org",
    "readthedocs.io",
    "python.org",
    "developer.mozilla.org",
    "docs.*",
)

DEFAULT_LOW_VALUE_PATTERNS = (
    r"/tags?/",
    r"/category/",
    r"/page/\d+",
    r"[?&]utm_",
    r"/feed/?$",
    r"/amp/?$",
    r"/print/",
    r"/search\?",
)

CONTENT_404_PHRASES = (
    "404 not found",
    "404: not found",
    "error 404",
    "page not found",
    "this page could not be found",
    "the page you requested could not be found",
    "the requested url was not found",
    "we couldn't find that page",
    "page does not exist",
    "page doesn't exist",
    "no longer available",
    "has been removed",
)

URL_404_PATTERNS = tuple(
    re.compile(p, re.I)
    for p in (
        r"/404(?:\.html?)?(?:[/?#]|$)",
        r"/not[-_]?found",
        r"/page[-_]?not[-_]?found",
        r"/error(?:[/?#.]|$)",
        r"/deleted(?:[/?#]|$)",
        r"/removed(?:[/?#]|$)",
    )
)
URL_404_CONFIDENCE = 0.8

RULE_VALUES = ("always", "try", "never")


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return min(max(number, low), high)


def build_policy(
    mode: str | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Policy404Config:
    """Build the 404 policy from a preset mode plus per-call overrides.

    Unknown modes fall back to `normal`. Overrides may use camelCase or snake_case:
    enabled, archiveProbability (clamped 0..1), maxArchiveAttempts (clamped 0..5),
    highValueDomains, lowValuePatterns, customRules, mode.
    """
    overrides = dict(overrides or {})
    requested = str(overrides.pop("mode", None) or mode or settings.search_plus_404_mode or DEFAULT_MODE)
    requested = requested.lower().strip()
    if requested not in POLICY_PRESETS:
        requested = DEFAULT_MODE
    enabled, probability, max_attempts = POLICY_PRESETS[requested]

    def pick(*keys: str) -> Any:
        for key in keys:
            if key in overrides and overrides[key] is not None:
                return overrides[key]
        return None

    if (value := pick("enabled")) is not None:
        enabled = bool(value)
    if (value := pick("archiveProbability", "archive_probability")) is not None:
        probability = _clamp(value, 0.0, 1.0, probability)
    if (value := pick("maxArchiveAttempts", "max_archive_attempts")) is not None:
        max_attempts = int(_clamp(value, 0, MAX_ARCHIVE_ATTEMPTS, max_attempts))

    high_value = pick("highValueDomains", "high_value_domains")
    low_value = pick("lowValuePatterns", "low_value_patterns")
    rules = pick("customRules", "custom_rules") or {}

    return Policy404Config(
        mode=requested,
        enabled=enabled,
        archive_probability=probability,
        max_archive_attempts=max_attempts,
        high_value_domains=tuple(high_value) if high_value is not None else DEFAULT_HIGH_VALUE_DOMAINS,
        low_value_patterns=tuple(low_value) if low_value is not None else DEFAULT_LOW_VALUE_PATTERNS,
        custom_rules={
            str(domain).lower(): rule
            for domain, rule in dict(rules).items()
            if rule in RULE_VALUES
        },
    )


def detect_404_in_content(content: str | None) -> Detection404:
    lowered = (content or "").lower()
    if not lowered.strip():
        return Detection404(is_404=False)
    matched = tuple(phrase for phrase in CONTENT_404_PHRASES if phrase in lowered)
    if not matched:
        return Detection404(is_404=False, source="content")
    confidence = min(len(matched) / len(CONTENT_404_PHRASES), 1.0)
    return Detection404(is_404=True, confidence=round(confidence, 3), matched=matched, source="content")


def detect_404_in_url(url: str) -> Detection404:
    matched = tuple(p.pattern for p in URL_404_PATTERNS if p.search(url))
    if not matched:
        return Detection404(is_404=False, source="url")
    return Detection404(is_404=True, confidence=URL_404_CONFIDENCE, matched=matched, source="url")


def detect_404(url: str, contents: Iterable[str]) -> Detection404:
    """Combine both detectors: the strongest content signal wins, URL patterns are the fallback."""
    best: Detection404 | None = None
    for content in contents:
        detection = detect_404_in_content(content)
        if detection.is_404 and (best is None or detection.confidence > best.confidence):
            best = detection
    return best or detect_404_in_url(url)


def _matches_high_value(host: str, entry: str) -> bool:
    entry = entry.lower().strip()
    if entry.endswith(".*"):
        return host.startswith(entry[:-1]) or f".{entry[:-1]}" in host
    return domain_matches(host, entry)


def _custom_rule(host: str, rules: Mapping[str, str]) -> str | None:
    # Longest (most specific) matching domain wins.
    for domain in sorted(rules, key=len, reverse=True):
        if domain_matches(host, domain):
            return rules[domain]
    return None


def should_try_archives(
    url: str,
    detection: Detection404,
    policy: Policy404Config,
    rng: random.Random | None = None,
) -> bool:
    """Decide whether the escalation ladder should spend effort on this URL."""
    if not policy.enabled:
        return False
    # Non-404 failures always get the full recovery ladder.
    if not detection.is_404:
        return True

    rng = rng or random.Random()
    host = extract_domain(url)

    rule = _custom_rule(host, policy.custom_rules)
    if rule == "always":
        return True
    if rule == "never":
        return False
    if rule == "try":
        return rng.random() < 0.5

    if any(_matches_high_value(host, entry) for entry in policy.high_value_domains):
        return True

    if any(re.search(pattern, url, re.I) for pattern in policy.low_value_patterns):
        return policy.archive_probability >= 1.0

    return rng.random() < policy.archive_probability
