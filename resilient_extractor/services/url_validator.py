"""URL sanitizing and SSRF defense, run before any network activity."""
from __future__ import annotations

import asyncio
import ipaddress
import re
import socket
from typing import Awaitable, Callable
from urllib.parse import urlsplit

from resilient_extractor.models.extraction import URLValidation

Resolver = Callable[[str], Awaitable[list[str]]]

ALLOWED_SCHEMES = ("http", "https")

BLOCKED_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "127.0.0.0/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "169.254.0.0/16",  # link-local, includes cloud metadata endpoints
        "0.0.0.0/8",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
)

# Reserved/test domains and malformed hosts that can never produce content.
SUSPICIOUS_HOST_PATTERNS = (
    re.compile(r"(^|\.)example\.(com|org|net)$"),
    re.compile(r"(^|\.)test\.com$"),
    re.compile(r"\.(test|example|invalid|localhost)$"),
    re.compile(r"\.\d+$"),  # numeric TLD on a non-IP host
    re.compile(r"\.[a-z]$"),  # single letter TLD
    re.compile(r"\.\."),
    re.compile(r"^[^.]+$"),  # no dot at all
    re.compile(r"^-|-\.|\.-"),
)

# Reader-proxy URLs carry the real target after the reader prefix.
_READER_PREFIX = re.compile(r"^(https?://r\.jina\.ai/+)(.*)$", re.I)
# Obviously fake targets wrapped in a reader-proxy URL.
_FAKE_TARGET = re.compile(r"fake|nonexistent|invalid", re.I)

_DOT_WORD = re.compile(r"\s+dot\s+", re.I)
_DOUBLE_PROTOCOL = re.compile(r"^https?://(?=https?://)", re.I)


async def resolve_host(hostname: str) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return list(dict.fromkeys(info[4][0] for info in infos))


def _strip_double_protocol(url: str) -> tuple[str, bool]:
    fixed = url
    while _DOUBLE_PROTOCOL.match(fixed):
        fixed = _DOUBLE_PROTOCOL.sub("", fixed, count=1)
    return fixed, fixed != url


def _split_reader_url(url: str) -> tuple[str, str] | None:
    match = _READER_PREFIX.match(url)
    return (match.group(1), match.group(2)) if match else None


def _repair(raw_url: str) -> tuple[str, list[str]]:
    """Fix cosmetic malformations, returning the repaired URL and the issues found."""
    issues: list[str] = []
    url = raw_url.strip()
    if url != raw_url:
        issues.append("surrounding_whitespace")

    url, fixed = _strip_double_protocol(url)
    wrapped = _split_reader_url(url)
    if wrapped is not None:
        prefix, target = wrapped
        target, fixed_target = _strip_double_protocol(target)
        url = prefix + target
        fixed = fixed or fixed_target
    if fixed:
        issues.append("double_protocol")

    if _DOT_WORD.search(url):
        url = _DOT_WORD.sub(".", url)
        issues.append("dot_word_substitution")

    if re.search(r"\s", url):
        url = re.sub(r"\s+", "", url)
        issues.append("whitespace_in_url")

    return url, issues


def _is_ip(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def _is_blocked_ip(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip.version == net.version and ip in net for net in BLOCKED_NETWORKS)


def _is_forbidden_host(hostname: str) -> bool:
    return hostname == "localhost" or hostname.endswith(".local") or hostname.endswith(".localhost")


def _is_suspicious_host(hostname: str) -> bool:
    return not _is_ip(hostname) and any(p.search(hostname) for p in SUSPICIOUS_HOST_PATTERNS)


def _embedded_hostname(target: str) -> str:
    if not re.match(r"^[a-z][a-z0-9+.-]*://", target, re.I):
        target = "http://" + target
    try:
        return (urlsplit(target).hostname or "").lower()
    except ValueError:
        return ""


async def validate_url(raw_url: str, *, resolver: Resolver | None = None) -> URLValidation:
    """Sanitize and SSRF-check a URL.

    Cosmetic problems are repaired and reported as issues. Anything dangerous or
    unfixable yields valid=False with a readable error. The only I/O is one DNS
    lookup, and DNS failure is a validation failure rather than an exception.
    """
    resolver = resolver or resolve_host
    original = raw_url if isinstance(raw_url, str) else ""

    def reject(url: str, issues: list[str], issue: str, error: str) -> URLValidation:
        return URLValidation(
            valid=False,
            original_url=original,
            normalized_url=url,
            issues=tuple(issues + [issue]),
            has_fixes=bool(issues),
            error=error,
        )

    if not original.strip():
        return reject("", [], "empty_url", "No URL provided")

    url, issues = _repair(original)

    try:
        parts = urlsplit(url)
        hostname = (parts.hostname or "").lower()
    except ValueError:
        return reject(url, issues, "malformed_url", f"Malformed URL: {url}")

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        return reject(
            url,
            issues,
            "invalid_protocol",
            f"Unsupported URL scheme: {parts.scheme or '(none)'}; only http and https are allowed",
        )

    if not hostname:
        return reject(url, issues, "malformed_url", f"URL has no hostname: {url}")

    if _is_forbidden_host(hostname):
        return reject(url, issues, "forbidden_hostname", f"Hostname not allowed: {hostname}")

    if _is_suspicious_host(hostname):
        return reject(url, issues, "suspicious_domain_pattern", f"Domain cannot be extracted: {hostname}")

    wrapped = _split_reader_url(url)
    if wrapped is not None:
        target_host = _embedded_hostname(wrapped[1])
        if not target_host:
            return reject(url, issues, "malformed_url", f"Reader URL has no target: {url}")
        if _is_forbidden_host(target_host):
            return reject(url, issues, "forbidden_hostname", f"Hostname not allowed: {target_host}")
        if _is_blocked_ip(target_host):
            return reject(
                url, issues, "private_ip_detected", f"Reader target is a private or internal address ({target_host})"
            )
        if _is_suspicious_host(target_host) or _FAKE_TARGET.search(target_host):
            return reject(
                url, issues, "suspicious_domain_pattern", f"Domain cannot be extracted: {target_host}"
            )

    if _is_ip(hostname):
        addresses = [hostname]
    else:
        try:
            addresses = await resolver(hostname)
        except (OSError, UnicodeError) as exc:
            return reject(url, issues, "dns_lookup_failed", f"DNS lookup failed for {hostname}: {exc}")
        if not addresses:
            return reject(url, issues, "dns_lookup_failed", f"DNS lookup returned no addresses for {hostname}")

    blocked = next((a for a in addresses if _is_blocked_ip(a)), None)
    if blocked is not None:
        return reject(
            url,
            issues,
            "private_ip_detected",
            f"{hostname} resolves to a private or internal address ({blocked})",
        )

    return URLValidation(
        valid=True,
        original_url=original,
        normalized_url=url,
        issues=tuple(issues),
        has_fixes=bool(issues),
    )
