"""Resilient Extractor

Simple CLI for extracting readable content from URLs.
"""

import argparse
import asyncio
import json
import sys

from resilient_extractor.models.extraction import ExtractionOptions
from resilient_extractor.models.services import SERVICES, Backend
from resilient_extractor.services.health import HealthProber
from resilient_extractor.services.orchestrator import ExtractionEngine
from resilient_extractor.tools import tavily_search


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


async def run_extract(args: argparse.Namespace) -> int:
    engine = ExtractionEngine(policy_mode=args.mode)
    options = ExtractionOptions(
        cost_tracking=args.cost_tracking,
        perform_health_check=not args.no_health_check,
    )
    response = await engine.extract(args.url, options)
    _print_json(response.to_dict())
    return 0 if response.technical_success else 1


async def run_batch(args: argparse.Namespace) -> int:
    engine = ExtractionEngine(policy_mode=args.mode)
    options = ExtractionOptions(
        cost_tracking=args.cost_tracking,
        perform_health_check=not args.no_health_check,
        concurrency=args.concurrency,
    )
    batch = await engine.extract_batch(args.urls, options)
    _print_json(batch.to_dict())
    return 0 if batch.summary.failed == 0 else 1


async def run_health(args: argparse.Namespace) -> int:
    health = await HealthProber().probe()
    _print_json(
        {
            name: {**status.to_dict(), "service": SERVICES[Backend(name)].to_dict()}
            for name, status in health.items()
        }
    )
    return 0 if any(status.available for status in health.values()) else 1


async def run_search(args: argparse.Namespace) -> int:
    try:
        hits = await tavily_search.search(args.query, max_results=args.max_results)
    except tavily_search.SearchNotConfiguredError as exc:
        print(f"[!] {exc}", file=sys.stderr)
        return 2
    _print_json([hit.to_dict() for hit in hits])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resilient web content extractor")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_extraction_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("--cost-tracking", action="store_true", help="Prefer the token-metered reader")
        p.add_argument("--mode", help="404 policy mode: disabled, conservative, normal, aggressive")
        p.add_argument("--no-health-check", action="store_true", help="Skip backend health probes")

    extract = sub.add_parser("extract", help="Extract one URL")
    extract.add_argument("url")
    add_extraction_flags(extract)
    extract.set_defaults(handler=run_extract)

    batch = sub.add_parser("batch", help="Extract several URLs")
    batch.add_argument("urls", nargs="+")
    batch.add_argument("--concurrency", "-c", type=int, help="URLs per chunk (default: from config)")
    add_extraction_flags(batch)
    batch.set_defaults(handler=run_batch)

    health = sub.add_parser("health", help="Probe every backend")
    health.set_defaults(handler=run_health)

    search = sub.add_parser("search", help="Web search through the primary backend")
    search.add_argument("query")
    search.add_argument("--max-results", "-n", type=int, default=5)
    search.set_defaults(handler=run_search)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(args.handler(args))


if __name__ == "__main__":
    sys.exit(main())
