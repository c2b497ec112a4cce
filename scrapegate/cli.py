"""CLI tool for scrapegate.

Usage:
    python -m scrapegate.cli scrape https://example.com --select title=h1
    python -m scrapegate.cli scrape https://example.com --select links=a --attr href
    python -m scrapegate.cli scrape https://spa.example.com --engine browser --screenshot
    python -m scrapegate.cli scrape https://example.com --proxy --country us
    python -m scrapegate.cli route https://example.com
"""

import argparse
import asyncio
import json
import logging
import sys


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_selectors(pairs: list[str] | None) -> dict[str, str]:
    selectors = {}
    for pair in pairs or []:
        name, sep, css = pair.partition("=")
        if not sep or not name or not css:
            raise SystemExit(f"Invalid --select value {pair!r}, expected name=css")
        selectors[name] = css
    return selectors


def _build_request(args):
    from scrapegate.schemas.scrape import ProxyFilters, ScrapeRequest

    filters = None
    if args.country or args.proxy_type:
        filters = ProxyFilters(country=args.country, proxy_type=args.proxy_type)

    return ScrapeRequest(
        url=args.url,
        selectors=_parse_selectors(getattr(args, "select", None)),
        extract_text=not getattr(args, "no_text", False),
        extract_html=getattr(args, "html", False),
        extract_attributes=getattr(args, "attr", None) or [],
        timeout=args.timeout * 1000,
        engine=args.engine,
        wait_for_selector=getattr(args, "wait_for", None),
        scroll_to_bottom=getattr(args, "scroll", False),
        screenshot=getattr(args, "screenshot", False),
        use_proxy=args.proxy,
        proxy_filters=filters,
    )


async def _cmd_scrape(args):
    """Scrape a single URL."""
    from scrapegate.engine import ScrapeEngine

    request = _build_request(args)
    async with ScrapeEngine() as engine:
        result = await engine.scraper.scrape(request)

    print(json.dumps(result.model_dump(mode="json", exclude_none=True), indent=2, ensure_ascii=False))
    if not result.success:
        sys.exit(1)


async def _cmd_route(args):
    """Show the engine routing decision for a URL."""
    from scrapegate.engine import ScrapeEngine

    request = _build_request(args)
    async with ScrapeEngine() as engine:
        decision = await engine.router.decide(request)

    print(json.dumps(decision.model_dump(mode="json"), indent=2))


def _add_common(parser):
    parser.add_argument("url", help="URL to fetch")
    parser.add_argument("--timeout", type=int, default=30, help="Timeout in seconds")
    parser.add_argument(
        "--engine", default=None, choices=["lightweight", "browser"],
        help="Force an engine instead of routing automatically",
    )
    parser.add_argument("--proxy", action="store_true", help="Route through the proxy pool")
    parser.add_argument("--country", default=None, help="Proxy country filter")
    parser.add_argument(
        "--proxy-type", default=None,
        choices=["residential", "datacenter", "mobile", "isp"],
        help="Proxy type filter",
    )


def main():
    parser = argparse.ArgumentParser(
        prog="scrapegate",
        description="scrapegate CLI: route, fetch and extract web pages",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # --- scrape ---
    scrape_parser = subparsers.add_parser("scrape", help="Scrape a single URL")
    _add_common(scrape_parser)
    scrape_parser.add_argument(
        "--select", action="append", default=None, metavar="NAME=CSS",
        help="Named CSS selector (repeatable)",
    )
    scrape_parser.add_argument("--html", action="store_true", help="Extract inner HTML")
    scrape_parser.add_argument("--no-text", action="store_true", help="Skip text extraction")
    scrape_parser.add_argument(
        "--attr", action="append", default=None, help="Attribute to extract (repeatable)"
    )
    scrape_parser.add_argument("--wait-for", default=None, help="Selector to wait for (browser)")
    scrape_parser.add_argument("--scroll", action="store_true", help="Scroll to bottom (browser)")
    scrape_parser.add_argument("--screenshot", action="store_true", help="Capture a screenshot (browser)")

    # --- route ---
    route_parser = subparsers.add_parser("route", help="Show the routing decision for a URL")
    _add_common(route_parser)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _setup_logging(args.verbose)

    if args.command == "scrape":
        asyncio.run(_cmd_scrape(args))
    elif args.command == "route":
        asyncio.run(_cmd_route(args))


if __name__ == "__main__":
    main()
