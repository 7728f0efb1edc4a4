"""CLI for Jolt Ingest: run pipeline stages from a shell.

Usage:
    python -m ingest.cli fetch https://example.com/article
    python -m ingest.cli fetch https://example.com/file.pdf --file --no-robots
    python -m ingest.cli classify https://example.com/article --strict
    python -m ingest.cli sanitize page.html
    python -m ingest.cli robots example.com /private/page
    python -m ingest.cli --metrics sanitize page.html

Results are printed as JSON on stdout; logs go to stderr.
"""

import argparse
import asyncio
import json
import sys

from ingest.config import settings
from ingest.core.logging_config import configure_logging


def _print_json(data):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _fetch_options(args):
    from ingest.schemas.fetch import FetchOptions

    return FetchOptions(
        timeout_ms=args.timeout * 1000,
        content_kind="file" if getattr(args, "file", False) else "html",
        check_robots=not args.no_robots,
        strict_mode=getattr(args, "strict", False),
    )


async def _cmd_fetch(args) -> int:
    """Fetch a single URL through all guards and print the FetchResult."""
    from ingest.services.fetcher import fetch_url

    result = await fetch_url(args.url, _fetch_options(args), args.client_id)
    data = result.model_dump(exclude={"html"})
    if result.success and args.show_html:
        data["html"] = result.html
    elif result.success:
        data["html_length"] = len(result.html)
    _print_json(data)
    return 0 if result.success else 2


async def _cmd_classify(args) -> int:
    """Run the full pipeline and print the routing decision."""
    from ingest.schemas.parse import SpaBypassResult
    from ingest.services.pipeline import fetch_and_classify

    result = await fetch_and_classify(args.url, _fetch_options(args), args.client_id)
    if isinstance(result, SpaBypassResult):
        _print_json(result.model_dump())
        return 0

    output = {
        "url_hash": result.url_hash,
        "fetch": result.fetch.model_dump(exclude={"html"}),
    }
    if result.quality is not None:
        output["quality"] = result.quality.model_dump()
        output["sanitize"] = result.sanitize.model_dump(exclude={"html"})
        output["article_title"] = result.article.title if result.article else None
    _print_json(output)
    return 0 if result.success else 2


def _cmd_sanitize(args) -> int:
    """Sanitize an HTML file (or stdin with '-') and print the removal counts."""
    from ingest.services.sanitizer import sanitize_html

    if args.file == "-":
        raw = sys.stdin.read()
    else:
        with open(args.file, encoding="utf-8", errors="replace") as fh:
            raw = fh.read()

    result = sanitize_html(raw)
    if args.html_only:
        print(result.html)
    else:
        _print_json(result.model_dump())
    return 0


async def _cmd_robots(args) -> int:
    """Resolve robots.txt rules for a domain and test a path."""
    from ingest.services.robots import get_robots_rules, is_path_allowed

    rules = await get_robots_rules(args.domain)
    _print_json({
        "domain": args.domain,
        "path": args.path,
        "allowed": is_path_allowed(args.path, rules),
        "rules": rules.model_dump(),
    })
    return 0


async def _with_store(command, args) -> int:
    """Run an async command, then release the shared Redis connection."""
    from ingest.core.redis import redis_client

    try:
        return await command(args)
    finally:
        await redis_client.close()


def main():
    parser = argparse.ArgumentParser(
        prog="ingest",
        description=f"{settings.APP_NAME} {settings.APP_VERSION}: safe URL ingestion",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--log-format", default="text", choices=["text", "json"], help="Log output format"
    )
    parser.add_argument(
        "--metrics", action="store_true", help="Print Prometheus metrics to stderr on exit"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # --- fetch ---
    fetch_parser = subparsers.add_parser("fetch", help="Fetch a URL with all safety guards")
    fetch_parser.add_argument("url", help="URL to fetch")
    fetch_parser.add_argument("--timeout", type=int, default=10, help="Per-attempt timeout in seconds")
    fetch_parser.add_argument("--file", action="store_true", help="Use the file size ceiling (10 MB)")
    fetch_parser.add_argument("--no-robots", action="store_true", help="Skip robots.txt check")
    fetch_parser.add_argument("--client-id", default=None, help="Client identifier for rate limiting")
    fetch_parser.add_argument("--show-html", action="store_true", help="Include decoded body")

    # --- classify ---
    classify_parser = subparsers.add_parser("classify", help="Fetch, sanitize and quality-check a URL")
    classify_parser.add_argument("url", help="URL to classify")
    classify_parser.add_argument("--strict", action="store_true", help="Route paywalled pages to META_ONLY")
    classify_parser.add_argument("--timeout", type=int, default=10, help="Per-attempt timeout in seconds")
    classify_parser.add_argument("--no-robots", action="store_true", help="Skip robots.txt check")
    classify_parser.add_argument("--client-id", default=None, help="Client identifier for rate limiting")

    # --- sanitize ---
    sanitize_parser = subparsers.add_parser("sanitize", help="Sanitize an HTML file")
    sanitize_parser.add_argument("file", help="HTML file path, or '-' for stdin")
    sanitize_parser.add_argument("--html-only", action="store_true", help="Print sanitized HTML only")

    # --- robots ---
    robots_parser = subparsers.add_parser("robots", help="Check a path against robots.txt")
    robots_parser.add_argument("domain", help="Domain, e.g. example.com")
    robots_parser.add_argument("path", nargs="?", default="/", help="Path to test")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(args.log_format, "DEBUG" if args.verbose else settings.LOG_LEVEL)

    if args.command == "fetch":
        code = asyncio.run(_with_store(_cmd_fetch, args))
    elif args.command == "classify":
        code = asyncio.run(_with_store(_cmd_classify, args))
    elif args.command == "sanitize":
        code = _cmd_sanitize(args)
    else:
        code = asyncio.run(_with_store(_cmd_robots, args))

    if args.metrics:
        from ingest.core.metrics import get_metrics

        sys.stderr.write(get_metrics().decode("utf-8"))
    sys.exit(code)


if __name__ == "__main__":
    main()
