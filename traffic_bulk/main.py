"""Main entry point with CLI."""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import orjson

from traffic_bulk.config import Config, config
from traffic_bulk.fetch.rate_limit import RateLimiter
from traffic_bulk.jobs.batches import BatchOrchestrator
from traffic_bulk.jobs.runner import TrafficRunner
from traffic_bulk.logging_conf import setup_logging
from traffic_bulk.parse.domains import parse_domain_list
from traffic_bulk.parse.engine import TrafficExtractor
from traffic_bulk.store.snapshots import SnapshotStore

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Traffic Bulk Extractor")

    # Input
    parser.add_argument(
        "domains",
        nargs="*",
        help="Domains to look up (URLs and www. prefixes are fine)",
    )
    parser.add_argument(
        "--file",
        type=Path,
        default=None,
        help="Read domains from a file (one per line or comma separated)",
    )

    # Mode flags
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Return synthetic data without launching a browser or touching the cache",
    )
    parser.add_argument(
        "--bypass-cache",
        action="store_true",
        help="Ignore cached snapshots and the daily failure gate",
    )
    parser.add_argument(
        "--poll",
        action="store_true",
        help="Only report what is already stored (no scraping)",
    )
    parser.add_argument(
        "--retry-failed",
        action="store_true",
        help="Re-scrape the given domains with exponential backoff",
    )
    parser.add_argument(
        "--stale",
        action="store_true",
        help="Re-scrape every stored domain whose snapshot is stale",
    )
    parser.add_argument(
        "--cleanup-months",
        type=int,
        default=None,
        help="Delete snapshots older than N months and exit",
    )

    # Performance arguments
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help=f"Groups scraped in parallel (default: {config.PARALLEL_GROUPS})",
    )
    parser.add_argument(
        "--group-size",
        type=int,
        default=None,
        help=f"Domains per upstream query, max 10 (default: {config.GROUP_SIZE})",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help=f"Seconds between waves of groups (default: {config.GROUP_DELAY})",
    )

    # Output
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the JSON response to a file instead of stdout",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help=f"SQLite database path (default: {config.DATABASE_PATH})",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Verbose (DEBUG) logging",
    )

    return parser.parse_args(argv)


def collect_domains(args: argparse.Namespace) -> list[str]:
    """Positional domains plus the contents of --file, in that order."""
    domains = []
    for value in args.domains:
        domains.extend(parse_domain_list(value))
    if args.file:
        domains.extend(parse_domain_list(args.file.read_text(encoding="utf-8")))
    return domains


def write_output(payload: dict, output: Optional[Path]) -> None:
    data = orjson.dumps(payload, option=orjson.OPT_INDENT_2)
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(data)
        logger.info(f"Results written to {output}")
    else:
        sys.stdout.write(data.decode() + "\n")


async def run_command(args: argparse.Namespace, domains: list[str]) -> dict:
    """Open the store, run the requested operation, return a JSON-ready payload."""
    async with SnapshotStore(args.db or config.DATABASE_PATH) as store:
        if args.cleanup_months is not None:
            deleted = await store.cleanup_old_snapshots(args.cleanup_months)
            return {"deleted": deleted, "keep_months": args.cleanup_months}

        orchestrator = BatchOrchestrator(
            TrafficExtractor(rate_limiter=RateLimiter(config.RATE_PER_DOMAIN)),
            group_size=config.GROUP_SIZE,
            parallelism=config.PARALLEL_GROUPS,
            inter_group_delay=config.GROUP_DELAY,
            group_timeout=config.GROUP_TIMEOUT,
        )
        runner = TrafficRunner(store, orchestrator=orchestrator)

        if args.stale:
            response = await runner.refresh_stale()
        elif args.poll:
            response = await runner.poll(domains)
        elif args.retry_failed:
            response = await runner.retry_failed(domains)
        else:
            response = await runner.run(domains, dry_run=args.dry_run, bypass_cache=args.bypass_cache)
        return response.model_dump(mode="json")


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    # Setup logging
    setup_logging("DEBUG" if args.verbose else None)

    # Override config from args
    if args.concurrency:
        Config.PARALLEL_GROUPS = args.concurrency
    if args.group_size:
        Config.GROUP_SIZE = args.group_size
    if args.delay is not None:
        Config.GROUP_DELAY = args.delay

    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        domains = collect_domains(args)
    except OSError as e:
        logger.error(f"Cannot read domain file: {e}")
        sys.exit(1)

    needs_domains = not (args.stale or args.cleanup_months is not None)
    if needs_domains and not domains:
        logger.error("No domains given (pass them as arguments or with --file)")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("Traffic Bulk Extractor Starting")
    logger.info(f"Domains: {len(domains)}")
    logger.info(f"Group size: {config.GROUP_SIZE} | Parallel groups: {config.PARALLEL_GROUPS}")
    logger.info(f"Delay between waves: {config.GROUP_DELAY}s")
    logger.info(f"Dry-run: {args.dry_run} | Bypass cache: {args.bypass_cache}")
    logger.info("=" * 60)

    try:
        payload = asyncio.run(run_command(args, domains))
    except ValueError as e:
        logger.error(f"Invalid request: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    write_output(payload, args.output)


if __name__ == "__main__":
    main()
