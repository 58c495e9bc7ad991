"""Command-line driver: run a paged load against a configured proxy.

    ferry-sim cfg.toml --records 500 --pages 5 --page-size 50 \\
        --abort-after-ms 120 --output requests.parquet

The configured backend is optionally seeded with synthetic records, then
a RecordCollection loads a range of pages through the (usually simulated)
proxy. Request statistics can be exported to parquet.
"""

from __future__ import annotations

import argparse
import logging
import sys

import simpy
from tqdm import tqdm

from ferry.collection import RecordCollection
from ferry.config import ConfigurationError, ProxyConfig, load_proxy_config
from ferry.operation import Operation
from ferry.proxy import StorageProxy
from ferry.request import CreateRequest

logger = logging.getLogger(__name__)


def seed_records(config: ProxyConfig, count: int) -> None:
    """Create count synthetic records directly on the backend."""
    if count <= 0:
        return
    if not isinstance(config.backend, StorageProxy):
        logger.warning(f"--records ignored: {config.backend.name} proxy is read-only")
        return
    records = [{"name": f"record-{i}", "rank": i} for i in range(1, count + 1)]
    request = CreateRequest(records)
    config.backend.perform(request)
    logger.info(f"Seeded {len(request.result_set)} records into {config.backend!r}")


def _abort_after(env: simpy.Environment, operation: Operation, delay_ms: float):
    yield env.timeout(delay_ms)
    if not operation.is_complete:
        logger.info(f"Aborting {operation!r} at t={env.now:.1f}ms")
        operation.abort()


def run(config: ProxyConfig, pages: int, page_size: int,
        abort_after_ms: float | None = None, show_progress: bool = True) -> RecordCollection:
    """Load pages 1..pages and drive the simulation until it finishes."""
    collection = RecordCollection(proxy=config.proxy, page_size=page_size)
    env = config.environment

    pbar = tqdm(total=pages, unit="page", desc="Loading") if show_progress else None
    try:
        operation = collection.load_page_range(1, pages)
        if pbar is not None:
            operation.on_progress(lambda request, op: pbar.update(1))
        if env is not None:
            if abort_after_ms is not None:
                env.process(_abort_after(env, operation, abort_after_ms))
            env.run()
    finally:
        if pbar is not None:
            pbar.close()

    if operation.was_successful:
        logger.info(
            f"Loaded {len(collection)} of {collection.total_count} records "
            f"(pages {collection.loaded_pages})"
        )
    elif operation.was_aborted:
        logger.info(f"Load aborted, collection holds {len(collection)} records")
    elif operation.has_errored:
        logger.error(f"Load failed: {operation.error}")
    else:
        logger.warning(f"Load still pending: {operation!r}")
    return collection


def cli():
    """CLI entry point for the ferry load simulator."""
    parser = argparse.ArgumentParser(
        description="Run a paged load through a configured (simulated) persistence proxy"
    )
    parser.add_argument(
        "config",
        nargs="?",
        default="cfg.toml",
        help="Path to TOML configuration file (default: cfg.toml)"
    )
    parser.add_argument("--records", type=int, default=0,
                        help="Seed the backend with this many synthetic records")
    parser.add_argument("--pages", type=int, default=3,
                        help="Number of pages to load (default: 3)")
    parser.add_argument("--page-size", type=int, default=25,
                        help="Records per page (default: 25)")
    parser.add_argument("--abort-after-ms", type=float, default=None,
                        help="Abort the load at this simulated time")
    parser.add_argument("--seed", type=int, default=None,
                        help="Override the simulation seed")
    parser.add_argument("--output", default=None,
                        help="Write per-request statistics to this parquet file")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all logging except errors"
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable progress bar"
    )
    args = parser.parse_args()

    # Setup logging
    if args.quiet:
        logging.basicConfig(level=logging.ERROR, format='%(levelname)s: %(message)s')
    elif args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    else:
        logging.basicConfig(level=logging.INFO, format='%(message)s')

    try:
        config = load_proxy_config(args.config, seed_override=args.seed)
    except ConfigurationError as exc:
        print("Configuration validation failed:")
        for error in exc.errors:
            print(f"  ✗ {error}")
        sys.exit(1)

    seed_records(config, args.records)

    show_progress = not args.no_progress and not args.verbose and not args.quiet
    run(config, args.pages, args.page_size,
        abort_after_ms=args.abort_after_ms, show_progress=show_progress)

    stats = config.statistics
    if stats is not None and not args.quiet:
        print(f"Requests: {stats.total} "
              f"(resolved={stats.resolved}, rejected={stats.rejected}, "
              f"aborted={stats.aborted})")
    if args.output:
        if stats is None:
            logger.warning("--output ignored: no [simulation] section, nothing recorded")
        else:
            logger.info(f"Exporting request statistics to {args.output}")
            stats.export_parquet(args.output)


if __name__ == "__main__":
    cli()
