#!/usr/bin/env python3
"""
CLI for the Autonomous Crawler
==============================
Crawls a web application breadth-first with parallel browsers, persisting
pages, elements, replayable paths and scenarios to the database.

All configuration flows through ``CrawlerRunConfig``.

Run with: python -m autocrawl https://app.example.com
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .monitor import CrawlMonitor
from .run_config import CrawlerRunConfig

# Load .env (credentials, config) before anything else
_env_path = Path(__file__).resolve().parent.parent / '.env'
if _env_path.exists():
    load_dotenv(_env_path)
else:
    load_dotenv()  # tries CWD

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)


def print_summary(summary: dict) -> None:
    """Print crawl summary."""
    queue = summary.get("queue", {})
    print("\n" + "=" * 65)
    print("CRAWL COMPLETE")
    print(f"  Run ID:              {summary.get('run_id')}")
    print(f"  Status:              {summary.get('status')}")
    print(f"  Pages discovered:    {summary.get('pages_discovered', 0)}/{summary.get('max_pages', 0)}")
    print(f"  Queue:               " + ", ".join(f"{k}={v}" for k, v in queue.items()))
    metrics = summary.get("metrics")
    if metrics is not None:
        print(CrawlMonitor.format_summary(metrics))


async def _run(url: str, cfg: CrawlerRunConfig) -> dict:
    from .database import Database
    from .orchestrator import CrawlOrchestrator

    db = Database(cfg.database_url)
    await db.init()
    try:
        orchestrator = CrawlOrchestrator(
            cfg.to_crawl_config(url),
            db,
            run_id=cfg.resume_run_id,
            credentials=cfg.credentials(),
        )

        def progress_cb(event):
            if event.current_url:
                print(f"[{event.percentage:3d}%] depth={event.depth} {event.current_url[:70]}")

        orchestrator.add_progress_callback(progress_cb)
        return await orchestrator.start(resume=bool(cfg.resume_run_id))
    finally:
        await db.close()


def run_cli_with_args(argv=None) -> int:
    """Parse argv, build CrawlerRunConfig, run."""
    parser = argparse.ArgumentParser(
        description='Autonomous web-app crawler - breadth-first, parallel browsers, SPA-aware',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m autocrawl https://app.example.com
  python -m autocrawl https://app.example.com --depth 2 --pages 20 --browsers 4
  python -m autocrawl https://app.example.com --username me@example.com --password secret
  python -m autocrawl https://app.example.com --resume 5f0c...   # continue an interrupted run
        """
    )

    parser.add_argument('url', help='Target URL to crawl')
    parser.add_argument('--depth', type=int, default=3, help='Maximum crawl depth (default: 3)')
    parser.add_argument('--pages', type=int, default=50, help='Maximum pages to discover (default: 50)')
    parser.add_argument('--browsers', type=int, default=3,
                        help='Maximum concurrent browsers, capped at 5 (default: 3)')
    parser.add_argument('--timeout', type=int, default=45, help='Navigation timeout in seconds (default: 45)')
    parser.add_argument('--headed', action='store_true', help='Show browser windows')
    parser.add_argument('--no-screenshots', action='store_true', help='Do not store page screenshots')
    parser.add_argument('--db', type=str, metavar='URL',
                        help='SQLAlchemy database URL (default: sqlite+aiosqlite:///autocrawl.db)')
    parser.add_argument('--resume', type=str, metavar='RUN_ID', help='Resume an interrupted run')

    auth_group = parser.add_argument_group('Authentication',
        'Credentials used when a login form is found. '
        'Falls back to AUTOCRAWL_USERNAME / AUTOCRAWL_PASSWORD (or CRAWLER_*) env vars.')
    auth_group.add_argument('--username', type=str, help='Login username or email')
    auth_group.add_argument('--password', type=str, help='Login password')

    args = parser.parse_args(argv)

    url = args.url
    if not url.startswith(('http://', 'https://')):
        url = 'https://' + url

    cfg = CrawlerRunConfig.from_cli_args(args)
    cfg.log_summary(url)

    from .errors import CrawlError
    try:
        summary = asyncio.run(_run(url, cfg))
    except CrawlError as e:
        logger.error(f"Crawl failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted — resume later with --resume")
        return 130

    print_summary(summary)
    return 0


def main():
    sys.exit(run_cli_with_args())


if __name__ == '__main__':
    main()
