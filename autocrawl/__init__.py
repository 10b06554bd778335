"""
Autonomous Web-App Crawler
Breadth-first, depth-bounded exploration of web applications with parallel
browsers, replayable step logs, SPA state detection and self-healing clicks.

CLI Usage:
    python -m autocrawl <url> [options]

    Options:
        --depth       Maximum crawl depth (default: 3)
        --pages       Maximum pages to discover (default: 50)
        --browsers    Maximum concurrent browsers, capped at 5 (default: 3)
        --db          Database URL (default: sqlite+aiosqlite:///autocrawl.db)
        --resume      Resume an interrupted run by id
"""

from .browser_pool import BrowserHandle, BrowserLauncher, BrowserPoolManager, PlaywrightLauncher
from .crawl_queue import CrawlQueue
from .database import Database
from .errors import (
    CrawlError, ElementNotFoundError, MissingCredentialsError, NavigationError,
    SeedUnreachableError,
)
from .models import InteractiveElement, Priority, QueueItem, QueueStatus, RunPhase, Step
from .orchestrator import CrawlConfig, CrawlOrchestrator
from .path_navigator import PathNavigator
from .run_config import CrawlerRunConfig
from .spa_state import SPAStateDetector, StateChange
from .utils import URLNormalizer, generate_page_name

__all__ = [
    'CrawlOrchestrator',
    'CrawlConfig',
    'CrawlerRunConfig',
    'CrawlQueue',
    'Database',
    # Browsers
    'BrowserPoolManager',
    'BrowserLauncher',
    'BrowserHandle',
    'PlaywrightLauncher',
    # Replay / state
    'PathNavigator',
    'SPAStateDetector',
    'StateChange',
    'Step',
    # Models
    'InteractiveElement',
    'Priority',
    'QueueItem',
    'QueueStatus',
    'RunPhase',
    # Errors
    'CrawlError',
    'NavigationError',
    'SeedUnreachableError',
    'MissingCredentialsError',
    'ElementNotFoundError',
    'URLNormalizer',
    'generate_page_name',
]

__version__ = '1.0.0'
