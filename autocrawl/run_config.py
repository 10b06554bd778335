"""
Unified Run Configuration
=========================
Single source of truth for all crawl defaults and runtime limits.

CLI flags populate ``CrawlerRunConfig``; the engine-level ``CrawlConfig``
is built *from* it via ``to_crawl_config``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .auth.credentials import Credentials, resolve_credentials
from .database import DEFAULT_DATABASE_URL

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults: the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "max_depth": 3,
    "max_pages": 50,
    "max_concurrent_browsers": 3,
    "headless": True,
    "navigation_timeout_s": 45,
    "settle_timeout_ms": 3000,       # networkidle wait before extra settle
    "settle_extra_ms": 500,
    "scenario_step_wait_ms": 2000,
    "modal_wait_ms": 3000,           # after a link click, for modals/redirects
    "max_links_per_page": 50,
    "max_scenarios_per_page": 5,
    "same_site_only": True,
    "capture_screenshots": True,
    "database_url": DEFAULT_DATABASE_URL,
    "report_interval_s": 10.0,
}


def _arg(args, name: str, key: str):
    """Namespace value, or the default when the flag is absent or None. 0 is a real value."""
    value = getattr(args, name, None)
    return _DEFAULTS[key] if value is None else value


@dataclass
class CrawlerRunConfig:
    """
    Unified configuration for one crawl run.

    Populate via:
      - ``CrawlerRunConfig()``                → all defaults
      - ``CrawlerRunConfig(max_pages=10)``    → override one value
      - ``CrawlerRunConfig.from_cli_args(ns)`` → from argparse Namespace
    """

    # ---- Crawl limits ----
    max_depth: int = _DEFAULTS["max_depth"]
    max_pages: int = _DEFAULTS["max_pages"]
    max_concurrent_browsers: int = _DEFAULTS["max_concurrent_browsers"]
    max_links_per_page: int = _DEFAULTS["max_links_per_page"]
    max_scenarios_per_page: int = _DEFAULTS["max_scenarios_per_page"]
    same_site_only: bool = _DEFAULTS["same_site_only"]

    # ---- Browser ----
    headless: bool = _DEFAULTS["headless"]
    capture_screenshots: bool = _DEFAULTS["capture_screenshots"]

    # ---- Timing ----
    navigation_timeout_s: int = _DEFAULTS["navigation_timeout_s"]
    settle_timeout_ms: int = _DEFAULTS["settle_timeout_ms"]
    settle_extra_ms: int = _DEFAULTS["settle_extra_ms"]
    scenario_step_wait_ms: int = _DEFAULTS["scenario_step_wait_ms"]
    modal_wait_ms: int = _DEFAULTS["modal_wait_ms"]
    report_interval_s: float = _DEFAULTS["report_interval_s"]

    # ---- Persistence ----
    database_url: str = _DEFAULTS["database_url"]
    resume_run_id: Optional[str] = None

    # ---- Authentication ----
    username: Optional[str] = None
    password: Optional[str] = None

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_cli_args(cls, args) -> "CrawlerRunConfig":
        """Build config from an argparse Namespace (``__main__.py``)."""
        return cls(
            max_depth=_arg(args, "depth", "max_depth"),
            max_pages=_arg(args, "pages", "max_pages"),
            max_concurrent_browsers=_arg(args, "browsers", "max_concurrent_browsers"),
            headless=not getattr(args, "headed", False),
            navigation_timeout_s=_arg(args, "timeout", "navigation_timeout_s"),
            capture_screenshots=not getattr(args, "no_screenshots", False),
            database_url=_arg(args, "db", "database_url"),
            resume_run_id=getattr(args, "resume", None),
            username=getattr(args, "username", None),
            password=getattr(args, "password", None),
        )

    def credentials(self) -> Optional[Credentials]:
        """CLI values first, then ``AUTOCRAWL_*`` / ``CRAWLER_*`` env vars."""
        return resolve_credentials(self.username, self.password)

    # -----------------------------------------------------------------------
    # Converter to the engine config
    # -----------------------------------------------------------------------
    def to_crawl_config(self, target_url: str):
        """Return a ``CrawlConfig`` populated from this run config."""
        # Import here to avoid circular dependency
        from .orchestrator import CrawlConfig
        from .path_navigator import StepDelays

        return CrawlConfig(
            target_url=target_url,
            max_depth=self.max_depth,
            max_pages=self.max_pages,
            max_concurrent_browsers=self.max_concurrent_browsers,
            headless=self.headless,
            same_site_only=self.same_site_only,
            step_delays=StepDelays(navigation_timeout_ms=self.navigation_timeout_s * 1000),
            settle_timeout_ms=self.settle_timeout_ms,
            settle_extra_ms=self.settle_extra_ms,
            scenario_step_wait_ms=self.scenario_step_wait_ms,
            modal_wait_ms=self.modal_wait_ms,
            max_links_per_page=self.max_links_per_page,
            max_scenarios_per_page=self.max_scenarios_per_page,
            report_interval=self.report_interval_s,
            capture_screenshots=self.capture_screenshots,
        )

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self, url: str) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("CRAWL RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  URL:              {url}")
        logger.info(f"  Max Depth:        {self.max_depth}")
        logger.info(f"  Max Pages:        {self.max_pages}")
        logger.info(f"  Browsers:         {self.max_concurrent_browsers} (max 5 per level)")
        logger.info(f"  Headless:         {self.headless}")
        logger.info(f"  Nav Timeout:      {self.navigation_timeout_s}s")
        logger.info(f"  Database:         {self.database_url.split('@')[-1]}")
        if self.resume_run_id:
            logger.info(f"  Resume Run:       {self.resume_run_id}")
        if self.username:
            logger.info(f"  Auth:             Enabled (credentials from CLI)")
        logger.info("=" * 60)
