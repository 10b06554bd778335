"""
Tests for run_config.py and the CLI argument surface.
"""

import argparse

from autocrawl.run_config import CrawlerRunConfig, _DEFAULTS


class TestRunConfig:

    def test_defaults(self):
        cfg = CrawlerRunConfig()
        assert cfg.max_depth == 3
        assert cfg.max_pages == 50
        assert cfg.max_concurrent_browsers == 3
        assert cfg.headless is True
        assert cfg.database_url == "sqlite+aiosqlite:///autocrawl.db"
        assert cfg.database_url == _DEFAULTS["database_url"]

    def test_from_cli_args(self):
        ns = argparse.Namespace(
            depth=2, pages=20, browsers=8, headed=True, timeout=30, no_screenshots=True,
            db="sqlite+aiosqlite:///:memory:", resume="abc", username="u", password="p",
        )
        cfg = CrawlerRunConfig.from_cli_args(ns)
        assert (cfg.max_depth, cfg.max_pages, cfg.max_concurrent_browsers) == (2, 20, 8)
        assert cfg.headless is False
        assert cfg.capture_screenshots is False
        assert cfg.resume_run_id == "abc"
        assert cfg.credentials().username == "u"

    def test_from_partial_namespace_keeps_defaults(self):
        cfg = CrawlerRunConfig.from_cli_args(argparse.Namespace())
        assert cfg.max_pages == _DEFAULTS["max_pages"]
        assert cfg.resume_run_id is None

    def test_to_crawl_config(self):
        cfg = CrawlerRunConfig(max_depth=4, max_concurrent_browsers=9, navigation_timeout_s=10)
        engine = cfg.to_crawl_config("https://app.test/")
        assert engine.target_url == "https://app.test/"
        assert engine.max_depth == 4
        assert engine.max_parallel_crawls == 5
        assert engine.step_delays.navigation_timeout_ms == 10000
        assert engine.settle_timeout_ms == 3000
        assert engine.settle_extra_ms == 500

    def test_log_summary_never_logs_password(self, caplog):
        caplog.set_level("INFO")
        CrawlerRunConfig(username="ann", password="topsecret").log_summary("https://app.test/")
        assert "CRAWL RUN CONFIG" in caplog.text
        assert "topsecret" not in caplog.text

    def test_zero_limits_are_kept(self):
        ns = argparse.Namespace(depth=0, pages=0, browsers=3)
        cfg = CrawlerRunConfig.from_cli_args(ns)
        assert cfg.max_depth == 0
        assert cfg.max_pages == 0
        assert cfg.to_crawl_config("https://app.test/").max_depth == 0

    def test_none_values_fall_back_to_defaults(self):
        cfg = CrawlerRunConfig.from_cli_args(argparse.Namespace(depth=None, db=None))
        assert cfg.max_depth == _DEFAULTS["max_depth"]
        assert cfg.database_url == _DEFAULTS["database_url"]


class TestPrintSummary:

    def test_includes_run_and_metrics(self, capsys):
        from autocrawl.__main__ import print_summary
        from autocrawl.monitor import CrawlMetrics

        print_summary({
            "run_id": "r-1", "status": "ready", "pages_discovered": 2, "max_pages": 5,
            "queue": {"completed": 2, "queued": 0},
            "metrics": CrawlMetrics(pages_crawled=2, virtual_pages=1, stop_reason="completed"),
        })
        out = capsys.readouterr().out
        assert "Run ID:              r-1" in out
        assert "Pages discovered:    2/5" in out
        assert "completed=2, queued=0" in out
        assert "CRAWL SUMMARY" in out
        assert "Virtual pages:       1" in out
