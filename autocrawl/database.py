"""
Crawl Persistence
=================
SQLAlchemy (asyncio) tables and engine management for crawl runs.

Tables:
    - ``crawl_runs``                 — one row per run (status + aggregates)
    - ``page_discovery_queue``       — the durable crawl queue, unique (run, url)
    - ``discovered_pages``           — crawled URLs and materialized SPA states
    - ``page_interactive_elements``  — elements identified on each page
    - ``crawl_paths``                — edges with their complete replay log
    - ``interaction_scenarios``      — planned scenarios and their outcome

Every queue operation uses its own short session so that no transaction ever
spans a browser interaction.

Usage::

    db = Database("sqlite+aiosqlite:///autocrawl.db")
    await db.init()
    async with db.session() as session:
        ...
    await db.close()
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text,
    UniqueConstraint,
)
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///autocrawl.db"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

class CrawlRunRow(Base):
    """A single crawl of one target application."""
    __tablename__ = "crawl_runs"

    id = Column(String(36), primary_key=True)
    target_url = Column(String(2000), nullable=False)
    status = Column(String(20), nullable=False, default="idle")
    max_depth = Column(Integer, nullable=False)
    max_pages = Column(Integer, nullable=False)
    pages_discovered = Column(Integer, nullable=False, default=0)
    coverage_percentage = Column(Float, nullable=False, default=0.0)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "target_url": self.target_url,
            "status": self.status,
            "max_depth": self.max_depth,
            "max_pages": self.max_pages,
            "pages_discovered": self.pages_discovered,
            "coverage_percentage": self.coverage_percentage,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class QueueRow(Base):
    """One discovery candidate; the replay log lives in ``required_steps``."""
    __tablename__ = "page_discovery_queue"
    __table_args__ = (UniqueConstraint("run_id", "url", name="uq_queue_run_url"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(36), ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String(2000), nullable=False)
    depth_level = Column(Integer, nullable=False, default=0)
    origin_page_id = Column(Integer, nullable=True)
    scenario_id = Column(Integer, nullable=True)
    priority = Column(String(10), nullable=False, default="medium")
    status = Column(String(20), nullable=False, default="queued", index=True)
    required_steps = Column(JSON, nullable=False, default=list)
    discovered_page_id = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    queued_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class PageRow(Base):
    """A crawled URL or a materialized SPA state (``is_virtual``)."""
    __tablename__ = "discovered_pages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(36), ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(String(2000), nullable=False)
    title = Column(String(500), nullable=True)
    screen_name = Column(String(255), nullable=True)
    page_type = Column(String(100), nullable=True)
    crawl_depth = Column(Integer, nullable=False, default=0)
    element_count = Column(Integer, nullable=False, default=0)
    screenshot = Column(Text, nullable=True)
    page_source = Column(Text, nullable=True)
    is_virtual = Column(Boolean, nullable=False, default=False)
    state_identifier = Column(String(100), nullable=True)
    state_hash = Column(String(64), nullable=True)
    triggered_by_action = Column(String(500), nullable=True)
    state_metadata = Column(JSON, nullable=True)
    parent_page_id = Column(Integer, ForeignKey("discovered_pages.id"), nullable=True)
    discovered_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "screen_name": self.screen_name,
            "page_type": self.page_type,
            "crawl_depth": self.crawl_depth,
            "element_count": self.element_count,
            "is_virtual": self.is_virtual,
            "state_identifier": self.state_identifier,
            "parent_page_id": self.parent_page_id,
        }


class ElementRow(Base):
    __tablename__ = "page_interactive_elements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    page_id = Column(Integer, ForeignKey("discovered_pages.id", ondelete="CASCADE"), nullable=False, index=True)
    element_type = Column(String(50), nullable=False)
    selector = Column(Text, nullable=False)
    text_content = Column(Text, nullable=True)
    attributes = Column(JSON, nullable=True)
    interaction_priority = Column(String(10), nullable=True)
    identified_by = Column(String(50), nullable=True)
    element_metadata = Column(JSON, nullable=True)
    self_healed = Column(Boolean, nullable=False, default=False)


class PathRow(Base):
    """An edge of the navigation graph and the full replay log reaching it."""
    __tablename__ = "crawl_paths"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(36), ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    from_page_id = Column(Integer, ForeignKey("discovered_pages.id"), nullable=True)
    to_page_id = Column(Integer, ForeignKey("discovered_pages.id"), nullable=False)
    element_id = Column(Integer, nullable=True)
    interaction_type = Column(String(50), nullable=False, default="navigate")
    path_sequence = Column(Integer, nullable=False, default=0)
    depth_level = Column(Integer, nullable=False, default=0)
    complete_step_sequence = Column(JSON, nullable=False, default=list)


class ScenarioRow(Base):
    __tablename__ = "interaction_scenarios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String(36), ForeignKey("crawl_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    page_id = Column(Integer, ForeignKey("discovered_pages.id", ondelete="CASCADE"), nullable=False)
    scenario_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    steps = Column(JSON, nullable=False, default=list)
    priority = Column(String(10), nullable=False, default="medium")
    executed = Column(Boolean, nullable=False, default=False)
    success = Column(Boolean, nullable=True)
    caused_state_change = Column(Boolean, nullable=False, default=False)
    state_change_type = Column(String(50), nullable=True)
    result_notes = Column(Text, nullable=True)


# ---------------------------------------------------------------------------
# Engine / session management
# ---------------------------------------------------------------------------

class Database:
    """Owns the async engine and session factory for one process."""

    def __init__(self, url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        self.url = url
        engine_kwargs = {"echo": echo}
        parsed = make_url(url)
        if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs.update(
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        self.engine = create_async_engine(url, **engine_kwargs)
        self._sessionmaker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def init(self) -> None:
        """Create all tables (idempotent)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.debug(f"[DB] Schema ready on {self._safe_url()}")

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def _safe_url(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)
