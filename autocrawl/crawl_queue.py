"""
Crawl Queue
===========
Durable, per-run, per-URL discovery queue backed by ``page_discovery_queue``.

Rules:
    - ``enqueue`` is a no-op for visited URLs and for ``depth > max_depth``
    - (run, url) is unique; a duplicate insert is silently ignored
    - ``fetch_ready(depth)`` orders by priority (high → medium → low),
      then insertion order
    - ``queued → processing → completed | failed``; failure is terminal
      and is never retried within the run

Each call is its own statement/transaction — never held across browser work.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError

from .database import Database, QueueRow, utcnow
from .models import Priority, QueueItem, QueueStatus, Step, steps_from_json, steps_to_json

logger = logging.getLogger(__name__)

_PRIORITY_ORDER = case(
    (QueueRow.priority == Priority.HIGH.value, 0),
    (QueueRow.priority == Priority.MEDIUM.value, 1),
    else_=2,
)


def _to_item(row: QueueRow) -> QueueItem:
    return QueueItem(
        id=row.id,
        run_id=row.run_id,
        url=row.url,
        depth=row.depth_level,
        priority=Priority(row.priority),
        status=QueueStatus(row.status),
        required_steps=steps_from_json(row.required_steps),
        origin_page_id=row.origin_page_id,
        scenario_id=row.scenario_id,
        discovered_page_id=row.discovered_page_id,
        error_message=row.error_message,
        queued_at=row.queued_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


class CrawlQueue:
    """Queue of discovery candidates for one run."""

    def __init__(
        self,
        db: Database,
        run_id: str,
        max_depth: int,
        is_visited: Optional[Callable[[str], bool]] = None,
    ):
        self.db = db
        self.run_id = run_id
        self.max_depth = max_depth
        self._is_visited = is_visited or (lambda url: False)

    async def enqueue(
        self,
        url: str,
        depth: int,
        origin_page_id: Optional[int] = None,
        scenario_id: Optional[int] = None,
        priority: Priority = Priority.MEDIUM,
        steps: Optional[List[Step]] = None,
    ) -> bool:
        """Insert a queued item. Returns True only when a new row was created."""
        if self._is_visited(url):
            logger.debug(f"[QUEUE] Skip visited: {url}")
            return False
        if depth > self.max_depth:
            logger.debug(f"[QUEUE] Skip {url} — depth {depth} > max {self.max_depth}")
            return False

        try:
            async with self.db.session() as session:
                existing = await session.execute(
                    select(QueueRow.id).where(QueueRow.run_id == self.run_id, QueueRow.url == url)
                )
                if existing.first() is not None:
                    return False
                session.add(QueueRow(
                    run_id=self.run_id,
                    url=url,
                    depth_level=depth,
                    origin_page_id=origin_page_id,
                    scenario_id=scenario_id,
                    priority=Priority(priority).value,
                    status=QueueStatus.QUEUED.value,
                    required_steps=steps_to_json(steps or []),
                ))
        except IntegrityError:
            # Lost a race with a concurrent worker enqueueing the same URL
            return False

        logger.info(f"[QUEUE] + depth={depth} priority={Priority(priority).value} {url}")
        return True

    async def fetch_ready(self, depth: int) -> List[QueueItem]:
        async with self.db.session() as session:
            result = await session.execute(
                select(QueueRow)
                .where(
                    QueueRow.run_id == self.run_id,
                    QueueRow.depth_level == depth,
                    QueueRow.status == QueueStatus.QUEUED.value,
                )
                .order_by(_PRIORITY_ORDER, QueueRow.id)
            )
            return [_to_item(row) for row in result.scalars()]

    async def mark_processing(self, item: QueueItem) -> None:
        await self._transition(item, QueueStatus.PROCESSING, started_at=utcnow())

    async def mark_completed(self, item: QueueItem, page_id: Optional[int]) -> None:
        item.discovered_page_id = page_id
        await self._transition(
            item, QueueStatus.COMPLETED,
            discovered_page_id=page_id, completed_at=utcnow(),
        )

    async def mark_failed(self, item: QueueItem, error: str) -> None:
        item.error_message = error
        await self._transition(
            item, QueueStatus.FAILED,
            error_message=(error or "")[:2000], completed_at=utcnow(),
        )
        logger.warning(f"[QUEUE] ✗ {item.url} — {error}")

    async def return_to_queue(self, item: QueueItem) -> None:
        """Undo ``mark_processing`` for an item that was never crawled."""
        await self._transition(item, QueueStatus.QUEUED, started_at=None)

    async def _transition(self, item: QueueItem, status: QueueStatus, **values) -> None:
        item.status = status
        async with self.db.session() as session:
            await session.execute(
                update(QueueRow).where(QueueRow.id == item.id).values(status=status.value, **values)
            )

    # ── Resume support ────────────────────────────────────────────

    async def requeue_interrupted(self) -> int:
        """Move items a crashed process left in ``processing`` back to ``queued``."""
        async with self.db.session() as session:
            result = await session.execute(
                update(QueueRow)
                .where(
                    QueueRow.run_id == self.run_id,
                    QueueRow.status == QueueStatus.PROCESSING.value,
                )
                .values(status=QueueStatus.QUEUED.value, started_at=None)
            )
            count = result.rowcount or 0
        if count:
            logger.info(f"[QUEUE] Re-queued {count} interrupted item(s)")
        return count

    async def count_by_status(self) -> Dict[str, int]:
        async with self.db.session() as session:
            result = await session.execute(
                select(QueueRow.status, func.count(QueueRow.id))
                .where(QueueRow.run_id == self.run_id)
                .group_by(QueueRow.status)
            )
            counts = {s.value: 0 for s in QueueStatus}
            counts.update({status: n for status, n in result.all()})
            return counts

    async def list_items(self) -> List[QueueItem]:
        async with self.db.session() as session:
            result = await session.execute(
                select(QueueRow).where(QueueRow.run_id == self.run_id).order_by(QueueRow.id)
            )
            return [_to_item(row) for row in result.scalars()]

    async def min_queued_depth(self) -> Optional[int]:
        async with self.db.session() as session:
            result = await session.execute(
                select(func.min(QueueRow.depth_level)).where(
                    QueueRow.run_id == self.run_id,
                    QueueRow.status == QueueStatus.QUEUED.value,
                )
            )
            return result.scalar_one()
