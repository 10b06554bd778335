"""
Crawl Repository
================
Persistence operations for one crawl run: run record, pages, elements,
edges and scenarios. The crawl queue has its own module (``crawl_queue``).

Each method opens and commits its own short session.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func, select, update

from .database import CrawlRunRow, Database, ElementRow, PageRow, PathRow, ScenarioRow, utcnow
from .models import InteractiveElement, RunPhase, Scenario, Step, steps_to_json

logger = logging.getLogger(__name__)


class CrawlRepository:
    """Reads and writes everything a run produces, except queue rows."""

    def __init__(self, db: Database, run_id: str):
        self.db = db
        self.run_id = run_id

    # ── Run record ────────────────────────────────────────────────

    async def create_run(self, target_url: str, max_depth: int, max_pages: int) -> None:
        async with self.db.session() as session:
            session.add(CrawlRunRow(
                id=self.run_id,
                target_url=target_url,
                status=RunPhase.IDLE.value,
                max_depth=max_depth,
                max_pages=max_pages,
            ))

    async def get_run(self) -> Optional[Dict[str, Any]]:
        async with self.db.session() as session:
            row = await session.get(CrawlRunRow, self.run_id)
            return row.to_dict() if row else None

    async def update_run_status(self, status: RunPhase, error_message: Optional[str] = None) -> None:
        values: Dict[str, Any] = {"status": status.value}
        if status == RunPhase.CRAWLING:
            values["started_at"] = utcnow()
        if status in (RunPhase.READY, RunPhase.FAILED):
            values["completed_at"] = utcnow()
        if error_message is not None:
            values["error_message"] = error_message[:2000]
        async with self.db.session() as session:
            await session.execute(
                update(CrawlRunRow).where(CrawlRunRow.id == self.run_id).values(**values)
            )

    async def update_run_progress(self, pages_discovered: int, coverage: float) -> None:
        async with self.db.session() as session:
            await session.execute(
                update(CrawlRunRow)
                .where(CrawlRunRow.id == self.run_id)
                .values(pages_discovered=pages_discovered, coverage_percentage=round(coverage, 2))
            )

    # ── Pages ─────────────────────────────────────────────────────

    async def save_page(
        self,
        url: str,
        title: str,
        screen_name: str,
        page_type: Optional[str],
        depth: int,
        element_count: int,
        screenshot: Optional[str] = None,
        page_source: Optional[str] = None,
    ) -> int:
        row = PageRow(
            run_id=self.run_id,
            url=url,
            title=(title or "")[:500],
            screen_name=(screen_name or "")[:255],
            page_type=page_type,
            crawl_depth=depth,
            element_count=element_count,
            screenshot=screenshot,
            page_source=page_source,
            is_virtual=False,
        )
        async with self.db.session() as session:
            session.add(row)
            await session.flush()
            return row.id

    async def save_virtual_page(
        self,
        url: str,
        title: str,
        depth: int,
        parent_page_id: Optional[int],
        state_identifier: str,
        state_hash: str,
        triggered_by: str,
        metadata: Dict[str, Any],
        screenshot: Optional[str] = None,
        page_source: Optional[str] = None,
    ) -> int:
        row = PageRow(
            run_id=self.run_id,
            url=url,
            title=title[:500],
            screen_name=title[:255],
            page_type="virtual_state",
            crawl_depth=depth,
            element_count=0,
            screenshot=screenshot,
            page_source=page_source,
            is_virtual=True,
            state_identifier=state_identifier,
            state_hash=state_hash,
            triggered_by_action=(triggered_by or "")[:500],
            state_metadata=metadata,
            parent_page_id=parent_page_id,
        )
        async with self.db.session() as session:
            session.add(row)
            await session.flush()
            return row.id

    async def find_virtual_page(self, state_hash: str) -> Optional[int]:
        async with self.db.session() as session:
            result = await session.execute(
                select(PageRow.id).where(
                    PageRow.run_id == self.run_id,
                    PageRow.is_virtual.is_(True),
                    PageRow.state_hash == state_hash,
                )
            )
            return result.scalars().first()

    async def list_pages(self, include_virtual: bool = True) -> List[Dict[str, Any]]:
        stmt = select(PageRow).where(PageRow.run_id == self.run_id).order_by(PageRow.id)
        if not include_virtual:
            stmt = stmt.where(PageRow.is_virtual.is_(False))
        async with self.db.session() as session:
            result = await session.execute(stmt)
            return [row.to_dict() for row in result.scalars()]

    async def visited_urls(self) -> Set[str]:
        """URLs of real (non-virtual) pages already crawled in this run."""
        async with self.db.session() as session:
            result = await session.execute(
                select(PageRow.url).where(
                    PageRow.run_id == self.run_id, PageRow.is_virtual.is_(False)
                )
            )
            return set(result.scalars())

    # ── Elements ──────────────────────────────────────────────────

    async def save_elements(self, page_id: int, elements: List[InteractiveElement]) -> None:
        """Persist elements and write the generated ids back onto them."""
        if not elements:
            return
        rows = []
        async with self.db.session() as session:
            for el in elements:
                row = ElementRow(
                    page_id=page_id,
                    element_type=el.element_type[:50],
                    selector=el.selector,
                    text_content=el.text_content,
                    attributes=el.attributes,
                    interaction_priority=el.interaction_priority,
                    identified_by=el.identified_by,
                    element_metadata=el.metadata,
                    self_healed=el.self_healed,
                )
                session.add(row)
                rows.append(row)
            await session.flush()
            for el, row in zip(elements, rows):
                el.id = row.id

    async def update_element_selector(self, element_id: int, selector: str) -> None:
        async with self.db.session() as session:
            await session.execute(
                update(ElementRow)
                .where(ElementRow.id == element_id)
                .values(selector=selector, self_healed=True)
            )

    async def list_elements(self, page_id: int) -> List[Dict[str, Any]]:
        async with self.db.session() as session:
            result = await session.execute(
                select(ElementRow).where(ElementRow.page_id == page_id).order_by(ElementRow.id)
            )
            return [
                {"id": r.id, "selector": r.selector, "text_content": r.text_content,
                 "element_type": r.element_type, "self_healed": r.self_healed}
                for r in result.scalars()
            ]

    # ── Edges ─────────────────────────────────────────────────────

    async def save_path(
        self,
        from_page_id: Optional[int],
        to_page_id: int,
        depth: int,
        steps: List[Step],
        interaction_type: str = "navigate",
        element_id: Optional[int] = None,
    ) -> int:
        async with self.db.session() as session:
            seq = (await session.execute(
                select(func.count(PathRow.id)).where(PathRow.run_id == self.run_id)
            )).scalar_one()
            row = PathRow(
                run_id=self.run_id,
                from_page_id=from_page_id,
                to_page_id=to_page_id,
                element_id=element_id,
                interaction_type=interaction_type,
                path_sequence=seq + 1,
                depth_level=depth,
                complete_step_sequence=steps_to_json(steps),
            )
            session.add(row)
            await session.flush()
            return row.id

    async def list_paths(self) -> List[Dict[str, Any]]:
        async with self.db.session() as session:
            result = await session.execute(
                select(PathRow).where(PathRow.run_id == self.run_id).order_by(PathRow.path_sequence)
            )
            return [
                {"from_page_id": r.from_page_id, "to_page_id": r.to_page_id,
                 "interaction_type": r.interaction_type, "depth": r.depth_level,
                 "steps": r.complete_step_sequence}
                for r in result.scalars()
            ]

    # ── Scenarios ─────────────────────────────────────────────────

    async def save_scenario(self, page_id: int, scenario: Scenario) -> int:
        row = ScenarioRow(
            run_id=self.run_id,
            page_id=page_id,
            scenario_name=scenario.name[:255],
            description=scenario.description,
            steps=[s.to_dict() for s in scenario.steps],
            priority=scenario.priority,
        )
        async with self.db.session() as session:
            session.add(row)
            await session.flush()
            scenario.id = row.id
            return row.id

    async def mark_scenario_executed(
        self,
        scenario_id: int,
        success: bool,
        notes: str = "",
        caused_state_change: bool = False,
        state_change_type: Optional[str] = None,
    ) -> None:
        async with self.db.session() as session:
            await session.execute(
                update(ScenarioRow)
                .where(ScenarioRow.id == scenario_id)
                .values(
                    executed=True,
                    success=success,
                    result_notes=notes[:2000] if notes else None,
                    caused_state_change=caused_state_change,
                    state_change_type=state_change_type,
                )
            )

    async def list_scenarios(self, page_id: Optional[int] = None) -> List[Dict[str, Any]]:
        stmt = select(ScenarioRow).where(ScenarioRow.run_id == self.run_id)
        if page_id is not None:
            stmt = stmt.where(ScenarioRow.page_id == page_id)
        async with self.db.session() as session:
            result = await session.execute(stmt.order_by(ScenarioRow.id))
            return [
                {"id": r.id, "page_id": r.page_id, "name": r.scenario_name,
                 "executed": r.executed, "success": r.success,
                 "caused_state_change": r.caused_state_change,
                 "state_change_type": r.state_change_type, "notes": r.result_notes}
                for r in result.scalars()
            ]
