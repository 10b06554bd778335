"""
Crawl Orchestrator
==================
Breadth-first, depth-bounded, parallel exploration of one web application.

Architecture:
- The queue (``CrawlQueue``) is seeded with the target URL at depth 0
- Depth levels are drained one at a time. Each level gets its own
  ``BrowserPoolManager`` sized ``min(items, max_parallel_crawls)``, and the
  pool is closed before the next level starts, so no depth d+1 item is
  dequeued before every depth-d item is terminal
- Every worker is bound to one leased browser. It replays the item's step
  log (``PathNavigator``), crawls the page, then resets and releases the browser
- Per page: settle → cookie banner → screenshot/HTML → element identification
  → persist page, elements, edge → login → scenarios → outbound links
- Scenario steps are watched by the ``SPAStateDetector``; significant
  changes without a URL change become virtual pages
- Newly reached URLs are enqueued at depth+1 with parent steps + one step

Run phases: idle → crawling (⇄ paused) → generating → ready | failed.
A seed that cannot be reached fails the run; any other failure only
abandons its own branch.

Usage::

    db = Database("sqlite+aiosqlite:///autocrawl.db")
    await db.init()
    orch = CrawlOrchestrator(CrawlConfig(target_url="https://app.example.com"), db)
    summary = await orch.start()
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .auth.credentials import (
    PASSWORD_PLACEHOLDER, USERNAME_PLACEHOLDER, Credentials, resolve_placeholder,
)
from .auth.login import LoginHandler, LoginOutcome
from .browser_pool import BrowserLauncher, BrowserPoolManager, PlaywrightLauncher
from .collaborators import (
    ElementIdentifier, FailureAdapter, FlowGenerator, FormScenarioPlanner,
    HtmlElementIdentifier, NullFailureAdapter, PlanningContext, ScenarioPlanner,
)
from .crawl_queue import CrawlQueue
from .database import Database
from .errors import CrawlError, NavigationError, SeedUnreachableError
from .interaction import (
    PASSWORD_SELECTOR, accept_cookies, click_element_with_healing, count_visible,
    generate_test_data, smart_fill, smart_select,
)
from .models import (
    InteractiveElement, PageAnalysis, Priority, QueueItem, RunPhase, Scenario,
    ScenarioStep, Step, coerce_analysis,
)
from .monitor import CrawlMonitor
from .path_navigator import (
    PathNavigator, StepDelays, append_step, click_step, fill_step, goto_step,
)
from .repository import CrawlRepository
from .session import CrawlSession
from .spa_state import SPAStateDetector, StateChange
from .utils import URLNormalizer, generate_page_name

logger = logging.getLogger(__name__)

# Hard ceiling on browsers per depth level
MAX_PARALLEL_CRAWLS = 5

_NAVIGABLE_TYPES = ("link", "a", "button", "tab", "menu-item")
_AUTH_WORDS = ("login", "log in", "sign in", "signin", "sign up", "signup", "register")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class CrawlConfig:
    """Engine-level settings for one run (built by ``CrawlerRunConfig``)."""
    target_url: str
    max_depth: int = 3
    max_pages: int = 50
    max_concurrent_browsers: int = 3
    headless: bool = True
    same_site_only: bool = True

    # Replay timing
    step_delays: StepDelays = field(default_factory=StepDelays)

    # Page / state settlement (ms)
    settle_timeout_ms: int = 3000
    settle_extra_ms: int = 500
    post_navigation_wait_ms: int = 1000
    scenario_step_wait_ms: int = 2000
    modal_wait_ms: int = 3000
    link_idle_timeout_ms: int = 5000
    return_navigation_timeout_ms: int = 30000
    cookie_settle_ms: int = 1000

    # Login timing (ms)
    login_field_settle_ms: int = 800
    login_submit_wait_ms: int = 3000

    # Per-page budgets
    max_links_per_page: int = 50
    max_scenarios_per_page: int = 5

    # Infrastructure
    pool_poll_interval: float = 1.0
    report_interval: float = 10.0
    capture_screenshots: bool = True

    @property
    def max_parallel_crawls(self) -> int:
        return max(1, min(self.max_concurrent_browsers, MAX_PARALLEL_CRAWLS))


@dataclass
class ScenarioResult:
    success: bool
    error: Optional[str] = None
    state_change_type: Optional[str] = None
    new_url: Optional[str] = None
    virtual_page_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class CrawlOrchestrator:
    """Top-level controller for one crawl run."""

    def __init__(
        self,
        config: CrawlConfig,
        db: Database,
        run_id: Optional[str] = None,
        launcher: Optional[BrowserLauncher] = None,
        identifier: Optional[ElementIdentifier] = None,
        planner: Optional[ScenarioPlanner] = None,
        failure_adapter: Optional[FailureAdapter] = None,
        flow_generator: Optional[FlowGenerator] = None,
        credentials: Optional[Credentials] = None,
    ):
        self.config = config
        self.db = db
        self.run_id = run_id or str(uuid.uuid4())
        self.launcher = launcher or PlaywrightLauncher(headless=config.headless)
        self.identifier = identifier or HtmlElementIdentifier()
        self.planner = planner or FormScenarioPlanner()
        self.failure_adapter = failure_adapter or NullFailureAdapter()
        self.flow_generator = flow_generator
        self.credentials = credentials

        self.normalizer = URLNormalizer()
        self.repo = CrawlRepository(db, self.run_id)
        self.session = CrawlSession(self.run_id, config.max_pages)
        self.queue = CrawlQueue(
            db, self.run_id, config.max_depth,
            is_visited=lambda url: self.session.is_visited(url),
        )
        self.monitor = CrawlMonitor(self.run_id, config.max_pages, config.report_interval)
        self.login = LoginHandler(
            credentials,
            field_settle_s=config.login_field_settle_ms / 1000,
            submit_wait_s=config.login_submit_wait_ms / 1000,
        )
        self.phase = RunPhase.IDLE
        self.seed_url = self.normalizer.normalize(config.target_url) or config.target_url
        self._seed_error: Optional[SeedUnreachableError] = None

    # ── Public API ────────────────────────────────────────────────

    def add_progress_callback(self, callback: Callable) -> None:
        self.monitor.add_callback(callback)

    def can_discover_from_depth(self, depth: int) -> bool:
        return depth < self.config.max_depth

    def can_enqueue_at_depth(self, depth: int) -> bool:
        return depth <= self.config.max_depth

    async def start(self, resume: bool = False) -> Dict[str, Any]:
        """Run the crawl to completion and return a summary.

        Raises:
            SeedUnreachableError: the target URL could not be reached.
        """
        if resume:
            await self._prepare_resume()
        else:
            await self.repo.create_run(self.seed_url, self.config.max_depth, self.config.max_pages)

        await self.monitor.start()
        stop_reason = "completed"
        try:
            await self._set_phase(RunPhase.CRAWLING, f"Crawling {self.seed_url}")
            if not resume:
                await self.queue.enqueue(
                    self.seed_url, 0, priority=Priority.HIGH, steps=[goto_step(self.seed_url)],
                )

            await self._process_breadth_first()

            if self._seed_error is not None:
                raise self._seed_error

            stop_reason = self._stop_reason()
            await self._set_phase(RunPhase.GENERATING, "Generating flows")
            if self.flow_generator is not None:
                try:
                    await self.flow_generator.generate_flows(self.run_id)
                except Exception as e:
                    logger.warning(f"[FLOWS] Flow generation failed: {e}")
            await self._set_phase(RunPhase.READY, f"Crawl complete ({stop_reason})")

        except SeedUnreachableError as e:
            stop_reason = "seed_unreachable"
            logger.error(f"[RUN] Seed unreachable: {e}")
            await self._set_phase(RunPhase.FAILED, str(e), error=str(e))
            raise
        except Exception as e:
            stop_reason = "error"
            logger.error(f"[RUN] Crawl failed: {e}", exc_info=True)
            await self._set_phase(RunPhase.FAILED, str(e), error=str(e))
            raise
        finally:
            await self.repo.update_run_progress(self.session.pages_discovered, self.session.coverage())
            await self.monitor.stop(stop_reason)

        return await self.summary()

    async def pause(self) -> None:
        self.session.pause()
        await self._set_phase(RunPhase.PAUSED, "Paused")

    async def resume(self) -> None:
        self.session.resume()
        await self._set_phase(RunPhase.CRAWLING, "Resumed")

    def stop(self) -> None:
        """Cooperative stop: workers finish their current item, then exit."""
        logger.info("[RUN] Stop requested")
        self.session.stop()

    async def summary(self) -> Dict[str, Any]:
        metrics = await self.monitor.snapshot()
        return {
            "run_id": self.run_id,
            "status": self.phase.value,
            "pages_discovered": self.session.pages_discovered,
            "virtual_pages": self.session.virtual_pages,
            "max_pages": self.config.max_pages,
            "queue": await self.queue.count_by_status(),
            "metrics": metrics,
            "stop_reason": metrics.stop_reason,
        }

    # ── Run bookkeeping ───────────────────────────────────────────

    async def _prepare_resume(self) -> None:
        run = await self.repo.get_run()
        if run is None:
            raise CrawlError(f"No run {self.run_id} to resume")
        visited = await self.repo.visited_urls()
        self.session = CrawlSession(self.run_id, self.config.max_pages, visited)
        requeued = await self.queue.requeue_interrupted()
        logger.info(
            f"[RUN] Resuming {self.run_id}: {len(visited)} page(s) already crawled, "
            f"{requeued} item(s) re-queued"
        )

    async def _set_phase(self, phase: RunPhase, message: str = "", error: Optional[str] = None) -> None:
        self.phase = phase
        await self.repo.update_run_status(phase, error)
        await self.monitor.emit(
            phase,
            pages_discovered=self.session.pages_discovered,
            depth=self.session.current_depth,
            message=message,
            pct=100 if phase == RunPhase.READY else None,
        )

    def _stop_reason(self) -> str:
        if self.session.stopped:
            return "stopped"
        if self.session.budget_exhausted:
            return "max_pages"
        return "completed"

    # ── Breadth-first scheduling ──────────────────────────────────

    async def _process_breadth_first(self) -> None:
        # A resumed run starts at its shallowest unfinished level
        lowest = await self.queue.min_queued_depth()
        depth = lowest if lowest is not None else 0
        while depth <= self.config.max_depth:
            if self.session.stopped or self.session.budget_exhausted:
                break
            if not await self.session.wait_if_paused():
                break

            items = await self.queue.fetch_ready(depth)
            if not items:
                depth += 1
                continue

            self.session.current_depth = depth
            await self.monitor.set_depth(depth)
            logger.info(f"[BFS] Depth {depth}: {len(items)} item(s) ready")
            await self._process_items_in_parallel(items, depth)
            depth += 1

        logger.info(
            f"[BFS] Finished — {self.session.pages_discovered} page(s), "
            f"{self.session.virtual_pages} virtual"
        )

    async def _process_items_in_parallel(self, items: List[QueueItem], depth: int) -> None:
        pool_size = min(len(items), self.config.max_parallel_crawls)
        pool = BrowserPoolManager(pool_size, self.launcher, self.config.pool_poll_interval)
        work: Deque[QueueItem] = deque(items)
        workers: List[asyncio.Task] = []
        try:
            await pool.initialize()
            workers = [asyncio.create_task(self._worker(i, pool, work)) for i in range(pool_size)]
            results = await asyncio.gather(*workers, return_exceptions=True)
            for i, result in enumerate(results):
                if isinstance(result, Exception):
                    logger.error(f"[WORKER-{i}] Exited with error: {result}")
        finally:
            for w in workers:
                if not w.done():
                    w.cancel()
            await pool.close_all()
        logger.info(f"[BFS] Depth {depth} drained")

    async def _worker(self, worker_id: int, pool: BrowserPoolManager, work: Deque[QueueItem]) -> None:
        await self.monitor.worker_started()
        try:
            while work:
                if self.session.stopped or self.session.budget_exhausted:
                    break
                if not await self.session.wait_if_paused():
                    break
                # Another worker may have taken the last item while this one was paused
                if not work:
                    break
                item = work.popleft()

                handle = await pool.acquire(self.session.stop_event)
                if handle is None:
                    work.appendleft(item)
                    break
                try:
                    logger.info(f"[WORKER-{worker_id}] depth={item.depth} {item.url}")
                    await self._process_queue_item(handle.page, item)
                finally:
                    handle = await pool.reset(handle)
                    pool.release(handle)
        finally:
            await self.monitor.worker_finished()

    async def _process_queue_item(self, page: Page, item: QueueItem) -> None:
        await self.queue.mark_processing(item)
        started = time.monotonic()

        navigator = PathNavigator(page, self.credentials, self.config.step_delays)
        try:
            await navigator.execute(item.required_steps or [goto_step(item.url)])
        except NavigationError as e:
            await self.queue.mark_failed(item, str(e))
            await self.monitor.record_failure()
            if item.depth == 0 and item.url == self.seed_url:
                self._seed_error = SeedUnreachableError.wrap(e)
                self.session.stop()
            return

        if not await self.session.try_reserve_page(item.url):
            if self.session.is_visited(item.url):
                await self.queue.mark_completed(item, None)
            else:
                # Page budget ran out while this item was in flight
                await self.queue.return_to_queue(item)
            return

        try:
            page_id = await self._crawl_page(page, item)
        except Exception as e:
            logger.error(f"[CRAWL] {item.url} failed: {e}", exc_info=True)
            await self.queue.mark_failed(item, str(e))
            await self.monitor.record_failure()
            return

        await self.queue.mark_completed(item, page_id)
        await self.monitor.record_page((time.monotonic() - started) * 1000)

    # ── Per-page crawl ────────────────────────────────────────────

    async def _crawl_page(self, page: Page, item: QueueItem) -> int:
        cfg = self.config
        url = item.url

        await SPAStateDetector.wait_for_settlement(page, cfg.settle_timeout_ms, cfg.settle_extra_ms)
        try:
            await accept_cookies(page, cfg.cookie_settle_ms / 1000)
        except Exception as e:
            logger.debug(f"[COOKIE] Skipped: {e}")

        await self.monitor.emit(
            RunPhase.CRAWLING,
            pages_discovered=self.session.pages_discovered,
            current_url=url,
            depth=item.depth,
            message=f"Discovered {self.session.pages_discovered}/{cfg.max_pages} pages — on {url}",
        )
        await self._sleep_ms(cfg.post_navigation_wait_ms)

        screenshot = await self._screenshot(page)
        html = await self._content(page)
        title = await self._title(page)

        analysis = await self._identify(screenshot, html, url)
        elements = analysis.interactive_elements
        if not elements:
            logger.warning(f"[CRAWL] No interactive elements on {url} — page may not have loaded")

        screen_name = analysis.screen_name
        if not screen_name or screen_name == title:
            screen_name = generate_page_name(url, title)

        page_id = await self.repo.save_page(
            url=url, title=title, screen_name=screen_name, page_type=analysis.page_type,
            depth=item.depth, element_count=len(elements),
            screenshot=screenshot or None, page_source=html or None,
        )
        await self.repo.save_elements(page_id, elements)
        await self.repo.save_path(
            item.origin_page_id, page_id, item.depth, item.required_steps,
            interaction_type="seed" if item.origin_page_id is None else "navigate",
        )
        await self.repo.update_run_progress(self.session.pages_discovered, self.session.coverage())
        logger.info(
            f"[CRAWL] ✓ {screen_name!r} depth={item.depth} elements={len(elements)} "
            f"({self.session.pages_discovered}/{cfg.max_pages})"
        )

        if await self.login.detect_login_page(page, analysis.page_type, screen_name, elements):
            await self._attempt_login(page, item, page_id, elements)

        if self.can_discover_from_depth(item.depth):
            await self._run_scenarios(page, item, page_id, screen_name, analysis)
            await self._discover_and_enqueue_links(page, item, page_id, elements)

        return page_id

    # ── Login ─────────────────────────────────────────────────────

    async def _attempt_login(
        self, page: Page, item: QueueItem, page_id: int, elements: List[InteractiveElement],
    ) -> LoginOutcome:
        before = self._normalize(page.url)
        outcome = await self.login.handle_login_form(page, elements)
        if not outcome:
            return outcome
        await self.monitor.record_login()

        after = self._normalize(page.url)
        if after and after != before and self._in_scope(after):
            steps = list(item.required_steps) + self._login_steps(outcome)
            if await self.queue.enqueue(after, item.depth + 1, page_id, None, Priority.HIGH, steps):
                await self.monitor.record_enqueue()
        return outcome

    @staticmethod
    def _login_steps(outcome: LoginOutcome) -> List[Step]:
        steps: List[Step] = []
        if outcome.username_selector:
            steps.append(fill_step(outcome.username_selector, USERNAME_PLACEHOLDER))
        steps.append(fill_step(outcome.password_selector, PASSWORD_PLACEHOLDER))
        if outcome.submit_selector:
            steps.append(click_step(outcome.submit_selector))
        else:
            steps.append(Step(action="type", selector=outcome.password_selector, value="\n"))
        return steps

    # ── Scenarios ─────────────────────────────────────────────────

    async def _run_scenarios(
        self, page: Page, item: QueueItem, page_id: int, screen_name: str, analysis: PageAnalysis,
    ) -> None:
        context = PlanningContext(
            run_id=self.run_id, page_id=page_id, url=item.url, screen_name=screen_name,
            page_type=analysis.page_type, depth=item.depth,
            elements=analysis.interactive_elements,
        )
        try:
            scenarios = list(await self.planner.generate_scenarios(context) or [])
        except Exception as e:
            logger.warning(f"[SCENARIO] Planner failed for {item.url}: {e}")
            return

        for scenario in scenarios[: self.config.max_scenarios_per_page]:
            if self.session.stopped or self.session.budget_exhausted:
                break
            if not await self.session.wait_if_paused():
                break
            await self.repo.save_scenario(page_id, scenario)
            await self._execute_scenario(page, scenario, item, page_id, analysis.interactive_elements)
            if not await self._return_to_origin(page, item.url):
                logger.warning(f"[SCENARIO] Could not return to {item.url} — skipping remaining scenarios")
                break

    async def _execute_scenario(
        self,
        page: Page,
        scenario: Scenario,
        item: QueueItem,
        page_id: int,
        elements: List[InteractiveElement],
    ) -> ScenarioResult:
        cfg = self.config
        detector = SPAStateDetector()
        start_url = self._normalize(page.url)
        await detector.capture(page, "before_scenario")
        logger.info(f"[SCENARIO] {scenario.name!r} ({len(scenario.steps)} step(s))")

        success, error = True, None
        for i, step in enumerate(scenario.steps, start=1):
            if self.session.stopped:
                break
            before_id, after_id = f"step_{i}_before", f"step_{i}_after"
            await detector.capture(page, before_id)
            try:
                await self._execute_scenario_step(page, step, elements)
            except Exception as e:
                logger.warning(f"[SCENARIO] Step {i} {step.action} failed: {e}")
                if not await self._adapt_failure(page, step, e, elements):
                    success, error = False, f"Step {i} ({step.action}) failed: {e}"
                    break
                logger.info(f"[SCENARIO] Step {i} recovered via alternative steps")

            await detector.wait_for_settlement(page, cfg.settle_timeout_ms, cfg.settle_extra_ms)
            if step.action in ("click", "fill"):
                change = await detector.detect_state_change(
                    page, before_id, after_id, f"{step.action} {step.text_content or step.selector}",
                )
                await self._react_to_state_change(page, change)
            await self._sleep_ms(cfg.scenario_step_wait_ms)

        result = ScenarioResult(success=success, error=error)
        overall = await detector.detect_state_change(
            page, "before_scenario", "after_scenario", f"scenario: {scenario.name}",
        )
        end_url = self._normalize(page.url)

        if end_url and end_url != start_url:
            result.new_url = end_url
            if not self.session.is_visited(end_url) and self._in_scope(end_url):
                steps = append_step(item.required_steps, goto_step(end_url))
                if await self.queue.enqueue(end_url, item.depth + 1, page_id, scenario.id, Priority.HIGH, steps):
                    await self.monitor.record_enqueue()
        elif overall.significant:
            result.state_change_type = overall.change_type
            result.virtual_page_id = await self._handle_virtual_page(page, overall, item, page_id)

        notes = error or (f"state change: {overall.change_type}" if overall.significant else "completed")
        if scenario.id is not None:
            await self.repo.mark_scenario_executed(
                scenario.id, success, notes,
                caused_state_change=overall.significant or bool(result.new_url),
                state_change_type=overall.change_type,
            )
        try:
            await self.planner.mark_executed(scenario.id, success, notes, error)
        except Exception as e:
            logger.debug(f"[SCENARIO] mark_executed failed: {e}")
        await self.monitor.record_scenario(success)
        return result

    async def _execute_scenario_step(
        self, page: Page, step: ScenarioStep, elements: List[InteractiveElement],
    ) -> None:
        action = step.action.lower()
        if action == "click":
            element = self._element_for(step, elements)
            await click_element_with_healing(page, element, on_healed=self._persist_heal)
        elif action in ("fill", "type"):
            value = step.value
            if value is None:
                value = generate_test_data(step.selector, step.text_content, step.element_type)
            await smart_fill(page, step.selector, resolve_placeholder(value, self.credentials))
        elif action == "select":
            await smart_select(page, step.selector, step.value)
        elif action == "check":
            await page.check(step.selector, timeout=5000)
        elif action == "uncheck":
            await page.uncheck(step.selector, timeout=5000)
        elif action == "wait":
            await self._sleep_ms(int(step.value or 1000))
        elif action in ("goto", "navigate"):
            await page.goto(step.value, wait_until="domcontentloaded",
                            timeout=self.config.step_delays.navigation_timeout_ms)
        else:
            logger.warning(f"[SCENARIO] Unknown action {step.action!r} — skipped")

    async def _react_to_state_change(self, page: Page, change: StateChange) -> None:
        if not change.significant:
            return
        if change.change_type == "modal_opened":
            if change.details.get("has_password_field"):
                logger.info("[SCENARIO] Login modal opened, attempting login")
                await self._login_in_place(page)
        elif change.change_type == "dynamic_fields":
            logger.info(f"[SCENARIO] New fields revealed: {change.new_fields}")
        elif change.change_type == "login_form_appeared":
            logger.info("[SCENARIO] Login form appeared, attempting inline login")
            await self._login_in_place(page)

    async def _login_in_place(self, page: Page) -> LoginOutcome:
        """Re-identify the page as it is now and run the login form on it."""
        screenshot = await self._screenshot(page)
        fresh = await self._identify(screenshot, await self._content(page), page.url)
        outcome = await self.login.handle_login_form(page, fresh.interactive_elements)
        if outcome:
            await self.monitor.record_login()
        return outcome

    async def _adapt_failure(
        self, page: Page, step: ScenarioStep, error: Exception, elements: List[InteractiveElement],
    ) -> bool:
        intent = step.expected_outcome or f"{step.action} {step.text_content or step.selector}"
        try:
            analysis = await self.failure_adapter.analyze_failure(
                step, str(error), await self._screenshot(page), await self._content(page), intent,
            )
        except Exception as e:
            logger.warning(f"[ADAPT] Failure analysis unavailable: {e}")
            return False
        if not analysis or not analysis.can_achieve_intent or not analysis.alternative_steps:
            return False

        try:
            for alt in analysis.alternative_steps:
                await self._execute_scenario_step(page, alt, elements)
            verification = await self.failure_adapter.verify_intent_achieved(
                intent, await self._screenshot(page),
            )
        except Exception as e:
            logger.warning(f"[ADAPT] Alternative steps failed: {e}")
            return False
        return bool(verification and verification.achieved)

    # ── Virtual pages ─────────────────────────────────────────────

    async def _handle_virtual_page(
        self, page: Page, change: StateChange, item: QueueItem, parent_page_id: int,
    ) -> Optional[int]:
        candidate = change.virtual_page
        if candidate is None:
            return None
        first_claim = await self.session.claim_state(candidate.state_hash)
        existing = await self.repo.find_virtual_page(candidate.state_hash)
        if existing is not None:
            await self.repo.save_path(
                parent_page_id, existing, item.depth + 1, item.required_steps,
                interaction_type=candidate.change_type,
            )
            logger.info(f"[SPA] {candidate.triggered_by!r} reaches existing state {candidate.state_identifier}")
            return existing
        if not first_claim:
            # Claimed by another worker that has not persisted it yet
            logger.debug(f"[SPA] State {candidate.state_identifier} is being materialized elsewhere")
            return None

        index = await self.session.next_virtual_index()
        base = (self._normalize(candidate.base_url) or item.url).split("#")[0]
        virtual_url = f"{base}#virtual-{index}"
        page_id = await self.repo.save_virtual_page(
            url=virtual_url,
            title=f"Virtual: {candidate.change_type}",
            depth=item.depth + 1,
            parent_page_id=parent_page_id,
            state_identifier=candidate.state_identifier,
            state_hash=candidate.state_hash,
            triggered_by=candidate.triggered_by,
            metadata={
                "change_type": candidate.change_type,
                "description": change.description,
                "details": candidate.details,
                "before_hash": candidate.before_hash,
            },
            screenshot=(await self._screenshot(page)) or None,
            page_source=(await self._content(page)) or None,
        )
        await self.repo.save_path(
            parent_page_id, page_id, item.depth + 1, item.required_steps,
            interaction_type=candidate.change_type,
        )
        self.session.virtual_pages += 1
        await self.monitor.record_virtual_page()
        logger.info(f"[SPA] Virtual page {virtual_url} ({candidate.state_identifier})")

        context = PlanningContext(
            run_id=self.run_id, page_id=page_id, url=virtual_url,
            screen_name=f"Virtual: {candidate.change_type}", page_type="virtual_state",
            depth=item.depth + 1, is_virtual=True, state_change=dict(candidate.details),
        )
        try:
            for scenario in await self.planner.generate_scenarios(context) or []:
                await self.repo.save_scenario(page_id, scenario)
        except Exception as e:
            logger.debug(f"[SPA] Planner skipped virtual page: {e}")
        return page_id

    # ── Outbound links ────────────────────────────────────────────

    @staticmethod
    def _is_navigable(element: InteractiveElement) -> bool:
        if element.element_type.lower() in _NAVIGABLE_TYPES:
            return True
        text = (element.text_content or "").lower()
        return any(w in text for w in _AUTH_WORDS)

    async def _discover_and_enqueue_links(
        self, page: Page, item: QueueItem, page_id: int, elements: List[InteractiveElement],
    ) -> None:
        cfg = self.config
        candidates = [e for e in elements if self._is_navigable(e)][: cfg.max_links_per_page]
        if not candidates:
            return
        logger.info(f"[LINKS] {len(candidates)} navigable element(s) on {item.url}")

        for element in candidates:
            if self.session.stopped or self.session.budget_exhausted:
                break
            if not await self.session.wait_if_paused():
                break

            before = self._normalize(page.url)
            try:
                used = await click_element_with_healing(page, element, on_healed=self._persist_heal)
            except Exception as e:
                logger.debug(f"[LINKS] Could not click {element.selector!r}: {e}")
                continue

            try:
                await page.wait_for_load_state("networkidle", timeout=cfg.link_idle_timeout_ms)
            except PlaywrightTimeout:
                pass
            await self._sleep_ms(cfg.modal_wait_ms)

            after = self._normalize(page.url)
            click = click_step(used, element.text_content or None)
            if after and after != before:
                await self._enqueue_discovered(after, item, page_id, click, Priority.MEDIUM)
            elif await count_visible(page, PASSWORD_SELECTOR):
                await self._login_via_modal(page, item, page_id, before, click)

            if not await self._return_to_origin(page, item.url):
                logger.warning(f"[LINKS] Lost origin {item.url} — aborting remaining candidates")
                break

    async def _login_via_modal(
        self, page: Page, item: QueueItem, page_id: int, before: Optional[str], click: Step,
    ) -> None:
        logger.info("[LINKS] Login form revealed in place — attempting login")
        if not await self._login_in_place(page):
            return
        redirect = self._normalize(page.url)
        if redirect and redirect != before:
            await self._enqueue_discovered(redirect, item, page_id, click, Priority.HIGH)

    async def _enqueue_discovered(
        self, url: str, item: QueueItem, page_id: int, step: Step, priority: Priority,
    ) -> None:
        if not self._in_scope(url) or self.session.is_visited(url):
            return
        if not self.can_enqueue_at_depth(item.depth + 1):
            return
        steps = append_step(item.required_steps, step)
        if await self.queue.enqueue(url, item.depth + 1, page_id, None, priority, steps):
            await self.monitor.record_enqueue()

    async def _return_to_origin(self, page: Page, origin: str) -> bool:
        target = self._normalize(origin)
        if self._normalize(page.url) == target:
            return True
        for attempt in (1, 2):
            try:
                await page.goto(origin, wait_until="domcontentloaded",
                                timeout=self.config.return_navigation_timeout_ms)
                await self._sleep_ms(self.config.step_delays.goto_settle_ms)
            except Exception as e:
                logger.warning(f"[LINKS] Return to {origin} failed (attempt {attempt}): {e}")
                continue
            if self._normalize(page.url) == target:
                return True
        return False

    # ── Helpers ───────────────────────────────────────────────────

    def _normalize(self, url: Optional[str]) -> Optional[str]:
        return self.normalizer.normalize(url) if url else None

    def _in_scope(self, url: str) -> bool:
        return not self.config.same_site_only or URLNormalizer.is_same_site(url, self.seed_url)

    @staticmethod
    def _element_for(step: ScenarioStep, elements: List[InteractiveElement]) -> InteractiveElement:
        for el in elements:
            if el.selector == step.selector:
                return el
        return step.as_element()

    async def _persist_heal(self, element: InteractiveElement) -> None:
        await self.monitor.record_heal()
        if element.id is not None:
            await self.repo.update_element_selector(element.id, element.selector)

    async def _identify(self, screenshot: str, html: str, url: str) -> PageAnalysis:
        try:
            raw = await self.identifier.identify(screenshot, html, url)
        except Exception as e:
            logger.warning(f"[IDENTIFY] Element identification failed for {url}: {e}")
            return PageAnalysis()
        return coerce_analysis(raw)

    async def _screenshot(self, page: Page) -> str:
        if not self.config.capture_screenshots:
            return ""
        try:
            return base64.b64encode(await page.screenshot(full_page=False)).decode("ascii")
        except Exception as e:
            logger.debug(f"[CRAWL] Screenshot failed: {e}")
            return ""

    @staticmethod
    async def _content(page: Page) -> str:
        try:
            return await page.content()
        except Exception as e:
            logger.debug(f"[CRAWL] page.content() failed: {e}")
            return ""

    @staticmethod
    async def _title(page: Page) -> str:
        try:
            return await page.title()
        except Exception:
            return ""

    @staticmethod
    async def _sleep_ms(ms: int) -> None:
        if ms:
            await asyncio.sleep(ms / 1000)
