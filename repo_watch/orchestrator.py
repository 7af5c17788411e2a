# RepoMonitor: the top-level orchestrator.

# Responsibilities:
#   - Own the MonitorContext: settings, cursor store, shared aiohttp session,
#     fetcher, renderer, delivery and dispatcher
#   - Drive one poll cycle per interval as a single supervised task
#   - Isolate failures: one repo failing never stops the others, one cycle
#     failing never stops the loop
#   - Provide a clean stop() for graceful shutdown
#
# Concurrency model:
#   Cycles never overlap: the next one starts `interval` after the previous
#   one started, or right away if it ran long. Inside a cycle up to
#   max_concurrent_targets repos are checked at once. Each repo is handled
#   by exactly one RepoWatcher, so each cursor has one writer.

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime

import aiohttp

from repo_watch.config import USER_AGENT, Settings
from repo_watch.differ import FeedDiffer
from repo_watch.dispatcher import BatchDispatcher
from repo_watch.handlers import ConsoleDelivery, Delivery, WebhookDelivery
from repo_watch.http_client import ConditionalHTTPClient, FeedFetcher, GitHubFetcher
from repo_watch.models import WatchTarget, utc_now
from repo_watch.render import HtmlRenderer, MarkdownRenderer, Renderer
from repo_watch.store import CursorStore, SqliteCursorStore
from repo_watch.watcher import RepoWatcher, TargetReport, TargetState

log = logging.getLogger(__name__)


class MonitorContext:
    """
    Everything one monitor run owns, passed explicitly instead of held globally.

    Lifecycle: open() loads persisted cursors, cycles run, close() flushes
    the store and closes the HTTP session. Usable as `async with`.
    """

    def __init__(
        self,
        settings: Settings,
        store: CursorStore,
        fetcher: FeedFetcher,
        dispatcher: BatchDispatcher,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.differ = FeedDiffer(store, settings.gap_recovery_cap)
        self.cycle_failures = 0
        self.last_cycle_error: str | None = None
        self._session = session

    @classmethod
    def from_settings(cls, settings: Settings, store: CursorStore | None = None) -> "MonitorContext":
        """Wire the default GitHub fetcher, renderer and delivery from settings."""
        connector = aiohttp.TCPConnector(limit=50)  # shared connection pool with limit 50
        session = aiohttp.ClientSession(connector=connector, headers={"User-Agent": USER_AGENT})

        http = ConditionalHTTPClient(session, settings.tokens, settings.request_timeout_seconds)
        fetcher = GitHubFetcher(http, settings.api_base)

        renderer: Renderer
        if settings.render_url:
            renderer = HtmlRenderer(session, settings.render_url, settings.theme)
        else:
            renderer = MarkdownRenderer()

        delivery: Delivery
        if settings.webhook_url:
            delivery = WebhookDelivery(session, settings.webhook_url)
        else:
            delivery = ConsoleDelivery()

        dispatcher = BatchDispatcher(
            renderer,
            delivery,
            fetcher,
            detail_concurrency=settings.detail_concurrency,
            detail_timeout=settings.request_timeout_seconds,
        )
        return cls(
            settings=settings,
            store=store or SqliteCursorStore(settings.sqlite_path),
            fetcher=fetcher,
            dispatcher=dispatcher,
            session=session,
        )

    def open(self) -> None:
        self.store.load()

    async def close(self) -> None:
        self.store.close()
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "MonitorContext":
        self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


@dataclass
class CycleReport:
    started_at: datetime
    duration_ms: int
    targets: tuple[TargetReport, ...]

    @property
    def errors(self) -> int:
        return sum(1 for t in self.targets if t.error is not None)

    @property
    def batches(self) -> int:
        return sum(len(t.batches) for t in self.targets)


class RepoMonitor:

    def __init__(self, context: MonitorContext) -> None:
        self._ctx = context
        self._task: asyncio.Task | None = None
        self.states: dict[str, TargetState] = {}
        self.last_report: CycleReport | None = None

    def _watcher(self, target: WatchTarget) -> RepoWatcher:
        return RepoWatcher(
            target=target,
            fetcher=self._ctx.fetcher,
            differ=self._ctx.differ,
            store=self._ctx.store,
            dispatcher=self._ctx.dispatcher,
        )

    async def _check_target(self, target: WatchTarget, sem: asyncio.Semaphore) -> TargetReport:
        async with sem:
            watcher = self._watcher(target)
            try:
                return await watcher.check()
            except Exception as exc:
                log.exception("Polling %s failed", target.repo)
                return TargetReport(repo=target.repo, error=f"{type(exc).__name__}: {exc}")
            finally:
                self.states[target.repo] = watcher.state

    async def run_once(self) -> CycleReport:
        """Run a single poll cycle over every enabled target that has a destination."""
        started_at = utc_now()
        start_t = time.monotonic()

        targets = self._ctx.settings.active_targets()
        log.debug("Cycle started, %d active subscription(s)", len(targets))

        sem = asyncio.Semaphore(self._ctx.settings.max_concurrent_targets)
        reports = await asyncio.gather(*(self._check_target(t, sem) for t in targets))

        report = CycleReport(
            started_at=started_at,
            duration_ms=int((time.monotonic() - start_t) * 1000),
            targets=tuple(reports),
        )
        self.last_report = report
        log.debug(
            "Cycle finished in %dms: %d target(s), %d batch(es), %d error(s)",
            report.duration_ms, len(report.targets), report.batches, report.errors,
        )
        return report

    async def _loop(self) -> None:
        interval = self._ctx.settings.interval_seconds
        while True:
            start_t = time.monotonic()
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._ctx.cycle_failures += 1
                self._ctx.last_cycle_error = f"{type(exc).__name__}: {exc}"
                log.exception("Poll cycle failed (%d so far)", self._ctx.cycle_failures)

            elapsed = time.monotonic() - start_t
            await asyncio.sleep(max(interval - elapsed, 0))

    async def run(self) -> None:
        """Poll until stop() is called."""
        log.info(
            "RepoMonitor running, every %ds over %d subscription(s). Press Ctrl+C to stop.",
            self._ctx.settings.interval_seconds,
            len(self._ctx.settings.subscriptions),
        )
        self._task = asyncio.create_task(self._loop(), name="repo-monitor")
        # blocks until the loop task finishes (normally only on cancellation)
        await asyncio.gather(self._task, return_exceptions=True)
        log.info("RepoMonitor stopped")

    def stop(self) -> None:
        """Cancel the poll loop. An in-flight cycle is cancelled with it."""
        if self._task is not None:
            self._task.cancel()
