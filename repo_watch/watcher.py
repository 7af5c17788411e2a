# RepoWatcher: runs one poll pass for a single watched repository.

# responsibilities:
#   - fetch the repo's events feed (and, if subscribed, its workflow runs)
#   - diff each feed against its own cursor ("owner/repo", "owner/repo:actions")
#   - classify the new window into per-kind record batches
#   - persist the cursor advance, then hand the batches to the dispatcher
#
# The cursor is written after classification and before delivery. If the
# write fails nothing is delivered: the next cycle sees the same stale
# cursor, derives the same window and tries again, so an entry is never
# delivered twice.

import enum
import logging
from dataclasses import dataclass, field
from typing import Sequence

from repo_watch.differ import DiffResult, FeedDiffer
from repo_watch.dispatcher import BatchDispatcher, DispatchReport
from repo_watch.errors import StoreError
from repo_watch.extract import (
    extract_comments,
    extract_commits,
    extract_issues,
    extract_pulls,
    extract_runs,
    select_comments,
)
from repo_watch.http_client import FeedFetcher
from repo_watch.models import ContentKind, FeedEntry, Record, WatchTarget
from repo_watch.store import CursorStore, actions_key


class TargetState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    EXTRACTING = "extracting"
    DISPATCHING = "dispatching"
    ERRORED = "errored"


@dataclass
class TargetReport:
    repo: str
    new_entries: int = 0
    new_runs: int = 0
    bootstrapped: list[str] = field(default_factory=list)   # dedup keys seen for the first time
    advanced: list[str] = field(default_factory=list)       # dedup keys whose cursor moved
    batches: list[DispatchReport] = field(default_factory=list)
    failed_kinds: list[str] = field(default_factory=list)    # kinds whose dispatch raised
    error: str | None = None


def classify(target: WatchTarget, entries: Sequence[FeedEntry]) -> list[tuple[ContentKind, list[Record]]]:
    """Split a new-entries window into the batches `target` subscribes to."""
    batches: list[tuple[ContentKind, list[Record]]] = []
    kinds = target.kinds

    if ContentKind.COMMITS in kinds:
        batches.append((ContentKind.COMMITS, extract_commits(entries, target.branch)))
    if ContentKind.ISSUES in kinds:
        batches.append((ContentKind.ISSUES, extract_issues(entries)))
    if ContentKind.PULLS in kinds:
        batches.append((ContentKind.PULLS, extract_pulls(entries)))

    # comments follow whichever of issues / pulls is subscribed
    want_issue = ContentKind.ISSUES in kinds
    want_pull = ContentKind.PULLS in kinds
    if want_issue or want_pull:
        comments = select_comments(extract_comments(entries), want_issue, want_pull)
        batches.append((ContentKind.COMMENTS, comments))

    return [(kind, records) for kind, records in batches if records]


class RepoWatcher:
    """
    One poll pass for one WatchTarget.

    Errors from fetching propagate to the caller, which owns per-target
    isolation. The watcher is the single writer of its target's cursors.
    """

    def __init__(
        self,
        target: WatchTarget,
        fetcher: FeedFetcher,
        differ: FeedDiffer,
        store: CursorStore,
        dispatcher: BatchDispatcher,
    ) -> None:
        self.target = target
        self.state = TargetState.IDLE
        self._fetcher = fetcher
        self._differ = differ
        self._store = store
        self._dispatcher = dispatcher
        self._log = logging.getLogger(f"watcher.{target.repo}")

    def _advance(self, dedup_key: str, result: DiffResult, report: TargetReport) -> bool:
        """Persist the cursor move a diff asked for. False if the write failed."""
        if result.advance_to is None:
            return True
        try:
            self._store.set(dedup_key, result.advance_to)
        except StoreError:
            self._log.error("Could not advance cursor %s to %s", dedup_key, result.advance_to, exc_info=True)
            return False

        if result.bootstrap:
            report.bootstrapped.append(dedup_key)
            self._log.info("First run for %s, recorded latest id %s without notifying", dedup_key, result.advance_to)
        else:
            report.advanced.append(dedup_key)
        return True

    async def check(self) -> TargetReport:
        report = TargetReport(repo=self.target.repo)
        try:
            await self._check_events(report)
            if ContentKind.ACTIONS in self.target.kinds:
                await self._check_runs(report)
        except BaseException:
            self.state = TargetState.ERRORED
            raise
        self.state = TargetState.IDLE
        return report

    async def _dispatch(self, batches: list[tuple[ContentKind, list[Record]]], report: TargetReport) -> None:
        self.state = TargetState.DISPATCHING
        for kind, records in batches:
            self._log.debug("%s: %d %s record(s)", self.target.repo, len(records), kind.value)
            try:
                report.batches.append(
                    await self._dispatcher.dispatch(kind, self.target.repo, records, self.target.destinations)
                )
            except Exception:
                report.failed_kinds.append(kind.value)
                self._log.exception("Dispatching %s batch for %s failed", kind.value, self.target.repo)

    async def _check_events(self, report: TargetReport) -> None:
        repo = self.target.repo

        self.state = TargetState.FETCHING
        feed = await self._fetcher.fetch_feed(repo)
        if not feed:
            self._log.debug("%s: empty feed, skipping", repo)
            return

        self.state = TargetState.DIFFING
        result = self._differ.diff(feed, repo)
        if not result.new_entries:
            self._advance(repo, result, report)
            if not result.bootstrap:
                self._log.debug("%s: no new events", repo)
            return

        report.new_entries = len(result.new_entries)
        kinds_seen = sorted({e.kind.value for e in result.new_entries})
        self._log.info("[%s] %d new event(s): %s", repo, len(result.new_entries), ", ".join(kinds_seen))

        self.state = TargetState.EXTRACTING
        batches = classify(self.target, result.new_entries)

        if not self._advance(repo, result, report):
            return
        await self._dispatch(batches, report)

    async def _check_runs(self, report: TargetReport) -> None:
        repo = self.target.repo
        key = actions_key(repo)

        self.state = TargetState.FETCHING
        runs = await self._fetcher.fetch_runs(repo)
        if not runs:
            return

        self.state = TargetState.DIFFING
        result = self._differ.diff(runs, key)
        if not result.new_entries:
            self._advance(key, result, report)
            return

        report.new_runs = len(result.new_entries)

        self.state = TargetState.EXTRACTING
        records = extract_runs(result.new_entries)

        if not self._advance(key, result, report):
            return
        if records:
            await self._dispatch([(ContentKind.ACTIONS, records)], report)
