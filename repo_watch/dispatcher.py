import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from repo_watch.config import DETAIL_CONCURRENCY, REQUEST_TIMEOUT_SECONDS
from repo_watch.errors import DeliveryFailure, FetchError
from repo_watch.handlers import Delivery
from repo_watch.http_client import FeedFetcher
from repo_watch.models import Artifact, CommitRecord, ContentKind, Record
from repo_watch.render import Renderer, summarize

log = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    kind: ContentKind
    records: int
    delivered: int = 0
    failed: int = 0
    rendered: bool = False


class BatchDispatcher:
    """
    Renders one record batch and delivers it to every destination.

    - renderer failure → text summary for every destination
    - artifact delivery failure → text summary for that destination only
    - a destination that fails outright never stops the next one
    """

    def __init__(
        self,
        renderer: Renderer,
        delivery: Delivery,
        fetcher: FeedFetcher,
        detail_concurrency: int = DETAIL_CONCURRENCY,
        detail_timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._renderer = renderer
        self._delivery = delivery
        self._fetcher = fetcher
        self._detail_concurrency = max(detail_concurrency, 1)
        self._detail_timeout = detail_timeout

    async def enrich_commits(self, repo: str, commits: list[CommitRecord]) -> None:
        """
        Attach file changes to each commit, in place.

        Best-effort: bounded parallelism, per-call timeout, a failed detail
        just leaves that commit without files.
        """
        sem = asyncio.Semaphore(self._detail_concurrency)

        async def enrich(commit: CommitRecord) -> None:
            async with sem:
                try:
                    commit.files = await asyncio.wait_for(
                        self._fetcher.fetch_detail(repo, commit.sha), timeout=self._detail_timeout,
                    )
                except (FetchError, asyncio.TimeoutError) as exc:
                    log.debug("No file detail for %s@%s: %s", repo, commit.short_sha, exc)
                    return
                except Exception:  # noqa: BLE001
                    log.warning("File detail for %s@%s failed unexpectedly", repo, commit.short_sha, exc_info=True)
                    commit.files = []
                    return
                log.debug("%s: %d file change(s)", commit.short_sha, len(commit.files))

        await asyncio.gather(*(enrich(c) for c in commits))

    async def _render(self, kind: ContentKind, repo: str, records: Sequence[Record]) -> Artifact | None:
        try:
            return await self._renderer.render(kind, repo, records)
        except Exception as exc:  # noqa: BLE001
            log.warning("Rendering %s batch for %s failed, falling back to text: %s", kind.value, repo, exc)
            return None

    async def dispatch(
        self,
        kind: ContentKind,
        repo: str,
        records: Sequence[Record],
        destinations: Sequence[str],
    ) -> DispatchReport:
        report = DispatchReport(kind=kind, records=len(records))
        if not records:
            return report

        if kind is ContentKind.COMMITS:
            await self.enrich_commits(repo, [r for r in records if isinstance(r, CommitRecord)])

        artifact = await self._render(kind, repo, records)
        report.rendered = artifact is not None
        fallback = summarize(kind, repo, records)

        log.info("[%s] pushing %d %s to %d destination(s)", repo, len(records), kind.value, len(destinations))

        for destination in destinations:
            try:
                if artifact is not None:
                    try:
                        await self._delivery.deliver(destination, artifact)
                    except DeliveryFailure as exc:
                        log.warning("Artifact delivery to %s failed, sending text instead: %s", destination, exc)
                        await self._delivery.deliver_text(destination, fallback)
                else:
                    await self._delivery.deliver_text(destination, fallback)
                report.delivered += 1
            except Exception:  # noqa: BLE001
                report.failed += 1
                log.exception("Delivery of %s batch for %s to %s failed", kind.value, repo, destination)

        return report
