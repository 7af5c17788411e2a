import asyncio
import logging

import pytest

from factories import REPO, FakeDelivery, FakeFetcher, FakeRenderer, entries, issue_event, push_event
from repo_watch.dispatcher import BatchDispatcher
from repo_watch.extract import extract_commits, extract_issues
from repo_watch.models import ContentKind, FileChange


def _issues():
    return extract_issues(entries(issue_event(2, 5), issue_event(1, 6)))


@pytest.mark.asyncio
async def test_artifact_delivered_to_every_destination() -> None:
    delivery = FakeDelivery()
    dispatcher = BatchDispatcher(FakeRenderer(), delivery, FakeFetcher())

    report = await dispatcher.dispatch(ContentKind.ISSUES, REPO, _issues(), ["g1", "g2"])

    assert report.rendered
    assert (report.records, report.delivered, report.failed) == (2, 2, 0)
    assert [d for d, _ in delivery.artifacts] == ["g1", "g2"]
    assert delivery.texts == []


@pytest.mark.asyncio
async def test_render_failure_falls_back_to_text(caplog) -> None:  # noqa: ANN001
    delivery = FakeDelivery()
    dispatcher = BatchDispatcher(FakeRenderer(fail=True), delivery, FakeFetcher())

    caplog.set_level(logging.WARNING)
    report = await dispatcher.dispatch(ContentKind.ISSUES, REPO, _issues(), ["g1"])

    assert not report.rendered
    assert report.delivered == 1
    (dest, text), = delivery.texts
    assert dest == "g1"
    assert text.startswith(f"[{REPO}] 2 new Issues")
    assert "#5 Bug - alice" in text
    assert "falling back to text" in caplog.text


@pytest.mark.asyncio
async def test_renderer_returning_none_uses_text() -> None:
    delivery = FakeDelivery()
    dispatcher = BatchDispatcher(FakeRenderer(refuse=True), delivery, FakeFetcher())
    await dispatcher.dispatch(ContentKind.ISSUES, REPO, _issues(), ["g1"])
    assert delivery.artifacts == []
    assert len(delivery.texts) == 1


@pytest.mark.asyncio
async def test_one_broken_destination_does_not_block_others(caplog) -> None:  # noqa: ANN001
    delivery = FakeDelivery(broken={"g2"})
    dispatcher = BatchDispatcher(FakeRenderer(), delivery, FakeFetcher())

    caplog.set_level(logging.ERROR)
    report = await dispatcher.dispatch(ContentKind.ISSUES, REPO, _issues(), ["g1", "g2", "g3"])

    assert (report.delivered, report.failed) == (2, 1)
    assert delivery.destinations == ["g1", "g3"]
    assert "to g2 failed" in caplog.text


@pytest.mark.asyncio
async def test_rejected_artifact_falls_back_to_text_for_that_destination() -> None:
    delivery = FakeDelivery(no_images={"g2"})
    dispatcher = BatchDispatcher(FakeRenderer(), delivery, FakeFetcher())

    report = await dispatcher.dispatch(ContentKind.ISSUES, REPO, _issues(), ["g1", "g2"])

    assert report.delivered == 2
    assert [d for d, _ in delivery.artifacts] == ["g1"]
    assert [d for d, _ in delivery.texts] == ["g2"]


@pytest.mark.asyncio
async def test_empty_batch_delivers_nothing() -> None:
    delivery = FakeDelivery()
    renderer = FakeRenderer()
    report = await BatchDispatcher(renderer, delivery, FakeFetcher()).dispatch(ContentKind.PULLS, REPO, [], ["g1"])
    assert report.records == 0
    assert renderer.calls == []
    assert delivery.destinations == []


@pytest.mark.asyncio
async def test_enrichment_failure_keeps_the_commit() -> None:
    files = [FileChange(filename="README.md", status="modified", additions=3, deletions=1, patch="@@ -1 +1 @@")]
    fetcher = FakeFetcher(details={"c2": files})     # c1 has no detail → FetchError
    delivery = FakeDelivery()
    commits = extract_commits(entries(push_event(1, [("c2", "two"), ("c1", "one")])), "main")

    report = await BatchDispatcher(FakeRenderer(), delivery, fetcher).dispatch(ContentKind.COMMITS, REPO, commits, ["g1"])

    assert report.records == 2
    assert commits[0].files == files
    assert commits[1].files == []
    assert report.delivered == 1


@pytest.mark.asyncio
async def test_enrichment_respects_timeout() -> None:
    class SlowFetcher(FakeFetcher):
        async def fetch_detail(self, repo: str, sha: str) -> list[FileChange]:
            await asyncio.sleep(5)
            return []

    commits = extract_commits(entries(push_event(1, [("c1", "one")])), "main")
    dispatcher = BatchDispatcher(FakeRenderer(), FakeDelivery(), SlowFetcher(), detail_timeout=0.01)

    await asyncio.wait_for(dispatcher.enrich_commits(REPO, commits), timeout=1)
    assert commits[0].files == []


@pytest.mark.asyncio
async def test_enrichment_concurrency_is_bounded() -> None:
    active = 0
    peak = 0

    class CountingFetcher(FakeFetcher):
        async def fetch_detail(self, repo: str, sha: str) -> list[FileChange]:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return []

    pushed = [(f"c{i}", "m") for i in range(8)]
    commits = extract_commits(entries(push_event(1, pushed)), "main")
    await BatchDispatcher(FakeRenderer(), FakeDelivery(), CountingFetcher(), detail_concurrency=2).enrich_commits(REPO, commits)
    assert peak == 2


@pytest.mark.asyncio
async def test_unexpected_enrichment_error_keeps_the_commit(caplog) -> None:  # noqa: ANN001
    fetcher = FakeFetcher(details={"c1": RuntimeError("unexpected detail shape")})
    delivery = FakeDelivery()
    commits = extract_commits(entries(push_event(1, [("c1", "one")])), "main")
    caplog.set_level(logging.WARNING)

    report = await BatchDispatcher(FakeRenderer(), delivery, fetcher).dispatch(ContentKind.COMMITS, REPO, commits, ["g1"])

    assert commits[0].files == []
    assert report.delivered == 1
    assert [d for d, _ in delivery.artifacts] == ["g1"]
    assert "failed unexpectedly" in caplog.text
