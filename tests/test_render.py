import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from factories import REPO, comment_event, entries, issue_event, pr_event, push_event, run_json, runs
from repo_watch.errors import RenderFailure
from repo_watch.extract import extract_comments, extract_commits, extract_issues, extract_pulls, extract_runs
from repo_watch.models import ContentKind, FileChange
from repo_watch.render import HtmlRenderer, MarkdownRenderer, build_html, summarize


def test_commit_summary_uses_first_line_and_short_sha() -> None:
    commits = extract_commits(entries(push_event(1, [("0123456789abcdef", "subject line\n\nlong body")])), "main")
    text = summarize(ContentKind.COMMITS, REPO, commits)
    assert text.splitlines()[0] == f"[{REPO}] 1 new commit(s)"
    assert "* 0123456 Alice A.: subject line" in text
    assert "long body" not in text


def test_issue_and_pull_summaries_tag_actions() -> None:
    pulls = extract_pulls(entries(pr_event(2, 4, action="closed", merged=True)))
    issues = extract_issues(entries(issue_event(1, 3, action="")))
    assert "[merged] #4 PR 4 - alice" in summarize(ContentKind.PULLS, REPO, pulls)
    assert "[open] #3 Bug - alice" in summarize(ContentKind.ISSUES, REPO, issues)


def test_comment_and_actions_summaries() -> None:
    comments = extract_comments(entries(comment_event(1, 9, 12, review=True, body="nit:\nspacing")))
    assert "[PR#12] bob: nit: spacing" in summarize(ContentKind.COMMENTS, REPO, comments)

    records = extract_runs(runs(run_json(5, name="CI", conclusion="failure", run_number=41)))
    assert "#41 CI [failure] - ci-bot" in summarize(ContentKind.ACTIONS, REPO, records)


@pytest.mark.asyncio
async def test_markdown_renderer() -> None:
    issues = extract_issues(entries(issue_event(1, 3, labels=[{"name": "bug"}])))
    artifact = await MarkdownRenderer().render(ContentKind.ISSUES, REPO, issues)
    assert artifact.media_type == "text/markdown"
    assert artifact.data.startswith(f"**{REPO}** · 1 new Issues")
    assert f"[#3 Bug](https://github.com/{REPO}/issues/3)" in artifact.data
    assert "`bug`" in artifact.data


def test_html_escapes_and_truncates() -> None:
    commits = extract_commits(entries(push_event(1, [(f"c{i}", f"<b>msg {i}</b>") for i in range(7)])), "main")
    commits[0].files = [FileChange(filename="x.py", additions=1, patch="+<script>")]
    page = build_html(ContentKind.COMMITS, REPO, commits, theme="dark")
    assert "<script>" not in page
    assert "&lt;b&gt;msg 0&lt;/b&gt;" in page
    assert "2 more commit(s)" in page
    assert "#0d1117" in page


@pytest.mark.asyncio
async def test_html_renderer_returns_png_artifact() -> None:
    received = []

    async def render(request: web.Request) -> web.Response:
        received.append(await request.json())
        return web.json_response({"code": 0, "data": "iVBORw0KGgo="})

    app = web.Application()
    app.router.add_post("/render", render)
    issues = extract_issues(entries(issue_event(1, 3)))
    async with TestServer(app) as server:
        async with aiohttp.ClientSession() as session:
            artifact = await HtmlRenderer(session, str(server.make_url("/render"))).render(ContentKind.ISSUES, REPO, issues)

    assert artifact.media_type == "image/png;base64"
    assert artifact.data == "iVBORw0KGgo="
    assert received[0]["encoding"] == "base64"
    assert "<!DOCTYPE html>" in received[0]["html"]


@pytest.mark.asyncio
async def test_html_renderer_refusal_and_failure() -> None:
    async def refuse(request: web.Request) -> web.Response:
        return web.json_response({"code": 1, "message": "browser not ready"})

    async def crash(request: web.Request) -> web.Response:
        return web.Response(status=500)

    app = web.Application()
    app.router.add_post("/refuse", refuse)
    app.router.add_post("/crash", crash)
    issues = extract_issues(entries(issue_event(1, 3)))
    async with TestServer(app) as server:
        async with aiohttp.ClientSession() as session:
            refused = await HtmlRenderer(session, str(server.make_url("/refuse"))).render(ContentKind.ISSUES, REPO, issues)
            with pytest.raises(RenderFailure):
                await HtmlRenderer(session, str(server.make_url("/crash"))).render(ContentKind.ISSUES, REPO, issues)

    assert refused is None
