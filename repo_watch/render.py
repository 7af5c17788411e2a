# rendering: record batch → deliverable artifact.

# a renderer is a pure function of (kind, repo, records). It returns an
# Artifact, or None to ask for the plain-text summary instead.
#
#   MarkdownRenderer  → text/markdown, no I/O, always succeeds
#   HtmlRenderer      → builds an HTML card and posts it to a screenshot
#                       service that answers with a base64 PNG
#
# summarize() is the degraded text form every delivery can fall back to.

import asyncio
import html
import logging
from typing import Protocol, Sequence

import aiohttp

from repo_watch.config import RENDER_TIMEOUT_SECONDS
from repo_watch.errors import RenderFailure
from repo_watch.models import (
    ActionRunRecord,
    Artifact,
    CommentRecord,
    CommitRecord,
    ContentKind,
    FileChange,
    IssueRecord,
    Record,
    format_dt,
)

log = logging.getLogger(__name__)

MAX_COMMITS_SHOWN = 5
MAX_FILES_SHOWN = 5
MAX_PATCH_CHARS = 3000

_KIND_TITLES: dict[ContentKind, str] = {
    ContentKind.COMMITS:  "Commits",
    ContentKind.ISSUES:   "Issues",
    ContentKind.PULLS:    "Pull Requests",
    ContentKind.COMMENTS: "Comments",
    ContentKind.ACTIONS:  "Actions",
}


class Renderer(Protocol):
    async def render(self, kind: ContentKind, repo: str, records: Sequence[Record]) -> Artifact | None: ...


def _first_line(text: str, limit: int) -> str:
    line = text.split("\n", 1)[0]
    return line[:limit]


def _issue_tag(i: IssueRecord) -> str:
    if i.action:
        return f"[{i.action}]"
    return "[open]" if i.state == "open" else "[closed]"


# ─── Text summaries ──────────────────────────────────────────────────────────


def commits_summary(repo: str, commits: Sequence[CommitRecord]) -> str:
    lines = [f"[{repo}] {len(commits)} new commit(s)", ""]
    for c in commits:
        lines.append(f"* {c.short_sha} {c.author}: {_first_line(c.message, 60)}")
    return "\n".join(lines)


def issues_summary(repo: str, issues: Sequence[IssueRecord], title: str = "Issues") -> str:
    lines = [f"[{repo}] {len(issues)} new {title}", ""]
    for i in issues:
        lines.append(f"{_issue_tag(i)} #{i.number} {i.title[:50]} - {i.author}")
    return "\n".join(lines)


def comments_summary(repo: str, comments: Sequence[CommentRecord]) -> str:
    lines = [f"[{repo}] {len(comments)} new comment(s)", ""]
    for c in comments:
        src = "PR" if c.source == "pull_request" else "Issue"
        body = c.body.replace("\n", " ")[:60]
        lines.append(f"[{src}#{c.target_number}] {c.author}: {body}")
    return "\n".join(lines)


def actions_summary(repo: str, runs: Sequence[ActionRunRecord]) -> str:
    lines = [f"[{repo}] {len(runs)} Actions update(s)", ""]
    for r in runs:
        lines.append(f"#{r.run_number} {r.name} [{r.outcome}] - {r.actor}")
    return "\n".join(lines)


def summarize(kind: ContentKind, repo: str, records: Sequence[Record]) -> str:
    if kind is ContentKind.COMMITS:
        return commits_summary(repo, records)
    if kind is ContentKind.ISSUES:
        return issues_summary(repo, records, "Issues")
    if kind is ContentKind.PULLS:
        return issues_summary(repo, records, "Pull Requests")
    if kind is ContentKind.COMMENTS:
        return comments_summary(repo, records)
    if kind is ContentKind.ACTIONS:
        return actions_summary(repo, records)
    raise ValueError(f"no summary for {kind}")


# ─── Markdown ────────────────────────────────────────────────────────────────


def _md_item(kind: ContentKind, r: Record) -> str:
    if isinstance(r, CommitRecord):
        line = f"- [`{r.short_sha}`]({r.url}) {_first_line(r.message, 80)} by {r.author}"
        if r.files:
            adds = sum(f.additions for f in r.files)
            dels = sum(f.deletions for f in r.files)
            line += f" ({len(r.files)} files, +{adds}/-{dels})"
        return line
    if isinstance(r, IssueRecord):
        labels = "".join(f" `{lbl.name}`" for lbl in r.labels)
        return f"- {_issue_tag(r)} [#{r.number} {r.title}]({r.url}) by {r.author}{labels}"
    if isinstance(r, CommentRecord):
        src = "PR" if r.source == "pull_request" else "Issue"
        body = r.body.replace("\n", " ")[:120]
        return f"- [{src} #{r.target_number}]({r.url}) {r.author}: {body}"
    if isinstance(r, ActionRunRecord):
        return f"- [#{r.run_number} {r.name}]({r.url}) `{r.outcome}` on {r.branch} by {r.actor}"
    raise TypeError(f"cannot render {type(r).__name__} as {kind.value}")


class MarkdownRenderer:
    """Renders a batch as a Markdown message; never needs the network."""

    async def render(self, kind: ContentKind, repo: str, records: Sequence[Record]) -> Artifact | None:
        title = f"**{repo}** · {len(records)} new {_KIND_TITLES[kind]}"
        body = "\n".join(_md_item(kind, r) for r in records)
        return Artifact(kind=kind, repo=repo, media_type="text/markdown", data=f"{title}\n\n{body}")


# ─── HTML card via screenshot service ────────────────────────────────────────

THEMES: dict[str, dict[str, str]] = {
    "light": {"bg": "#ffffff", "card": "#f6f8fa", "border": "#d0d7de", "text": "#1f2328", "sub": "#656d76"},
    "dark":  {"bg": "#0d1117", "card": "#161b22", "border": "#30363d", "text": "#e6edf3", "sub": "#8b949e"},
}


def _patch_html(patch: str | None) -> str:
    if not patch:
        return '<div class="muted">(binary file or no textual changes)</div>'
    out, used = [], 0
    for line in patch.split("\n"):
        if used + len(line) > MAX_PATCH_CHARS:
            out.append('<div class="muted">... truncated</div>')
            break
        used += len(line) + 1
        cls = "add" if line.startswith("+") else "del" if line.startswith("-") else "hunk" if line.startswith("@@") else ""
        out.append(f'<div class="{cls}">{html.escape(line)}</div>')
    return "".join(out)


def _files_html(files: list[FileChange]) -> str:
    shown = files[:MAX_FILES_SHOWN]
    parts = [
        f'<div class="file"><div class="fname">{html.escape(f.filename)} '
        f'<span class="add">+{f.additions}</span> <span class="del">-{f.deletions}</span></div>'
        f'<div class="code">{_patch_html(f.patch)}</div></div>'
        for f in shown
    ]
    if len(files) > len(shown):
        parts.append(f'<div class="muted">{len(files) - len(shown)} more file(s) changed</div>')
    return "".join(parts)


def _item_html(r: Record) -> str:
    e = html.escape
    if isinstance(r, CommitRecord):
        return (
            f'<div class="item"><span class="sha">{r.short_sha}</span> {e(r.author)} '
            f'<span class="time">{format_dt(r.timestamp)}</span>'
            f'<div class="msg">{e(_first_line(r.message, 80))}</div>{_files_html(r.files)}</div>'
        )
    if isinstance(r, IssueRecord):
        return (
            f'<div class="item">{e(_issue_tag(r))} #{r.number} {e(r.title)} '
            f'<span class="time">{e(r.author)} · {format_dt(r.updated_at)}</span></div>'
        )
    if isinstance(r, CommentRecord):
        src = "PR" if r.source == "pull_request" else "Issue"
        return (
            f'<div class="item">{src} #{r.target_number} {e(r.target_title)} '
            f'<span class="time">{e(r.author)} · {format_dt(r.timestamp)}</span>'
            f'<div class="msg">{e(r.body[:500])}</div></div>'
        )
    if isinstance(r, ActionRunRecord):
        return (
            f'<div class="item">#{r.run_number} {e(r.name)} [{e(r.outcome)}] '
            f'<span class="time">{e(r.branch)} · {e(r.actor)}</span></div>'
        )
    raise TypeError(f"cannot render {type(r).__name__}")


def build_html(kind: ContentKind, repo: str, records: Sequence[Record], theme: str = "light") -> str:
    t = THEMES.get(theme, THEMES["light"])
    shown = list(records)
    extra = ""
    if kind is ContentKind.COMMITS and len(shown) > MAX_COMMITS_SHOWN:
        extra = f'<div class="muted">{len(shown) - MAX_COMMITS_SHOWN} more commit(s) on GitHub</div>'
        shown = shown[:MAX_COMMITS_SHOWN]
    items = "".join(_item_html(r) for r in shown)
    return (
        '<!DOCTYPE html><html><head><meta charset="utf-8"><style>'
        f"body{{font-family:-apple-system,'Segoe UI',Helvetica,Arial,sans-serif;background:{t['bg']};"
        f"color:{t['text']};padding:20px;width:600px}}"
        f".card{{background:{t['card']};border:1px solid {t['border']};border-radius:12px;padding:12px 20px}}"
        f".item{{padding:10px 0;border-bottom:1px solid {t['border']};font-size:13px}}"
        f".time,.muted{{color:{t['sub']};font-size:11px}}.sha{{font-family:monospace}}"
        ".code{font-family:monospace;font-size:10px;white-space:pre-wrap}"
        ".add{color:#3fb950}.del{color:#f85149}.hunk{color:#79c0ff}"
        "</style></head><body><div class=\"card\">"
        f"<h2>{_KIND_TITLES[kind]}</h2><div class=\"muted\">{html.escape(repo)} · {len(records)} new</div>"
        f"{items}{extra}</div></body></html>"
    )


class HtmlRenderer:
    """
    Posts an HTML card to a screenshot service and returns the PNG it sends back.

    The service contract is {"html", "type": "png", "encoding": "base64"} in,
    {"code": 0, "data": "<base64>"} out. Any other answer means no artifact.
    """

    def __init__(self, session: aiohttp.ClientSession, url: str, theme: str = "light") -> None:
        self._session = session
        self._url = url
        self._theme = theme
        self._timeout = aiohttp.ClientTimeout(total=RENDER_TIMEOUT_SECONDS)

    async def render(self, kind: ContentKind, repo: str, records: Sequence[Record]) -> Artifact | None:
        body = {
            "html": build_html(kind, repo, records, self._theme),
            "file_type": "htmlString",
            "selector": "body",
            "type": "png",
            "encoding": "base64",
            "setViewport": {"width": 600, "height": 100},
        }
        try:
            async with self._session.post(self._url, json=body, timeout=self._timeout) as resp:
                resp.raise_for_status()
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise RenderFailure(f"render request to {self._url} failed: {exc}") from exc

        if not isinstance(data, dict) or data.get("code") != 0 or not data.get("data"):
            message = data.get("message") if isinstance(data, dict) else None
            log.warning("Render service refused %s batch for %s: %s", kind.value, repo, message or "unknown error")
            return None
        return Artifact(kind=kind, repo=repo, media_type="image/png;base64", data=data["data"])
