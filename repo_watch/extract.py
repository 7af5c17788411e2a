# turns the "new since last cycle" window into typed record batches.

# one pure function per content kind, each independent of the others and
# order-preserving (newest-first, like the feed). Items are deduplicated by
# their logical id within one call: first occurrence wins, later ones are
# dropped. Fields missing upstream fall back to the entry's actor or
# timestamp; an entry that still fails to convert is logged and skipped.

import logging
from typing import Callable, Iterable, TypeVar

from repo_watch.errors import ExtractionFault
from repo_watch.models import (
    ActionRunRecord,
    CommentPayload,
    CommentRecord,
    CommitRecord,
    EntryKind,
    FeedEntry,
    IssueData,
    IssuePayload,
    IssueRecord,
    PullRequestPayload,
    PushPayload,
    RunEntry,
    utc_now,
)

log = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")
P = TypeVar("P")

_COMMENT_KINDS = (EntryKind.COMMENT, EntryKind.REVIEW_COMMENT)


def _convert(item: T, build: Callable[[T], R]) -> R | None:
    item_id = getattr(item, "entry_id", "?")
    try:
        return build(item)
    except ExtractionFault as exc:
        log.error("Dropping entry %s: %s", item_id, exc)
    except Exception:  # noqa: BLE001
        log.error("Dropping entry %s: conversion failed", item_id, exc_info=True)
    return None


def _payload_of(entry: FeedEntry, cls: type[P]) -> P:
    if not isinstance(entry.payload, cls):
        raise ExtractionFault(f"{entry.kind.value} entry carries {type(entry.payload).__name__}")
    return entry.payload


def branch_of(ref: str) -> str:
    return ref.removeprefix("refs/heads/")


def commit_url(repo: str, sha: str) -> str:
    return f"https://github.com/{repo}/commit/{sha}" if repo else ""


def extract_commits(entries: Iterable[FeedEntry], branch: str) -> list[CommitRecord]:
    """
    One CommitRecord per pushed commit on `branch`.

    A push with no commit list (force-push, web edit) but with a head sha
    yields a single synthesized record. An empty `branch` accepts any ref.
    """
    def build(entry: FeedEntry) -> list[CommitRecord]:
        p = _payload_of(entry, PushPayload)
        if branch and not p.ref.endswith(f"/{branch}"):
            return []

        if p.commits:
            return [
                CommitRecord(
                    sha=c.sha,
                    message=c.message,
                    author=c.author_name or entry.actor.login,
                    timestamp=entry.created_at,
                    url=commit_url(entry.repo, c.sha),
                    author_login=entry.actor.login,
                )
                for c in p.commits
            ]
        if p.head:
            return [CommitRecord(
                sha=p.head,
                message=f"Push to {branch_of(p.ref)}",
                author=entry.actor.login,
                timestamp=entry.created_at,
                url=commit_url(entry.repo, p.head),
                author_login=entry.actor.login,
            )]
        return []

    commits: list[CommitRecord] = []
    for entry in entries:
        if entry.kind is not EntryKind.PUSH:
            continue
        commits.extend(_convert(entry, build) or [])
    return commits


def _issue_record(entry: FeedEntry, data: IssueData, action: str, is_pull: bool) -> IssueRecord:
    state = "merged" if data.merged else data.state
    if data.merged:
        action = "merged"
    return IssueRecord(
        number=data.number,
        title=data.title,
        state=state,
        action=action or None,
        author=data.author.login if data.author else entry.actor.login,
        created_at=data.created_at or entry.created_at,
        updated_at=data.updated_at or entry.created_at,
        url=data.url,
        labels=list(data.labels),
        body=data.body,
        is_pull=is_pull,
    )


def extract_issues(entries: Iterable[FeedEntry]) -> list[IssueRecord]:
    issues: list[IssueRecord] = []
    seen: set[int] = set()
    for entry in entries:
        if entry.kind is not EntryKind.ISSUE:
            continue
        p = _convert(entry, lambda e: _payload_of(e, IssuePayload))
        if p is None or p.issue is None or p.issue.number in seen:
            continue
        seen.add(p.issue.number)
        record = _convert(entry, lambda e: _issue_record(e, p.issue, p.action, is_pull=False))
        if record is not None:
            issues.append(record)
    return issues


def extract_pulls(entries: Iterable[FeedEntry]) -> list[IssueRecord]:
    """Same as extract_issues for pull requests; a merged pull reads as state/action "merged"."""
    pulls: list[IssueRecord] = []
    seen: set[int] = set()
    for entry in entries:
        if entry.kind is not EntryKind.PULL_REQUEST:
            continue
        p = _convert(entry, lambda e: _payload_of(e, PullRequestPayload))
        if p is None or p.pull is None or p.pull.number in seen:
            continue
        seen.add(p.pull.number)
        record = _convert(entry, lambda e: _issue_record(e, p.pull, p.action, is_pull=True))
        if record is not None:
            pulls.append(record)
    return pulls


def extract_comments(entries: Iterable[FeedEntry]) -> list[CommentRecord]:
    comments: list[CommentRecord] = []
    seen: set[str] = set()
    for entry in entries:
        if entry.kind not in _COMMENT_KINDS:
            continue
        p = _convert(entry, lambda e: _payload_of(e, CommentPayload))
        if p is None or p.comment is None or p.comment.id in seen:
            continue
        seen.add(p.comment.id)
        record = _convert(entry, lambda e: _comment_record(e, p))
        if record is not None:
            comments.append(record)
    return comments


def _comment_record(entry: FeedEntry, p: CommentPayload) -> CommentRecord:
    c = p.comment
    return CommentRecord(
        target_number=p.target_number,
        target_title=p.target_title,
        source="pull_request" if entry.kind is EntryKind.REVIEW_COMMENT else "issue",
        author=c.author.login if c.author else entry.actor.login,
        body=c.body,
        timestamp=c.created_at or entry.created_at,
        url=c.url,
    )


def select_comments(comments: list[CommentRecord], want_issue: bool, want_pull: bool) -> list[CommentRecord]:
    """Keep only comments whose source kind is subscribed."""
    return [
        c for c in comments
        if (c.source == "issue" and want_issue) or (c.source == "pull_request" and want_pull)
    ]


def extract_runs(entries: Iterable[RunEntry]) -> list[ActionRunRecord]:
    def build(entry: RunEntry) -> ActionRunRecord:
        r = entry.payload
        created = r.created_at or r.updated_at
        if created is None:
            created = utc_now()
        return ActionRunRecord(
            run_id=r.run_id,
            name=r.name,
            branch=r.head_branch,
            head_sha=r.head_sha,
            status=r.status,
            conclusion=r.conclusion,
            actor=r.actor.login,
            created_at=created,
            updated_at=r.updated_at or created,
            run_number=r.run_number,
            event=r.event,
            url=r.url,
        )

    runs: list[ActionRunRecord] = []
    seen: set[int] = set()
    for entry in entries:
        if entry.payload.run_id in seen:
            continue
        seen.add(entry.payload.run_id)
        record = _convert(entry, build)
        if record is not None:
            runs.append(record)
    return runs
