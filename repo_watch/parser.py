# parses the GitHub /repos/{repo}/events and /actions/runs responses into
# typed FeedEntry / RunEntry objects.

# Design decisions:
#   - Feed order is preserved as received (newest-first). The diff engine
#     relies on it; we never re-sort here.
#   - Each event type maps to its own payload dataclass. Unknown event types
#     become OtherPayload so they still move the cursor.
#   - Every optional field gets a fallback here ("" / 0 / None / ()).
#     Entries without an id are dropped: they cannot be cursored.

import logging
from typing import Any

from repo_watch.models import (
    Actor,
    CommentData,
    CommentPayload,
    EntryKind,
    FeedEntry,
    IssueData,
    IssuePayload,
    Label,
    OtherPayload,
    PullRequestPayload,
    PushCommit,
    PushPayload,
    RunEntry,
    RunPayload,
    parse_dt,
    utc_now,
)

log = logging.getLogger(__name__)

_EVENT_KINDS: dict[str, EntryKind] = {
    "PushEvent":                     EntryKind.PUSH,
    "IssuesEvent":                   EntryKind.ISSUE,
    "PullRequestEvent":              EntryKind.PULL_REQUEST,
    "IssueCommentEvent":             EntryKind.COMMENT,
    "PullRequestReviewCommentEvent": EntryKind.REVIEW_COMMENT,
}


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _actor(value: Any) -> Actor | None:
    d = _dict(value)
    login = _str(d.get("login"))
    if not login:
        return None
    return Actor(login=login, avatar_url=_str(d.get("avatar_url")))


def _labels(value: Any) -> tuple[Label, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(
        Label(name=_str(lbl.get("name")), color=_str(lbl.get("color")) or "888888")
        for lbl in value
        if isinstance(lbl, dict)
    )


def _issue_data(value: Any, fallback_number: int = 0) -> IssueData | None:
    d = _dict(value)
    number = _int(d.get("number")) or fallback_number
    if number <= 0:
        return None
    body = d.get("body")
    return IssueData(
        number=number,
        title=_str(d.get("title")),
        state=_str(d.get("state")) or "open",
        author=_actor(d.get("user")),
        created_at=parse_dt(d.get("created_at")),
        updated_at=parse_dt(d.get("updated_at")),
        url=_str(d.get("html_url")),
        body=body if isinstance(body, str) and body else None,
        labels=_labels(d.get("labels")),
        merged=bool(d.get("merged")),
    )


def _push_payload(p: dict[str, Any]) -> PushPayload:
    commits: list[PushCommit] = []
    raw_commits = p.get("commits")
    if isinstance(raw_commits, list):
        for c in raw_commits:
            c = _dict(c)
            sha = _str(c.get("sha"))
            if not sha:
                continue
            commits.append(PushCommit(
                sha=sha,
                message=_str(c.get("message")),
                author_name=_str(_dict(c.get("author")).get("name")),
            ))
    return PushPayload(ref=_str(p.get("ref")), head=_str(p.get("head")), commits=tuple(commits))


def _comment_payload(p: dict[str, Any], target_key: str) -> CommentPayload:
    c = _dict(p.get("comment"))
    comment_id = c.get("id")
    comment = None
    if comment_id is not None and comment_id != "":
        comment = CommentData(
            id=str(comment_id),
            body=_str(c.get("body")),
            author=_actor(c.get("user")),
            created_at=parse_dt(c.get("created_at")),
            url=_str(c.get("html_url")),
        )
    target = _dict(p.get(target_key))
    return CommentPayload(
        comment=comment,
        target_number=_int(target.get("number")),
        target_title=_str(target.get("title")),
        action=_str(p.get("action")),
    )


def parse_event(raw: Any, repo: str = "") -> FeedEntry | None:
    """Turn one raw event object into a FeedEntry, or None if it has no id."""
    ev = _dict(raw)
    entry_id = ev.get("id")
    if entry_id is None or entry_id == "":
        log.warning("Dropping feed entry without id for %s: type=%r", repo, ev.get("type"))
        return None

    type_name = _str(ev.get("type"))
    kind = _EVENT_KINDS.get(type_name, EntryKind.OTHER)
    p = _dict(ev.get("payload"))

    if kind is EntryKind.PUSH:
        payload = _push_payload(p)
    elif kind is EntryKind.ISSUE:
        issue = _issue_data(p.get("issue"))
        if issue is None:
            log.warning("%s event %s for %s has no issue number and will not be reported", type_name, entry_id, repo)
        payload = IssuePayload(issue=issue, action=_str(p.get("action")))
    elif kind is EntryKind.PULL_REQUEST:
        pull = _issue_data(p.get("pull_request"), fallback_number=_int(p.get("number")))
        if pull is None:
            log.warning("%s event %s for %s has no pull request number and will not be reported", type_name, entry_id, repo)
        payload = PullRequestPayload(pull=pull, action=_str(p.get("action")))
    elif kind is EntryKind.COMMENT:
        payload = _comment_payload(p, "issue")
    elif kind is EntryKind.REVIEW_COMMENT:
        payload = _comment_payload(p, "pull_request")
    else:
        payload = OtherPayload(type_name=type_name)

    return FeedEntry(
        entry_id=str(entry_id),
        kind=kind,
        actor=_actor(ev.get("actor")) or Actor(),
        created_at=parse_dt(ev.get("created_at")) or utc_now(),
        payload=payload,
        repo=_str(_dict(ev.get("repo")).get("name")) or repo,
    )


def parse_events(repo: str, data: Any) -> list[FeedEntry]:
    """
    Parse a /repos/{repo}/events payload.

    Returns entries newest-first, exactly in feed order.
    """
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of events for {repo}, got {type(data).__name__}")
    entries = []
    for raw in data:
        entry = parse_event(raw, repo)
        if entry is not None:
            entries.append(entry)
    return entries


def parse_run(raw: Any) -> RunEntry | None:
    r = _dict(raw)
    run_id = _int(r.get("id"))
    if run_id <= 0:
        return None
    return RunEntry(
        entry_id=str(run_id),
        payload=RunPayload(
            run_id=run_id,
            name=_str(r.get("name")) or _str(r.get("display_title")),
            head_branch=_str(r.get("head_branch")),
            head_sha=_str(r.get("head_sha")),
            status=_str(r.get("status")),
            conclusion=_str(r.get("conclusion")) or None,
            url=_str(r.get("html_url")),
            created_at=parse_dt(r.get("created_at")),
            updated_at=parse_dt(r.get("updated_at")),
            actor=_actor(r.get("actor")) or Actor(),
            event=_str(r.get("event")),
            run_number=_int(r.get("run_number")),
        ),
    )


def parse_runs(data: Any) -> list[RunEntry]:
    """Parse a /actions/runs payload ({"workflow_runs": [...]}), newest-first."""
    runs = _dict(data).get("workflow_runs")
    if not isinstance(runs, list):
        raise ValueError(f"Expected workflow_runs list, got {type(runs).__name__}")
    entries = []
    for raw in runs:
        entry = parse_run(raw)
        if entry is not None:
            entries.append(entry)
    return entries
