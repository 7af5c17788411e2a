import logging

import pytest

from factories import REPO, comment_event, issue_event, push_event, run_json, watch_event
from repo_watch.models import (
    CommentPayload,
    EntryKind,
    IssuePayload,
    OtherPayload,
    PullRequestPayload,
    PushPayload,
)
from repo_watch.parser import parse_event, parse_events, parse_runs


def test_events_keep_feed_order_and_kinds() -> None:
    feed = parse_events(REPO, [
        push_event(5, [("a", "m")]),
        issue_event(4, 1),
        comment_event(3, 10, 1),
        comment_event(2, 11, 2, review=True),
        watch_event(1),
    ])
    assert [e.entry_id for e in feed] == ["5", "4", "3", "2", "1"]
    assert [e.kind for e in feed] == [
        EntryKind.PUSH, EntryKind.ISSUE, EntryKind.COMMENT, EntryKind.REVIEW_COMMENT, EntryKind.OTHER,
    ]
    assert isinstance(feed[0].payload, PushPayload)
    assert isinstance(feed[1].payload, IssuePayload)
    assert isinstance(feed[2].payload, CommentPayload)
    assert feed[4].payload == OtherPayload(type_name="WatchEvent")
    assert feed[0].repo == REPO


def test_entry_without_id_is_dropped() -> None:
    raw = watch_event(1)
    raw.pop("id")
    assert parse_events(REPO, [raw, "garbage", watch_event(2)])[0].entry_id == "2"


def test_missing_actor_and_timestamp_fall_back() -> None:
    entry = parse_event({"id": 9, "type": "WatchEvent"}, REPO)
    assert entry is not None
    assert entry.entry_id == "9"
    assert entry.actor.login == ""
    assert entry.created_at.tzinfo is not None
    assert entry.repo == REPO


def test_issue_without_number_has_no_issue(caplog) -> None:  # noqa: ANN001
    caplog.set_level(logging.WARNING)
    entry = parse_event({"id": "1", "type": "IssuesEvent", "payload": {"action": "opened", "issue": {"title": "x"}}}, REPO)
    assert entry.payload == IssuePayload(issue=None, action="opened")
    assert f"IssuesEvent event 1 for {REPO} has no issue number" in caplog.text


def test_pull_number_falls_back_to_payload_number() -> None:
    raw = {"id": "2", "type": "PullRequestEvent", "payload": {"action": "opened", "number": 42, "pull_request": {"title": "t"}}}
    payload = parse_event(raw).payload
    assert payload.pull.number == 42
    assert payload.pull.title == "t"


def test_pull_request_payload() -> None:
    raw = {"id": "1", "type": "PullRequestEvent", "payload": {
        "action": "closed",
        "pull_request": {"number": 3, "merged": True, "state": "closed", "body": "", "user": {"login": "zed"}},
    }}
    payload = parse_event(raw).payload
    assert isinstance(payload, PullRequestPayload)
    assert payload.pull.merged
    assert payload.pull.body is None
    assert payload.pull.author.login == "zed"


def test_push_commits_without_sha_are_skipped() -> None:
    raw = push_event(1, [("a", "m")])
    raw["payload"]["commits"].append({"message": "no sha"})
    assert [c.sha for c in parse_event(raw).payload.commits] == ["a"]


def test_comment_without_id_has_no_comment() -> None:
    raw = comment_event(1, 5, 2)
    raw["payload"]["comment"].pop("id")
    assert parse_event(raw).payload.comment is None


def test_events_must_be_a_list() -> None:
    with pytest.raises(ValueError):
        parse_events(REPO, {"message": "Not Found"})


def test_runs_parse_with_fallbacks() -> None:
    raw = run_json(3, conclusion=None)
    raw["name"] = ""
    raw["display_title"] = "Nightly"
    (run,) = parse_runs({"workflow_runs": [raw, {"id": "nope"}]})
    assert run.entry_id == "3"
    assert run.payload.name == "Nightly"
    assert run.payload.conclusion is None
    assert run.payload.actor.login == "ci-bot"


def test_runs_require_workflow_runs_list() -> None:
    with pytest.raises(ValueError):
        parse_runs({"total_count": 0})
