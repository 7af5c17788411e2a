import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

log = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_dt(value: str | None) -> datetime | None:
    """
    Parse an ISO 8601 timestamp string into an aware UTC datetime.

    GitHub returns strings like '2024-11-03T14:32:00Z'. Returns None for
    missing or unparseable values so callers can pick their own fallback.
    """
    if not value or not isinstance(value, str):
        return None

    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)
    except ValueError:
        log.warning("Could not parse datetime string: %r", value)
        return None


def format_dt(dt: datetime | None) -> str:
    """Human-readable UTC timestamp for console display."""
    if dt is None:
        return "Unknown"
    return dt.strftime("%Y-%m-%d %H:%M UTC")


class ContentKind(str, enum.Enum):
    """What a subscription asks to be told about."""

    COMMITS = "commits"
    ISSUES = "issues"
    PULLS = "pulls"
    COMMENTS = "comments"   # never subscribed directly, rides on issues/pulls
    ACTIONS = "actions"


SUBSCRIBABLE_KINDS = frozenset({ContentKind.COMMITS, ContentKind.ISSUES, ContentKind.PULLS, ContentKind.ACTIONS})


class EntryKind(str, enum.Enum):
    """Normalized feed entry kind, one per GitHub event type we understand."""

    PUSH = "push"
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"
    COMMENT = "comment"                 # IssueCommentEvent
    REVIEW_COMMENT = "review_comment"   # PullRequestReviewCommentEvent
    OTHER = "other"


@dataclass(frozen=True)
class WatchTarget:
    repo: str                               # "owner/name", lower-cased
    branch: str
    kinds: frozenset[ContentKind]
    destinations: tuple[str, ...]
    enabled: bool = True

    @property
    def is_active(self) -> bool:
        return self.enabled and bool(self.destinations)


@dataclass(frozen=True)
class Actor:
    login: str = ""
    avatar_url: str = ""


# ─── Feed payloads ────────────────────────────────────────────────────────────
#
# One frozen dataclass per event shape. The parser fills every field; an
# optional field missing upstream becomes "" / 0 / None / () and the
# extractor substitutes the entry's actor or timestamp where it needs one.


@dataclass(frozen=True)
class PushCommit:
    sha: str
    message: str = ""
    author_name: str = ""       # "" → actor login


@dataclass(frozen=True)
class PushPayload:
    ref: str = ""
    head: str = ""
    commits: tuple[PushCommit, ...] = ()


@dataclass(frozen=True)
class Label:
    name: str = ""
    color: str = "888888"


@dataclass(frozen=True)
class IssueData:
    """Shared shape of an issue or pull request object inside a payload."""

    number: int
    title: str = ""
    state: str = "open"
    author: Actor | None = None             # None → actor
    created_at: datetime | None = None      # None → entry timestamp
    updated_at: datetime | None = None
    url: str = ""
    body: str | None = None
    labels: tuple[Label, ...] = ()
    merged: bool = False


@dataclass(frozen=True)
class IssuePayload:
    issue: IssueData | None
    action: str = ""


@dataclass(frozen=True)
class PullRequestPayload:
    pull: IssueData | None
    action: str = ""


@dataclass(frozen=True)
class CommentData:
    id: str
    body: str = ""
    author: Actor | None = None
    created_at: datetime | None = None
    url: str = ""


@dataclass(frozen=True)
class CommentPayload:
    comment: CommentData | None
    target_number: int = 0
    target_title: str = ""
    action: str = ""


@dataclass(frozen=True)
class OtherPayload:
    type_name: str = ""


FeedPayload = PushPayload | IssuePayload | PullRequestPayload | CommentPayload | OtherPayload


@dataclass(frozen=True)
class FeedEntry:
    """
    One raw activity record from a repository feed.

    Lives only for one fetch/diff/extract pass. `entry_id` is the ordering
    key: feeds are newest-first and ids grow over time.
    """

    entry_id: str
    kind: EntryKind
    actor: Actor
    created_at: datetime
    payload: FeedPayload
    repo: str = ""


@dataclass(frozen=True)
class RunPayload:
    run_id: int
    name: str = ""
    head_branch: str = ""
    head_sha: str = ""
    status: str = ""
    conclusion: str | None = None
    url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    actor: Actor = field(default_factory=Actor)
    event: str = ""
    run_number: int = 0


@dataclass(frozen=True)
class RunEntry:
    """One workflow run from the independently cursored runs feed."""

    entry_id: str
    payload: RunPayload


# ─── Normalized records (the rendering contract) ─────────────────────────────


@dataclass
class FileChange:
    filename: str
    status: str = ""
    additions: int = 0
    deletions: int = 0
    patch: str | None = None


@dataclass
class CommitRecord:
    sha: str
    message: str
    author: str
    timestamp: datetime
    url: str
    author_login: str = ""
    files: list[FileChange] = field(default_factory=list)

    @property
    def short_sha(self) -> str:
        return self.sha[:7]


@dataclass
class IssueRecord:
    number: int
    title: str
    state: str                 # open | closed | merged
    action: str | None
    author: str
    created_at: datetime
    updated_at: datetime
    url: str
    labels: list[Label] = field(default_factory=list)
    body: str | None = None
    is_pull: bool = False


@dataclass
class CommentRecord:
    target_number: int
    target_title: str
    source: str                # issue | pull_request
    author: str
    body: str
    timestamp: datetime
    url: str


@dataclass
class ActionRunRecord:
    run_id: int
    name: str
    branch: str
    head_sha: str
    status: str
    conclusion: str | None
    actor: str
    created_at: datetime
    updated_at: datetime
    run_number: int
    event: str = ""
    url: str = ""

    @property
    def outcome(self) -> str:
        return self.conclusion or self.status


Record = CommitRecord | IssueRecord | CommentRecord | ActionRunRecord


@dataclass(frozen=True)
class Artifact:
    """A rendered, deliverable representation of one batch."""

    kind: ContentKind
    repo: str
    media_type: str            # e.g. "image/png;base64", "text/markdown"
    data: str
