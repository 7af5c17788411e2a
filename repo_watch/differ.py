import logging
from dataclasses import dataclass
from typing import Generic, Protocol, Sequence, TypeVar

from repo_watch.config import GAP_RECOVERY_CAP
from repo_watch.errors import StoreError
from repo_watch.store import CursorStore

log = logging.getLogger(__name__)


class _HasEntryId(Protocol):
    @property
    def entry_id(self) -> str: ...


E = TypeVar("E", bound=_HasEntryId)


@dataclass(frozen=True)
class DiffResult(Generic[E]):
    new_entries: list[E]
    advance_to: str | None      # None → leave the cursor where it is
    bootstrap: bool = False
    gap: bool = False


def is_newer(candidate: str, current: str) -> bool:
    """
    True if `candidate` sorts after `current` in feed order.

    GitHub event and run ids are decimal strings, compared numerically.
    Anything else is opaque: only inequality can be checked.
    """
    if candidate.isdigit() and current.isdigit():
        return int(candidate) > int(current)
    return candidate != current


def diff_since(feed: Sequence[E], last_seen: str | None, gap_cap: int = GAP_RECOVERY_CAP) -> DiffResult[E]:
    """
    Isolate the entries of a newest-first `feed` that arrived after `last_seen`.

    - no cursor yet       → bootstrap: nothing new, advance to feed[0]
    - cursor == feed[0]   → nothing new, no advance
    - cursor at k > 0     → feed[:k], advance to feed[0]
    - cursor not in feed  → gap: first `gap_cap` entries, advance to feed[0].
                            Entries older than the cap are skipped for good.

    A feed whose head is older than the cursor (stale replica) yields
    nothing and never moves the cursor backwards.
    """
    if not feed:
        return DiffResult(new_entries=[], advance_to=None)

    head = feed[0].entry_id

    if last_seen is None:
        return DiffResult(new_entries=[], advance_to=head, bootstrap=True)

    if head == last_seen:
        return DiffResult(new_entries=[], advance_to=None)

    for k, entry in enumerate(feed):
        if entry.entry_id == last_seen:
            return DiffResult(new_entries=list(feed[:k]), advance_to=head)

    if not is_newer(head, last_seen):
        return DiffResult(new_entries=[], advance_to=None)

    return DiffResult(new_entries=list(feed[:max(gap_cap, 0)]), advance_to=head, gap=True)


class FeedDiffer:
    """
    Diffs a freshly fetched feed against the persisted cursor for a key.

    The differ only reads the store. Writing the advance is left to the
    caller, after the new entries have been classified.
    """

    def __init__(self, store: CursorStore, gap_cap: int = GAP_RECOVERY_CAP) -> None:
        self._store = store
        self._gap_cap = gap_cap

    def diff(self, feed: Sequence[E], dedup_key: str) -> DiffResult[E]:
        try:
            last_seen = self._store.get(dedup_key)
        except StoreError:
            log.error("Cursor read failed for %s; treating it as a first run", dedup_key, exc_info=True)
            last_seen = None

        result = diff_since(feed, last_seen, self._gap_cap)

        if result.gap:
            log.warning(
                "Cursor %s for %s fell outside the fetched window; replaying newest %d of %d entries",
                last_seen, dedup_key, len(result.new_entries), len(feed),
            )
        return result
