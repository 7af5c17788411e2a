# cursor persistence: dedup key → last-seen entry id.

# dedup keys are the repo ("owner/name") for the events feed and
# "owner/name:actions" for the workflow runs feed.
#
# Each key has exactly one writer per cycle (the watcher handling that
# repo), so the in-memory map needs no lock; SQLite upserts are per key.

import logging
import sqlite3
from typing import Protocol

from repo_watch.errors import StoreError
from repo_watch.models import utc_now

log = logging.getLogger(__name__)


def actions_key(repo: str) -> str:
    return f"{repo}:actions"


class CursorStore(Protocol):
    def load(self) -> None: ...

    def get(self, dedup_key: str) -> str | None: ...

    def set(self, dedup_key: str, marker: str) -> None: ...

    def close(self) -> None: ...


class MemoryCursorStore:
    """Dict-backed store. Not durable; used by tests and --memory runs."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._cursors: dict[str, str] = dict(initial or {})

    def load(self) -> None:
        pass

    def get(self, dedup_key: str) -> str | None:
        return self._cursors.get(dedup_key)

    def set(self, dedup_key: str, marker: str) -> None:
        self._cursors[dedup_key] = marker

    def close(self) -> None:
        pass

    def snapshot(self) -> dict[str, str]:
        return dict(self._cursors)


class SqliteCursorStore:
    """
    Durable cursor store backed by a single SQLite table.

    load() creates the schema and reads every persisted cursor into memory.
    get() is served from memory. set() writes through to SQLite first and
    only touches the in-memory map once the write committed, so a failed
    write never looks like an advance.
    """

    def __init__(self, sqlite_path: str) -> None:
        self.sqlite_path = sqlite_path
        self._cursors: dict[str, str] = {}
        self._conn: sqlite3.Connection | None = None

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            conn = sqlite3.connect(self.sqlite_path)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn = conn
        return self._conn

    def load(self) -> None:
        try:
            conn = self._connect()
            with conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS cursors (
                        dedup_key TEXT PRIMARY KEY,
                        marker TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
            rows = conn.execute("SELECT dedup_key, marker FROM cursors").fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"could not load cursors from {self.sqlite_path}: {exc}") from exc

        self._cursors = {key: marker for key, marker in rows}
        log.info("Loaded %d cursor(s) from %s", len(self._cursors), self.sqlite_path)

    def get(self, dedup_key: str) -> str | None:
        return self._cursors.get(dedup_key)

    def set(self, dedup_key: str, marker: str) -> None:
        try:
            conn = self._connect()
            with conn:
                conn.execute(
                    """
                    INSERT INTO cursors(dedup_key, marker, updated_at)
                    VALUES(?, ?, ?)
                    ON CONFLICT(dedup_key) DO UPDATE SET
                        marker=excluded.marker,
                        updated_at=excluded.updated_at
                    """,
                    (dedup_key, marker, utc_now().isoformat()),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"could not persist cursor {dedup_key}={marker}: {exc}") from exc
        self._cursors[dedup_key] = marker

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
