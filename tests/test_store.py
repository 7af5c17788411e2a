import pytest

from repo_watch.errors import StoreError
from repo_watch.store import MemoryCursorStore, SqliteCursorStore, actions_key


def test_actions_key() -> None:
    assert actions_key("octo/widgets") == "octo/widgets:actions"


def test_sqlite_cursor_roundtrip(tmp_path) -> None:  # noqa: ANN001
    store = SqliteCursorStore(str(tmp_path / "state.sqlite3"))
    store.load()

    assert store.get("octo/widgets") is None
    store.set("octo/widgets", "100")
    store.set("octo/widgets", "105")
    assert store.get("octo/widgets") == "105"
    store.close()


def test_sqlite_cursors_survive_restart(tmp_path) -> None:  # noqa: ANN001
    db = str(tmp_path / "state.sqlite3")
    first = SqliteCursorStore(db)
    first.load()
    first.set("a/b", "7")
    first.set(actions_key("a/b"), "900")
    first.close()

    second = SqliteCursorStore(db)
    second.load()
    assert second.get("a/b") == "7"
    assert second.get("a/b:actions") == "900"
    second.close()


def test_failed_write_is_not_an_advance(tmp_path) -> None:  # noqa: ANN001
    store = SqliteCursorStore(str(tmp_path / "state.sqlite3"))
    store.load()
    store.set("a/b", "1")

    store._connect().execute("DROP TABLE cursors")
    with pytest.raises(StoreError):
        store.set("a/b", "2")
    assert store.get("a/b") == "1"
    store.close()


def test_load_failure_raises_store_error(tmp_path) -> None:  # noqa: ANN001
    store = SqliteCursorStore(str(tmp_path))   # a directory, not a database file
    with pytest.raises(StoreError):
        store.load()


def test_memory_store() -> None:
    store = MemoryCursorStore({"x/y": "1"})
    store.set("x/z", "2")
    assert store.snapshot() == {"x/y": "1", "x/z": "2"}
