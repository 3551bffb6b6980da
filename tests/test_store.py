"""Tests for store.py — merge rules, transactions and pending mutations."""

import pytest

from conftest import make_article
from readlater_sync.errors import StorageError
from readlater_sync.models import (
    ArchivedFilter,
    MutationKind,
    PendingMutation,
    SortKey,
    SortOrder,
)
from readlater_sync.store import LocalStore


# --- Upsert / merge ---


def test_upsert_inserts_and_gets(store):
    store.upsert([make_article("1", tags=frozenset({"a"}), author="Ann")])

    article = store.get("1")
    assert article.title == "Article 1"
    assert article.tags == frozenset({"a"})
    assert article.author == "Ann"
    assert store.get("missing") is None


def test_upsert_replaces_fields(store):
    store.upsert([make_article("1")])
    store.upsert([make_article("1", title="Renamed", archived=True, favorite=True)])

    article = store.get("1")
    assert article.title == "Renamed"
    assert article.archived is True
    assert article.favorite is True
    assert store.count() == 1


@pytest.mark.parametrize("incoming", [None, ""])
def test_upsert_never_clears_existing_content(store, incoming):
    store.upsert([make_article("1", content="<p>full text</p>")])
    store.upsert([make_article("1", title="Updated", content=incoming)])

    article = store.get("1")
    assert article.content == "<p>full text</p>"
    assert article.title == "Updated"


def test_upsert_replaces_content_when_present(store):
    store.upsert([make_article("1", content="old")])
    store.upsert([make_article("1", content="new")])

    assert store.get("1").content == "new"


def test_article_without_content_is_valid(store):
    store.upsert([make_article("1")])
    assert store.get("1").content is None


def test_delete(store):
    store.upsert([make_article("1")])
    assert store.delete("1") is True
    assert store.delete("1") is False
    assert store.get("1") is None


# --- Cursor ---


def test_cursor_unset_then_written(store):
    assert store.read_cursor() is None
    store.write_cursor("abc")
    store.write_cursor("def")
    assert store.read_cursor() == "def"


def test_cursor_survives_reopen(tmp_path):
    path = tmp_path / "db" / "articles.db"
    LocalStore(path).write_cursor("persisted")

    assert LocalStore(path).read_cursor() == "persisted"


# --- Transactions ---


def test_transaction_rolls_back_on_error(store):
    store.upsert([make_article("1")])
    store.write_cursor("before")

    with pytest.raises(RuntimeError):
        with store.transaction() as tx:
            tx.upsert([make_article("2"), make_article("3")])
            tx.delete("1")
            tx.write_cursor("after")
            raise RuntimeError("boom")

    assert store.read_cursor() == "before"
    assert store.get("1") is not None
    assert store.get("2") is None
    assert store.count() == 1


def test_sqlite_errors_become_storage_errors(store):
    with pytest.raises(StorageError):
        with store.transaction() as tx:
            tx._conn.execute("INSERT INTO no_such_table VALUES (1)")


def test_write_lock_released_after_error(store):
    with pytest.raises(ValueError):
        with store.transaction():
            raise ValueError("fail")

    store.upsert([make_article("1")])
    assert store.count() == 1


def test_readers_see_last_committed_snapshot(store):
    store.upsert([make_article("1")])

    with store.transaction() as tx:
        tx.upsert([make_article("2")])
        assert [a.id for a in store.query()] == ["1"]

    assert {a.id for a in store.query()} == {"1", "2"}


def test_unopenable_path_raises_storage_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")
    with pytest.raises(StorageError):
        LocalStore(blocker / "articles.db")


# --- Pending mutations ---


def test_pending_replaced_not_duplicated(store):
    store.enqueue_pending(PendingMutation(target="42", kind=MutationKind.ARCHIVE, created_at=1.0))
    store.enqueue_pending(PendingMutation(target="42", kind=MutationKind.ARCHIVE, created_at=2.0))

    pending = store.list_pending()
    assert len(pending) == 1
    assert pending[0].created_at == 2.0


def test_pending_distinct_kinds_coexist(store):
    store.enqueue_pending(PendingMutation(target="42", kind=MutationKind.ARCHIVE))
    store.enqueue_pending(
        PendingMutation(target="42", kind=MutationKind.FAVORITE, value=False)
    )

    pending = {m.kind: m for m in store.list_pending()}
    assert set(pending) == {MutationKind.ARCHIVE, MutationKind.FAVORITE}
    assert pending[MutationKind.FAVORITE].value is False
    assert pending[MutationKind.ARCHIVE].value is None


def test_pending_listed_oldest_first(store):
    store.enqueue_pending(PendingMutation(target="b", kind=MutationKind.DELETE, created_at=5.0))
    store.enqueue_pending(PendingMutation(target="a", kind=MutationKind.DELETE, created_at=1.0))

    assert [m.target for m in store.list_pending()] == ["a", "b"]


def test_remove_pending(store):
    store.enqueue_pending(PendingMutation(target="42", kind=MutationKind.ARCHIVE))
    assert store.remove_pending("42", MutationKind.ARCHIVE) is True
    assert store.remove_pending("42", MutationKind.ARCHIVE) is False
    assert store.list_pending() == []


def test_remove_sent_pending_spares_newer_entry(store):
    sent = PendingMutation(target="7", kind=MutationKind.FAVORITE, created_at=1.0, value=True)
    store.enqueue_pending(sent)
    store.enqueue_pending(
        PendingMutation(target="7", kind=MutationKind.FAVORITE, created_at=2.0, value=False)
    )

    assert store.remove_pending("7", MutationKind.FAVORITE, sent=sent) is False
    assert [(m.created_at, m.value) for m in store.list_pending()] == [(2.0, False)]


def test_remove_sent_pending_drops_unchanged_entry(store):
    sent = PendingMutation(target="7", kind=MutationKind.FAVORITE, created_at=1.0, value=True)
    store.enqueue_pending(sent)

    assert store.remove_pending("7", MutationKind.FAVORITE, sent=sent) is True
    assert store.list_pending() == []


def test_apply_pending_effects(store):
    store.upsert([make_article("1"), make_article("2"), make_article("3")])

    with store.transaction() as tx:
        tx.apply_pending(PendingMutation(target="1", kind=MutationKind.ARCHIVE))
        tx.apply_pending(PendingMutation(target="2", kind=MutationKind.DELETE))
        tx.apply_pending(PendingMutation(target="3", kind=MutationKind.FAVORITE, value=True))
        tx.apply_pending(PendingMutation(target="https://x.com", kind=MutationKind.ADD))

    assert store.get("1").archived is True
    assert store.get("2") is None
    assert store.get("3").favorite is True
    assert store.count() == 2


def test_clear(store):
    store.upsert([make_article("1")])
    store.write_cursor("c")
    store.enqueue_pending(PendingMutation(target="1", kind=MutationKind.ARCHIVE))

    store.clear()

    assert store.count() == 0
    assert store.read_cursor() is None
    assert store.list_pending() == []


# --- Query ---


def test_query_is_restartable(store):
    store.upsert([make_article(str(i), added_at=1000 + i) for i in range(4)])
    result = store.query()

    assert [a.id for a in result] == [a.id for a in result] == ["3", "2", "1", "0"]


def test_query_archived_filter(store):
    store.upsert([make_article("1"), make_article("2", archived=True)])

    assert [a.id for a in store.query(archived=ArchivedFilter.ONLY)] == ["2"]
    assert [a.id for a in store.query(archived=ArchivedFilter.EXCLUDE)] == ["1"]
    assert len(list(store.query(archived=ArchivedFilter.INCLUDE))) == 2


def test_query_reading_time_ascending_ties_by_id(store):
    store.upsert(
        [
            make_article("b", reading_time=5),
            make_article("a", reading_time=5),
            make_article("c", reading_time=1),
        ]
    )

    ids = [
        a.id
        for a in store.query(sort_by=SortKey.READING_TIME, sort_order=SortOrder.ASCENDING)
    ]
    assert ids == ["c", "a", "b"]


def test_query_equal_dates_tie_by_numeric_id(store):
    store.upsert(
        [
            make_article("10", added_at=1_700_000_000),
            make_article("9", added_at=1_700_000_000),
            make_article("100", added_at=1_700_000_000),
        ]
    )

    assert [a.id for a in store.query()] == ["9", "10", "100"]
