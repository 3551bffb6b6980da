"""SQLite-backed local store for articles, the sync cursor and pending mutations.

Writers are serialized through a process-wide lock and run inside
``BEGIN IMMEDIATE`` transactions; readers get their own connection and, with
the database in WAL mode, see the last committed snapshot without waiting on
an in-flight write.
"""

import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path

from .errors import StorageError
from .models import (
    ArchivedFilter,
    Article,
    MutationKind,
    PendingMutation,
    SortKey,
    SortOrder,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS articles (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    url TEXT NOT NULL,
    excerpt TEXT NOT NULL DEFAULT '',
    word_count INTEGER NOT NULL DEFAULT 0,
    reading_time INTEGER NOT NULL DEFAULT 0,
    author TEXT,
    added_at INTEGER NOT NULL DEFAULT 0,
    archived INTEGER NOT NULL DEFAULT 0,
    favorite INTEGER NOT NULL DEFAULT 0,
    tags TEXT NOT NULL DEFAULT '[]',
    content TEXT
);
CREATE TABLE IF NOT EXISTS sync_cursor (
    singleton INTEGER PRIMARY KEY CHECK (singleton = 1),
    value TEXT
);
CREATE TABLE IF NOT EXISTS pending_mutations (
    target TEXT NOT NULL,
    kind TEXT NOT NULL,
    created_at REAL NOT NULL,
    value INTEGER,
    PRIMARY KEY (target, kind)
);
"""

# Incoming content replaces the stored body only when it is non-empty.
UPSERT_SQL = """
INSERT INTO articles (
    id, title, url, excerpt, word_count, reading_time, author,
    added_at, archived, favorite, tags, content
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    title = excluded.title,
    url = excluded.url,
    excerpt = excluded.excerpt,
    word_count = excluded.word_count,
    reading_time = excluded.reading_time,
    author = excluded.author,
    added_at = excluded.added_at,
    archived = excluded.archived,
    favorite = excluded.favorite,
    tags = excluded.tags,
    content = COALESCE(NULLIF(excluded.content, ''), articles.content)
"""

_SORT_COLUMNS = {
    SortKey.ADDED_DATE: "added_at",
    SortKey.READING_TIME: "reading_time",
}

_ARCHIVED_CLAUSES = {
    ArchivedFilter.INCLUDE: "",
    ArchivedFilter.EXCLUDE: "WHERE archived = 0",
    ArchivedFilter.ONLY: "WHERE archived = 1",
}


def _article_params(article: Article) -> tuple:
    return (
        article.id,
        article.title,
        article.url,
        article.excerpt,
        article.word_count,
        article.reading_time,
        article.author,
        article.added_at,
        int(article.archived),
        int(article.favorite),
        json.dumps(sorted(article.tags)),
        article.content,
    )


def _row_to_article(row: sqlite3.Row) -> Article:
    return Article(
        id=row["id"],
        title=row["title"],
        url=row["url"],
        excerpt=row["excerpt"],
        word_count=row["word_count"],
        reading_time=row["reading_time"],
        author=row["author"],
        added_at=row["added_at"],
        archived=bool(row["archived"]),
        favorite=bool(row["favorite"]),
        tags=frozenset(json.loads(row["tags"])),
        content=row["content"],
    )


def _row_to_pending(row: sqlite3.Row) -> PendingMutation:
    value = row["value"]
    return PendingMutation(
        target=row["target"],
        kind=MutationKind(row["kind"]),
        created_at=row["created_at"],
        value=None if value is None else bool(value),
    )


class Transaction:
    """Write operations available inside :meth:`LocalStore.transaction`."""

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def upsert(self, articles: Iterable[Article]) -> int:
        """Insert or merge articles. Returns how many records were written."""
        rows = [_article_params(a) for a in articles]
        self._conn.executemany(UPSERT_SQL, rows)
        return len(rows)

    def get(self, article_id: str) -> Article | None:
        row = self._conn.execute("SELECT * FROM articles WHERE id = ?", (article_id,)).fetchone()
        return _row_to_article(row) if row else None

    def delete(self, article_id: str) -> bool:
        cursor = self._conn.execute("DELETE FROM articles WHERE id = ?", (article_id,))
        return cursor.rowcount > 0

    def set_content(self, article_id: str, content: str) -> bool:
        cursor = self._conn.execute(
            "UPDATE articles SET content = ? WHERE id = ?", (content, article_id)
        )
        return cursor.rowcount > 0

    def read_cursor(self) -> str | None:
        row = self._conn.execute("SELECT value FROM sync_cursor WHERE singleton = 1").fetchone()
        return row["value"] if row else None

    def write_cursor(self, value: str | None) -> None:
        self._conn.execute(
            "INSERT INTO sync_cursor (singleton, value) VALUES (1, ?) "
            "ON CONFLICT(singleton) DO UPDATE SET value = excluded.value",
            (value,),
        )

    def enqueue_pending(self, mutation: PendingMutation) -> None:
        """Record a mutation, replacing any earlier one with the same key."""
        self._conn.execute(
            "INSERT OR REPLACE INTO pending_mutations (target, kind, created_at, value) "
            "VALUES (?, ?, ?, ?)",
            (
                mutation.target,
                mutation.kind.value,
                mutation.created_at,
                None if mutation.value is None else int(mutation.value),
            ),
        )

    def list_pending(self) -> list[PendingMutation]:
        rows = self._conn.execute(
            "SELECT * FROM pending_mutations ORDER BY created_at, target, kind"
        ).fetchall()
        return [_row_to_pending(row) for row in rows]

    def remove_pending(
        self, target: str, kind: MutationKind, sent: PendingMutation | None = None
    ) -> bool:
        """Drop the queued entry for (target, kind).

        With ``sent``, the entry is only dropped if it is still the one that was
        sent; a newer entry queued meanwhile survives.
        """
        if sent is None:
            cursor = self._conn.execute(
                "DELETE FROM pending_mutations WHERE target = ? AND kind = ?",
                (target, kind.value),
            )
        else:
            cursor = self._conn.execute(
                "DELETE FROM pending_mutations "
                "WHERE target = ? AND kind = ? AND created_at = ? AND value IS ?",
                (
                    target,
                    kind.value,
                    sent.created_at,
                    None if sent.value is None else int(sent.value),
                ),
            )
        return cursor.rowcount > 0

    def apply_pending(self, mutation: PendingMutation) -> None:
        """Apply the local effect of a mutation to the article table."""
        if mutation.kind is MutationKind.ARCHIVE:
            self._conn.execute("UPDATE articles SET archived = 1 WHERE id = ?", (mutation.target,))
        elif mutation.kind is MutationKind.DELETE:
            self.delete(mutation.target)
        elif mutation.kind is MutationKind.FAVORITE:
            self._conn.execute(
                "UPDATE articles SET favorite = ? WHERE id = ?",
                (int(bool(mutation.value)), mutation.target),
            )

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM articles").fetchone()[0]

    def clear(self) -> None:
        self._conn.execute("DELETE FROM articles")
        self._conn.execute("DELETE FROM pending_mutations")
        self._conn.execute("DELETE FROM sync_cursor")


class StoredArticles:
    """Lazy, restartable view over a query against the store.

    Each iteration opens a fresh read snapshot, so iterating twice over an
    unchanged store yields the same sequence.
    """

    def __init__(
        self,
        store: "LocalStore",
        archived: ArchivedFilter,
        sort_by: SortKey,
        sort_order: SortOrder,
        predicate: Callable[[Article], bool] | None = None,
    ):
        self._store = store
        self._predicate = predicate
        direction = "DESC" if sort_order is SortOrder.DESCENDING else "ASC"
        self._sql = (
            f"SELECT * FROM articles {_ARCHIVED_CLAUSES[archived]} "
            f"ORDER BY {_SORT_COLUMNS[sort_by]} {direction}, CAST(id AS INTEGER), id"
        )

    def __iter__(self) -> Iterator[Article]:
        with self._store.snapshot() as conn:
            try:
                for row in conn.execute(self._sql):
                    article = _row_to_article(row)
                    if self._predicate is None or self._predicate(article):
                        yield article
            except sqlite3.Error as e:
                raise StorageError(f"Query failed: {e}") from e


class LocalStore:
    """Persistent article store.

    Every public write opens its own transaction; use :meth:`transaction`
    to group several writes so they commit or roll back together.
    """

    def __init__(self, path: Path | str, timeout: float = 30.0):
        self.path = Path(path)
        self._timeout = timeout
        self._write_lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(SCHEMA)
            finally:
                conn.close()
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Cannot open store at {self.path}: {e}") from e
        logger.debug("Opened local store at %s", self.path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.path,
            timeout=self._timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Serialized read-write transaction; commits on clean exit only."""
        with self._write_lock:
            try:
                conn = self._connect()
            except sqlite3.Error as e:
                raise StorageError(f"Cannot connect to store: {e}") from e
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield Transaction(conn)
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise StorageError(f"Transaction failed: {e}") from e
            except BaseException:
                self._rollback(conn)
                raise
            finally:
                conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error("Rollback failed: %s", e)

    @contextmanager
    def snapshot(self) -> Iterator[sqlite3.Connection]:
        """Read-only connection pinned to one committed snapshot."""
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open read snapshot: {e}") from e
        try:
            conn.execute("BEGIN")
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Read snapshot failed: {e}") from e
        finally:
            self._rollback(conn)
            conn.close()

    def _read(self, fn: Callable[[Transaction], object]):
        with self.snapshot() as conn:
            try:
                return fn(Transaction(conn))
            except sqlite3.Error as e:
                raise StorageError(f"Read failed: {e}") from e

    def upsert(self, articles: Iterable[Article]) -> int:
        with self.transaction() as tx:
            return tx.upsert(articles)

    def get(self, article_id: str) -> Article | None:
        return self._read(lambda tx: tx.get(article_id))

    def delete(self, article_id: str) -> bool:
        with self.transaction() as tx:
            return tx.delete(article_id)

    def set_content(self, article_id: str, content: str) -> bool:
        with self.transaction() as tx:
            return tx.set_content(article_id, content)

    def read_cursor(self) -> str | None:
        return self._read(lambda tx: tx.read_cursor())

    def write_cursor(self, value: str | None) -> None:
        with self.transaction() as tx:
            tx.write_cursor(value)

    def enqueue_pending(self, mutation: PendingMutation) -> None:
        with self.transaction() as tx:
            tx.enqueue_pending(mutation)

    def list_pending(self) -> list[PendingMutation]:
        return self._read(lambda tx: tx.list_pending())

    def remove_pending(
        self, target: str, kind: MutationKind, sent: PendingMutation | None = None
    ) -> bool:
        with self.transaction() as tx:
            return tx.remove_pending(target, kind, sent)

    def clear(self) -> None:
        with self.transaction() as tx:
            tx.clear()

    def count(self) -> int:
        return self._read(lambda tx: tx.count())

    def query(
        self,
        archived: ArchivedFilter = ArchivedFilter.INCLUDE,
        sort_by: SortKey = SortKey.ADDED_DATE,
        sort_order: SortOrder = SortOrder.DESCENDING,
        predicate: Callable[[Article], bool] | None = None,
    ) -> StoredArticles:
        """Lazy, restartable sequence of articles, ties broken by ascending numeric ID."""
        return StoredArticles(self, archived, sort_by, sort_order, predicate)
