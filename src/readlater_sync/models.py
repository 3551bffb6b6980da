"""Data models for readlater-sync."""

import math
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

WORDS_PER_MINUTE = 200


def estimate_reading_time(word_count: int, fallback_text: str = "") -> int:
    """Estimate reading time in whole minutes.

    Uses the word count when the service supplies one, otherwise counts the
    words of ``fallback_text`` (typically title plus excerpt).
    """
    if word_count <= 0:
        word_count = len(fallback_text.split())
    return math.ceil(word_count / WORDS_PER_MINUTE)


@dataclass
class Article:
    """A saved article as held in the local store."""

    id: str
    title: str
    url: str
    excerpt: str = ""
    word_count: int = 0
    reading_time: int = 0
    author: str | None = None
    added_at: int = 0
    archived: bool = False
    favorite: bool = False
    tags: frozenset[str] = field(default_factory=frozenset)
    content: str | None = None

    def has_content(self) -> bool:
        return bool(self.content)

    def with_changes(self, **changes) -> "Article":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "excerpt": self.excerpt,
            "word_count": self.word_count,
            "reading_time": self.reading_time,
            "author": self.author,
            "added_at": self.added_at,
            "archived": self.archived,
            "favorite": self.favorite,
            "tags": sorted(self.tags),
            "has_content": self.has_content(),
        }


def reading_time_label(article: Article) -> str:
    minutes = article.reading_time
    if minutes < 1:
        return "< 1 min read"
    if minutes == 1:
        return "1 min read"
    return f"{minutes} min read"


def format_added(article: Article, now: datetime | None = None) -> str:
    """Human label for when an article was saved, relative to ``now``."""
    if not article.added_at:
        return "Unknown date"
    now = now or datetime.now(timezone.utc)
    added = datetime.fromtimestamp(article.added_at, tz=timezone.utc)
    days = (now - added).days
    if days <= 0:
        return "Today"
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days} days ago"
    weeks = days // 7
    if weeks < 4:
        return "1 week ago" if weeks == 1 else f"{weeks} weeks ago"
    return added.strftime("%b %d, %Y")


class MutationKind(str, Enum):
    """User actions that must round-trip to the remote service."""

    ADD = "add"
    ARCHIVE = "archive"
    DELETE = "delete"
    FAVORITE = "favorite"


@dataclass
class PendingMutation:
    """A user action applied locally but not yet acknowledged remotely.

    ``target`` is the article ID, or the URL for ``ADD``. ``value`` carries
    the desired flag for ``FAVORITE`` and is unused otherwise.
    """

    target: str
    kind: MutationKind
    created_at: float = field(default_factory=time.time)
    value: bool | None = None

    @property
    def key(self) -> tuple[str, MutationKind]:
        return (self.target, self.kind)


@dataclass
class MutationAck:
    """Remote acknowledgement of a mutation.

    For ``ADD`` the service returns the newly created article.
    """

    kind: MutationKind
    target: str
    article: Article | None = None


@dataclass
class Page:
    """One page of the remote article listing.

    ``next_cursor`` is opaque and only ever handed back to the service or
    persisted as the sync cursor.
    """

    articles: list[Article]
    deleted_ids: list[str]
    next_cursor: str | None
    has_more: bool
    total: int | None = None


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMMITTED = "committed"
    ABORTED = "aborted"


@dataclass
class SyncProgress:
    """Progress report emitted after every page and once at the end."""

    processed: int
    total: int | None
    state: SyncState

    @property
    def finished(self) -> bool:
        return self.state in (SyncState.COMMITTED, SyncState.ABORTED)


class ArchivedFilter(str, Enum):
    INCLUDE = "include"
    EXCLUDE = "exclude"
    ONLY = "only"


class SortKey(str, Enum):
    ADDED_DATE = "added_date"
    READING_TIME = "reading_time"


class SortOrder(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"
