"""Read-side filtering and sorting over the local store. Never touches the network."""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from .models import ArchivedFilter, Article, SortKey, SortOrder
from .store import LocalStore


@dataclass(frozen=True)
class QueryOptions:
    """What to show and in which order.

    text: case-insensitive substring matched against title and excerpt
    tags: keep articles carrying at least one of these tags (empty = no filter)
    archived: include, exclude, or only archived articles
    """

    text: str = ""
    tags: frozenset[str] = field(default_factory=frozenset)
    archived: ArchivedFilter = ArchivedFilter.INCLUDE
    sort_by: SortKey = SortKey.ADDED_DATE
    sort_order: SortOrder = SortOrder.DESCENDING

    @classmethod
    def from_dict(cls, options: dict) -> "QueryOptions":
        """Build options from plain values, e.g. ``{"sort_by": "reading_time"}``."""
        unknown = set(options) - {"text", "tags", "archived", "sort_by", "sort_order"}
        if unknown:
            raise ValueError(f"Unknown query options: {', '.join(sorted(unknown))}")
        return cls(
            text=options.get("text") or "",
            tags=frozenset(options.get("tags") or ()),
            archived=ArchivedFilter(options.get("archived", ArchivedFilter.INCLUDE)),
            sort_by=SortKey(options.get("sort_by", SortKey.ADDED_DATE)),
            sort_order=SortOrder(options.get("sort_order", SortOrder.DESCENDING)),
        )

    def matches(self, article: Article) -> bool:
        if self.text:
            needle = self.text.lower()
            if needle not in article.title.lower() and needle not in article.excerpt.lower():
                return False
        if self.tags and not (self.tags & article.tags):
            return False
        return True


class QueryResult:
    """Restartable sequence of matching articles."""

    def __init__(self, source: Iterable[Article]):
        self._source = source

    def __iter__(self) -> Iterator[Article]:
        return iter(self._source)

    def first(self, n: int) -> list[Article]:
        result = []
        for article in self:
            if len(result) >= n:
                break
            result.append(article)
        return result


class ArticleQueryService:
    """Answers presentation-layer queries from the local store."""

    def __init__(self, store: LocalStore):
        self._store = store

    def query(self, options: QueryOptions | dict | None = None) -> QueryResult:
        if options is None:
            options = QueryOptions()
        elif isinstance(options, dict):
            options = QueryOptions.from_dict(options)

        predicate = options.matches if (options.text or options.tags) else None
        return QueryResult(
            self._store.query(
                archived=options.archived,
                sort_by=options.sort_by,
                sort_order=options.sort_order,
                predicate=predicate,
            )
        )

    def get(self, article_id: str) -> Article | None:
        return self._store.get(article_id)
