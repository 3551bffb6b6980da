"""Shared fixtures: config, a temporary store and an in-memory remote."""

import pytest

from readlater_sync.client import Paginator
from readlater_sync.config import Config
from readlater_sync.models import Article, MutationAck, MutationKind, Page
from readlater_sync.store import LocalStore


def make_article(article_id: str, **overrides) -> Article:
    fields = {
        "id": article_id,
        "title": f"Article {article_id}",
        "url": f"https://example.com/{article_id}",
        "excerpt": f"Excerpt for {article_id}",
        "word_count": 400,
        "reading_time": 2,
        "added_at": 1_700_000_000,
    }
    fields.update(overrides)
    return Article(**fields)


class FakeRemote:
    """In-memory stand-in for RemoteClient.

    ``pages`` maps the cursor a request is made with to the Page returned.
    Set ``list_error`` / ``mutate_error`` to an exception (or a callable
    taking the call number and returning one or None) to simulate failures.
    """

    def __init__(self, pages: dict[str | None, Page] | None = None):
        self.pages = pages or {}
        self.list_calls: list[str | None] = []
        self.mutations: list[tuple[MutationKind, str, bool | None]] = []
        self.mutate_calls = 0
        self.list_error = None
        self.mutate_error = None
        self.token = "initial"
        self.archived_remotely: set[str] = set()
        self.username = "reader"
        self.verify_error = None
        self.verify_calls = 0

    def set_token(self, token: str) -> None:
        self.token = token

    def _maybe_fail(self, error, call_number: int) -> None:
        if callable(error) and not isinstance(error, Exception):
            error = error(call_number)
        if error is not None:
            raise error

    async def list(self, cursor, page_size):
        self.list_calls.append(cursor)
        self._maybe_fail(self.list_error, len(self.list_calls))
        if cursor in self.pages:
            return self.pages[cursor]
        return Page(articles=[], deleted_ids=[], next_cursor=cursor, has_more=False)

    def paginate(self, cursor, page_size):
        return Paginator(self, cursor, page_size)

    async def mutate(self, kind, target, value=None):
        self.mutate_calls += 1
        self._maybe_fail(self.mutate_error, self.mutate_calls)
        self.mutations.append((kind, target, value))
        if kind is MutationKind.ARCHIVE:
            self.archived_remotely.add(target)
        if kind is MutationKind.ADD:
            return MutationAck(kind=kind, target=target, article=make_article("new", url=target))
        return MutationAck(kind=kind, target=target)

    async def verify_credentials(self):
        self.verify_calls += 1
        self._maybe_fail(self.verify_error, self.verify_calls)
        return self.username

    async def fetch_text(self, article_id):
        return f"<html><body><p>Full text of {article_id}</p></body></html>"


@pytest.fixture
def config():
    return Config(
        READLATER_API_URL="https://api.readlater.test/v1",
        READLATER_API_TOKEN="test-token",
    )


@pytest.fixture
def store(tmp_path):
    return LocalStore(tmp_path / "articles.db")


@pytest.fixture
def remote():
    return FakeRemote()
