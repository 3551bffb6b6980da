"""Sync engine: one pull-and-reconcile cycle at a time between service and store.

A cycle drains pending user mutations first, then walks the remote listing
from the persisted cursor, holding every page in memory. Only when the last
page has arrived is the whole working set written in a single transaction,
together with the new cursor. Any failure before that point leaves the store
exactly as it was.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from .client import RemoteClient
from .errors import (
    AuthExpiredError,
    AuthUnavailableError,
    ReadLaterError,
    RemoteRejectedError,
    StorageError,
    SyncCancelledError,
    TransientNetworkError,
)
from .models import (
    Article,
    MutationAck,
    MutationKind,
    PendingMutation,
    SyncProgress,
    SyncState,
)
from .store import LocalStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncProgress], None]
TokenRefresher = Callable[[], Awaitable[str]]
Renderer = Callable[[str], str]


@dataclass
class SyncResult:
    """Terminal outcome of one sync cycle."""

    state: SyncState
    processed: int = 0
    total: int | None = None
    mutations_sent: int = 0
    mutations_dropped: int = 0
    error: Exception | None = None

    @property
    def committed(self) -> bool:
        return self.state is SyncState.COMMITTED

    @property
    def requires_reauth(self) -> bool:
        """The user has to go through the credential flow again."""
        return isinstance(self.error, (AuthExpiredError, AuthUnavailableError))

    @property
    def user_visible(self) -> bool:
        """Failures worth showing; everything else is retried next cycle."""
        return isinstance(self.error, (AuthUnavailableError, StorageError))


@dataclass
class _WorkingSet:
    articles: dict[str, Article] = field(default_factory=dict)
    deleted: set[str] = field(default_factory=set)

    def add_page(self, articles: list[Article], deleted_ids: list[str]) -> None:
        for article in articles:
            self.articles[article.id] = article
            self.deleted.discard(article.id)
        for article_id in deleted_ids:
            self.articles.pop(article_id, None)
            self.deleted.add(article_id)


class SyncEngine:
    """Owns the sync state machine and routes user mutations.

    ``Idle -> Running -> Committed | Aborted``. At most one cycle runs at a
    time; :meth:`trigger` while running hands back the in-flight cycle.
    """

    def __init__(
        self,
        client: RemoteClient,
        store: LocalStore,
        page_size: int = 30,
        refresh_token: TokenRefresher | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self._client = client
        self._store = store
        self._page_size = page_size
        self._refresh_token = refresh_token
        self._on_progress = on_progress
        self._state = SyncState.IDLE
        self._current: asyncio.Task | None = None
        self._cancel_requested = False

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is SyncState.RUNNING

    def trigger(self) -> "asyncio.Future[SyncResult]":
        """Start a cycle, or attach to the one already running.

        Must be called from within the event loop.
        """
        if self._current is not None and not self._current.done():
            logger.debug("Sync already running, attaching to current cycle")
            return asyncio.shield(self._current)
        self._cancel_requested = False
        self._state = SyncState.RUNNING
        self._current = asyncio.get_running_loop().create_task(self._run_cycle())
        self._current.add_done_callback(self._cycle_done)
        return asyncio.shield(self._current)

    def _cycle_done(self, task: asyncio.Task) -> None:
        # A task cancelled before its first step never reaches _run_cycle.
        if task.cancelled() and self._state is SyncState.RUNNING:
            self._state = SyncState.ABORTED

    async def sync(self) -> SyncResult:
        """Run (or join) a sync cycle and wait for its outcome."""
        return await self.trigger()

    def cancel(self) -> None:
        """Ask the running cycle to stop at the next page boundary."""
        if self.running:
            logger.info("Sync cancellation requested")
            self._cancel_requested = True

    def _report(self, processed: int, total: int | None) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(SyncProgress(processed=processed, total=total, state=self._state))
        except Exception as e:
            logger.warning("Progress callback failed: %s", e, exc_info=True)

    async def _authorized(self, call: Callable[[], Awaitable]):
        """Run a remote call, refreshing the token and retrying once on 401."""
        try:
            return await call()
        except AuthExpiredError:
            if self._refresh_token is None:
                raise
            logger.info("Access token expired, requesting a fresh one")
            token = await self._refresh_token()
            self._client.set_token(token)
            return await call()

    async def _run_cycle(self) -> SyncResult:
        result = SyncResult(state=SyncState.RUNNING)
        logger.info("Sync cycle started")
        try:
            await self._drain_pending(result)
            working, cursor = await self._pull(result)
            self._commit(working, cursor)
        except asyncio.CancelledError:
            self._state = SyncState.ABORTED
            logger.warning("Sync cycle task cancelled")
            self._report(result.processed, result.total)
            raise
        except ReadLaterError as e:
            self._state = SyncState.ABORTED
            result.state = SyncState.ABORTED
            result.error = e
            logger.warning("Sync cycle aborted: %s: %s", type(e).__name__, e)
        except Exception as e:
            self._state = SyncState.ABORTED
            result.state = SyncState.ABORTED
            result.error = e
            logger.error("Sync cycle failed unexpectedly: %s", e, exc_info=True)
        else:
            self._state = SyncState.COMMITTED
            result.state = SyncState.COMMITTED
            logger.info("Sync cycle committed %d articles", result.processed)
        self._report(result.processed, result.total)
        return result

    async def _drain_pending(self, result: SyncResult) -> None:
        for mutation in self._store.list_pending():
            try:
                ack = await self._authorized(
                    lambda m=mutation: self._client.mutate(m.kind, m.target, m.value)
                )
            except TransientNetworkError as e:
                logger.info("Network unavailable, leaving pending mutations queued: %s", e)
                return
            except RemoteRejectedError as e:
                logger.warning(
                    "Dropping %s for %s, rejected by service: %s",
                    mutation.kind.value,
                    mutation.target,
                    e,
                )
                self._store.remove_pending(mutation.target, mutation.kind, sent=mutation)
                result.mutations_dropped += 1
                continue
            self._acknowledge(mutation, ack)
            result.mutations_sent += 1

    def _acknowledge(self, mutation: PendingMutation, ack: MutationAck) -> None:
        with self._store.transaction() as tx:
            tx.remove_pending(mutation.target, mutation.kind, sent=mutation)
            if ack.article is not None:
                tx.upsert([ack.article])

    async def _pull(self, result: SyncResult) -> tuple[_WorkingSet, str | None]:
        working = _WorkingSet()
        paginator = self._client.paginate(self._store.read_cursor(), self._page_size)
        while True:
            if self._cancel_requested:
                raise SyncCancelledError("Sync cancelled")
            page = await self._authorized(paginator.next_page)
            if page is None:
                break
            working.add_page(page.articles, page.deleted_ids)
            result.processed += len(page.articles) + len(page.deleted_ids)
            if page.total is not None:
                result.total = page.total
            self._report(result.processed, result.total)
        return working, paginator.resume_cursor

    def _commit(self, working: _WorkingSet, cursor: str | None) -> None:
        if self._cancel_requested:
            raise SyncCancelledError("Sync cancelled")
        with self._store.transaction() as tx:
            tx.upsert(working.articles.values())
            for article_id in working.deleted:
                tx.delete(article_id)
            # Anything still queued must stay visible over the fresh remote copy.
            for mutation in tx.list_pending():
                tx.apply_pending(mutation)
            tx.write_cursor(cursor)

    def _record(self, mutation: PendingMutation) -> None:
        with self._store.transaction() as tx:
            tx.enqueue_pending(mutation)
            tx.apply_pending(mutation)
        logger.debug("Queued %s for %s", mutation.kind.value, mutation.target)

    def archive(self, article_id: str) -> None:
        self._record(PendingMutation(target=article_id, kind=MutationKind.ARCHIVE))

    def delete(self, article_id: str) -> None:
        self._record(PendingMutation(target=article_id, kind=MutationKind.DELETE))

    def set_favorite(self, article_id: str, favorite: bool = True) -> None:
        self._record(
            PendingMutation(target=article_id, kind=MutationKind.FAVORITE, value=favorite)
        )

    def add_bookmark(self, url: str) -> None:
        """Queue a URL to be saved; the article appears after the next sync."""
        self._record(PendingMutation(target=url, kind=MutationKind.ADD))

    async def fetch_content(self, article_id: str, render: Renderer) -> Article:
        """Download, render and store the full text of one article.

        Raises:
            KeyError: the article is not in the local store
        """
        article = self._store.get(article_id)
        if article is None:
            raise KeyError(article_id)
        html = await self._authorized(lambda: self._client.fetch_text(article_id))
        content = render(html)
        if content:
            self._store.set_content(article_id, content)
            article = article.with_changes(content=content)
        return article

    async def verify_credentials(self) -> str:
        """Check the current token against the service and return the username."""
        return await self._authorized(self._client.verify_credentials)

    def sign_out(self) -> None:
        """Forget every cached article, queued action and the cursor."""
        if self.running:
            raise RuntimeError("Cannot sign out while a sync is running")
        self._store.clear()
        self._state = SyncState.IDLE
        logger.info("Local store cleared")
