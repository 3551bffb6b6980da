"""Bookmarking service API client.

Thin protocol wrapper: every call maps onto one HTTP request (plus retries
for rate limiting and 5xx) and every failure surfaces as one of the typed
errors in :mod:`readlater_sync.errors`.
"""

import asyncio
import logging
import random

import httpx

from .config import MAX_PAGE_SIZE, Config
from .errors import (
    AuthExpiredError,
    RateLimitedError,
    RemoteRejectedError,
    TransientNetworkError,
)
from .models import Article, MutationAck, MutationKind, Page, estimate_reading_time

logger = logging.getLogger(__name__)

# HTTP status codes that should trigger a retry
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

BASE_DELAY = 1.0
MAX_DELAY = 30.0
JITTER = 0.1


def _retry_delay(response: httpx.Response, attempt: int) -> float:
    """Seconds to wait before the next attempt.

    Honors a numeric ``Retry-After`` header, otherwise exponential backoff
    with a little jitter.
    """
    retry_after = _parse_retry_after(response)
    if retry_after is not None:
        return min(retry_after, MAX_DELAY)
    delay = min(BASE_DELAY * (2**attempt), MAX_DELAY)
    return delay + delay * JITTER * random.random()


def _parse_retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class RemoteClient:
    """Async client for the bookmarking service.

    Create once, reuse for every call, close with :meth:`aclose`. The bearer
    token can be swapped with :meth:`set_token` after a credential refresh.
    """

    def __init__(self, config: Config, token: str | None = None):
        self._config = config
        self.api_url = config.api_url.rstrip("/")
        self._token = token if token is not None else config.api_token.get_secret_value()
        self._max_retries = config.max_retries
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=config.request_timeout,
            follow_redirects=True,
        )

    def set_token(self, token: str) -> None:
        self._token = token

    def _get_auth_headers(self) -> dict[str, str]:
        """Get headers with the bearer token."""
        if not self._token:
            raise AuthExpiredError("No access token available")
        return {"Authorization": f"Bearer {self._token}", "Accept": "application/json"}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Issue one authenticated request, retrying 429/5xx with backoff.

        Raises:
            TransientNetworkError: timeout, connection failure, or retries exhausted
            AuthExpiredError: the service answered 401
            RemoteRejectedError: any other 4xx
        """
        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.request(
                    method, path, headers=self._get_auth_headers(), **kwargs
                )
            except httpx.TimeoutException as e:
                raise TransientNetworkError(f"{method} {path} timed out") from e
            except httpx.TransportError as e:
                raise TransientNetworkError(f"{method} {path} failed: {e}") from e

            status = response.status_code
            if status == 401:
                raise AuthExpiredError(f"{method} {path}: access token rejected")
            if status in RETRYABLE_STATUS_CODES:
                if attempt < self._max_retries:
                    delay = _retry_delay(response, attempt)
                    logger.warning(
                        "%s %s returned %d, retrying in %.1fs (attempt %d/%d)",
                        method,
                        path,
                        status,
                        delay,
                        attempt + 1,
                        self._max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue
                if status == 429:
                    raise RateLimitedError(
                        f"{method} {path}: rate limited", retry_after=_parse_retry_after(response)
                    )
                raise TransientNetworkError(f"{method} {path}: service returned {status}")
            if status >= 400:
                raise RemoteRejectedError(
                    f"{method} {path}: rejected with {status}", status_code=status
                )
            return response

        raise TransientNetworkError(f"{method} {path}: retries exhausted")

    async def verify_credentials(self) -> str:
        """Check the token against the account endpoint and return the username."""
        response = await self._request("GET", "/account")
        try:
            data = response.json()
        except ValueError:
            data = None
        username = data.get("username", "") if isinstance(data, dict) else ""
        logger.info("Credentials valid for %s", username or "<unknown user>")
        return username

    async def list(self, cursor: str | None, page_size: int) -> Page:
        """Fetch one page of the article listing.

        Args:
            cursor: Continuation token from a previous page, or None to start over
            page_size: Number of records to request (1..MAX_PAGE_SIZE)
        """
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

        params: dict[str, str | int] = {"count": page_size}
        if cursor:
            params["cursor"] = cursor

        response = await self._request("GET", "/articles", params=params)
        try:
            data = response.json()
        except ValueError as e:
            raise TransientNetworkError(f"Malformed listing response: {e}") from e
        if not isinstance(data, dict):
            raise TransientNetworkError(
                f"Malformed listing response: expected an object, got {type(data).__name__}"
            )

        articles = []
        deleted_ids = []
        for item in data.get("articles", []):
            if item.get("deleted") and item.get("id") is not None:
                deleted_ids.append(str(item["id"]))
                continue
            article = self._parse_article(item)
            if article:
                articles.append(article)

        page = Page(
            articles=articles,
            deleted_ids=deleted_ids,
            next_cursor=data.get("next_cursor"),
            has_more=bool(data.get("has_more", False)),
            total=data.get("total"),
        )
        logger.debug(
            "Retrieved %d articles (%d deletions), has_more=%s",
            len(articles),
            len(deleted_ids),
            page.has_more,
        )
        return page

    def paginate(self, cursor: str | None, page_size: int) -> "Paginator":
        """Return a pull-based producer over the listing, starting at ``cursor``."""
        return Paginator(self, cursor, page_size)

    async def mutate(
        self, kind: MutationKind, target: str, value: bool | None = None
    ) -> MutationAck:
        """Push one user action to the service.

        Args:
            kind: Which action to perform
            target: Article ID, or the URL to save for ``MutationKind.ADD``
            value: Desired favorite flag for ``MutationKind.FAVORITE``
        """
        if kind is MutationKind.ADD:
            response = await self._request("POST", "/articles", json={"url": target})
            try:
                data = response.json()
            except ValueError:
                logger.warning("Service saved %s but returned no article record", target)
                data = None
            article = self._parse_article(data) if isinstance(data, dict) else None
            logger.info("Saved %s as article %s", target, article.id if article else "?")
            return MutationAck(kind=kind, target=target, article=article)

        if kind is MutationKind.ARCHIVE:
            await self._request("POST", f"/articles/{target}/archive")
        elif kind is MutationKind.DELETE:
            await self._request("DELETE", f"/articles/{target}")
        elif kind is MutationKind.FAVORITE:
            action = "favorite" if value is not False else "unfavorite"
            await self._request("POST", f"/articles/{target}/{action}")
        else:
            raise ValueError(f"Unsupported mutation kind: {kind}")

        logger.info("Applied %s to article %s", kind.value, target)
        return MutationAck(kind=kind, target=target)

    async def fetch_text(self, article_id: str) -> str:
        """Download the raw HTML body of an article."""
        response = await self._request("GET", f"/articles/{article_id}/text")
        return response.text

    def _parse_article(self, item: dict) -> Article | None:
        """Parse a remote record into an Article, or None if it has no ID."""
        article_id = item.get("id")
        if article_id is None or article_id == "":
            logger.warning("Skipping remote record without id: %r", item.get("url"))
            return None
        try:
            title = item.get("title") or "Untitled"
            excerpt = item.get("excerpt") or ""
            word_count = int(item.get("word_count") or 0)
            reading_time = item.get("reading_time")
            if reading_time is None:
                reading_time = estimate_reading_time(word_count, f"{title} {excerpt}")

            return Article(
                id=str(article_id),
                title=title,
                url=item.get("url") or "",
                excerpt=excerpt,
                word_count=word_count,
                reading_time=int(reading_time),
                author=item.get("author") or None,
                added_at=int(item.get("added_at") or 0),
                archived=bool(item.get("archived", False)),
                favorite=bool(item.get("favorite", False)),
                tags=frozenset(str(t) for t in item.get("tags") or []),
                content=item.get("content") or None,
            )
        except (TypeError, ValueError) as e:
            logger.warning("Skipping malformed record %s: %s", article_id, e)
            return None

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()


class Paginator:
    """Finite, pull-driven walk over the remote listing.

    A failed :meth:`next_page` leaves the position untouched, so calling it
    again re-requests the same page. Re-create from the original cursor to
    restart the walk.
    """

    def __init__(self, client: RemoteClient, cursor: str | None, page_size: int):
        self._client = client
        self._cursor = cursor
        self._page_size = page_size
        self._done = False

    @property
    def resume_cursor(self) -> str | None:
        """Cursor to persist once every page up to here has been merged."""
        return self._cursor

    async def next_page(self) -> Page | None:
        if self._done:
            return None
        page = await self._client.list(self._cursor, self._page_size)
        if page.next_cursor:
            self._cursor = page.next_cursor
        if not page.has_more:
            self._done = True
        elif not page.next_cursor:
            raise RemoteRejectedError("Listing reported more pages but no cursor")
        return page
