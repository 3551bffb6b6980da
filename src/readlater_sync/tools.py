"""MCP tool definitions for the reading list.

Each tool does exactly one thing. All exceptions are caught at the
tool boundary and returned as "Error: ..." strings so the MCP protocol
never sees an uncaught exception.
"""

import logging

from fastmcp import FastMCP

from .models import format_added, reading_time_label
from .query import ArticleQueryService, QueryOptions
from .render import html_to_text
from .sync import Renderer, SyncEngine

logger = logging.getLogger(__name__)


def _truncate_excerpt(excerpt: str, max_length: int) -> str:
    """Truncate excerpt to max_length at a word boundary."""
    if len(excerpt) <= max_length:
        return excerpt
    return excerpt[:max_length].rsplit(" ", 1)[0] + "..."


def register_tools(
    mcp: FastMCP,
    engine: SyncEngine,
    queries: ArticleQueryService,
    render: Renderer = html_to_text,
) -> None:
    """Register all reading-list tools on the given MCP server instance.

    ``render`` turns downloaded article HTML into the text that is stored.
    """

    @mcp.tool()
    async def sync_articles() -> str:
        """Synchronize the local reading list with the bookmarking service.

        Returns a summary of the sync outcome. If a sync is already running,
        waits for it instead of starting another.
        """
        try:
            result = await engine.sync()
            if result.committed:
                return f"OK: {result.processed} articles synced"
            if result.requires_reauth:
                return "Error: sign-in required"
            return f"Error: sync aborted ({result.error})"
        except Exception as e:
            logger.error("sync_articles failed: %s", e, exc_info=True)
            return f"Error: {e}"

    @mcp.tool()
    async def list_articles(
        text: str = "",
        tags: list[str] | None = None,
        archived: str = "exclude",
        sort_by: str = "added_date",
        sort_order: str = "descending",
        limit: int = 20,
        max_excerpt_length: int = 300,
    ) -> str:
        """List cached articles without contacting the service.

        Args:
            text: Case-insensitive substring to find in title or excerpt.
            tags: Only articles with at least one of these tags.
            archived: "include", "exclude" (default) or "only".
            sort_by: "added_date" (default) or "reading_time".
            sort_order: "descending" (default) or "ascending".
            limit: Maximum number of articles to return (default 20).
            max_excerpt_length: Maximum characters for excerpts (default 300).

        Returns a JSON-formatted list of articles.
        """
        try:
            options = QueryOptions.from_dict(
                {
                    "text": text,
                    "tags": tags or [],
                    "archived": archived,
                    "sort_by": sort_by,
                    "sort_order": sort_order,
                }
            )
            result = []
            for article in queries.query(options).first(limit):
                d = article.to_dict()
                d["excerpt"] = _truncate_excerpt(d["excerpt"], max_excerpt_length)
                d["added"] = format_added(article)
                d["reading_time_label"] = reading_time_label(article)
                result.append(d)
            return str(result)
        except Exception as e:
            logger.error("list_articles failed: %s", e, exc_info=True)
            return f"Error: {e}"

    @mcp.tool()
    async def get_article(article_id: str) -> str:
        """Get one cached article, including its full text if already fetched.

        Args:
            article_id: ID of the article.
        """
        try:
            article = queries.get(article_id)
            if article is None:
                return f"Error: Article {article_id} not found"
            d = article.to_dict()
            d["content"] = article.content
            return str(d)
        except Exception as e:
            logger.error("get_article failed: %s", e, exc_info=True)
            return f"Error: {e}"

    @mcp.tool()
    async def archive_article(article_id: str) -> str:
        """Archive an article. Applied locally now, sent on the next sync.

        Args:
            article_id: ID of the article to archive.

        Returns "OK" on success or an error message.
        """
        try:
            engine.archive(article_id)
            return "OK"
        except Exception as e:
            logger.error("archive_article failed: %s", e, exc_info=True)
            return f"Error: {e}"

    @mcp.tool()
    async def delete_article(article_id: str) -> str:
        """Delete an article. Applied locally now, sent on the next sync.

        Args:
            article_id: ID of the article to delete.

        Returns "OK" on success or an error message.
        """
        try:
            engine.delete(article_id)
            return "OK"
        except Exception as e:
            logger.error("delete_article failed: %s", e, exc_info=True)
            return f"Error: {e}"

    @mcp.tool()
    async def favorite_article(article_id: str, favorite: bool = True) -> str:
        """Mark or unmark an article as favorite.

        Args:
            article_id: ID of the article.
            favorite: True to favorite (default), False to remove the mark.

        Returns "OK" on success or an error message.
        """
        try:
            engine.set_favorite(article_id, favorite)
            return "OK"
        except Exception as e:
            logger.error("favorite_article failed: %s", e, exc_info=True)
            return f"Error: {e}"

    @mcp.tool()
    async def add_bookmark(url: str) -> str:
        """Save a URL to the reading list. It appears after the next sync.

        Args:
            url: Address of the page to save.

        Returns "OK" on success or an error message.
        """
        try:
            if not url.startswith(("http://", "https://")):
                return f"Error: Not a web address: {url}"
            engine.add_bookmark(url)
            return "OK"
        except Exception as e:
            logger.error("add_bookmark failed: %s", e, exc_info=True)
            return f"Error: {e}"

    @mcp.tool()
    async def fetch_article_content(article_id: str) -> str:
        """Download the full text of a cached article and keep it for offline reading.

        Args:
            article_id: ID of the article.

        Returns the article with its content, or an error message.
        """
        try:
            article = await engine.fetch_content(article_id, render)
            d = article.to_dict()
            d["content"] = article.content
            return str(d)
        except KeyError:
            return f"Error: Article {article_id} not found"
        except Exception as e:
            logger.error("fetch_article_content failed: %s", e, exc_info=True)
            return f"Error: {e}"

    @mcp.tool()
    async def verify_credentials() -> str:
        """Check that the configured access token is accepted by the service.

        Returns "OK: <username>" on success or an error message.
        """
        try:
            username = await engine.verify_credentials()
            return f"OK: {username or 'signed in'}"
        except Exception as e:
            logger.error("verify_credentials failed: %s", e, exc_info=True)
            return f"Error: {e}"

    @mcp.tool()
    async def sign_out() -> str:
        """Forget every cached article, queued action and the sync position.

        Returns "OK" on success or an error message.
        """
        try:
            engine.sign_out()
            return "OK"
        except Exception as e:
            logger.error("sign_out failed: %s", e, exc_info=True)
            return f"Error: {e}"
