"""MCP Server entry point for readlater-sync.

Runs FastMCP with Streamable HTTP transport so a presentation layer can
trigger syncs and query the cached reading list over HTTP.
"""

import asyncio
import logging
import signal
import sys

from fastmcp import FastMCP

from .client import RemoteClient
from .config import load_config
from .errors import AuthUnavailableError
from .query import ArticleQueryService
from .render import html_to_text
from .store import LocalStore
from .sync import SyncEngine
from .tools import register_tools

logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def make_token_refresher(current_token: str):
    """Re-read the token from the environment; fail if it has not changed.

    The credential flow lives outside this process, so a fresh token can
    only arrive through the environment it was started with.
    """

    async def refresh_token() -> str:
        nonlocal current_token
        try:
            token = load_config().api_token.get_secret_value()
        except ValueError as e:
            raise AuthUnavailableError(f"No credentials configured: {e}") from e
        if not token or token == current_token:
            raise AuthUnavailableError("Access token expired; sign in again")
        current_token = token
        return token

    return refresh_token


def main() -> None:
    """Run the readlater-sync MCP server."""
    config = load_config()
    client = RemoteClient(config)
    store = LocalStore(config.database_path)
    engine = SyncEngine(
        client,
        store,
        page_size=config.page_size,
        refresh_token=make_token_refresher(config.api_token.get_secret_value()),
    )

    mcp = FastMCP("readlater-sync")
    register_tools(mcp, engine, ArticleQueryService(store), render=html_to_text)

    def handle_shutdown(signum: int, frame: object) -> None:
        logger.info("Received shutdown signal, closing connections...")
        asyncio.run(client.aclose())
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    logger.info(
        "Starting readlater-sync MCP server on %s:%d (streamable-http), store at %s",
        config.server_host,
        config.server_port,
        config.database_path,
    )
    mcp.run(
        transport="streamable-http",
        host=config.server_host,
        port=config.server_port,
    )


if __name__ == "__main__":
    main()
