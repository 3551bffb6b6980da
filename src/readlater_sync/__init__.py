"""readlater-sync: offline-first sync and cache for a read-it-later service."""

from .client import RemoteClient
from .errors import (
    AuthExpiredError,
    AuthUnavailableError,
    RateLimitedError,
    ReadLaterError,
    RemoteRejectedError,
    StorageError,
    SyncCancelledError,
    TransientNetworkError,
)
from .models import Article, MutationKind, PendingMutation, SyncProgress, SyncState
from .query import ArticleQueryService, QueryOptions
from .server import main
from .store import LocalStore
from .sync import SyncEngine, SyncResult

__all__ = [
    "main",
    "RemoteClient",
    "LocalStore",
    "SyncEngine",
    "SyncResult",
    "ArticleQueryService",
    "QueryOptions",
    "Article",
    "MutationKind",
    "PendingMutation",
    "SyncProgress",
    "SyncState",
    "ReadLaterError",
    "TransientNetworkError",
    "RateLimitedError",
    "AuthExpiredError",
    "AuthUnavailableError",
    "RemoteRejectedError",
    "StorageError",
    "SyncCancelledError",
]

__version__ = "0.1.0"
