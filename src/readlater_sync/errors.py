"""Error taxonomy shared by the remote client, local store and sync engine."""


class ReadLaterError(Exception):
    """Base class for all readlater-sync errors."""


class TransientNetworkError(ReadLaterError):
    """Network unavailable, timed out or the service is temporarily failing.

    Retry on the next cycle. Never advances the cursor.
    """


class RateLimitedError(TransientNetworkError):
    """The service kept answering 429 after all retries were spent."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class AuthExpiredError(ReadLaterError):
    """The bearer token was rejected (HTTP 401)."""


class AuthUnavailableError(ReadLaterError):
    """No fresh token can be obtained; the user must sign in again."""


class RemoteRejectedError(ReadLaterError):
    """The service refused a request for good, e.g. the target is already gone."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageError(ReadLaterError):
    """A local store read or write failed."""


class SyncCancelledError(ReadLaterError):
    """A sync cycle was cancelled between pages."""
