class ProviderError(Exception):
    """Base class of YouTube and Spotify adapter failures."""


class RateLimited(ProviderError):
    """The catalog asked us to slow down; retry_after_ms is its suggested wait."""

    def __init__(self, retry_after_ms: int, message: str = "Rate limited") -> None:
        super().__init__(f"{message} (retry after {retry_after_ms} ms)")
        self.retry_after_ms = retry_after_ms


class TemporaryFailure(ProviderError):
    """Network error or 5xx response. A later run may succeed."""


class PermanentFailure(ProviderError):
    """Rejected credential, missing scope or malformed request."""


class NotFound(ProviderError):
    """Playlist or user does not exist on the catalog."""
