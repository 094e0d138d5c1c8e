class ConfigError(RuntimeError):
    """Configuration validation or loading error."""


class AdapterError(RuntimeError):
    """Raised for adapter initialization failures."""


class AccessDenied(RuntimeError):
    """Raised when a development-only override is used outside development."""


class UnknownPeriodError(LookupError):
    """Raised when a read names a period or document that is not configured."""


class UpstreamError(RuntimeError):
    """Base class for failures talking to the GitHub search API."""


class UpstreamAuthError(UpstreamError):
    """Missing or rejected GitHub access token. Fatal, never retried."""


class UpstreamHTTPError(UpstreamError):
    """Non-success response (or transport failure) from the search endpoint."""

    def __init__(self, status_code: int | None, body: str, path: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.path = path
        super().__init__(f"GitHub API {status_code}: {body[:500]}")


class UpstreamRateLimited(UpstreamHTTPError):
    """The search endpoint refused the request because the rate budget is spent."""


class BuildTimeoutError(UpstreamError):
    """A build exceeded the configured overall timeout."""


class MalformedEvent(ValueError):
    """A search result is missing fields required for classification."""


class PersistenceUnavailable(RuntimeError):
    """The durable cache backend cannot be reached."""
