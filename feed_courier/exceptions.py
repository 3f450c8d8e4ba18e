"""Custom exceptions for Feed Courier."""

from __future__ import annotations

from typing import Literal

Severity = Literal["info", "success", "warning", "error"]


class FeedCourierError(Exception):
    """Base exception for all Feed Courier errors."""

    pass


class ConfigurationError(FeedCourierError):
    """Raised when configuration is invalid or missing."""

    pass


class AuthError(FeedCourierError):
    """Raised when no usable Tumblr API credential is configured."""

    pass


class FeedNotFoundError(FeedCourierError):
    """Raised when the upstream API reports that a blog does not exist."""

    def __init__(self, blog_name: str, detail: str | None = None) -> None:
        message = f"Blog '{blog_name}' was not found"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.blog_name = blog_name


class FeedTransportError(FeedCourierError):
    """Raised when every relay failed to deliver a parsable upstream response."""

    pass


class InvalidSinkError(FeedCourierError):
    """Raised when a webhook URL does not match the Discord webhook grammar."""

    def __init__(self, url: str | None) -> None:
        super().__init__("Invalid Discord webhook URL format")
        self.url = url


class DeliveryError(FeedCourierError):
    """Raised when the webhook responds with a non-success status."""

    def __init__(self, status_code: int | None, body: str = "", message: str | None = None) -> None:
        if message is None:
            message = f"Discord API error: {status_code} - {body}".rstrip(" -")
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitedError(DeliveryError):
    """Raised when the webhook responds with HTTP 429."""

    def __init__(self, retry_after: float) -> None:
        super().__init__(
            429,
            message=f"Rate limited. Retry after {retry_after:g} seconds.",
        )
        self.retry_after = retry_after


class ConnectionNotFoundError(FeedCourierError):
    """Raised when a connection id does not resolve to a stored connection."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Connection '{connection_id}' not found")
        self.connection_id = connection_id


class ImportValidationError(FeedCourierError):
    """Raised when an import bundle is missing its version tag or is malformed."""

    pass


class LookupRelayError(FeedCourierError):
    """Raised when the media lookup relay rejects a publish or lookup request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def describe_error(exc: BaseException) -> tuple[str, Severity]:
    """Map an exception to a short user-facing message and a severity tag."""

    if isinstance(exc, AuthError):
        return (f"{exc} Add your Tumblr API key with 'config set-api-key'.", "error")
    if isinstance(exc, RateLimitedError):
        return (str(exc), "warning")
    if isinstance(exc, FeedTransportError):
        return (f"Could not reach the Tumblr API: {exc}", "error")
    if isinstance(exc, FeedCourierError):
        return (str(exc), "error")
    return (f"Unexpected error: {exc}", "error")
