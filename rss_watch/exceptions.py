class RSSWatchError(Exception):
    """Base class for every error raised by rss_watch."""


class FetchError(RSSWatchError):
    """Raised when a feed or hub cannot be reached, or answers with an HTTP error."""


class ParseError(RSSWatchError):
    """Raised when no format adapter matches a payload, or the payload is malformed."""


class SignatureError(RSSWatchError):
    """Raised when a push notification fails HMAC authentication."""


class VerificationError(RSSWatchError):
    """Raised when a hub verification request is incomplete or names an unknown topic."""

    def __init__(self, message: str, status: int = 403) -> None:
        super().__init__(message)
        self.status = status


class SubscriptionError(RSSWatchError):
    """Raised when a hub rejects a subscribe/unsubscribe request."""
