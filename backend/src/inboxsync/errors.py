"""Error taxonomy for the sync engine.

Stores and services raise these; the session's operation boundary catches
them, logs, and surfaces a toast. FetchSuperseded is never surfaced.
"""


class InboxError(Exception):
    """Base class for all sync engine errors."""


class InboxValidationError(InboxError):
    """User input was rejected before any side effect happened."""


class BackendError(InboxError):
    """A query or procedure call against the backing store failed."""


class TransientError(InboxError):
    """A retryable failure (transport error, 5xx, 429)."""


class SendError(InboxError):
    """The send proxy did not accept the message."""


class StorageError(InboxError):
    """An attachment upload failed."""


class CompletionError(InboxError):
    """The AI completion endpoint failed or returned an unusable response."""


class FetchSuperseded(InboxError):
    """A newer fetch for the same resource replaced this one."""

    def __init__(self, resource: str):
        super().__init__(f"{resource} fetch superseded")
        self.resource = resource
