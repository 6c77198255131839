"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class ReconcilerError(Exception):
    """Base exception for all reconciler errors."""

    pass


class ServiceHTTPError(ReconcilerError):
    """Raised when the account/subscription service answers with a non-2xx status."""

    def __init__(self, status_code: int, error: str | None = None) -> None:
        self.status_code = status_code
        self.error = error
        super().__init__(f"Service returned HTTP {status_code}: {error or 'no error body'}")


class AccountCreationError(ReconcilerError):
    """Raised when the service creates an account without handing back an auth token."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Account creation failed: {message}")


class MissingAccountError(ReconcilerError):
    """Raised when a flow needs a stored account and there is none."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"No account stored for {operation}")


class ChannelClosedError(ReconcilerError):
    """Raised when publishing to an event channel that was torn down."""

    def __init__(self, channel: str) -> None:
        self.channel = channel
        super().__init__(f"Event channel {channel} is closed")
