"""
Custom exceptions for the notification gateway.
"""


class NotificationError(Exception):
    """Base exception for notification errors."""
    pass


class ConfigurationError(NotificationError, ValueError):
    """Raised when a transport is missing credentials or misconfigured."""
    pass


class ChannelError(NotificationError):
    """Base exception for channel-specific errors."""

    def __init__(self, message: str, channel: str, retryable: bool = False):
        super().__init__(message)
        self.channel = channel
        self.retryable = retryable


class CircuitOpenError(ChannelError):
    """Raised when a channel's circuit breaker blocks the call."""

    def __init__(self, channel: str):
        super().__init__(f"Circuit breaker '{channel}' is OPEN", channel, retryable=False)


class InvalidRecipientError(NotificationError):
    """Raised when recipient information is invalid."""

    def __init__(self, message: str, recipient: str):
        super().__init__(message)
        self.recipient = recipient


class TemplateError(NotificationError):
    """Raised when message formatting fails."""
    pass
