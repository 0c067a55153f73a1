"""Errors raised by the real-time layer.

Delivery failures are never raised (a full or closed client queue just drops
the message); these cover the broker side only.
"""


class RealtimeError(Exception):
    """Base class for real-time layer errors."""


class RelayStoppedError(RealtimeError):
    """Raised when a relay is asked to run after it has been stopped."""


class PublishError(RealtimeError):
    """Raised when an event could not be published to the exchange."""
