"""
Error taxonomy for timer and billing operations.

Callers branch on the class, not on messages: a StateConflict means "re-fetch",
a recoverable error means "tell the user and resync", NotFound on a terminal
command means "already done".
"""

from typing import Optional


class TimekeeperError(Exception):
    """Base class for all timekeeping errors"""
    recoverable: bool = False


class StateConflict(TimekeeperError):
    """The server's timer state disagrees with the state the command assumed."""

    def __init__(self, message: str, timer_id: Optional[int] = None):
        super().__init__(message)
        self.timer_id = timer_id


class NotFound(TimekeeperError):
    pass


class TimerNotFound(NotFound):
    def __init__(self, timer_id: Optional[int], message: Optional[str] = None):
        super().__init__(message or f"Timer {timer_id} not found")
        self.timer_id = timer_id


class RateNotFound(NotFound):
    pass


class RemoteTimeout(TimekeeperError):
    """The server did not answer within the configured bound."""
    recoverable = True


class RemoteUnavailable(TimekeeperError):
    """Network failure or server-side error."""
    recoverable = True


class RemoteError(TimekeeperError):
    """Any other rejected request."""

    def __init__(self, status: int, message: str):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status


class InvalidConversion(TimekeeperError, ValueError):
    """Rejected before any write: zero duration, or no rate could be determined."""


class InvalidRate(TimekeeperError, ValueError):
    """Billing rate failed structure or overlap validation."""
