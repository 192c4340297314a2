"""
Sync engine exceptions.

GuardSkip is deliberately outside the SyncEngineError tree: a trigger that
declines to run has not failed.
"""

from datetime import date
from typing import Optional


class SyncEngineError(Exception):
    """Base exception for all sync engine errors."""
    pass


class InitializationError(SyncEngineError):
    """
    Raised when the scheduler cannot arm its core triggers.

    Failure to configure the platform background slot is not an
    InitializationError; the scheduler continues without it.
    """
    pass


class InvalidStateError(SyncEngineError):
    """Raised when an operation is not allowed in the scheduler's current state."""

    def __init__(self, operation: str, state: str):
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while scheduler is {state}")


class FetchError(SyncEngineError):
    """Raised when the remote source cannot deliver a day for a date."""

    def __init__(self, target_date: Optional[date], message: str):
        self.target_date = target_date
        self.message = message
        prefix = f"Fetch failed for {target_date.isoformat()}" if target_date else "Fetch failed"
        super().__init__(f"{prefix}: {message}")


class PersistenceError(SyncEngineError):
    """Raised when a local cache read or write fails."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.message = message
        super().__init__(f"Cache {operation} failed: {message}")


class ReconcileError(SyncEngineError):
    """
    Raised when a reconciliation pass fails with an unexpected error.

    The original exception is chained as __cause__.
    """

    def __init__(self, target_date: date, message: str):
        self.target_date = target_date
        self.message = message
        super().__init__(f"Reconciliation failed for {target_date.isoformat()}: {message}")


class OutOfWindowError(SyncEngineError):
    """Raised when a sync is requested for a date outside the cache window."""

    def __init__(self, target_date: date, window_start: date, window_end: date):
        self.target_date = target_date
        self.window_start = window_start
        self.window_end = window_end
        super().__init__(
            f"{target_date.isoformat()} is outside the cache window "
            f"{window_start.isoformat()}..{window_end.isoformat()}"
        )


class GuardSkip(Exception):
    """Raised by a trigger guard when a recent success makes the run unnecessary."""

    def __init__(self, trigger: str, reason: str):
        self.trigger = trigger
        self.reason = reason
        super().__init__(f"{trigger} skipped: {reason}")
