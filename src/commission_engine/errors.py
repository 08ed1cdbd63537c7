"""Base exceptions for the commission engine.

Module-specific errors subclass these and live next to the code that raises
them.
"""

from __future__ import annotations


class CommissionEngineError(Exception):
    """Base class for all domain errors raised by the pipeline."""


class InvalidTransitionError(CommissionEngineError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
