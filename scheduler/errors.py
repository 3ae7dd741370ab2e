"""
Error taxonomy for the regeneration engine.

Infeasibility is deliberately absent: a student-day that cannot be placed is
a record in the run report (see state.InfeasibilityWarning), never an exception.
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(SchedulingError):
    """Malformed regeneration input. Raised before any solving begins."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ConflictError(SchedulingError):
    """The operation collides with existing state (locked assignment, run in flight)."""


class FatalError(SchedulingError):
    """Store unavailable, missing period or commit failure. Nothing was changed."""


class RegenerationCancelled(SchedulingError):
    """The caller signalled cancellation; nothing was committed."""
