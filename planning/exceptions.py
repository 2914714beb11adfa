"""
Planning error taxonomy.

Scheduling conflicts are never raised: they are returned as Conflict values.
The exceptions below cover malformed input and replacement workflow
precondition failures, which callers must surface as rejected actions.
"""


class PlanningError(Exception):
    """Base class for planning engine errors"""

    pass


class InvalidIntervalError(PlanningError, ValueError):
    """Raised when an interval does not satisfy start < end"""

    pass


class InvalidCoordinatesError(PlanningError, ValueError):
    """Raised when coordinates are out of range or only partially known"""

    pass


class ReplacementError(PlanningError):
    """Base class for replacement workflow precondition failures"""

    pass


class ReplacementNotFoundError(ReplacementError):
    pass


class DuplicateReplacementError(ReplacementError):
    """An active (pending or accepted) request already exists for the booking"""

    pass


class InvalidTransitionError(ReplacementError):
    """The request's current status does not allow the requested transition"""

    pass


class MissingCandidateError(InvalidTransitionError):
    """Accept was attempted before any replacement agent was proposed"""

    pass


class InvalidCandidateError(ReplacementError):
    pass


class StaleReplacementError(ReplacementError):
    """Another writer changed the request since it was loaded"""

    pass
