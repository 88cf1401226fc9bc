"""Exception hierarchy for the HearthNash match solver.

Bad-input errors also subclass ValueError so callers that already guard
argument validation with ``except ValueError`` keep working.
"""

from __future__ import annotations


class HearthNashError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(HearthNashError, ValueError):
    """Raised when FormatRules describe an impossible or unsupported match."""


class MetaValidationError(HearthNashError, ValueError):
    """Raised when a winrate matrix or its deck identities are malformed."""


class EvaluationPreconditionError(HearthNashError, ValueError):
    """Raised when starting decks do not fit the format or the meta."""


class MalformedInput(HearthNashError, ValueError):
    """Raised when a payoff matrix is empty, ragged or non-finite."""


class SolverInternalError(HearthNashError, RuntimeError):
    """Raised when the simplex solver cannot pivot or fails verification."""
