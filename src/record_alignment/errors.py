"""Exception and warning types raised by the alignment workflow."""

from __future__ import annotations


class AlignmentError(Exception):
    """Base class for alignment workflow failures."""


class InvalidOption(AlignmentError, ValueError):
    """Raised when a session option is malformed or out of range.

    Detected eagerly, before any preprocessing stage runs.
    """


class InvalidConfig(AlignmentError, ValueError):
    """Raised when correlator or solver parameters are malformed."""


class UnderdeterminedSystem(AlignmentError):
    """Raised when the pairwise network cannot produce a unique solution."""


class UserAborted(AlignmentError):
    """Raised when the user explicitly aborts the session."""


class InconsistentPolarity(UserWarning):
    """Polarity could not be made consistent across every pair."""
