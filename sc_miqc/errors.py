"""Exception and warning types raised by the adaptive QC classifier."""

from __future__ import annotations


class ValidationError(ValueError):
    """Malformed input or configuration; raised before any fitting work."""


class FitFailure(Exception):
    """A single EM restart collapsed or produced inseparable components.

    Recovered internally: the restart is discarded and only surfaces (as a
    :class:`DegenerateModelWarning`) when every restart fails.
    """

    def __init__(self, message: str, reason: str = "failed") -> None:
        super().__init__(message)
        self.reason = reason


class HaltError(RuntimeError):
    """Raised when ``backup_option="halt"`` is chosen and the mixture is degenerate."""


class DegenerateModelWarning(UserWarning):
    """The two-population assumption failed and a backup rule was applied."""


class ConvergenceWarning(UserWarning):
    """The selected EM fit stopped at the iteration bound without converging."""
