"""Exceptions and warnings raised by the dispatch pipeline."""


class LMPError(Exception):
    """Base class of every error raised by this package."""


class InvalidNetwork(LMPError, ValueError):
    """Malformed or inconsistent network data, detected before any solve."""


class FormulationError(LMPError):
    """An invariant was violated while building the optimization problem."""


class SolverUnavailable(LMPError, RuntimeError):
    """The requested solver backend is not installed or not licensed."""


class ConversionError(LMPError, ValueError):
    """A unit conversion received an unusable input (e.g. voltage <= 0)."""


class DispatchFailed(LMPError):
    """The solver terminated without an optimal solution."""

    def __init__(self, status, reason: str = "") -> None:
        self.status = status
        self.reason = reason
        super().__init__(f"dispatch study ended with status {status.value!r}: {reason}")


class BalanceViolation(UserWarning):
    """Total generation differs from total load beyond the tolerance."""
