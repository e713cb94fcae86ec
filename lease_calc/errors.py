"""Error types raised by the lease calculator.

Every calculation either returns a complete result or raises one of these.
Nothing is retried: the same input always fails the same way, so callers must
correct the parameters and call again.
"""

from __future__ import annotations


class LeaseCalcError(Exception):
    """Base class for all calculator errors."""


class ValidationError(LeaseCalcError, ValueError):
    """Input parameters are malformed or out of range."""


class ConvergenceError(LeaseCalcError):
    """The rate solver did not converge within its iteration cap."""


class CalculationError(LeaseCalcError, ArithmeticError):
    """An intermediate result was non-finite, divided by zero or went negative."""
