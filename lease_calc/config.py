"""Read-only settings shared by every calculation run.

Settings are loaded once (usually from environment variables) and passed by
reference into the schedule, cash flow and solver functions. Nothing mutates
them after construction, so a single instance can be shared across threads.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Mapping, Optional

from .errors import ValidationError

ENV_PREFIX = "LEASE_CALC_"


@dataclass(frozen=True)
class Settings:
    """Rounding and solver configuration.

    Attributes
    ----------
    money_places: int
        Decimal places kept for every payment, interest and principal amount.
        Two places reproduces the spreadsheet ``ROUND(x, 2)`` behaviour.
    solver_tolerance: float
        Bracket width at which bisection stops.
    solver_max_iterations: int
        Iteration cap; exceeding it raises ``ConvergenceError``.
    solver_lower, solver_upper: float
        Bracket searched for the periodic comprehensive rate.
    xirr_upper: float
        Upper bracket for the annualised (date based) rate.
    """

    money_places: int = 2
    solver_tolerance: float = 1e-8
    solver_max_iterations: int = 100
    solver_lower: float = -0.99
    solver_upper: float = 1.0
    xirr_upper: float = 10.0

    @property
    def money_quantum(self) -> Decimal:
        return Decimal(1).scaleb(-self.money_places)


DEFAULT_SETTINGS = Settings()


def _read(environ: Mapping[str, str], name: str, cast: Callable, default):
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid value for {ENV_PREFIX + name}: {raw!r}") from exc


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build ``Settings`` from ``LEASE_CALC_*`` environment variables.

    Unset variables fall back to the defaults. Values that cannot be parsed or
    that describe an unusable solver raise ``ValidationError``.
    """
    env = os.environ if environ is None else environ
    settings = Settings(
        money_places=_read(env, "MONEY_PLACES", int, DEFAULT_SETTINGS.money_places),
        solver_tolerance=_read(env, "SOLVER_TOLERANCE", float, DEFAULT_SETTINGS.solver_tolerance),
        solver_max_iterations=_read(
            env, "SOLVER_MAX_ITERATIONS", int, DEFAULT_SETTINGS.solver_max_iterations
        ),
        solver_lower=_read(env, "SOLVER_LOWER", float, DEFAULT_SETTINGS.solver_lower),
        solver_upper=_read(env, "SOLVER_UPPER", float, DEFAULT_SETTINGS.solver_upper),
        xirr_upper=_read(env, "XIRR_UPPER", float, DEFAULT_SETTINGS.xirr_upper),
    )
    if settings.money_places < 0:
        raise ValidationError("LEASE_CALC_MONEY_PLACES must be zero or positive")
    if settings.solver_tolerance <= 0:
        raise ValidationError("LEASE_CALC_SOLVER_TOLERANCE must be positive")
    if settings.solver_max_iterations < 1:
        raise ValidationError("LEASE_CALC_SOLVER_MAX_ITERATIONS must be at least 1")
    if settings.solver_lower <= -1 or settings.solver_lower >= settings.solver_upper:
        raise ValidationError("Solver bracket must satisfy -1 < lower < upper")
    if settings.xirr_upper <= settings.solver_lower:
        raise ValidationError("LEASE_CALC_XIRR_UPPER must exceed the lower bracket")
    return settings
