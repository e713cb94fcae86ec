from datetime import date

import pytest

from lease_calc.errors import CalculationError, ConvergenceError, ValidationError
from lease_calc.solver import bisect, npv, solve_annual_rate, solve_rate, xnpv


def test_npv_and_xnpv():
    assert npv(0.1, [-100.0, 110.0]) == pytest.approx(0.0)
    assert xnpv(0.1, [-100.0, 110.0], [date(2023, 1, 1), date(2024, 1, 1)]) == pytest.approx(0.0)


def test_solve_rate():
    assert solve_rate([-100.0, 110.0], -0.99, 1.0) == pytest.approx(0.1, abs=1e-7)


def test_solve_rate_negative_return():
    assert solve_rate([-100.0, 90.0], -0.99, 1.0) == pytest.approx(-0.1, abs=1e-7)


def test_solve_annual_rate():
    rate = solve_annual_rate([-100.0, 110.0], [date(2023, 1, 1), date(2024, 1, 1)], -0.99, 10.0)
    assert rate == pytest.approx(0.1, abs=1e-7)


def test_long_sequence_stays_finite():
    rate = solve_rate([-1000.0] + [10.0] * 360, -0.99, 1.0)
    assert 0 < rate < 0.02


def test_no_sign_change():
    with pytest.raises(ConvergenceError):
        solve_rate([100.0, 100.0], -0.99, 1.0)


def test_iteration_cap():
    with pytest.raises(ConvergenceError):
        bisect(lambda r: r - 0.3, 0.0, 1.0, tolerance=1e-12, max_iterations=1)


def test_too_few_flows():
    with pytest.raises(ValidationError):
        solve_rate([-100.0], -0.99, 1.0)
    with pytest.raises(ValidationError):
        solve_annual_rate([-100.0, 110.0], [date(2023, 1, 1)], -0.99, 10.0)


def test_same_date_flows():
    with pytest.raises(CalculationError):
        solve_annual_rate([-100.0, 110.0], [date(2023, 1, 1), date(2023, 1, 1)], -0.99, 10.0)
