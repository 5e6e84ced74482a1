"""
Unit tests for the QD+ stage.

This module validates:
1. Reference double-boundary put and call
2. Method selection (auto, Super-Halley, Brent)
3. Calibrated guesses and admissible intervals
4. Side selection by regime
5. Merge detection
"""

import pytest

from double_boundary.core.boundary_equation import BoundaryEquation
from double_boundary.solvers import qd_plus
from double_boundary.solvers.qd_plus import (
    admissible_interval,
    default_guess,
    is_merged,
    solve_boundary_side,
    solve_pair,
    solve_qd_plus,
)
from double_boundary.utils.errors import BoundaryNotFoundError
from double_boundary.utils.types import OptionSpec, Regime


# ===========================
# Reference Contract Tests
# ===========================


def test_reference_put_boundaries(reference_spec):
    """Upper ≈ 69.6 and lower ≈ 58.7 for the reference put."""
    result = solve_qd_plus(reference_spec, Regime.DOUBLE_BOUNDARY)

    assert 67.5 < result.upper_boundary < 71.5
    assert 56.5 < result.lower_boundary < 61.0
    assert result.lower_boundary < result.upper_boundary
    assert result.iterations > 0


@pytest.mark.parametrize("side", ["upper", "lower"])
def test_solution_is_a_root(reference_spec, side):
    solution = solve_boundary_side(reference_spec, side)
    equation = BoundaryEquation(reference_spec, side)

    assert solution.converged
    assert abs(equation(solution.boundary)) < 1e-8


@pytest.mark.parametrize("side", ["upper", "lower"])
def test_brent_agrees_with_auto(reference_spec, side):
    auto = solve_boundary_side(reference_spec, side)
    brent = solve_boundary_side(reference_spec, side, method="brent")

    assert brent.method == "brent"
    assert abs(auto.boundary - brent.boundary) < 1e-5


def test_reference_call_boundaries(reference_call_spec):
    """Call boundaries sit between K and K·r/q = 200."""
    result = solve_qd_plus(reference_call_spec, Regime.DOUBLE_BOUNDARY)

    assert result.upper is not None
    assert result.lower is not None
    assert 100.0 < result.lower_boundary < result.upper_boundary < 200.0


# ===========================
# Method Selection Tests
# ===========================


def test_super_halley_failure_raises(reference_spec):
    """Forced Super-Halley with no iterations to spare reports failure."""
    with pytest.raises(BoundaryNotFoundError) as excinfo:
        solve_boundary_side(reference_spec, "upper", initial_guess=95.0,
                            method="super-halley", max_iterations=1)

    assert excinfo.value.side == "upper"
    assert excinfo.value.guess == 95.0


def test_auto_falls_back_to_brent(reference_spec):
    """Auto mode recovers from a starved Super-Halley stage."""
    solution = solve_boundary_side(reference_spec, "upper", initial_guess=95.0, max_iterations=1)

    assert solution.method == "brent"
    assert 50.0 < solution.boundary < 100.0


def test_unknown_method_raises(reference_spec):
    with pytest.raises(ValueError, match="method"):
        solve_boundary_side(reference_spec, "upper", method="newton")


def test_maturity_override_matches_direct_contract(reference_spec):
    override = solve_boundary_side(reference_spec, "upper", maturity=5.0)
    direct = solve_boundary_side(reference_spec.with_maturity(5.0), "upper")
    assert abs(override.boundary - direct.boundary) < 1e-9


# ===========================
# Guess and Interval Tests
# ===========================


def test_default_guesses_reference(reference_spec):
    """K·(0.70 - 0.01√10) and K·(0.60 - 0.01√10)."""
    assert abs(default_guess(reference_spec, "upper") - 66.8377) < 1e-3
    assert abs(default_guess(reference_spec, "lower") - 56.8377) < 1e-3


def test_default_guesses_call(reference_call_spec):
    upper = default_guess(reference_call_spec, "upper")
    lower = default_guess(reference_call_spec, "lower")

    assert 100.0 < lower < upper < 200.0


def test_guess_outside_interval_moves_inside(standard_put_spec):
    """A guess outside the interval is replaced by its upper quarter point."""
    lower, upper = admissible_interval(standard_put_spec, "upper")
    # K·(0.70 - 0.01·70) = 0 lies below the interval
    guess = default_guess(standard_put_spec, "upper", maturity=70.0 ** 2)
    assert abs(guess - (lower + 0.75 * (upper - lower))) < 1e-9


def test_admissible_interval_double_put(reference_spec):
    lower, upper = admissible_interval(reference_spec, "upper")

    assert abs(lower - 50.0) < 1e-3
    assert abs(upper - 100.0) < 1e-3
    assert lower > 50.0
    assert upper < 100.0


def test_admissible_interval_double_call(reference_call_spec):
    lower, upper = admissible_interval(reference_call_spec, "upper")
    assert 100.0 < lower < upper < 200.0


def test_admissible_interval_single_call(standard_call_spec):
    lower, upper = admissible_interval(standard_call_spec, "lower")

    assert lower > 100.0
    assert upper == 300.0


# ===========================
# Regime Side Selection Tests
# ===========================


def test_single_boundary_put(standard_put_spec):
    result = solve_qd_plus(standard_put_spec, Regime.SINGLE_BOUNDARY)

    assert result.lower is None
    assert 75.0 < result.upper_boundary < 95.0


def test_single_boundary_call(standard_call_spec):
    result = solve_qd_plus(standard_call_spec, Regime.SINGLE_BOUNDARY)

    assert result.upper is None
    assert 105.0 < result.lower_boundary < 250.0


@pytest.mark.parametrize("regime", [Regime.NO_EARLY_EXERCISE, Regime.NEAR_EXPIRY_INTRINSIC])
def test_regimes_without_sides(reference_spec, regime):
    result = solve_qd_plus(reference_spec, regime)

    assert result.upper is None
    assert result.lower is None
    assert result.iterations == 0


# ===========================
# Merge Detection Tests
# ===========================


def test_solve_pair_matches_stage(reference_spec):
    upper, lower = solve_pair(reference_spec, reference_spec.maturity)
    result = solve_qd_plus(reference_spec, Regime.DOUBLE_BOUNDARY)

    assert abs(upper - result.upper_boundary) < 1e-6
    assert abs(lower - result.lower_boundary) < 1e-6


@pytest.mark.parametrize(
    "upper, lower, expected",
    [
        (70.0, 60.0, False),
        (70.0, 70.0, True),
        (60.0, 70.0, True),
        (70.0, 69.995, True),
        (None, 60.0, True),
        (70.0, None, True),
    ],
)
def test_is_merged(upper, lower, expected):
    assert is_merged(upper, lower, 100.0) is expected


def test_find_crossing_time_bisects_in_tau(reference_spec, monkeypatch):
    """Bisection stops within the requested accuracy of the merge time."""
    def fake_pair(spec, maturity, guesses=(None, None)):
        return (70.0, 60.0) if maturity < 2.0 else (None, None)

    monkeypatch.setattr(qd_plus, "solve_pair", fake_pair)
    crossing = qd_plus.find_crossing_time(reference_spec, 0.5, 4.0, accuracy=0.01)

    assert abs(crossing - 2.0) < 0.01


def test_find_crossing_time_already_merged(reference_spec, monkeypatch):
    monkeypatch.setattr(qd_plus, "solve_pair", lambda spec, maturity, guesses=(None, None): (60.0, 60.0))
    assert qd_plus.find_crossing_time(reference_spec, 0.5, 4.0) == 0.5


def test_find_crossing_time_real_contract():
    """At σ = 0.2 the QD+ boundaries separate below τ* ≈ 1.16 and merge above it."""
    spec = OptionSpec(100.0, 100.0, 10.0, -0.005, -0.01, 0.2)
    guesses = solve_pair(spec, 0.5)
    assert not is_merged(*guesses, 100.0)

    crossing = qd_plus.find_crossing_time(spec, 0.5, 10.0)

    assert 1.0 < crossing < 1.35
    assert not is_merged(*solve_pair(spec, crossing - 0.01, guesses), 100.0)
    assert is_merged(*solve_pair(spec, crossing + 0.01, guesses), 100.0)
