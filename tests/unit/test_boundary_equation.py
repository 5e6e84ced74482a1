"""
Unit tests for the QD+ boundary equation and the Super-Halley iteration.

This module validates:
1. Sign changes of f around the reference boundaries
2. Consistency of the finite-difference derivatives
3. The clamped correction term
4. Super-Halley convergence and failure reporting
"""

import math

import pytest

from double_boundary.core.boundary_equation import BoundaryEquation
from double_boundary.solvers.super_halley import super_halley
from double_boundary.utils.constants import C0_CLAMP


# ===========================
# Boundary Equation Tests
# ===========================


def test_upper_side_changes_sign(reference_spec):
    """The upper root of the reference put lies between 68 and 71."""
    equation = BoundaryEquation(reference_spec, "upper")
    assert equation(68.0) * equation(71.0) < 0


def test_lower_side_changes_sign(reference_spec):
    """The lower root of the reference put lies between 57 and 60.5."""
    equation = BoundaryEquation(reference_spec, "lower")
    assert equation(57.0) * equation(60.5) < 0


def test_sides_use_different_roots(reference_spec):
    upper = BoundaryEquation(reference_spec, "upper")
    lower = BoundaryEquation(reference_spec, "lower")

    assert upper.lam < 0 < lower.lam
    assert upper.value(65.0) != lower.value(65.0)


def test_evaluate_matches_individual_derivatives(reference_spec):
    equation = BoundaryEquation(reference_spec, "upper")
    f, first, second = equation.evaluate(69.0)

    assert f == equation.value(69.0)
    assert abs(first - equation.derivative(69.0)) < 1e-12
    assert abs(second - equation.second_derivative(69.0)) < 1e-9


def test_derivative_matches_secant(reference_spec):
    """f' at the midpoint is close to the secant slope over a short interval."""
    equation = BoundaryEquation(reference_spec, "upper")
    secant = (equation(69.5) - equation(69.3)) / 0.2
    assert abs(equation.derivative(69.4) - secant) < 1e-3


@pytest.mark.parametrize("S", [52.0, 60.0, 75.0, 95.0])
def test_correction_is_clamped(reference_spec, S):
    for side in ("upper", "lower"):
        c0 = BoundaryEquation(reference_spec, side).correction(S)
        assert math.isfinite(c0)
        assert abs(c0) <= C0_CLAMP


def test_maturity_override(reference_spec):
    equation = BoundaryEquation(reference_spec, "upper", maturity=2.0)
    direct = BoundaryEquation(reference_spec.with_maturity(2.0), "upper")

    assert equation.maturity == 2.0
    assert equation(70.0) == direct(70.0)


def test_invalid_side_raises(reference_spec):
    with pytest.raises(ValueError, match="side"):
        BoundaryEquation(reference_spec, "middle")


# ===========================
# Super-Halley Tests
# ===========================


def _square_root_of_two(x):
    return x * x - 2.0, 2.0 * x, 2.0


def test_super_halley_converges():
    result = super_halley(_square_root_of_two, 1.0, 0.0, 2.0)

    assert result.converged
    assert not result.stagnated
    assert abs(result.root - math.sqrt(2.0)) < 1e-9
    assert result.iterations < 10


def test_super_halley_flat_function_stagnates():
    result = super_halley(lambda x: (1.0, 0.0, 0.0), 0.5, 0.0, 1.0)

    assert not result.converged
    assert result.stagnated
    assert "Derivative" in result.message


def test_super_halley_pinned_at_limit():
    """A root outside the interval pins the iterate to the violated limit."""
    result = super_halley(lambda x: (x + 10.0, 1.0, 0.0), 0.0, 0.0, 1.0)

    assert not result.converged
    assert result.stagnated
    assert result.root == 0.0
    assert "Pinned" in result.message


def test_super_halley_step_clamped_inside_interval():
    """Overshooting steps move halfway to the limit instead of leaving the interval."""
    result = super_halley(lambda x: (x + 10.0, 1.0, 0.0), 1.0, 0.0, 1.0, max_iterations=1)

    assert not result.converged
    assert result.root == 0.5


def test_super_halley_iteration_cap():
    result = super_halley(_square_root_of_two, 0.1, 0.0, 2.0, max_iterations=1)

    assert not result.converged
    assert result.iterations == 1
    assert "Max iterations" in result.message


def test_super_halley_non_finite_value():
    result = super_halley(lambda x: (math.nan, 1.0, 0.0), 0.5, 0.0, 1.0)

    assert not result.converged
    assert "Non-finite" in result.message


def test_super_halley_tiny_step_off_root_stagnates():
    """A negligible step with |f| far from zero is not reported as converged."""
    result = super_halley(lambda x: (0.5, 1e12, 0.0), 60.0, 50.0, 100.0)

    assert not result.converged
    assert result.stagnated
    assert result.function_value == 0.5
    assert "Stalled" in result.message


def test_super_halley_tiny_step_near_root_converges():
    result = super_halley(lambda x: (1e-8, 1e12, 0.0), 60.0, 50.0, 100.0)

    assert result.converged
    assert not result.stagnated
