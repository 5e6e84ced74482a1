"""
Unit tests for the top-level boundary solver.

This module validates:
1. Regime dispatch (double, single, no early exercise)
2. Near-expiry handling
3. Merged boundaries and the crossing time
4. Fallback when the refinement degrades
5. Determinism and result properties
"""

import logging

import pytest

from double_boundary.core.regime import near_expiry_boundaries
from double_boundary.solvers import double_boundary
from double_boundary.solvers.double_boundary import (
    METHOD_KIM,
    METHOD_MERGED,
    METHOD_NO_EXERCISE,
    METHOD_QD_PLUS,
    METHOD_SINGLE,
    solve,
)
from double_boundary.utils.errors import InvalidInputError, RefinementDegradedError
from double_boundary.utils.types import KimConfig, OptionSpec, QDPlusResult, Regime, SolverResult


# ===========================
# Double Boundary Tests
# ===========================


def test_reference_put_without_refinement(reference_spec):
    result = solve(reference_spec, use_refinement=False)

    assert result.regime == Regime.DOUBLE_BOUNDARY
    assert result.method == METHOD_QD_PLUS
    assert not result.is_refined
    assert result.is_valid
    assert 67.5 < result.upper_boundary < 71.5
    assert 56.5 < result.lower_boundary < 61.0
    assert result.upper_boundary == result.qd_upper_boundary
    assert result.iterations_used > 0
    assert result.crossing_time == 0.0
    assert result.boundary_path is None


def test_accepted_refinement_result(reference_spec, fast_kim_config, monkeypatch):
    """An accepted refinement reports the Kim path and today's refined values."""
    monkeypatch.setattr(double_boundary, "check_refinement", lambda *args: None)
    result = solve(reference_spec, collocation_points=25, kim_config=fast_kim_config)

    assert result.is_refined
    assert result.method == METHOD_KIM
    assert result.iterations_used == 25
    assert result.has_double_boundary
    assert 50.0 < result.lower_boundary < result.upper_boundary < 100.0
    assert len(result.boundary_path) == 25
    assert result.is_valid


def test_reference_call_without_refinement(reference_call_spec):
    result = solve(reference_call_spec, use_refinement=False)

    assert result.regime == Regime.DOUBLE_BOUNDARY
    assert 100.0 < result.lower_boundary < result.upper_boundary < 200.0


def test_solve_is_deterministic(reference_spec):
    first = solve(reference_spec, use_refinement=False)
    second = solve(reference_spec, use_refinement=False)
    assert first == second


# ===========================
# Default Refined Solve
# ===========================


PUBLISHED_UPPER = 69.62
PUBLISHED_LOWER = 58.72


@pytest.fixture(scope="module")
def default_reference():
    """Reference put solved with 50 points and the default Kim settings."""
    return solve(OptionSpec(100.0, 100.0, 10.0, -0.005, -0.01, 0.08))


def test_default_solve_is_no_worse_than_qd_plus(default_reference):
    result = default_reference

    assert result.is_valid
    assert result.is_refined or result.message.startswith("Refinement discarded")
    assert (abs(result.upper_boundary - PUBLISHED_UPPER)
            <= abs(result.qd_upper_boundary - PUBLISHED_UPPER) + 1e-12)
    assert (abs(result.lower_boundary - PUBLISHED_LOWER)
            <= abs(result.qd_lower_boundary - PUBLISHED_LOWER) + 1e-12)


def test_default_refined_solve_is_deterministic(default_reference):
    again = solve(OptionSpec(100.0, 100.0, 10.0, -0.005, -0.01, 0.08))
    assert again == default_reference


def test_discarded_refinement_keeps_qd_plus_today(reference_spec, fast_kim_config, monkeypatch):
    def worse(*args):
        raise RefinementDegradedError("today's residual 1.000e-03 exceeds QD+ 1.000e-04")

    monkeypatch.setattr(double_boundary, "check_refinement", worse)
    result = solve(reference_spec, collocation_points=25, kim_config=fast_kim_config)

    assert not result.is_refined
    assert result.upper_boundary == result.qd_upper_boundary
    assert result.lower_boundary == result.qd_lower_boundary
    assert "exceeds QD+" in result.message


# ===========================
# Single Boundary Tests
# ===========================


def test_single_boundary_put(standard_put_spec):
    result = solve(standard_put_spec)

    assert result.regime == Regime.SINGLE_BOUNDARY
    assert result.method == METHOD_SINGLE
    assert result.lower_boundary is None
    assert 75.0 < result.upper_boundary < 95.0
    assert result.is_valid
    assert not result.has_double_boundary


def test_single_boundary_call(standard_call_spec):
    result = solve(standard_call_spec)

    assert result.regime == Regime.SINGLE_BOUNDARY
    assert result.upper_boundary is None
    assert result.lower_boundary > 100.0
    assert result.is_valid


def test_no_early_exercise():
    spec = OptionSpec(100.0, 100.0, 1.0, -0.01, 0.0, 0.2)
    result = solve(spec)

    assert result.regime == Regime.NO_EARLY_EXERCISE
    assert result.method == METHOD_NO_EXERCISE
    assert result.upper_boundary is None
    assert result.lower_boundary is None
    assert result.is_valid


# ===========================
# Near-Expiry Tests
# ===========================


def test_near_expiry_uses_heuristic(reference_params):
    spec = OptionSpec(**{**reference_params, "maturity": 0.5 / 252.0})
    result = solve(spec)
    expected_upper, expected_lower = near_expiry_boundaries(spec)

    assert result.regime == Regime.NEAR_EXPIRY_INTRINSIC
    assert result.method == "Near-Expiry Handler (intrinsic)"
    assert result.upper_boundary == expected_upper
    assert result.lower_boundary == expected_lower
    assert result.is_valid


def test_blending_zone_double_boundary(reference_params):
    spec = OptionSpec(**{**reference_params, "maturity": 2.0 / 252.0})
    result = solve(spec)

    assert result.regime == Regime.NEAR_EXPIRY_INTRINSIC
    assert result.method.startswith("Near-Expiry Handler")
    assert result.upper_boundary is not None
    assert result.lower_boundary is not None


def test_blending_zone_single_boundary(standard_put_spec):
    spec = standard_put_spec.with_maturity(2.0 / 252.0)
    result = solve(spec)

    assert result.regime == Regime.NEAR_EXPIRY_INTRINSIC
    assert result.method.startswith("Near-Expiry Handler")
    assert result.upper_boundary is not None
    assert result.upper_boundary < 100.0


# ===========================
# Merged and Fallback Tests
# ===========================


def test_merged_boundaries_report_crossing_time(reference_spec, monkeypatch):
    monkeypatch.setattr(double_boundary, "solve_qd_plus",
                        lambda spec, regime: QDPlusResult(upper=None, lower=None))
    monkeypatch.setattr(double_boundary, "find_crossing_time",
                        lambda spec, separated, merged: 3.0)

    result = solve(reference_spec)

    assert result.method == METHOD_MERGED
    assert result.upper_boundary is None
    assert result.lower_boundary is None
    assert result.crossing_time == 3.0
    assert not result.is_refined


def test_degraded_refinement_falls_back_to_qd_plus(reference_spec, monkeypatch, caplog):
    def degraded(*args, **kwargs):
        raise RefinementDegradedError("adjacent nodes differ by 9.0000 (limit 5.0000)")

    monkeypatch.setattr(double_boundary, "refine_boundaries", degraded)

    with caplog.at_level(logging.WARNING, logger="double_boundary.solvers.double_boundary"):
        result = solve(reference_spec)

    assert not result.is_refined
    assert result.method == METHOD_QD_PLUS
    assert result.message.startswith("Refinement discarded")
    assert result.upper_boundary == result.qd_upper_boundary
    assert any("discarded" in record.message for record in caplog.records)


# ===========================
# Input Validation Tests
# ===========================


def test_invalid_spec_raises(reference_params):
    with pytest.raises(InvalidInputError):
        OptionSpec(**{**reference_params, "spot": -1.0})


def test_invalid_collocation_points(reference_spec):
    with pytest.raises(InvalidInputError):
        solve(reference_spec, collocation_points=2)


def test_invalid_kim_config_raises():
    with pytest.raises(InvalidInputError):
        KimConfig(min_relaxation=-1.0)


# ===========================
# Result Properties
# ===========================


def test_improvement_properties():
    result = SolverResult(
        upper_boundary=70.0,
        lower_boundary=59.0,
        qd_upper_boundary=69.5,
        qd_lower_boundary=58.7,
        crossing_time=0.0,
        is_refined=True,
        regime=Regime.DOUBLE_BOUNDARY,
        method=METHOD_KIM,
        is_valid=True,
        iterations_used=50,
    )

    assert abs(result.upper_improvement - 0.5) < 1e-12
    assert abs(result.lower_improvement - 0.3) < 1e-12
    assert result.regime_label == "DoubleBoundary"


def test_improvement_missing_side():
    result = SolverResult(
        upper_boundary=85.0,
        lower_boundary=None,
        qd_upper_boundary=85.0,
        qd_lower_boundary=None,
        crossing_time=0.0,
        is_refined=False,
        regime=Regime.SINGLE_BOUNDARY,
        method=METHOD_SINGLE,
        is_valid=True,
        iterations_used=4,
    )

    assert result.upper_improvement == 0.0
    assert result.lower_improvement == 0.0
