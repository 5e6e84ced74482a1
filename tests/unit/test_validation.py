"""
Unit tests for post-hoc boundary validation.

Verifies that the checks correctly identify:
- Non-finite boundaries
- Boundaries on the wrong side of the strike
- Mis-ordered boundaries
- Breaches of the K·r/q limit
- Non-monotone boundary paths
"""

import math

from double_boundary.diagnostics.validation import check_boundaries, check_path_monotonicity
from double_boundary.utils.types import BoundaryPath, BoundaryPoint, Regime


# ===========================
# Boundary Checks
# ===========================


def test_valid_double_put(reference_spec):
    check = check_boundaries(reference_spec, 69.6, 58.7, Regime.DOUBLE_BOUNDARY)

    assert check.is_valid
    assert check.violations == []
    assert check.details == {
        "finite": True,
        "strike_side": True,
        "ordering": True,
        "rate_ratio_limit": True,
    }


def test_mis_ordered_boundaries(reference_spec):
    check = check_boundaries(reference_spec, 58.7, 69.6, Regime.DOUBLE_BOUNDARY)

    assert not check.is_valid
    assert not check.details["ordering"]
    assert any("not below" in v for v in check.violations)


def test_put_upper_above_strike(reference_spec):
    check = check_boundaries(reference_spec, 101.0, 58.7, Regime.DOUBLE_BOUNDARY)

    assert not check.is_valid
    assert not check.details["strike_side"]


def test_put_lower_below_rate_ratio(reference_spec):
    """K·r/q = 50 bounds the lower boundary of the reference put."""
    check = check_boundaries(reference_spec, 69.6, 45.0, Regime.DOUBLE_BOUNDARY)

    assert not check.is_valid
    assert not check.details["rate_ratio_limit"]
    assert any("K·r/q" in v for v in check.violations)


def test_non_finite_boundary_short_circuits(reference_spec):
    check = check_boundaries(reference_spec, math.nan, 58.7, Regime.DOUBLE_BOUNDARY)

    assert not check.is_valid
    assert check.details == {"finite": False}
    assert len(check.violations) == 1


def test_single_put_skips_ordering(standard_put_spec):
    check = check_boundaries(standard_put_spec, 85.0, None, Regime.SINGLE_BOUNDARY)

    assert check.is_valid
    assert "ordering" not in check.details
    assert "rate_ratio_limit" not in check.details


def test_call_lower_below_strike(standard_call_spec):
    check = check_boundaries(standard_call_spec, None, 95.0, Regime.SINGLE_BOUNDARY)

    assert not check.is_valid
    assert any("below strike" in v for v in check.violations)


def test_call_upper_above_rate_ratio(reference_call_spec):
    """K·r/q = 200 bounds the upper boundary of the reference call."""
    valid = check_boundaries(reference_call_spec, 170.0, 143.0, Regime.DOUBLE_BOUNDARY)
    invalid = check_boundaries(reference_call_spec, 210.0, 143.0, Regime.DOUBLE_BOUNDARY)

    assert valid.is_valid
    assert not invalid.is_valid
    assert not invalid.details["rate_ratio_limit"]


def test_no_boundaries_are_valid(reference_spec):
    assert check_boundaries(reference_spec, None, None, Regime.NO_EARLY_EXERCISE).is_valid


def test_tolerance_allows_rounding(reference_spec):
    check = check_boundaries(reference_spec, 100.00001, 58.7, Regime.DOUBLE_BOUNDARY)
    assert check.is_valid


# ===========================
# Path Monotonicity
# ===========================


def _path(uppers, lowers):
    return BoundaryPath(tuple(
        BoundaryPoint(time=float(i), upper=u, lower=l)
        for i, (u, l) in enumerate(zip(uppers, lowers))
    ))


def test_monotone_path_is_valid():
    path = _path([100.0, 90.0, 80.0], [50.0, 55.0, 60.0])
    check = check_path_monotonicity(path)

    assert check.is_valid
    assert check.details == {"upper_monotonic": True, "lower_monotonic": True}


def test_rising_upper_boundary_is_flagged():
    check = check_path_monotonicity(_path([100.0, 90.0, 92.0], [50.0, 55.0, 60.0]))

    assert not check.is_valid
    assert not check.details["upper_monotonic"]


def test_falling_lower_boundary_is_flagged():
    check = check_path_monotonicity(_path([100.0, 90.0, 80.0], [50.0, 55.0, 54.0]))

    assert not check.is_valid
    assert not check.details["lower_monotonic"]


def test_merged_nodes_are_skipped():
    check = check_path_monotonicity(_path([100.0, 90.0, None], [50.0, 55.0, None]))
    assert check.is_valid
