"""
No-arbitrage diagnostics for solved exercise boundaries.

This module implements post-hoc checks of solver output including:
- Finiteness of every reported boundary
- Boundary position relative to the strike
- Ordering of the lower and upper boundaries
- The K·r/q limit of negative-rate double boundaries
- Monotonicity of a boundary path in time to maturity
"""

import math
from typing import Optional

from double_boundary.utils.constants import BOUNDARY_CHECK_TOLERANCE
from double_boundary.utils.types import BoundaryCheck, BoundaryPath, OptionSpec, Regime


def check_boundaries(
    spec: OptionSpec,
    upper: Optional[float],
    lower: Optional[float],
    regime: Regime,
    tolerance: float = BOUNDARY_CHECK_TOLERANCE,
) -> BoundaryCheck:
    """
    Validate solved boundaries against no-arbitrage bounds.

    Checks:
    1. Reported boundaries are finite
    2. Put: upper <= K and lower > 0
    3. Call: lower >= K
    4. lower < upper when both are reported
    5. Double-boundary put: lower >= K·r/q; double-boundary call: upper <= K·r/q

    Args:
        spec: Option contract
        upper, lower: Boundaries to check (None means not reported)
        regime: Regime the boundaries were produced under
        tolerance: Slack as a fraction of strike

    Returns:
        BoundaryCheck with validation results
    """
    violations = []
    details = {}
    K = spec.strike
    slack = tolerance * K

    finite_ok = all(value is None or math.isfinite(value) for value in (upper, lower))
    details["finite"] = finite_ok
    if not finite_ok:
        violations.append(f"Non-finite boundary (upper={upper}, lower={lower})")
        return BoundaryCheck(is_valid=False, violations=violations, details=details)

    if not spec.is_call:
        # Put boundaries live below the strike
        strike_ok = (upper is None or upper <= K + slack) and (lower is None or lower > 0.0)
        details["strike_side"] = strike_ok
        if not strike_ok:
            violations.append(f"Put boundaries outside (0, K]: upper={upper}, lower={lower}, K={K}")
    else:
        # Call boundaries live above the strike
        strike_ok = lower is None or lower >= K - slack
        details["strike_side"] = strike_ok
        if not strike_ok:
            violations.append(f"Call lower boundary {lower:.4f} below strike {K:.4f}")

    if upper is not None and lower is not None:
        order_ok = lower < upper
        details["ordering"] = order_ok
        if not order_ok:
            violations.append(f"Lower boundary {lower:.4f} not below upper boundary {upper:.4f}")

    if regime == Regime.DOUBLE_BOUNDARY and spec.dividend_yield != 0.0:
        limit = K * spec.rate / spec.dividend_yield
        if not spec.is_call:
            limit_ok = lower is None or lower >= limit - slack
            if not limit_ok:
                violations.append(f"Put lower boundary {lower:.4f} below K·r/q = {limit:.4f}")
        else:
            limit_ok = upper is None or upper <= limit + slack
            if not limit_ok:
                violations.append(f"Call upper boundary {upper:.4f} above K·r/q = {limit:.4f}")
        details["rate_ratio_limit"] = limit_ok

    return BoundaryCheck(
        is_valid=len(violations) == 0,
        violations=violations,
        details=details,
    )


def check_path_monotonicity(
    path: BoundaryPath,
    tolerance: float = BOUNDARY_CHECK_TOLERANCE,
) -> BoundaryCheck:
    """
    Check that a boundary path moves away from expiry monotonically.

    The upper boundary must be non-increasing and the lower boundary
    non-decreasing in time to maturity (merged nodes are skipped).

    Args:
        path: Boundary path, ascending in time to maturity
        tolerance: Allowed reversal, in price units

    Returns:
        BoundaryCheck with validation results
    """
    violations = []
    details = {}

    uppers = [value for value in path.uppers if value is not None]
    upper_ok = all(b <= a + tolerance for a, b in zip(uppers, uppers[1:]))
    details["upper_monotonic"] = upper_ok
    if not upper_ok:
        violations.append("Upper boundary increases with time to maturity")

    lowers = [value for value in path.lowers if value is not None]
    lower_ok = all(b >= a - tolerance for a, b in zip(lowers, lowers[1:]))
    details["lower_monotonic"] = lower_ok
    if not lower_ok:
        violations.append("Lower boundary decreases with time to maturity")

    return BoundaryCheck(
        is_valid=len(violations) == 0,
        violations=violations,
        details=details,
    )
