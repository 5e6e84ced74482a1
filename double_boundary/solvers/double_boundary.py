"""
Exercise boundary solver with automatic regime and method selection.

This module provides the high-level interface for American exercise
boundaries under possibly negative rates. It automatically:
1. Handles contracts within a few trading days of expiry
2. Classifies the exercise regime
3. Solves the QD+ approximation for the applicable sides
4. Refines double boundaries with Kim's integral equation
5. Validates the result against no-arbitrage bounds
"""

import logging
from typing import Optional

from double_boundary.core.regime import (
    blend_with_intrinsic,
    blending_weight,
    classify_regime,
    near_expiry_boundaries,
    validate_near_expiry,
)
from double_boundary.diagnostics.validation import check_boundaries, check_path_monotonicity
from double_boundary.solvers.kim import check_refinement, refine_boundaries
from double_boundary.solvers.qd_plus import (
    find_crossing_time,
    is_merged,
    solve_boundary_side,
    solve_qd_plus,
)
from double_boundary.utils.constants import DEFAULT_COLLOCATION_POINTS, MIN_TIME_TO_EXPIRY
from double_boundary.utils.errors import BoundaryNotFoundError, RefinementDegradedError
from double_boundary.utils.types import (
    BoundaryPath,
    KimConfig,
    OptionSpec,
    Regime,
    SolverResult,
)

logger = logging.getLogger(__name__)

METHOD_NEAR_EXPIRY = "Near-Expiry Handler ({detail})"
METHOD_SINGLE = "QD+ (Single Boundary)"
METHOD_QD_PLUS = "QD+ Approximation"
METHOD_KIM = "QD+ + Kim Refinement (FP-B')"
METHOD_NO_EXERCISE = "No Early Exercise"
METHOD_MERGED = "QD+ (Boundaries Merged)"


def _single_side(spec: OptionSpec) -> str:
    """The side a single-boundary contract reports: put upper, call lower."""
    return "lower" if spec.is_call else "upper"


def _finish(
    spec: OptionSpec,
    regime: Regime,
    method: str,
    upper: Optional[float],
    lower: Optional[float],
    qd_upper: Optional[float] = None,
    qd_lower: Optional[float] = None,
    crossing_time: float = 0.0,
    is_refined: bool = False,
    iterations_used: int = 0,
    boundary_path: Optional[BoundaryPath] = None,
    converged: bool = True,
    message: str = "",
) -> SolverResult:
    """Run the post-hoc checks and assemble the result."""
    check = check_boundaries(spec, upper, lower, regime)
    violations = list(check.violations)
    if boundary_path is not None:
        violations.extend(check_path_monotonicity(boundary_path).violations)

    if violations:
        logger.warning("Boundary validation failed: %s", "; ".join(violations))

    logger.info("Solved %s %s: upper=%s lower=%s via %s", regime.value, spec.option_type,
                upper, lower, method)
    return SolverResult(
        upper_boundary=upper,
        lower_boundary=lower,
        qd_upper_boundary=qd_upper,
        qd_lower_boundary=qd_lower,
        crossing_time=crossing_time,
        is_refined=is_refined,
        regime=regime,
        method=method,
        is_valid=not violations,
        iterations_used=iterations_used,
        boundary_path=boundary_path,
        converged=converged,
        message=message,
        violations=tuple(violations),
    )


def _model_boundaries(spec: OptionSpec, regime: Regime) -> tuple[Optional[float], Optional[float]]:
    """QD+ boundaries for the blending zone; None where the model has no value."""
    if regime == Regime.SINGLE_BOUNDARY:
        side = _single_side(spec)
        boundary = solve_boundary_side(spec, side).boundary
        return (None, boundary) if side == "lower" else (boundary, None)

    if regime == Regime.DOUBLE_BOUNDARY:
        qd = solve_qd_plus(spec, regime)
        if is_merged(qd.upper_boundary, qd.lower_boundary, spec.strike):
            raise BoundaryNotFoundError("upper", spec.strike, "QD+ boundaries merged near expiry")
        return qd.upper_boundary, qd.lower_boundary

    return None, None


def _solve_near_expiry(spec: OptionSpec, blended: bool) -> SolverResult:
    """Intrinsic heuristic at expiry, blended with QD+ inside the blending zone."""
    heuristic_upper, heuristic_lower = near_expiry_boundaries(spec)
    if not blended:
        return _finish(spec, Regime.NEAR_EXPIRY_INTRINSIC,
                       METHOD_NEAR_EXPIRY.format(detail="intrinsic"),
                       heuristic_upper, heuristic_lower)

    regime = classify_regime(spec)
    weight = blending_weight(spec.maturity)
    try:
        model_upper, model_lower = _model_boundaries(spec, regime)
    except BoundaryNotFoundError as exc:
        logger.info("QD+ unavailable in blending zone (%s); using the heuristic alone", exc)
        return _finish(spec, Regime.NEAR_EXPIRY_INTRINSIC,
                       METHOD_NEAR_EXPIRY.format(detail="intrinsic fallback"),
                       heuristic_upper, heuristic_lower, message=str(exc))

    # Sides outside the regime stay unreported, as they are beyond the blending zone
    upper = None if model_upper is None else blend_with_intrinsic(
        model_upper, heuristic_upper, spec.maturity)
    lower = None if model_lower is None else blend_with_intrinsic(
        model_lower, heuristic_lower, spec.maturity)

    return _finish(spec, Regime.NEAR_EXPIRY_INTRINSIC,
                   METHOD_NEAR_EXPIRY.format(detail=f"blended, w={weight:.2f}"),
                   upper, lower, qd_upper=model_upper, qd_lower=model_lower)


def solve(
    spec: OptionSpec,
    collocation_points: int = DEFAULT_COLLOCATION_POINTS,
    use_refinement: bool = True,
    kim_config: Optional[KimConfig] = None,
) -> SolverResult:
    """
    Solve the American exercise boundaries of a contract.

    This is the main entry point. Solving is deterministic: the same
    inputs always produce the same result.

    Args:
        spec: Option contract
        collocation_points: Kim grid size including τ = 0
        use_refinement: Run the Kim stage for double boundaries
        kim_config: Kim stage settings (defaults if None)

    Returns:
        SolverResult containing:
            - upper_boundary / lower_boundary: Boundaries today (None if not applicable)
            - qd_upper_boundary / qd_lower_boundary: Unrefined QD+ values
            - crossing_time: τ* where the boundaries merge, 0.0 if they do not
            - regime, method, is_valid, iterations_used

    Raises:
        InvalidInputError: If collocation_points or kim_config is invalid
        BoundaryNotFoundError: If the single boundary of a contract cannot be found

    Examples:
        >>> spec = OptionSpec(100.0, 100.0, 10.0, -0.005, -0.01, 0.08)
        >>> result = solve(spec, use_refinement=False)
        >>> result.regime_label, result.method
        ('DoubleBoundary', 'QD+ Approximation')

    Notes:
        - A refinement that degrades (non-finite, mis-ordered or oscillating
          path, or boundaries today that move far from QD+ or fit Kim's
          equation worse than QD+) is discarded and the QD+ result returned
        - Merged boundaries report upper = lower = None with crossing_time set
    """
    advice = validate_near_expiry(spec.maturity)
    if advice != "use-model":
        return _solve_near_expiry(spec, blended=advice == "use-blended")

    regime = classify_regime(spec)
    logger.debug("Regime %s for %s r=%.6f q=%.6f", regime.value, spec.option_type,
                 spec.rate, spec.dividend_yield)

    if regime == Regime.NO_EARLY_EXERCISE:
        return _finish(spec, regime, METHOD_NO_EXERCISE, None, None)

    if regime == Regime.SINGLE_BOUNDARY:
        side = _single_side(spec)
        solution = solve_boundary_side(spec, side)
        upper = solution.boundary if side == "upper" else None
        lower = solution.boundary if side == "lower" else None
        return _finish(spec, regime, METHOD_SINGLE, upper, lower,
                       qd_upper=upper, qd_lower=lower,
                       iterations_used=solution.iterations,
                       converged=solution.converged, message=solution.message)

    qd = solve_qd_plus(spec, regime)
    qd_upper = qd.upper_boundary
    qd_lower = qd.lower_boundary

    if is_merged(qd_upper, qd_lower, spec.strike):
        crossing_time = find_crossing_time(spec, min(MIN_TIME_TO_EXPIRY, 0.5 * spec.maturity),
                                           spec.maturity)
        logger.info("QD+ boundaries merged at maturity; crossing time %.4f", crossing_time)
        return _finish(spec, regime, METHOD_MERGED, None, None,
                       qd_upper=qd_upper, qd_lower=qd_lower,
                       crossing_time=crossing_time, iterations_used=qd.iterations,
                       message="Boundaries merged before today; no early exercise region")

    if not use_refinement:
        return _finish(spec, regime, METHOD_QD_PLUS, qd_upper, qd_lower,
                       qd_upper=qd_upper, qd_lower=qd_lower, iterations_used=qd.iterations)

    try:
        kim = refine_boundaries(spec, qd_upper, qd_lower, collocation_points, kim_config)
        check_refinement(spec, kim, qd_upper, qd_lower, kim_config)
    except RefinementDegradedError as exc:
        logger.warning("Kim refinement discarded (%s); returning QD+ boundaries", exc.reason)
        return _finish(spec, regime, METHOD_QD_PLUS, qd_upper, qd_lower,
                       qd_upper=qd_upper, qd_lower=qd_lower, iterations_used=qd.iterations,
                       message=f"Refinement discarded: {exc.reason}")

    return _finish(
        spec, regime, METHOD_KIM, kim.upper, kim.lower,
        qd_upper=qd_upper,
        qd_lower=qd_lower,
        crossing_time=kim.crossing_time,
        is_refined=True,
        iterations_used=collocation_points,
        boundary_path=kim.path,
        converged=kim.converged,
        message=(f"{kim.iterations} sweeps, residual {kim.initial_residual:.3e} "
                 f"-> {kim.residual:.3e}"),
    )
