"""
QD+ stage: solve the boundary equation for each applicable side.

This module provides the per-side solver with automatic method selection,
trying Super-Halley first and falling back to a bracketed Brent solve when
the iteration stagnates, diverges, or lands outside the admissible interval.
"""

import logging
import math
from typing import Optional

from double_boundary.core.boundary_equation import BoundaryEquation
from double_boundary.solvers.brent import expand_bracket, find_root_detailed
from double_boundary.solvers.super_halley import super_halley
from double_boundary.utils.constants import (
    BOUNDARY_CAP_MULTIPLE,
    BOUNDARY_FLOOR_FRACTION,
    CROSSING_TIME_ACCURACY,
    CROSSING_TOLERANCE,
    GUESS_SQRT_T_SLOPE,
    LOWER_GUESS_LEVEL,
    QD_MAX_ITERATIONS,
    QD_TOLERANCE,
    STRIKE_GAP_FRACTION,
    UPPER_GUESS_LEVEL,
)
from double_boundary.utils.errors import BoundaryNotFoundError, NotBracketedError
from double_boundary.utils.types import (
    BoundarySide,
    BoundarySolution,
    OptionSpec,
    QDPlusResult,
    Regime,
)

logger = logging.getLogger(__name__)


def admissible_interval(spec: OptionSpec, side: BoundarySide) -> tuple[float, float]:
    """
    Interval that must contain the exercise boundary for a side.

    Early exercise of a put pays only where r·K > q·S, and of a call only
    where q·S > r·K, which pins both negative-rate boundaries between the
    strike and K·r/q. Single-boundary contracts use the classical limits.

    Returns:
        (lower, upper) search limits, kept a hair away from the strike
    """
    K = spec.strike
    r = spec.rate
    q = spec.dividend_yield
    gap = STRIKE_GAP_FRACTION * K

    if not spec.is_call:
        if q < r < 0.0:
            return K * r / q + gap, K - gap
        upper = K * min(1.0, r / q) if q > 0.0 and r > 0.0 else K
        return BOUNDARY_FLOOR_FRACTION * K, upper - gap

    if r < q < 0.0:
        return K + gap, K * r / q - gap
    lower = K * max(1.0, r / q) if q > 0.0 and r > 0.0 else K
    return lower + gap, max(BOUNDARY_CAP_MULTIPLE * K, 2.0 * lower)


def default_guess(spec: OptionSpec, side: BoundarySide, maturity: Optional[float] = None) -> float:
    """
    Calibrated starting point for the QD+ iteration.

    Formula (put):
        upper ≈ K·(0.70 - 0.01·√T),   lower ≈ K·(0.60 - 0.01·√T)

    Calls use the put-call symmetry x -> K²/x, so the call upper guess
    mirrors the put lower guess and vice versa. Guesses falling outside
    the admissible interval are moved to its inner quarter points.
    """
    K = spec.strike
    T = spec.maturity if maturity is None else maturity
    shift = GUESS_SQRT_T_SLOPE * math.sqrt(T)

    if not spec.is_call:
        level = UPPER_GUESS_LEVEL if side == "upper" else LOWER_GUESS_LEVEL
        guess = K * (level - shift)
    else:
        level = LOWER_GUESS_LEVEL if side == "upper" else UPPER_GUESS_LEVEL
        guess = K / (level - shift)

    lower, upper = admissible_interval(spec, side)
    if not lower < guess < upper:
        fraction = 0.75 if side == "upper" else 0.25
        guess = lower + fraction * (upper - lower)
    return guess


def solve_boundary_side(
    spec: OptionSpec,
    side: BoundarySide,
    initial_guess: Optional[float] = None,
    maturity: Optional[float] = None,
    method: str = "auto",
    max_iterations: int = QD_MAX_ITERATIONS,
    tolerance: float = QD_TOLERANCE,
) -> BoundarySolution:
    """
    Solve the QD+ boundary equation for one side.

    Args:
        spec: Option contract
        side: "upper" or "lower"
        initial_guess: Starting point (calibrated guess if None)
        maturity: Time to maturity override (spec.maturity if None)
        method: "auto" (default), "super-halley", or "brent"
        max_iterations: Iteration cap for either method
        tolerance: Convergence tolerance on |f|

    Returns:
        BoundarySolution with the boundary, iterations, and method used

    Raises:
        BoundaryNotFoundError: If no root exists in the admissible interval
        ValueError: If side or method is unknown

    Notes:
        - Auto mode tries Super-Halley first, falls back to Brent
        - A Super-Halley root pinned to the admissible limits counts as
          the wrong root and triggers the fallback
    """
    if method not in ("auto", "super-halley", "brent"):
        raise ValueError(f"method must be 'auto', 'super-halley' or 'brent', got '{method}'")

    equation = BoundaryEquation(spec, side, maturity)
    lower, upper = admissible_interval(spec, side)
    guess = initial_guess
    if guess is None:
        guess = default_guess(spec, side, maturity)

    halley_iterations = 0
    if method in ("auto", "super-halley"):
        result = super_halley(equation.evaluate, guess, lower, upper,
                              max_iterations=max_iterations, tolerance=tolerance)
        halley_iterations = result.iterations

        if result.converged and lower < result.root < upper:
            logger.debug("QD+ %s boundary %.6f via Super-Halley in %d iterations",
                         side, result.root, result.iterations)
            return BoundarySolution(
                boundary=result.root,
                iterations=result.iterations,
                method="super-halley",
                converged=True,
                message=result.message,
            )

        if method == "super-halley":
            raise BoundaryNotFoundError(side, guess, result.message)

        logger.debug("Super-Halley failed for %s side (%s), falling back to Brent",
                     side, result.message)

    try:
        a, b = expand_bracket(equation.value, guess, lower, upper)
    except NotBracketedError as exc:
        raise BoundaryNotFoundError(side, guess, f"no sign change in [{lower:.6g}, {upper:.6g}]") from exc

    if a == b:
        root, iterations, converged, message = a, 0, True, "Exact root at guess"
    else:
        brent_result = find_root_detailed(equation.value, a, b, max_iterations=max_iterations)
        root = brent_result.root
        iterations = brent_result.iterations
        converged = brent_result.converged
        message = brent_result.message

    logger.debug("QD+ %s boundary %.6f via Brent in %d iterations", side, root, iterations)
    return BoundarySolution(
        boundary=root,
        iterations=halley_iterations + iterations,
        method="brent",
        converged=converged,
        message=message,
    )


def solve_qd_plus(spec: OptionSpec, regime: Regime) -> QDPlusResult:
    """
    Run the QD+ stage for every side the regime calls for.

    - Double boundary: both sides
    - Single boundary: the put's upper edge or the call's lower edge
    - Anything else: no sides

    A side whose solve fails is reported as None; the orchestrator treats
    a missing side of a double-boundary contract as merged boundaries.
    """
    if regime == Regime.DOUBLE_BOUNDARY:
        sides: tuple[BoundarySide, ...] = ("upper", "lower")
    elif regime == Regime.SINGLE_BOUNDARY:
        sides = ("lower",) if spec.is_call else ("upper",)
    else:
        sides = ()

    solutions: dict[str, Optional[BoundarySolution]] = {"upper": None, "lower": None}
    for side in sides:
        try:
            solutions[side] = solve_boundary_side(spec, side)
        except BoundaryNotFoundError as exc:
            logger.info("QD+ %s boundary unavailable: %s", side, exc)

    return QDPlusResult(upper=solutions["upper"], lower=solutions["lower"])


def solve_pair(
    spec: OptionSpec,
    maturity: float,
    guesses: tuple[Optional[float], Optional[float]] = (None, None),
) -> tuple[Optional[float], Optional[float]]:
    """
    Solve both QD+ sides at one maturity, returning None for a failed side.

    Args:
        spec: Double-boundary contract
        maturity: Time to maturity τ
        guesses: (upper, lower) starting points, calibrated guesses if None
    """
    values: list[Optional[float]] = []
    for side, guess in zip(("upper", "lower"), guesses):
        try:
            values.append(solve_boundary_side(spec, side, guess, maturity=maturity).boundary)
        except BoundaryNotFoundError as exc:
            logger.debug("QD+ %s side failed at tau=%.6g: %s", side, maturity, exc.reason)
            values.append(None)
    return values[0], values[1]


def is_merged(upper: Optional[float], lower: Optional[float], strike: float) -> bool:
    """True if a boundary pair is missing or crossed within CROSSING_TOLERANCE·K."""
    if upper is None or lower is None:
        return True
    return upper - lower <= CROSSING_TOLERANCE * strike


def find_crossing_time(
    spec: OptionSpec,
    separated_time: float,
    merged_time: float,
    accuracy: float = CROSSING_TIME_ACCURACY,
) -> float:
    """
    Locate τ* where the QD+ boundaries merge by bisection in time to maturity.

    Args:
        spec: Double-boundary contract
        separated_time: τ with an ordered, separated QD+ pair
        merged_time: τ with a merged or missing QD+ pair
        accuracy: Stop once the bracket is narrower than this

    Returns:
        τ*, the midpoint of the final bracket
    """
    K = spec.strike
    upper, lower = solve_pair(spec, separated_time)
    if is_merged(upper, lower, K):
        logger.info("QD+ boundaries already merged at tau=%.6g", separated_time)
        return separated_time

    while merged_time - separated_time >= accuracy:
        middle = 0.5 * (separated_time + merged_time)
        trial_upper, trial_lower = solve_pair(spec, middle, (upper, lower))
        if is_merged(trial_upper, trial_lower, K):
            merged_time = middle
        else:
            separated_time = middle
            upper, lower = trial_upper, trial_lower

    crossing_time = 0.5 * (separated_time + merged_time)
    logger.debug("QD+ crossing time %.6f", crossing_time)
    return crossing_time
