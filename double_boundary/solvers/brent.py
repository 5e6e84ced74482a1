"""
Brent's method for bracketed scalar root finding.

This module wraps scipy's Brent solver (a hybrid of bisection, secant and
inverse quadratic interpolation) as the guaranteed-convergence fallback for
the boundary equations. Given a sign-changing bracket it always converges,
though it is slower than the Super-Halley iteration used in the QD+ stage.
"""

import logging
import math
from typing import Callable

from scipy.optimize import brentq

from double_boundary.utils.constants import (
    BRACKET_SCAN_STEPS,
    ROOT_MAX_ITERATIONS,
    ROOT_TOLERANCE,
)
from double_boundary.utils.errors import NotBracketedError
from double_boundary.utils.types import RootResult

logger = logging.getLogger(__name__)


def find_root_detailed(
    f: Callable[[float], float],
    a: float,
    b: float,
    tolerance: float = ROOT_TOLERANCE,
    max_iterations: int = ROOT_MAX_ITERATIONS,
) -> RootResult:
    """
    Solve f(x) = 0 on [a, b] using Brent's method.

    Brent's method combines:
    - Inverse quadratic interpolation (fast when three distinct values exist)
    - Secant method (when only two distinct values exist)
    - Bisection (whenever an interpolated step is not trustworthy)

    Args:
        f: Continuous scalar function
        a, b: Bracket endpoints in either order; f(a) and f(b) must not share a sign
        tolerance: Absolute tolerance on the root; an endpoint with
            |f| < tolerance is returned as is
        max_iterations: Iteration cap

    Returns:
        RootResult with root, function value, iterations, converged flag

    Raises:
        NotBracketedError: If f(a) and f(b) have the same sign (or are not finite)
    """
    if a > b:
        a, b = b, a
    fa = f(a)
    fb = f(b)

    if not (math.isfinite(fa) and math.isfinite(fb)):
        raise NotBracketedError(a, b, fa, fb)
    if abs(fa) < tolerance or abs(fb) < tolerance:
        root, value = (a, fa) if abs(fa) <= abs(fb) else (b, fb)
        return RootResult(root=root, function_value=value, iterations=0, converged=True,
                          message="Root at bracket endpoint")
    if fa * fb > 0.0:
        raise NotBracketedError(a, b, fa, fb)

    # brentq needs opposite signs, which the checks above guarantee
    root, stats = brentq(
        f,
        a,
        b,
        xtol=tolerance,
        maxiter=max_iterations,
        full_output=True,
        disp=False,
    )
    value = f(root)

    if not stats.converged:
        logger.warning(
            "Brent reached %d iterations without convergence (|f| = %.3e)",
            stats.iterations, abs(value),
        )
        return RootResult(
            root=root,
            function_value=value,
            iterations=stats.iterations,
            converged=False,
            message=f"Max iterations ({max_iterations}) reached without convergence",
        )

    return RootResult(
        root=root,
        function_value=value,
        iterations=stats.iterations,
        converged=True,
        message=f"Converged in {stats.iterations} iterations",
    )


def find_root(
    f: Callable[[float], float],
    a: float,
    b: float,
    tolerance: float = ROOT_TOLERANCE,
    max_iterations: int = ROOT_MAX_ITERATIONS,
) -> float:
    """
    Solve f(x) = 0 on [a, b] and return only the root.

    See find_root_detailed() for the algorithm. A non-converged run still
    returns the best estimate; use find_root_detailed() to inspect the flag.

    Examples:
        >>> abs(find_root(lambda x: x * x - 2.0, 0.0, 2.0) - 2.0 ** 0.5) < 1e-10
        True
    """
    return find_root_detailed(f, a, b, tolerance, max_iterations).root


def expand_bracket(
    f: Callable[[float], float],
    guess: float,
    lower: float,
    upper: float,
    steps: int = BRACKET_SCAN_STEPS,
) -> tuple[float, float]:
    """
    Find the sign change nearest to a guess inside hard limits.

    Probes alternate right and left of the guess in equal steps of
    (upper - lower)/steps until consecutive probes change sign.

    Args:
        f: Scalar function
        guess: Starting point, clamped into [lower, upper]
        lower, upper: Hard search limits
        steps: Number of probe steps covering the full interval

    Returns:
        (a, b) with f(a)·f(b) <= 0 and a <= b

    Raises:
        NotBracketedError: If no sign change exists on the probe grid
    """
    guess = min(max(guess, lower), upper)
    width = (upper - lower) / steps
    f_guess = f(guess)
    if f_guess == 0.0:
        return guess, guess

    left_x, left_f = guess, f_guess
    right_x, right_f = guess, f_guess

    for k in range(1, 2 * steps + 1):
        if right_x < upper:
            x = min(guess + k * width, upper)
            fx = f(x)
            if math.isfinite(fx):
                if math.isfinite(right_f) and right_f * fx <= 0.0:
                    return right_x, x
                right_f = fx
            right_x = x
        if left_x > lower:
            x = max(guess - k * width, lower)
            fx = f(x)
            if math.isfinite(fx):
                if math.isfinite(left_f) and left_f * fx <= 0.0:
                    return x, left_x
                left_f = fx
            left_x = x
        if left_x <= lower and right_x >= upper:
            break

    raise NotBracketedError(lower, upper, left_f, right_f)
