"""
Super-Halley iteration for the QD+ boundary equations.

This module implements the third-order Super-Halley update, which uses
f, f' and f'' at each iterate. It converges in a handful of steps from a
reasonable guess but carries no global guarantee, so it reports
stagnation and divergence instead of looping; the QD+ stage then falls
back to a bracketed Brent solve.
"""

import math
from typing import Callable

from double_boundary.utils.constants import (
    QD_HALLEY_DENOMINATOR_FLOOR,
    QD_MAX_ITERATIONS,
    QD_MIN_DERIVATIVE,
    QD_STAGNATION_TOLERANCE,
    QD_STEP_RESIDUAL_TOLERANCE,
    QD_STEP_TOLERANCE,
    QD_TOLERANCE,
)
from double_boundary.utils.types import HalleyResult


def super_halley(
    evaluate: Callable[[float], tuple[float, float, float]],
    initial_guess: float,
    lower: float,
    upper: float,
    max_iterations: int = QD_MAX_ITERATIONS,
    tolerance: float = QD_TOLERANCE,
    step_tolerance: float = QD_STEP_TOLERANCE,
) -> HalleyResult:
    """
    Solve f(x) = 0 inside [lower, upper] with the Super-Halley method.

    The update is:
        L = f·f'' / f'²
        x_{n+1} = x_n - (1 + ½·L/(1 - L))·f/f'

    Args:
        evaluate: Returns (f, f', f'') at a point
        initial_guess: Starting point, clamped into [lower, upper]
        lower, upper: Admissible interval for the iterates
        max_iterations: Maximum number of iterations
        tolerance: Convergence tolerance on |f|
        step_tolerance: Convergence tolerance on the relative step

    Returns:
        HalleyResult with the final iterate and convergence flags

    Notes:
        - |1 - L| below QD_HALLEY_DENOMINATOR_FLOOR degrades to a Newton step
        - A step leaving [lower, upper] is replaced by a move halfway to
          the violated limit; sitting on the limit already counts as stagnation
        - Returns stagnated=True if f' vanishes, or if the iterate stops
          moving while |f| is still above QD_STEP_RESIDUAL_TOLERANCE
    """
    x = min(max(initial_guess, lower), upper)
    fx = math.nan

    for iteration in range(1, max_iterations + 1):
        fx, first, second = evaluate(x)

        if not (math.isfinite(fx) and math.isfinite(first) and math.isfinite(second)):
            return HalleyResult(
                root=x,
                function_value=fx,
                iterations=iteration,
                converged=False,
                message=f"Non-finite function value at x={x:.6g}",
            )

        if abs(fx) < tolerance:
            return HalleyResult(
                root=x,
                function_value=fx,
                iterations=iteration,
                converged=True,
                message=f"Converged in {iteration} iterations (|f| tol)",
            )

        if abs(first) < QD_MIN_DERIVATIVE:
            return HalleyResult(
                root=x,
                function_value=fx,
                iterations=iteration,
                converged=False,
                stagnated=True,
                message=f"Derivative too small ({first:.2e}) at iteration {iteration}",
            )

        newton_step = fx / first
        ratio = fx * second / (first * first)
        if abs(1.0 - ratio) < QD_HALLEY_DENOMINATOR_FLOOR:
            step = newton_step
        else:
            step = (1.0 + 0.5 * ratio / (1.0 - ratio)) * newton_step

        x_new = x - step
        if x_new < lower or x_new > upper:
            limit = lower if x_new < lower else upper
            if abs(x - limit) <= QD_STAGNATION_TOLERANCE * max(1.0, abs(x)):
                return HalleyResult(
                    root=x,
                    function_value=fx,
                    iterations=iteration,
                    converged=False,
                    stagnated=True,
                    message=f"Pinned at admissible limit {limit:.6g}",
                )
            x_new = 0.5 * (x + limit)
        elif abs(x_new - x) < step_tolerance * max(1.0, abs(x)):
            f_new = evaluate(x_new)[0]
            if abs(f_new) < QD_STEP_RESIDUAL_TOLERANCE:
                return HalleyResult(
                    root=x_new,
                    function_value=f_new,
                    iterations=iteration,
                    converged=True,
                    message=f"Converged in {iteration} iterations (step tol)",
                )
            return HalleyResult(
                root=x_new,
                function_value=f_new,
                iterations=iteration,
                converged=False,
                stagnated=True,
                message=f"Stalled at x={x_new:.6g} with |f| = {abs(f_new):.2e}",
            )

        x = x_new

    return HalleyResult(
        root=x,
        function_value=fx,
        iterations=max_iterations,
        converged=False,
        message=f"Max iterations ({max_iterations}) reached without convergence",
    )
