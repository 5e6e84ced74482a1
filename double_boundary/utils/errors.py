"""
Exception hierarchy for the boundary solver.

Input validation failures subclass ValueError so that callers written
against plain parameter checks keep working. Numerical failures that have
a usable degraded answer (integrator subdivision cap) are reported through
result flags instead of exceptions.
"""

from typing import Optional


class DoubleBoundaryError(Exception):
    """Base class for all solver errors."""


class InvalidInputError(DoubleBoundaryError, ValueError):
    """Option parameters violate their documented bounds."""


class NotBracketedError(DoubleBoundaryError, ValueError):
    """
    Root finder was given an interval whose endpoints do not bracket a root.

    Attributes:
        a, b: Interval endpoints
        fa, fb: Function values at the endpoints (same sign)
    """

    def __init__(self, a: float, b: float, fa: float, fb: float) -> None:
        self.a = a
        self.b = b
        self.fa = fa
        self.fb = fb
        super().__init__(
            f"Root not bracketed: f({a:.6g}) = {fa:.6g}, f({b:.6g}) = {fb:.6g}"
        )


class BoundaryNotFoundError(DoubleBoundaryError, RuntimeError):
    """
    QD+ iteration stagnated or diverged and no bracketing fallback exists.

    Attributes:
        side: "upper" or "lower"
        guess: Initial guess the iteration started from
    """

    def __init__(self, side: str, guess: float, reason: str) -> None:
        self.side = side
        self.guess = guess
        self.reason = reason
        super().__init__(f"No {side} boundary found from guess {guess:.6g}: {reason}")


class RefinementDegradedError(DoubleBoundaryError):
    """
    Kim refinement produced a path that cannot replace the QD+ estimate.

    Raised inside the refinement stage and handled by the orchestrator,
    which falls back to the unrefined result.
    """

    def __init__(self, reason: str, residual: Optional[float] = None) -> None:
        self.reason = reason
        self.residual = residual
        super().__init__(reason)
