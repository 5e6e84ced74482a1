"""
Data types and structures for exercise boundary calculations.

This module defines dataclasses and types used throughout the toolkit
for representing option contracts, characteristic roots, boundary paths,
and solver results. Everything here is immutable once constructed.
"""

import math
import numbers
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional

from double_boundary.utils.constants import (
    KIM_INITIAL_RELAXATION,
    KIM_INTEGRATION_ABS_TOLERANCE,
    KIM_INTEGRATION_REL_TOLERANCE,
    KIM_MAX_ITERATIONS,
    KIM_MAX_RELATIVE_STEP,
    KIM_MIN_RELAXATION,
    KIM_NODE_JUMP_BASE_FRACTION,
    KIM_NODE_JUMP_VOL_MULTIPLE,
    KIM_TIME_BUDGET,
    KIM_TOLERANCE,
    MAX_ABS_RATE,
    MAX_MATURITY,
    MAX_VOLATILITY,
    MIN_MATURITY,
    MIN_VOLATILITY,
)
from double_boundary.utils.errors import InvalidInputError

OptionType = Literal["call", "put"]
BoundarySide = Literal["upper", "lower"]


@dataclass(frozen=True)
class OptionSpec:
    """
    Immutable container for American option parameters.

    Attributes:
        spot: Current spot price of the underlying asset
        strike: Strike price
        maturity: Time to expiration in years
        rate: Risk-free interest rate (annualized, continuous, may be negative)
        dividend_yield: Continuous dividend yield (annualized, may be negative)
        volatility: Annualized volatility
        is_call: True for a call, False for a put

    Raises:
        InvalidInputError: If any parameter is outside its documented bounds
    """
    spot: float
    strike: float
    maturity: float
    rate: float
    dividend_yield: float
    volatility: float
    is_call: bool = False

    def __post_init__(self) -> None:
        """Validate every field eagerly."""
        for name in ("spot", "strike", "maturity", "rate", "dividend_yield", "volatility"):
            value = getattr(self, name)
            if not isinstance(value, numbers.Real) or not math.isfinite(value):
                raise InvalidInputError(f"{name} must be a finite number, got {value!r}")
        if self.spot <= 0:
            raise InvalidInputError(f"Spot price must be positive, got spot={self.spot}")
        if self.strike <= 0:
            raise InvalidInputError(f"Strike price must be positive, got strike={self.strike}")
        if not MIN_MATURITY < self.maturity <= MAX_MATURITY:
            raise InvalidInputError(
                f"Maturity must lie in ({MIN_MATURITY}, {MAX_MATURITY}], got maturity={self.maturity}"
            )
        if not MIN_VOLATILITY <= self.volatility <= MAX_VOLATILITY:
            raise InvalidInputError(
                f"Volatility must lie in [{MIN_VOLATILITY}, {MAX_VOLATILITY}], "
                f"got volatility={self.volatility}"
            )
        if abs(self.rate) > MAX_ABS_RATE:
            raise InvalidInputError(f"|rate| must not exceed {MAX_ABS_RATE}, got rate={self.rate}")
        if abs(self.dividend_yield) > MAX_ABS_RATE:
            raise InvalidInputError(
                f"|dividend_yield| must not exceed {MAX_ABS_RATE}, "
                f"got dividend_yield={self.dividend_yield}"
            )
        if not isinstance(self.is_call, bool):
            raise InvalidInputError(f"is_call must be a bool, got {self.is_call!r}")

    @property
    def eta(self) -> int:
        """Payoff sign: +1 for calls, -1 for puts."""
        return 1 if self.is_call else -1

    @property
    def option_type(self) -> OptionType:
        return "call" if self.is_call else "put"

    def mirrored(self) -> "OptionSpec":
        """
        Put-call symmetric contract (McDonald-Schroder).

        C(S, K, r, q) = P(K²/S, K, q, r) up to a factor S/K, so exercise
        boundaries map through x -> K²/x with upper and lower swapped.
        """
        return OptionSpec(
            spot=self.strike * self.strike / self.spot,
            strike=self.strike,
            maturity=self.maturity,
            rate=self.dividend_yield,
            dividend_yield=self.rate,
            volatility=self.volatility,
            is_call=not self.is_call,
        )

    def with_maturity(self, maturity: float) -> "OptionSpec":
        """Same contract with a different time to expiration."""
        return OptionSpec(
            spot=self.spot,
            strike=self.strike,
            maturity=maturity,
            rate=self.rate,
            dividend_yield=self.dividend_yield,
            volatility=self.volatility,
            is_call=self.is_call,
        )


class Regime(Enum):
    """Exercise regime selected once per solve."""

    NEAR_EXPIRY_INTRINSIC = "NearExpiryIntrinsic"
    SINGLE_BOUNDARY = "SingleBoundary"
    DOUBLE_BOUNDARY = "DoubleBoundary"
    NO_EARLY_EXERCISE = "NoEarlyExercise"


@dataclass(frozen=True)
class LambdaRoots:
    """
    Roots of the QD+ characteristic quadratic λ² + (β-1)λ - α/h = 0.

    Attributes:
        smaller: Algebraically smaller root (upper boundary side)
        larger: Algebraically larger root (lower boundary side)
        smaller_derivative: dλ/dh for the smaller root
        larger_derivative: dλ/dh for the larger root
        h: 1 - e^(-rT)
        discriminant: (β-1)² + 4α/h
    """
    smaller: float
    larger: float
    smaller_derivative: float
    larger_derivative: float
    h: float
    discriminant: float

    def for_side(self, side: BoundarySide) -> tuple[float, float]:
        """Return (λ, dλ/dh) for the given boundary side."""
        if side == "upper":
            return self.smaller, self.smaller_derivative
        return self.larger, self.larger_derivative


@dataclass(frozen=True)
class BoundaryPoint:
    """
    One node of a discretized boundary path.

    Attributes:
        time: Time to maturity τ of the node
        upper: Upper boundary, None where not applicable or merged
        lower: Lower boundary, None where not applicable or merged
    """
    time: float
    upper: Optional[float]
    lower: Optional[float]


@dataclass(frozen=True)
class BoundaryPath:
    """Time-ascending sequence of boundary nodes spanning [0, maturity]."""

    points: tuple[BoundaryPoint, ...]

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    def __getitem__(self, index: int) -> BoundaryPoint:
        return self.points[index]

    @property
    def times(self) -> list[float]:
        return [point.time for point in self.points]

    @property
    def uppers(self) -> list[Optional[float]]:
        return [point.upper for point in self.points]

    @property
    def lowers(self) -> list[Optional[float]]:
        return [point.lower for point in self.points]

    @property
    def at_maturity(self) -> BoundaryPoint:
        """Node at τ = maturity (today's boundary)."""
        return self.points[-1]

    def max_jump(self) -> float:
        """Largest difference between adjacent defined values on either side."""
        largest = 0.0
        for values in (self.uppers, self.lowers):
            for previous, current in zip(values, values[1:]):
                if previous is not None and current is not None:
                    largest = max(largest, abs(current - previous))
        return largest


@dataclass(frozen=True)
class RootResult:
    """
    Result from the bracketed root finder.

    Attributes:
        root: Best estimate of the root
        function_value: f(root)
        iterations: Number of iterations performed
        converged: Whether a tolerance criterion was met
        method: Method used
        message: Additional information about convergence
    """
    root: float
    function_value: float
    iterations: int
    converged: bool
    method: Literal["brent"] = "brent"
    message: str = ""


@dataclass(frozen=True)
class HalleyResult:
    """
    Result from the guarded Super-Halley iteration.

    Attributes:
        root: Final iterate
        function_value: f(root)
        iterations: Number of iterations performed
        converged: Whether |f| or the step met its tolerance
        stagnated: Whether the iterate stopped moving without converging
        message: Additional information about convergence
    """
    root: float
    function_value: float
    iterations: int
    converged: bool
    stagnated: bool = False
    message: str = ""


@dataclass(frozen=True)
class IntegrationResult:
    """
    Result from the adaptive integrator.

    Attributes:
        value: Integral estimate
        error: Estimated absolute error
        subdivisions: Number of interval bisections performed
        converged: False when the subdivision cap was hit first
    """
    value: float
    error: float
    subdivisions: int = 0
    converged: bool = True


@dataclass(frozen=True)
class ComplexIntegrationResult:
    """Complex integral with a Euclidean-norm error estimate."""

    value: complex
    error: float
    subdivisions: int = 0
    converged: bool = True


@dataclass(frozen=True)
class BoundarySolution:
    """
    Result from the QD+ stage for one boundary side.

    Attributes:
        boundary: Solved boundary price
        iterations: Iterations used (Super-Halley plus any fallback)
        method: Method that produced the accepted root
        converged: Whether the method met its tolerance
        message: Additional information about convergence
    """
    boundary: float
    iterations: int
    method: Literal["super-halley", "brent"]
    converged: bool
    message: str = ""


@dataclass(frozen=True)
class QDPlusResult:
    """QD+ estimates of both boundaries for one maturity."""

    upper: Optional[BoundarySolution]
    lower: Optional[BoundarySolution]

    @property
    def upper_boundary(self) -> Optional[float]:
        return None if self.upper is None else self.upper.boundary

    @property
    def lower_boundary(self) -> Optional[float]:
        return None if self.lower is None else self.lower.boundary

    @property
    def iterations(self) -> int:
        return sum(side.iterations for side in (self.upper, self.lower) if side is not None)


@dataclass(frozen=True)
class KimResult:
    """
    Result from the Kim refinement stage.

    Attributes:
        path: Refined boundary path, ascending in time to maturity
        upper: Refined upper boundary at τ = maturity (None if merged)
        lower: Refined lower boundary at τ = maturity (None if merged)
        crossing_time: τ* where the boundaries merge, 0.0 if they do not
        iterations: Number of accepted sweeps
        converged: Whether the path met the convergence tolerance
        residual: Final value-matching residual (price units)
        initial_residual: Residual of the QD+ starting path
        relaxation: Relaxation factor in use when the stage stopped
    """
    path: BoundaryPath
    upper: Optional[float]
    lower: Optional[float]
    crossing_time: float
    iterations: int
    converged: bool
    residual: float
    initial_residual: float
    relaxation: float


@dataclass(frozen=True)
class BoundaryCheck:
    """
    Result from post-hoc boundary validation.

    Attributes:
        is_valid: Whether the boundaries pass every check
        violations: List of specific violations detected
        details: Dictionary with detailed check results
    """
    is_valid: bool
    violations: list[str]
    details: dict[str, bool]


@dataclass(frozen=True)
class SolverResult:
    """
    Terminal output of a single solve() call.

    Attributes:
        upper_boundary: Upper exercise boundary today (None if not applicable)
        lower_boundary: Lower exercise boundary today (None if not applicable)
        qd_upper_boundary: Unrefined QD+ upper boundary
        qd_lower_boundary: Unrefined QD+ lower boundary
        crossing_time: Time to maturity τ* where the boundaries merge, 0.0 if none
        is_refined: Whether the Kim refinement result was accepted
        regime: Exercise regime used for the solve
        method: Human-readable description of the method path
        is_valid: Outcome of the post-hoc validity check
        iterations_used: Solver iterations (collocation points when refined)
        boundary_path: Refined path, only present when is_refined
        converged: Whether every stage met its tolerance
        message: Additional information
        violations: Validity violations, empty when is_valid
    """
    upper_boundary: Optional[float]
    lower_boundary: Optional[float]
    qd_upper_boundary: Optional[float]
    qd_lower_boundary: Optional[float]
    crossing_time: float
    is_refined: bool
    regime: Regime
    method: str
    is_valid: bool
    iterations_used: int
    boundary_path: Optional[BoundaryPath] = None
    converged: bool = True
    message: str = ""
    violations: tuple[str, ...] = field(default_factory=tuple)

    @property
    def regime_label(self) -> str:
        return self.regime.value

    @property
    def has_double_boundary(self) -> bool:
        return self.upper_boundary is not None and self.lower_boundary is not None

    @property
    def upper_improvement(self) -> float:
        """Refined minus QD+ upper boundary (0.0 when either is missing)."""
        if self.upper_boundary is None or self.qd_upper_boundary is None:
            return 0.0
        return self.upper_boundary - self.qd_upper_boundary

    @property
    def lower_improvement(self) -> float:
        """Refined minus QD+ lower boundary (0.0 when either is missing)."""
        if self.lower_boundary is None or self.qd_lower_boundary is None:
            return 0.0
        return self.lower_boundary - self.qd_lower_boundary


@dataclass(frozen=True)
class KimConfig:
    """
    Settings for the Kim refinement stage.

    Attributes:
        max_iterations: Cap on sweeps over the collocation grid
        tolerance: Relative path change (and residual per unit strike)
            treated as converged
        time_budget: Last-resort wall-clock guard in seconds; when it fires
            the best accepted path is returned with converged=False
        initial_relaxation: Starting ω in B <- B + ω(B_map - B)
        min_relaxation: Stop once ω has been halved below this
        max_relative_step: Cap on |ΔB|/B per node per sweep
        max_node_jump: Largest allowed difference between adjacent nodes;
            None scales the bound with σ and the grid spacing
        integration_abs_tolerance: Absolute tolerance of the node integrals
        integration_rel_tolerance: Relative tolerance of the node integrals

    Raises:
        InvalidInputError: If any setting is non-positive or ω is outside (0, 1]
    """
    max_iterations: int = KIM_MAX_ITERATIONS
    tolerance: float = KIM_TOLERANCE
    time_budget: float = KIM_TIME_BUDGET
    initial_relaxation: float = KIM_INITIAL_RELAXATION
    min_relaxation: float = KIM_MIN_RELAXATION
    max_relative_step: float = KIM_MAX_RELATIVE_STEP
    max_node_jump: Optional[float] = None
    integration_abs_tolerance: float = KIM_INTEGRATION_ABS_TOLERANCE
    integration_rel_tolerance: float = KIM_INTEGRATION_REL_TOLERANCE

    def __post_init__(self) -> None:
        if not isinstance(self.max_iterations, int) or self.max_iterations < 0:
            raise InvalidInputError(
                f"max_iterations must be a non-negative int, got {self.max_iterations!r}"
            )
        for name in ("tolerance", "time_budget", "min_relaxation", "max_relative_step",
                     "integration_abs_tolerance", "integration_rel_tolerance"):
            if not getattr(self, name) > 0:
                raise InvalidInputError(f"{name} must be positive, got {getattr(self, name)!r}")
        if not 0.0 < self.initial_relaxation <= 1.0:
            raise InvalidInputError(
                f"initial_relaxation must lie in (0, 1], got {self.initial_relaxation!r}"
            )
        if self.max_node_jump is not None and not self.max_node_jump > 0:
            raise InvalidInputError(f"max_node_jump must be positive, got {self.max_node_jump!r}")

    def node_jump_limit(self, strike: float, volatility: float, root_step: float) -> float:
        """
        Non-oscillation bound in price units.

        Formula:
            K·(0.005 + 4·σ·Δ√τ)

        where Δ√τ is the (constant) spacing of √τ between collocation nodes.
        """
        if self.max_node_jump is not None:
            return self.max_node_jump
        return strike * (KIM_NODE_JUMP_BASE_FRACTION
                         + KIM_NODE_JUMP_VOL_MULTIPLE * volatility * root_step)
