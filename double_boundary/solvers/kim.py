"""
Kim integral-equation refinement of the double exercise boundary.

For a put with q < r < 0 the exercise region at time to maturity u is the
band [B_l(u), B_u(u)]. Value matching at either edge B gives

    K·N(B) = B·D(B)

    N(B) = 1 - e^(-rτ)·N(-d₋(τ, B/K)) - ∫₀^τ r·e^(-rs)·P₋(s) ds
    D(B) = 1 - e^(-qτ)·N(-d₊(τ, B/K)) - ∫₀^τ q·e^(-qs)·P₊(s) ds
    P±(s) = N(-d±(s, B/B_u(τ-s))) - N(-d±(s, B/B_l(τ-s)))

where P₋ is the risk-neutral probability of sitting inside the exercise
band after s years. The stage starts from a QD+ path on a collocation
grid clustered near expiry and improves it by damped fixed-point sweeps:

- upper edge (FP-A):  B <- K·N/D
- lower edge (FP-B'): B <- (K·N + B·I_D)/D_nonint

A sweep is kept only if it does not increase the value-matching residual
K·N - B·D, both over the whole grid and at today's node; otherwise the
relaxation factor is halved. Calls are refined through the put-call
symmetric put. check_refinement() then compares today's refined boundaries
with QD+ before the orchestrator accepts them.

References:
    Kim, I. J. (1990). The analytic valuation of American options.
    Review of Financial Studies, 3(4), 547-572.
    Andersen, L., Lake, M., & Offengenden, D. (2016). High-performance
    American option pricing. Journal of Computational Finance, 20(1).
    Healy, J. (2021). Pricing American options under negative rates.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Optional

import numpy as np

from double_boundary.core.distributions import normal_cdf, normal_cdf_array
from double_boundary.core.quadrature import integrate
from double_boundary.solvers.qd_plus import find_crossing_time, is_merged, solve_pair
from double_boundary.utils.constants import (
    CROSSING_TOLERANCE,
    DEFAULT_COLLOCATION_POINTS,
    EPSILON,
    KIM_TODAY_MAX_RELATIVE_SHIFT,
    KIM_TODAY_MAX_SHIFT_FRACTION,
)
from double_boundary.utils.errors import InvalidInputError, RefinementDegradedError
from double_boundary.utils.types import (
    BoundaryPath,
    BoundaryPoint,
    KimConfig,
    KimResult,
    OptionSpec,
)

logger = logging.getLogger(__name__)


def collocation_grid(maturity: float, points: int) -> np.ndarray:
    """
    Collocation times τ_i = T·(i/(n-1))², ascending from 0 to T.

    The quadratic spacing clusters nodes near expiry where the
    boundaries move fastest.
    """
    return maturity * (np.arange(points) / (points - 1)) ** 2


def isotonic_non_decreasing(values: np.ndarray) -> np.ndarray:
    """
    Pool-adjacent-violators fit of a non-decreasing sequence (equal weights).

    Examples:
        >>> isotonic_non_decreasing(np.array([1.0, 3.0, 2.0, 4.0])).tolist()
        [1.0, 2.5, 2.5, 4.0]
    """
    blocks: list[list[float]] = []
    for value in values:
        blocks.append([float(value), 1.0])
        while len(blocks) > 1 and blocks[-2][0] / blocks[-2][1] > blocks[-1][0] / blocks[-1][1]:
            total, count = blocks.pop()
            blocks[-1][0] += total
            blocks[-1][1] += count
    return np.concatenate([np.full(int(count), total / count) for total, count in blocks])


def isotonic_non_increasing(values: np.ndarray) -> np.ndarray:
    """Pool-adjacent-violators fit of a non-increasing sequence."""
    return -isotonic_non_decreasing(-np.asarray(values, dtype=float))


@dataclass(frozen=True)
class NodeTerms:
    """
    Pieces of the Kim equation at one node for one boundary value.

    Attributes:
        numerator: N(B)
        denominator: D(B)
        dividend_integral: I_D, the integral part of D
        dividend_term: D_nonint = D + I_D
    """
    numerator: float
    denominator: float
    dividend_integral: float
    dividend_term: float

    def residual(self, strike: float, boundary: float) -> float:
        """Value-matching defect K·N - B·D in price units."""
        return strike * self.numerator - boundary * self.denominator


class KimEquation:
    """
    Evaluator of N(B) and D(B) on a collocation grid.

    Args:
        spec: Double-boundary put (q < r < 0)
        times: Ascending collocation times, starting at 0
        config: Integration tolerances
    """

    def __init__(self, spec: OptionSpec, times: np.ndarray, config: KimConfig):
        self.strike = spec.strike
        self.rate = spec.rate
        self.dividend_yield = spec.dividend_yield
        self.volatility = spec.volatility
        self.times = times
        self.abs_tol = config.integration_abs_tolerance
        self.rel_tol = config.integration_rel_tolerance

    def _d_values(self, s, log_ratio):
        """(d₋, d₊) for elapsed time s and log(B/B_path)."""
        sigma = self.volatility
        spread = sigma * np.sqrt(s)
        base = log_ratio + (self.rate - self.dividend_yield) * s
        half_variance = 0.5 * sigma * sigma * s
        return (base - half_variance) / spread, (base + half_variance) / spread

    def terms(
        self,
        index: int,
        boundary: float,
        uppers: np.ndarray,
        lowers: np.ndarray,
        active: int,
    ) -> NodeTerms:
        """
        Evaluate the Kim equation pieces at collocation node `index`.

        Args:
            index: Node index (> 0)
            boundary: Candidate boundary B at that node
            uppers, lowers: Current path values on the grid
            active: Number of leading nodes with separated boundaries

        Notes:
            Integrals use s = z² so that the √s behaviour of d± at s -> 0
            does not cost subdivisions.
        """
        tau = float(self.times[index])
        r = self.rate
        q = self.dividend_yield
        path_times = self.times[:active]
        path_uppers = uppers[:active]
        path_lowers = lowers[:active]
        log_boundary = math.log(boundary)

        def band_probabilities(z):
            s = z * z
            u = np.maximum(tau - s, 0.0)
            log_upper = log_boundary - np.log(np.interp(u, path_times, path_uppers))
            log_lower = log_boundary - np.log(np.interp(u, path_times, path_lowers))
            with np.errstate(divide="ignore", invalid="ignore"):
                minus_u, plus_u = self._d_values(s, log_upper)
                minus_l, plus_l = self._d_values(s, log_lower)
            p_minus = normal_cdf_array(-minus_u) - normal_cdf_array(-minus_l)
            p_plus = normal_cdf_array(-plus_u) - normal_cdf_array(-plus_l)
            return s, p_minus, p_plus

        def rate_integrand(z):
            s, p_minus, _ = band_probabilities(z)
            return 2.0 * z * r * np.exp(-r * s) * p_minus

        def dividend_integrand(z):
            s, _, p_plus = band_probabilities(z)
            return 2.0 * z * q * np.exp(-q * s) * p_plus

        upper_z = math.sqrt(tau)
        rate_integral = integrate(rate_integrand, 0.0, upper_z, self.abs_tol, self.rel_tol,
                                  vectorized=True)
        dividend_integral = integrate(dividend_integrand, 0.0, upper_z, self.abs_tol,
                                      self.rel_tol, vectorized=True)

        d_minus, d_plus = self._d_values(tau, log_boundary - math.log(self.strike))
        rate_term = 1.0 - math.exp(-r * tau) * normal_cdf(-d_minus)
        dividend_term = 1.0 - math.exp(-q * tau) * normal_cdf(-d_plus)

        return NodeTerms(
            numerator=rate_term - rate_integral.value,
            denominator=dividend_term - dividend_integral.value,
            dividend_integral=dividend_integral.value,
            dividend_term=dividend_term,
        )

    def side_terms(self, values: np.ndarray, uppers: np.ndarray, lowers: np.ndarray,
                   active: int) -> list[Optional[NodeTerms]]:
        """Terms for every interior node of one side; node 0 is None."""
        return [None] + [self.terms(i, float(values[i]), uppers, lowers, active)
                         for i in range(1, active)]


def _relaxed(current: float, target: float, relaxation: float, max_step: float) -> float:
    """Damped move towards a target, capped at max_step·current."""
    if not math.isfinite(target):
        return current
    cap = max_step * current
    step = max(-cap, min(cap, relaxation * (target - current)))
    return current + step


def _project(uppers: np.ndarray, lowers: np.ndarray, strike: float, floor: float,
             active: int) -> None:
    """Enforce monotonicity and the no-arbitrage ordering in place."""
    gap = CROSSING_TOLERANCE * strike
    uppers[:active] = isotonic_non_increasing(uppers[:active])
    lowers[:active] = isotonic_non_decreasing(lowers[:active])
    uppers[0] = strike
    lowers[0] = floor
    uppers[1:active] = np.clip(uppers[1:active], floor + gap, strike)
    lowers[1:active] = np.clip(lowers[1:active], floor, uppers[1:active] - gap)


def _residuals(upper_terms, lower_terms, uppers, lowers, strike, active) -> tuple[float, float]:
    """(max-norm residual over the grid, residual at the last separated node)."""
    largest = 0.0
    last = 0.0
    for i in range(1, active):
        node = max(abs(upper_terms[i].residual(strike, uppers[i])),
                   abs(lower_terms[i].residual(strike, lowers[i])))
        largest = max(largest, node)
        last = node
    return largest, last


def _initial_path(spec: OptionSpec, times: np.ndarray, qd_upper: float, qd_lower: float):
    """
    QD+ solved at every node, continuing downward from maturity.

    Returns:
        (uppers, lowers, active, crossing_time) where nodes [0, active) are
        separated and crossing_time is inf when the boundaries never merge
    """
    K = spec.strike
    floor = K * spec.rate / spec.dividend_yield
    n = len(times)

    uppers = np.full(n, np.nan)
    lowers = np.full(n, np.nan)
    merged = np.zeros(n, dtype=bool)
    uppers[0], lowers[0] = K, floor
    uppers[-1], lowers[-1] = qd_upper, qd_lower

    guesses = (qd_upper, qd_lower)
    for i in range(n - 2, 0, -1):
        upper, lower = solve_pair(spec, float(times[i]), guesses)
        if upper is not None and lower is not None:
            if is_merged(upper, lower, K):
                merged[i] = True
            else:
                uppers[i], lowers[i] = upper, lower
                guesses = (upper, lower)

    active = n
    crossing_time = math.inf
    merged_nodes = np.flatnonzero(merged)
    if merged_nodes.size:
        active = int(merged_nodes[0])
        separated = float(times[active - 1]) if active > 1 else 0.5 * float(times[1])
        crossing_time = find_crossing_time(spec, separated, float(times[active]))
        logger.info("QD+ path merges near tau=%.4f; freezing %d nodes", crossing_time, n - active)

    solved = np.isfinite(uppers[:active]) & np.isfinite(lowers[:active])
    if not solved.all():
        logger.debug("Interpolating %d unsolved QD+ nodes", int((~solved).sum()))
        known = times[:active][solved]
        uppers[:active] = np.interp(times[:active], known, uppers[:active][solved])
        lowers[:active] = np.interp(times[:active], known, lowers[:active][solved])

    return uppers, lowers, active, crossing_time


def _check_path(uppers: np.ndarray, lowers: np.ndarray, active: int, jump_limit: float,
                residual: float) -> None:
    """Raise RefinementDegradedError for a path that cannot be returned."""
    if not (np.all(np.isfinite(uppers[:active])) and np.all(np.isfinite(lowers[:active]))):
        raise RefinementDegradedError("refined path contains non-finite values", residual)
    if np.any(lowers[1:active] >= uppers[1:active]):
        raise RefinementDegradedError("refined lower boundary is not below the upper", residual)
    jumps = [np.max(np.abs(np.diff(values[:active]))) for values in (uppers, lowers) if active > 1]
    largest = max(jumps, default=0.0)
    if largest > jump_limit:
        raise RefinementDegradedError(
            f"adjacent nodes differ by {largest:.4f} (limit {jump_limit:.4f})", residual
        )


def _refine_put(
    spec: OptionSpec,
    qd_upper: float,
    qd_lower: float,
    collocation_points: int,
    config: KimConfig,
) -> KimResult:
    K = spec.strike
    r = spec.rate
    q = spec.dividend_yield
    if not q < r < 0.0:
        raise InvalidInputError(
            f"Kim refinement needs a double-boundary put (q < r < 0), got r={r}, q={q}"
        )
    if not qd_lower < qd_upper:
        raise RefinementDegradedError(
            f"QD+ boundaries are not ordered (upper={qd_upper:.6g}, lower={qd_lower:.6g})"
        )

    started = time.monotonic()
    floor = K * r / q
    times = collocation_grid(spec.maturity, collocation_points)
    uppers, lowers, active, crossing_time = _initial_path(spec, times, qd_upper, qd_lower)
    _project(uppers, lowers, K, floor, active)

    equation = KimEquation(spec, times, config)
    upper_terms = equation.side_terms(uppers, uppers, lowers, active)
    lower_terms = equation.side_terms(lowers, uppers, lowers, active)
    residual, last_residual = _residuals(upper_terms, lower_terms, uppers, lowers, K, active)
    initial_residual = residual

    relaxation = config.initial_relaxation
    accepted = 0
    converged = residual <= config.tolerance * K

    for attempt in range(config.max_iterations):
        if converged:
            break
        if time.monotonic() - started > config.time_budget:
            logger.warning("Kim refinement hit its %.1fs time budget after %d sweeps; "
                           "returning the best accepted path with converged=False",
                           config.time_budget, accepted)
            break

        trial_uppers = uppers.copy()
        trial_lowers = lowers.copy()
        for i in range(1, active):
            terms = upper_terms[i]
            if abs(terms.denominator) > EPSILON:
                target = K * terms.numerator / terms.denominator
                trial_uppers[i] = _relaxed(uppers[i], target, relaxation, config.max_relative_step)

        # Lower edge sees the freshly updated upper edge
        fresh_lower_terms = equation.side_terms(lowers, trial_uppers, lowers, active)
        for i in range(1, active):
            terms = fresh_lower_terms[i]
            if abs(terms.dividend_term) > EPSILON:
                target = (K * terms.numerator + lowers[i] * terms.dividend_integral) / terms.dividend_term
                trial_lowers[i] = _relaxed(lowers[i], target, relaxation, config.max_relative_step)

        _project(trial_uppers, trial_lowers, K, floor, active)

        trial_upper_terms = equation.side_terms(trial_uppers, trial_uppers, trial_lowers, active)
        trial_lower_terms = equation.side_terms(trial_lowers, trial_uppers, trial_lowers, active)
        trial_residual, trial_last = _residuals(trial_upper_terms, trial_lower_terms,
                                                trial_uppers, trial_lowers, K, active)

        if trial_residual <= residual and trial_last <= last_residual:
            change = max(
                float(np.max(np.abs(trial_uppers[:active] - uppers[:active]) / uppers[:active])),
                float(np.max(np.abs(trial_lowers[:active] - lowers[:active]) / lowers[:active])),
            )
            uppers, lowers = trial_uppers, trial_lowers
            upper_terms, lower_terms = trial_upper_terms, trial_lower_terms
            residual, last_residual = trial_residual, trial_last
            accepted += 1
            logger.debug("Kim sweep %d accepted: residual %.3e, change %.3e, omega %.4f",
                         attempt + 1, residual, change, relaxation)
            converged = change < config.tolerance or residual <= config.tolerance * K
        else:
            relaxation *= 0.5
            logger.debug("Kim sweep %d rejected (residual %.3e > %.3e); omega -> %.4f",
                         attempt + 1, trial_residual, residual, relaxation)
            if relaxation < config.min_relaxation:
                logger.warning("Kim refinement stalled: relaxation below %.4f",
                               config.min_relaxation)
                break

    root_step = math.sqrt(spec.maturity) / (collocation_points - 1)
    jump_limit = config.node_jump_limit(K, spec.volatility, root_step)
    _check_path(uppers, lowers, active, jump_limit, residual)

    points = tuple(
        BoundaryPoint(time=float(times[i]), upper=float(uppers[i]), lower=float(lowers[i]))
        if i < active else BoundaryPoint(time=float(times[i]), upper=None, lower=None)
        for i in range(len(times))
    )
    path = BoundaryPath(points)
    today = path.at_maturity

    logger.info("Kim refinement: %d sweeps accepted, residual %.3e -> %.3e, converged=%s",
                accepted, initial_residual, residual, converged)
    return KimResult(
        path=path,
        upper=today.upper,
        lower=today.lower,
        crossing_time=0.0 if math.isinf(crossing_time) else crossing_time,
        iterations=accepted,
        converged=converged,
        residual=residual,
        initial_residual=initial_residual,
        relaxation=relaxation,
    )


def _mirror(result: KimResult, strike: float) -> KimResult:
    """Map a symmetric-put result back to the call: x -> K²/x, sides swapped."""
    square = strike * strike

    def flip(value: Optional[float]) -> Optional[float]:
        return None if value is None else square / value

    points = tuple(
        BoundaryPoint(time=point.time, upper=flip(point.lower), lower=flip(point.upper))
        for point in result.path
    )
    return KimResult(
        path=BoundaryPath(points),
        upper=flip(result.lower),
        lower=flip(result.upper),
        crossing_time=result.crossing_time,
        iterations=result.iterations,
        converged=result.converged,
        residual=result.residual,
        initial_residual=result.initial_residual,
        relaxation=result.relaxation,
    )


def refine_boundaries(
    spec: OptionSpec,
    qd_upper: float,
    qd_lower: float,
    collocation_points: int = DEFAULT_COLLOCATION_POINTS,
    config: Optional[KimConfig] = None,
) -> KimResult:
    """
    Refine QD+ boundaries of a double-boundary contract with Kim's equation.

    Args:
        spec: Double-boundary put (q < r < 0) or call (r < q < 0)
        qd_upper: QD+ upper boundary at spec.maturity
        qd_lower: QD+ lower boundary at spec.maturity
        collocation_points: Number of grid nodes including τ = 0
        config: Stage settings (defaults if None)

    Returns:
        KimResult with the refined path and today's boundaries

    Raises:
        InvalidInputError: If the contract is not double-boundary or fewer
            than three collocation points are requested
        RefinementDegradedError: If the refined path is non-finite,
            mis-ordered, or violates the non-oscillation bound

    Examples:
        >>> spec = OptionSpec(100.0, 100.0, 10.0, -0.005, -0.01, 0.08)
        >>> result = refine_boundaries(spec, 69.62, 58.72, collocation_points=12)
        >>> result.lower < result.upper
        True
    """
    if config is None:
        config = KimConfig()
    if not isinstance(collocation_points, int) or collocation_points < 3:
        raise InvalidInputError(
            f"collocation_points must be an int >= 3, got {collocation_points!r}"
        )

    if spec.is_call:
        K = spec.strike
        put_result = _refine_put(spec.mirrored(), K * K / qd_lower, K * K / qd_upper,
                                 collocation_points, config)
        return _mirror(put_result, K)
    return _refine_put(spec, qd_upper, qd_lower, collocation_points, config)


def today_residual(
    spec: OptionSpec,
    path: BoundaryPath,
    upper: float,
    lower: float,
    config: Optional[KimConfig] = None,
) -> float:
    """
    Value-matching residual at today's node for candidate boundaries.

    The integrals run over `path`, so two candidates (for instance the
    refined and the QD+ boundaries) can be compared on the same footing.

    Args:
        spec: Double-boundary put or call
        path: Refined path whose nodes are all separated
        upper, lower: Candidate boundaries at τ = maturity
        config: Integration tolerances (defaults if None)

    Returns:
        max(|K·N - B·D|) over both sides, in price units
    """
    if config is None:
        config = KimConfig()
    K = spec.strike
    times = np.array(path.times)
    uppers = np.array(path.uppers, dtype=float)
    lowers = np.array(path.lowers, dtype=float)

    if spec.is_call:
        # Same residual on the symmetric put: x -> K²/x with sides swapped
        spec = spec.mirrored()
        uppers, lowers = K * K / lowers, K * K / uppers
        upper, lower = K * K / lower, K * K / upper

    if not (np.all(np.isfinite(uppers)) and np.all(np.isfinite(lowers))):
        raise RefinementDegradedError("today's node is frozen on the refined path")

    equation = KimEquation(spec, times, config)
    last = len(times) - 1
    active = len(times)
    return max(
        abs(equation.terms(last, upper, uppers, lowers, active).residual(K, upper)),
        abs(equation.terms(last, lower, uppers, lowers, active).residual(K, lower)),
    )


def check_refinement(
    spec: OptionSpec,
    result: KimResult,
    qd_upper: float,
    qd_lower: float,
    config: Optional[KimConfig] = None,
) -> None:
    """
    Reject a refinement whose boundaries today are worse than QD+.

    A refinement is discarded when either
    - today's boundary on either side moves from its QD+ value by more
      than 0.2% and by more than 0.001·K, or
    - its value-matching residual at today's node, measured on the refined
      path, exceeds that of the QD+ boundaries on the same path.

    Raises:
        RefinementDegradedError: If the refinement must be discarded
    """
    if result.upper is None or result.lower is None:
        raise RefinementDegradedError("refinement left no boundaries today")

    K = spec.strike
    for side, refined, initial in (("upper", result.upper, qd_upper),
                                   ("lower", result.lower, qd_lower)):
        shift = abs(refined - initial)
        if (shift > KIM_TODAY_MAX_SHIFT_FRACTION * K
                and shift > KIM_TODAY_MAX_RELATIVE_SHIFT * abs(initial)):
            raise RefinementDegradedError(
                f"today's {side} boundary moved {shift:.4f} from QD+ ({initial:.4f})",
                result.residual,
            )

    refined_residual = today_residual(spec, result.path, result.upper, result.lower, config)
    qd_residual = today_residual(spec, result.path, qd_upper, qd_lower, config)
    logger.debug("Residual today: refined %.3e, QD+ %.3e", refined_residual, qd_residual)
    if refined_residual > qd_residual:
        raise RefinementDegradedError(
            f"today's residual {refined_residual:.3e} exceeds QD+ {qd_residual:.3e}",
            refined_residual,
        )
