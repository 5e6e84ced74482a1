"""
Characteristic equations behind the QD+ and perpetual exercise boundaries.

The QD+ approximation writes the early exercise premium as h·A(h)·S^λ(h)
with h = 1 - e^(-rT). Substituting into the Black-Scholes PDE and dropping
the ∂/∂h term leaves the quadratic

    λ² + (β - 1)λ - α/h = 0,    α = 2r/σ²,  β = 2(r - q)/σ²

whose roots select the boundary side: the smaller root belongs to the edge
whose continuation region extends to +∞ (the upper edge), the larger root
to the edge whose continuation region extends down to 0 (the lower edge).

References:
    Li, M. (2005). QD+ approximation of the critical stock price.
    Andersen, L., Lake, M., & Offengenden, D. (2016). High-performance
    American option pricing. Journal of Computational Finance, 20(1).
    Healy, J. (2021). Pricing American options under negative rates.
"""

import math
from typing import Optional

from double_boundary.utils.constants import EPSILON, RATE_FLOOR
from double_boundary.utils.types import LambdaRoots, OptionSpec


def effective_rate(rate: float) -> float:
    """
    Rate used inside QD+ expressions.

    The individual QD+ terms (1/h, Θ/r, λ') are singular at r = 0 while
    their combination stays finite, so rates within RATE_FLOOR of zero are
    nudged to ±RATE_FLOOR.
    """
    if abs(rate) >= RATE_FLOOR:
        return rate
    return -RATE_FLOOR if rate < 0 else RATE_FLOOR


def characteristic_roots(spec: OptionSpec, maturity: Optional[float] = None) -> LambdaRoots:
    """
    Solve the QD+ characteristic quadratic for a contract.

    Args:
        spec: Option contract (maturity enters through h)
        maturity: Override for spec.maturity, used along a boundary path

    Returns:
        LambdaRoots with both roots and their derivatives with respect to h

    Formula:
        λ± = [-(β-1) ± √((β-1)² + 4α/h)] / 2
        dλ±/dh = ∓ α / (h² √((β-1)² + 4α/h))

    Notes:
        The equivalent ω-parameterization uses ω = β and the discriminant
        (ω-1)² + 8r/(σ²h), which is the same number.
        When the discriminant is negative (only possible far outside the
        negative-rate band), the roots are taken as the real part ± 0.5 so
        that the two sides stay distinct.
    """
    r = effective_rate(spec.rate)
    sigma2 = spec.volatility * spec.volatility
    T = spec.maturity if maturity is None else maturity

    alpha = 2.0 * r / sigma2
    beta = 2.0 * (r - spec.dividend_yield) / sigma2
    h = -math.expm1(-r * T)

    discriminant = (beta - 1.0) ** 2 + 4.0 * alpha / h

    if discriminant < 0.0:
        real_part = -(beta - 1.0) / 2.0
        return LambdaRoots(
            smaller=real_part - 0.5,
            larger=real_part + 0.5,
            smaller_derivative=0.0,
            larger_derivative=0.0,
            h=h,
            discriminant=discriminant,
        )

    sqrt_disc = math.sqrt(discriminant)
    smaller = (-(beta - 1.0) - sqrt_disc) / 2.0
    larger = (-(beta - 1.0) + sqrt_disc) / 2.0

    # d(disc)/dh = -4α/h², so dλ±/dh = ∓ α/(h² √disc)
    slope = alpha / (h * h * max(sqrt_disc, EPSILON))

    return LambdaRoots(
        smaller=smaller,
        larger=larger,
        smaller_derivative=slope,
        larger_derivative=-slope,
        h=h,
        discriminant=discriminant,
    )


def critical_volatility(rate: float, dividend_yield: float) -> float:
    """
    Critical volatility σ* for a negative-rate double-boundary put.

    Below σ* the two boundaries never meet; above it they merge at a
    finite time to maturity τ*.

    Formula:
        σ* = |√(-2r) - √(-2q)|

    Returns:
        σ*, or NaN when the rates are outside q < r < 0
    """
    if rate >= 0.0 or dividend_yield >= rate:
        return math.nan
    return abs(math.sqrt(-2.0 * rate) - math.sqrt(-2.0 * dividend_yield))


def perpetual_roots(rate: float, dividend_yield: float, volatility: float) -> tuple[float, float]:
    """
    Roots of the perpetual characteristic equation ½σ²λ² + (r - q - ½σ²)λ - r = 0.

    Raises:
        ValueError: If the discriminant is negative
    """
    sigma2 = volatility * volatility
    mu = rate - dividend_yield - 0.5 * sigma2
    discriminant = mu * mu + 2.0 * rate * sigma2
    if discriminant < 0.0:
        raise ValueError(
            f"Perpetual characteristic equation has no real roots "
            f"(r={rate}, q={dividend_yield}, sigma={volatility})"
        )
    sqrt_disc = math.sqrt(discriminant)
    return (-mu - sqrt_disc) / sigma2, (-mu + sqrt_disc) / sigma2


def perpetual_boundaries(spec: OptionSpec) -> tuple[float, float]:
    """
    Perpetual (T → ∞) exercise boundaries K·λ/(λ - 1) for both roots.

    For a negative-rate put with σ ≤ σ*, these are the limits the upper
    and lower boundaries approach as maturity grows.

    Returns:
        (upper, lower) perpetual boundaries. A side is NaN when its root is
        degenerate (λ = 1) or the level falls on the wrong side of the strike
        (below K for calls, above K or non-positive for puts).
    """
    smaller, larger = perpetual_roots(spec.rate, spec.dividend_yield, spec.volatility)
    K = spec.strike

    def level(root: float) -> float:
        if abs(root - 1.0) < EPSILON:
            return math.nan
        value = K * root / (root - 1.0)
        if spec.is_call:
            return value if value > K else math.nan
        return value if 0.0 < value < K else math.nan

    return level(smaller), level(larger)
