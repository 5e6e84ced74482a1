"""
Regime classification and near-expiry handling.

The exercise regime is chosen once per solve from the rates:

- Double boundary: put with q < r < 0, or call with r < q < 0
- Single boundary: put with r > 0, or call with q > 0
- No early exercise: everything else

Both double-boundary inequalities carry a 5bp margin so that contracts
sitting on a regime edge are not flipped by rounding noise.

Within a trading day of expiry the QD+ equations are unreliable, so the
boundaries come from a volatility-scaled heuristic around the strike. Over
the following two trading days the model and heuristic are blended.
"""

import math
from typing import Literal, Optional

from double_boundary.utils.constants import (
    BLENDING_ZONE_WIDTH,
    MIN_TIME_TO_EXPIRY,
    NEAR_EXPIRY_INNER_FACTOR,
    NEAR_EXPIRY_MIN_SPREAD,
    REGIME_HYSTERESIS,
)
from double_boundary.utils.types import OptionSpec, Regime

NearExpiryAdvice = Literal["use-intrinsic", "use-blended", "use-model"]


def classify_regime(spec: OptionSpec, hysteresis: float = REGIME_HYSTERESIS) -> Regime:
    """
    Classify the exercise regime of a contract, ignoring maturity.

    Args:
        spec: Option contract
        hysteresis: Margin ε applied to both double-boundary inequalities

    Returns:
        DOUBLE_BOUNDARY, SINGLE_BOUNDARY or NO_EARLY_EXERCISE

    Examples:
        >>> classify_regime(OptionSpec(100, 100, 10, -0.005, -0.01, 0.08))
        <Regime.DOUBLE_BOUNDARY: 'DoubleBoundary'>
    """
    r = spec.rate
    q = spec.dividend_yield

    if spec.is_call:
        # Mirror image of the put condition under r <-> q
        if q < -hysteresis and r < q - hysteresis:
            return Regime.DOUBLE_BOUNDARY
        return Regime.SINGLE_BOUNDARY if q > 0.0 else Regime.NO_EARLY_EXERCISE

    if r < -hysteresis and q < r - hysteresis:
        return Regime.DOUBLE_BOUNDARY
    return Regime.SINGLE_BOUNDARY if r > 0.0 else Regime.NO_EARLY_EXERCISE


def near_expiry_boundaries(spec: OptionSpec) -> tuple[float, float]:
    """
    Heuristic (upper, lower) boundaries for a contract at expiry.

    Formula:
        spread = max(0.01, σ√T)
        put:  upper = K(1 - 0.3·spread),  lower = K(1 - spread)
        call: upper = K(1 + spread),      lower = K(1 + 0.3·spread)
    """
    K = spec.strike
    spread = max(NEAR_EXPIRY_MIN_SPREAD, spec.volatility * math.sqrt(spec.maturity))

    if spec.is_call:
        return K * (1.0 + spread), K * (1.0 + NEAR_EXPIRY_INNER_FACTOR * spread)
    return K * (1.0 - NEAR_EXPIRY_INNER_FACTOR * spread), K * (1.0 - spread)


def blending_weight(maturity: float) -> float:
    """
    Weight of the model boundaries in the blending zone.

    Returns:
        0 at MIN_TIME_TO_EXPIRY rising linearly to 1 at the end of the
        blending zone, clamped to [0, 1] outside it
    """
    weight = (maturity - MIN_TIME_TO_EXPIRY) / BLENDING_ZONE_WIDTH
    return min(1.0, max(0.0, weight))


def validate_near_expiry(maturity: float) -> NearExpiryAdvice:
    """
    Recommend how to produce boundaries for a given maturity.

    Returns:
        "use-intrinsic" at or below one trading day, "use-blended" inside
        the blending zone, "use-model" beyond it
    """
    if maturity <= MIN_TIME_TO_EXPIRY:
        return "use-intrinsic"
    if maturity < MIN_TIME_TO_EXPIRY + BLENDING_ZONE_WIDTH:
        return "use-blended"
    return "use-model"


def blend_with_intrinsic(
    model: Optional[float],
    intrinsic: float,
    maturity: float,
) -> float:
    """
    Blend a model boundary with the near-expiry heuristic.

    Formula:
        w·model + (1 - w)·intrinsic,  w = blending_weight(maturity)

    A missing model value leaves the heuristic unchanged.
    """
    if model is None:
        return intrinsic
    weight = blending_weight(maturity)
    return weight * model + (1.0 - weight) * intrinsic
