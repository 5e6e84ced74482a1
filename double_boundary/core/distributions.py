"""
Standard normal CDF and PDF for the pricing and boundary equations.

Scalar versions serve the QD+ equations, which evaluate one candidate
boundary at a time; the array version backs the vectorized integrands of
the Kim refinement stage. Both CDFs saturate beyond ±8 standard
deviations so that infinite d-values (zero time, zero volatility) map
cleanly to an empty or full exercise region.
"""

import math

import numpy as np
from scipy.special import ndtr

from double_boundary.utils.constants import MAX_STANDARD_DEVIATIONS

_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)


def normal_cdf(x: float) -> float:
    """
    Standard normal CDF, exactly 0 or 1 beyond ±MAX_STANDARD_DEVIATIONS.

    Examples:
        >>> normal_cdf(0.0)
        0.5
        >>> normal_cdf(-math.inf)
        0.0
    """
    if x > MAX_STANDARD_DEVIATIONS:
        return 1.0
    if x < -MAX_STANDARD_DEVIATIONS:
        return 0.0
    return float(ndtr(x))


def normal_pdf(x: float) -> float:
    """
    Standard normal density φ(x) = e^(-x²/2)/√(2π).

    Returns 0 for |x| > 10, where the density is below 1e-22.
    """
    if abs(x) > 10.0:
        return 0.0
    return _INV_SQRT_2PI * math.exp(-0.5 * x * x)


def normal_cdf_array(x: np.ndarray) -> np.ndarray:
    """
    Element-wise standard normal CDF for numpy arrays.

    Infinite arguments are allowed and map to 0 or 1, which is how the
    Kim integrand represents an empty or full exercise region.
    """
    return ndtr(np.clip(x, -MAX_STANDARD_DEVIATIONS, MAX_STANDARD_DEVIATIONS))
