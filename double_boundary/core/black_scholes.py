"""
European Black-Scholes-Merton primitives with continuous dividend yield.

The boundary equations need the European value of the contract and its
calendar-time derivative (theta) at a candidate boundary price. Both are
provided here with the same edge case handling for tiny maturities and
volatilities. Rates and dividend yields may be negative.

References:
    Black, F., & Scholes, M. (1973). The Pricing of Options and Corporate Liabilities.
    Journal of Political Economy, 81(3), 637-654.
"""

import math

from double_boundary.core.distributions import normal_cdf, normal_pdf
from double_boundary.utils.constants import EPSILON_TIME, EPSILON_VOL
from double_boundary.utils.types import OptionType


def _validate_inputs(S: float, K: float, T: float, sigma: float) -> None:
    """
    Validate pricing inputs.

    Raises:
        ValueError: If any input is invalid
    """
    if S <= 0:
        raise ValueError(f"Spot price must be positive, got S={S}")
    if K <= 0:
        raise ValueError(f"Strike price must be positive, got K={K}")
    if T < 0:
        raise ValueError(f"Time to expiration cannot be negative, got T={T}")
    if sigma < 0:
        raise ValueError(f"Volatility cannot be negative, got sigma={sigma}")


def d1(S: float, K: float, T: float, r: float, sigma: float, q: float) -> float:
    """
    Calculate d1 parameter in Black-Scholes formula.

    Args:
        S: Current spot (or candidate boundary) price
        K: Strike price
        T: Time to expiration in years
        r: Risk-free interest rate (annualized, continuous)
        sigma: Volatility (annualized standard deviation)
        q: Continuous dividend yield (annualized)

    Returns:
        The d1 parameter

    Formula:
        d1 = [ln(S/K) + (r - q + σ²/2)T] / (σ√T)
    """
    _validate_inputs(S, K, T, sigma)

    if T < EPSILON_TIME or sigma < EPSILON_VOL:
        forward = S * math.exp((r - q) * T)
        return math.inf if forward > K else -math.inf

    log_moneyness = math.log(S) - math.log(K)
    drift = (r - q + 0.5 * sigma * sigma) * T
    return (log_moneyness + drift) / (sigma * math.sqrt(T))


def d2(S: float, K: float, T: float, r: float, sigma: float, q: float) -> float:
    """
    Calculate d2 = d1 - σ√T.

    Edge cases (T → 0, σ → 0) return the same infinite value as d1.
    """
    d1_value = d1(S, K, T, r, sigma, q)
    if math.isinf(d1_value):
        return d1_value
    return d1_value - sigma * math.sqrt(T)


def european_price(
    S: float,
    K: float,
    T: float,
    r: float,
    sigma: float,
    q: float = 0.0,
    option_type: OptionType = "put",
) -> float:
    """
    European option value with the payoff sign η = +1 (call) or -1 (put).

    Formula:
        V = η·[S·e^(-qT)·N(η·d1) - K·e^(-rT)·N(η·d2)]

    Examples:
        >>> abs(european_price(100, 100, 1.0, 0.05, 0.20, 0.0, "put") - 5.5735) < 0.01
        True

    Edge Cases:
        - T → 0 or σ → 0: discounted forward intrinsic value
    """
    if option_type not in ("call", "put"):
        raise ValueError(f"option_type must be 'call' or 'put', got '{option_type}'")
    eta = 1.0 if option_type == "call" else -1.0

    discount_spot = S * math.exp(-q * T)
    discount_strike = K * math.exp(-r * T)

    d1_value = d1(S, K, T, r, sigma, q)
    if math.isinf(d1_value):
        return max(eta * (discount_spot - discount_strike), 0.0)

    d2_value = d1_value - sigma * math.sqrt(T)
    return eta * (
        discount_spot * normal_cdf(eta * d1_value) - discount_strike * normal_cdf(eta * d2_value)
    )


def european_theta(
    S: float,
    K: float,
    T: float,
    r: float,
    sigma: float,
    q: float = 0.0,
    option_type: OptionType = "put",
) -> float:
    """
    Calendar-time theta ∂V/∂t of a European option, per year.

    Formula:
        Θ = -S·e^(-qT)·φ(d1)·σ/(2√T) + η·q·S·e^(-qT)·N(η·d1) - η·r·K·e^(-rT)·N(η·d2)

    Notes:
        Theta is returned per year (not per day) because the QD+ correction
        term combines it with annualized rates.
    """
    if option_type not in ("call", "put"):
        raise ValueError(f"option_type must be 'call' or 'put', got '{option_type}'")
    eta = 1.0 if option_type == "call" else -1.0

    d1_value = d1(S, K, T, r, sigma, q)
    if math.isinf(d1_value):
        # Deterministic limit: only the carry terms survive
        in_the_money = eta * d1_value > 0
        if not in_the_money:
            return 0.0
        return eta * (q * S * math.exp(-q * T) - r * K * math.exp(-r * T))

    sqrt_t = math.sqrt(T)
    d2_value = d1_value - sigma * sqrt_t
    discount_spot = S * math.exp(-q * T)
    discount_strike = K * math.exp(-r * T)

    diffusion = -discount_spot * normal_pdf(d1_value) * sigma / (2.0 * sqrt_t)
    carry = eta * (
        q * discount_spot * normal_cdf(eta * d1_value)
        - r * discount_strike * normal_cdf(eta * d2_value)
    )
    return diffusion + carry
