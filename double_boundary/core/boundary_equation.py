"""
QD+ boundary equation for one side of the exercise region.

At a candidate boundary S the QD+ approximation requires smooth pasting
between the exercise value η(S - K) and the approximate American value
V_E(S) + h·A·S^λ, which reduces to the scalar equation

    f(S) = η - η·e^(-qT)·N(η·d1(S)) - (λ + c0)·(η(S - K) - V_E(S)) / S = 0

with the QD+ correction

    c0 = -(1-h)·α/(2λ+β-1) · [1/h - e^(rT)·Θ(S)/(r·(η(S-K) - V_E(S))) + λ'/(2λ+β-1)]

where Θ is the calendar theta of the European option and λ' = dλ/dh.
The same formula serves both sides; only the root λ differs.

References:
    Li, M. (2005). QD+ approximation of the critical stock price.
    Andersen, L., Lake, M., & Offengenden, D. (2016). High-performance
    American option pricing. Journal of Computational Finance, 20(1).
"""

import math
from typing import Optional

from double_boundary.core.black_scholes import d1, european_price, european_theta
from double_boundary.core.characteristic import characteristic_roots, effective_rate
from double_boundary.core.distributions import normal_cdf
from double_boundary.utils.constants import C0_CLAMP, EPSILON, FD_STEP_BOUNDARY
from double_boundary.utils.types import BoundarySide, OptionSpec


class BoundaryEquation:
    """
    Evaluator of the QD+ boundary equation f(S) and its derivatives.

    Args:
        spec: Option contract
        side: "upper" (smaller λ) or "lower" (larger λ)
        maturity: Time to maturity override; defaults to spec.maturity.
            The Kim stage evaluates the equation at every collocation time.

    Examples:
        >>> spec = OptionSpec(100.0, 100.0, 10.0, -0.005, -0.01, 0.08)
        >>> abs(BoundaryEquation(spec, "upper").value(69.62)) < 1e-2
        True
    """

    def __init__(self, spec: OptionSpec, side: BoundarySide, maturity: Optional[float] = None):
        if side not in ("upper", "lower"):
            raise ValueError(f"side must be 'upper' or 'lower', got '{side}'")

        T = spec.maturity if maturity is None else maturity
        roots = characteristic_roots(spec, T)

        self.spec = spec
        self.side = side
        self.maturity = T
        self.rate = effective_rate(spec.rate)
        self.dividend_yield = spec.dividend_yield
        self.volatility = spec.volatility
        self.eta = float(spec.eta)

        self.h = roots.h
        self.lam, self.lam_derivative = roots.for_side(side)
        sigma2 = spec.volatility * spec.volatility
        self.alpha = 2.0 * self.rate / sigma2
        self.beta = 2.0 * (self.rate - spec.dividend_yield) / sigma2

        denominator = 2.0 * self.lam + self.beta - 1.0
        if abs(denominator) < EPSILON:
            denominator = math.copysign(EPSILON, denominator)
        self._denominator = denominator
        self._growth = math.exp(self.rate * T)
        self._dividend_discount = math.exp(-spec.dividend_yield * T)

    def correction(self, S: float) -> float:
        """QD+ correction term c0 at S, clamped to ±C0_CLAMP."""
        K = self.spec.strike
        T = self.maturity
        option_type = self.spec.option_type

        european = european_price(S, K, T, self.rate, self.volatility,
                                  self.dividend_yield, option_type)
        theta = european_theta(S, K, T, self.rate, self.volatility,
                               self.dividend_yield, option_type)
        premium = self._exercise_premium(S, european)

        c0 = -((1.0 - self.h) * self.alpha / self._denominator) * (
            1.0 / self.h
            - self._growth * theta / (self.rate * premium)
            + self.lam_derivative / self._denominator
        )
        return max(-C0_CLAMP, min(C0_CLAMP, c0))

    def value(self, S: float) -> float:
        """f(S); zero at the QD+ boundary."""
        K = self.spec.strike
        T = self.maturity
        european = european_price(S, K, T, self.rate, self.volatility,
                                  self.dividend_yield, self.spec.option_type)
        premium = self._exercise_premium(S, european)
        d1_value = d1(S, K, T, self.rate, self.volatility, self.dividend_yield)

        return (
            self.eta
            - self.eta * self._dividend_discount * normal_cdf(self.eta * d1_value)
            - (self.lam + self.correction(S)) * premium / S
        )

    def derivative(self, S: float) -> float:
        """f'(S) by central finite difference."""
        step = FD_STEP_BOUNDARY * S
        return (self.value(S + step) - self.value(S - step)) / (2.0 * step)

    def second_derivative(self, S: float) -> float:
        """f''(S) by central finite difference."""
        step = FD_STEP_BOUNDARY * S
        return (self.value(S + step) - 2.0 * self.value(S) + self.value(S - step)) / (step * step)

    def evaluate(self, S: float) -> tuple[float, float, float]:
        """
        Return (f, f', f'') at S with three evaluations of f.
        """
        step = FD_STEP_BOUNDARY * S
        f_minus = self.value(S - step)
        f_center = self.value(S)
        f_plus = self.value(S + step)
        first = (f_plus - f_minus) / (2.0 * step)
        second = (f_plus - 2.0 * f_center + f_minus) / (step * step)
        return f_center, first, second

    def __call__(self, S: float) -> float:
        return self.value(S)

    def _exercise_premium(self, S: float, european: float) -> float:
        """η(S - K) - V_E(S), kept away from zero."""
        premium = self.eta * (S - self.spec.strike) - european
        if abs(premium) < EPSILON * self.spec.strike:
            premium = math.copysign(EPSILON * self.spec.strike, premium)
        return premium
