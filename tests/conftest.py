"""
Pytest configuration and shared fixtures.
"""

import pytest

from double_boundary.utils.types import KimConfig, OptionSpec


@pytest.fixture
def reference_params():
    """Negative-rate double-boundary put (Healy's reference contract)."""
    return {
        "spot": 100.0,
        "strike": 100.0,
        "maturity": 10.0,
        "rate": -0.005,
        "dividend_yield": -0.01,
        "volatility": 0.08,
    }


@pytest.fixture
def reference_spec(reference_params):
    """Reference contract as a put."""
    return OptionSpec(**reference_params)


@pytest.fixture
def reference_call_spec():
    """Double-boundary call: rates mirrored from the reference put."""
    return OptionSpec(
        spot=100.0,
        strike=100.0,
        maturity=10.0,
        rate=-0.01,
        dividend_yield=-0.005,
        volatility=0.08,
        is_call=True,
    )


@pytest.fixture
def standard_put_spec():
    """Classical positive-rate put with a single boundary."""
    return OptionSpec(
        spot=100.0,
        strike=100.0,
        maturity=1.0,
        rate=0.05,
        dividend_yield=0.0,
        volatility=0.20,
    )


@pytest.fixture
def standard_call_spec():
    """Dividend-paying call with a single boundary."""
    return OptionSpec(
        spot=100.0,
        strike=100.0,
        maturity=1.0,
        rate=0.02,
        dividend_yield=0.05,
        volatility=0.25,
        is_call=True,
    )


@pytest.fixture
def fast_kim_config():
    """Kim settings that keep refinement tests quick."""
    return KimConfig(max_iterations=3, time_budget=30.0)
