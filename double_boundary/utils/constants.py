"""
Numerical constants and tolerances for exercise boundary calculations.

This module defines the thresholds used for input validation, regime
classification, and solver convergence. Every solver reads its defaults
from here; callers override them through keyword arguments.
"""

# Machine-level guards
EPSILON = 1e-12  # Generic "effectively zero" for divisions and comparisons
EPSILON_TIME = 1e-6  # ~0.1 seconds; below this, use intrinsic value
EPSILON_VOL = 1e-6  # ~0.0001% annualized; below this, deterministic pricing
RATE_FLOOR = 1e-7  # |r| below this is nudged away from zero in QD+ terms

# Normal distribution bounds
MAX_STANDARD_DEVIATIONS = 8.0  # Beyond ±8σ, CDF is effectively 0 or 1

# Input bounds for OptionSpec
MIN_MATURITY = 1e-6  # Below the near-expiry guard so it stays reachable
MAX_MATURITY = 30.0  # 30 years
MIN_VOLATILITY = 0.001  # 0.1% annualized
MAX_VOLATILITY = 5.0  # 500% annualized
MAX_ABS_RATE = 0.5  # |r| and |q| above 50% are rejected

# Near-expiry handling
MIN_TIME_TO_EXPIRY = 1.0 / 252.0  # One trading day
BLENDING_ZONE_WIDTH = 2.0 / 252.0  # Two trading days of intrinsic/model blending
NEAR_EXPIRY_MIN_SPREAD = 0.01  # Floor on σ√T for the intrinsic heuristic
NEAR_EXPIRY_INNER_FACTOR = 0.3  # Inner edge sits at 30% of the spread from K

# Regime classification
REGIME_HYSTERESIS = 0.0005  # 5bp margin on both regime inequalities

# Root finder (Brent)
ROOT_TOLERANCE = 1e-10
ROOT_MAX_ITERATIONS = 100
BRACKET_SCAN_STEPS = 60  # Probes per direction when expanding a bracket

# Adaptive integrator (Gauss-Kronrod 7/15)
INTEGRATION_ABS_TOLERANCE = 1e-8
INTEGRATION_REL_TOLERANCE = 1e-6
INTEGRATION_MAX_SUBDIVISIONS = 1000
INFINITE_LOWER_EXPONENT = -30.0  # x = a + e^t starts at t = -30 (e^-30 ≈ 9e-14)
INFINITE_WINDOW_STEP = 0.5  # Sampling step when searching the upper t limit
INFINITE_WINDOW_CAP = 20.0  # Largest t considered (e^20 ≈ 4.9e8)

# QD+ boundary equation and stage solver
QD_TOLERANCE = 1e-9  # |f(S)| convergence threshold (f is dimensionless)
QD_STEP_TOLERANCE = 1e-9  # Relative step size treated as converged
QD_STEP_RESIDUAL_TOLERANCE = 1e-6  # A step-tolerance stop also needs |f| below this
QD_MAX_ITERATIONS = 100
QD_STAGNATION_TOLERANCE = 1e-12  # Relative move below this counts as "did not move"
QD_MIN_DERIVATIVE = 1e-14  # |f'| below this cannot drive a Halley step
QD_HALLEY_DENOMINATOR_FLOOR = 1e-10  # |1 - L| below this degrades to Newton
C0_CLAMP = 10.0  # Bound on the QD+ correction term c0
FD_STEP_BOUNDARY = 1e-3  # Relative step for f' and f'' finite differences
BOUNDARY_FLOOR_FRACTION = 0.01  # Boundaries are searched above 1% of strike
BOUNDARY_CAP_MULTIPLE = 3.0  # and below 3x strike (calls)
STRIKE_GAP_FRACTION = 1e-6  # Keep iterates off S = K where f is degenerate

# Calibrated initial guesses, negative-rate double-boundary put (fractions of K)
UPPER_GUESS_LEVEL = 0.70
LOWER_GUESS_LEVEL = 0.60
GUESS_SQRT_T_SLOPE = 0.01

# Kim refinement
DEFAULT_COLLOCATION_POINTS = 50
KIM_TOLERANCE = 1e-6  # Relative change of the path treated as converged
KIM_MAX_ITERATIONS = 10  # Sweep cap; this is the stop that decides the result
KIM_TIME_BUDGET = 300.0  # Last-resort wall-clock guard in seconds
KIM_INITIAL_RELAXATION = 0.5  # ω in B <- B + ω (B_map - B)
KIM_MIN_RELAXATION = 1.0 / 64.0
KIM_MAX_RELATIVE_STEP = 0.03  # At most 3% movement per node per sweep
KIM_NODE_JUMP_BASE_FRACTION = 0.005  # Non-oscillation bound: 0.005·K (0.5 at K = 100)
KIM_NODE_JUMP_VOL_MULTIPLE = 4.0  # plus 4·σ·K per unit of √τ grid spacing
KIM_TODAY_MAX_RELATIVE_SHIFT = 0.002  # Refined boundaries today moving more than 0.2%
KIM_TODAY_MAX_SHIFT_FRACTION = 0.001  # and more than 0.001·K from QD+ are discarded
KIM_INTEGRATION_ABS_TOLERANCE = 1e-9
KIM_INTEGRATION_REL_TOLERANCE = 1e-7
CROSSING_TOLERANCE = 1e-4  # Boundaries within 1bp of K are considered merged
CROSSING_TIME_ACCURACY = 0.01  # Bisection stops below this width in τ

# Post-hoc validation
BOUNDARY_CHECK_TOLERANCE = 1e-6  # Fraction of strike allowed on every bound
