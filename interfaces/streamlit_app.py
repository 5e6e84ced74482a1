"""
Streamlit web interface for the double-boundary exercise solver.

Interactive UI with tabs for:
- Exercise boundary path
- Regime diagnostics
- Maturity sweep of the QD+ boundaries
"""

import streamlit as st
import numpy as np
import pandas as pd
import plotly.graph_objects as go
from double_boundary.core.characteristic import (
    characteristic_roots,
    critical_volatility,
    perpetual_boundaries,
)
from double_boundary.core.regime import classify_regime
from double_boundary.solvers.double_boundary import solve
from double_boundary.solvers.qd_plus import solve_qd_plus
from double_boundary.utils.errors import DoubleBoundaryError
from double_boundary.utils.types import OptionSpec

st.set_page_config(page_title="Double-Boundary Solver", layout="wide")

st.title("Double-Boundary Solver")
st.markdown("American exercise boundaries under negative interest rates")

# Sidebar parameters
st.sidebar.header("Option Parameters")
S = st.sidebar.number_input("Spot Price (S)", value=100.0, min_value=0.01)
K = st.sidebar.number_input("Strike Price (K)", value=100.0, min_value=0.01)
T = st.sidebar.slider("Time to Expiry (years)", 0.01, 30.0, 10.0)
r = st.sidebar.slider("Risk-Free Rate (%)", -5.0, 10.0, -0.5, step=0.05) / 100
q = st.sidebar.slider("Dividend Yield (%)", -5.0, 10.0, -1.0, step=0.05) / 100
sigma = st.sidebar.slider("Volatility (%)", 1.0, 100.0, 8.0) / 100
option_type = st.sidebar.selectbox("Option Type", ["put", "call"])
points = st.sidebar.slider("Collocation Points", 5, 100, 25)
use_refinement = st.sidebar.checkbox("Kim Refinement", value=True)

try:
    spec = OptionSpec(S, K, T, r, q, sigma, is_call=option_type == "call")
except DoubleBoundaryError as e:
    st.error(f"Invalid parameters: {e}")
    st.stop()

# Main tabs
tab1, tab2, tab3 = st.tabs(["Boundaries", "Regime Diagnostics", "Maturity Sweep"])

with tab1:
    st.header("Exercise Boundaries")

    try:
        result = solve(spec, collocation_points=points, use_refinement=use_refinement)
    except DoubleBoundaryError as e:
        st.error(f"Solver failed: {e}")
        st.stop()

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("Upper Boundary", "-" if result.upper_boundary is None else f"{result.upper_boundary:.4f}",
                  delta=f"{result.upper_improvement:+.4f} vs QD+" if result.is_refined else None)
    with col2:
        st.metric("Lower Boundary", "-" if result.lower_boundary is None else f"{result.lower_boundary:.4f}",
                  delta=f"{result.lower_improvement:+.4f} vs QD+" if result.is_refined else None)
    with col3:
        st.metric("Crossing Time", f"{result.crossing_time:.4f}")

    st.info(f"Method: {result.method} | Regime: {result.regime_label} | Iterations: {result.iterations_used}")
    if not result.is_valid:
        st.warning("Validation: " + "; ".join(result.violations))

    if result.boundary_path is not None:
        path = result.boundary_path
        fig_path = go.Figure()
        fig_path.add_trace(go.Scatter(x=path.times, y=path.uppers, name="Upper"))
        fig_path.add_trace(go.Scatter(x=path.times, y=path.lowers, name="Lower", line=dict(color="orange")))
        fig_path.add_hline(y=K, line_dash="dot", annotation_text="Strike")
        fig_path.update_layout(title="Exercise Boundary vs Time to Maturity",
                               xaxis_title="Time to Maturity (years)", yaxis_title="Boundary")
        st.plotly_chart(fig_path, use_container_width=True)
    else:
        st.caption("Boundary path is available for refined double-boundary solves.")

with tab2:
    st.header("Regime Diagnostics")

    roots = characteristic_roots(spec)
    try:
        perpetual_upper, perpetual_lower = perpetual_boundaries(spec)
    except ValueError:
        perpetual_upper, perpetual_lower = float("nan"), float("nan")

    diagnostics_df = pd.DataFrame({
        "Quantity": ["Regime", "λ (upper side)", "λ (lower side)", "h = 1 - e^(-rT)",
                     "Critical volatility σ*", "K·r/q", "Perpetual upper", "Perpetual lower"],
        "Value": [
            classify_regime(spec).value,
            f"{roots.smaller:.6f}",
            f"{roots.larger:.6f}",
            f"{roots.h:.6f}",
            f"{critical_volatility(r, q):.6f}",
            f"{K * r / q:.4f}" if q != 0 else "-",
            f"{perpetual_upper:.4f}",
            f"{perpetual_lower:.4f}",
        ],
    })
    st.table(diagnostics_df)

with tab3:
    st.header("QD+ Boundaries Across Maturities")

    maturities = np.linspace(max(0.05, T / 40), T, 40)
    regime = classify_regime(spec)
    uppers, lowers = [], []
    for maturity in maturities:
        qd = solve_qd_plus(spec.with_maturity(float(maturity)), regime)
        uppers.append(qd.upper_boundary)
        lowers.append(qd.lower_boundary)

    fig_sweep = go.Figure()
    fig_sweep.add_trace(go.Scatter(x=maturities, y=uppers, name="Upper"))
    fig_sweep.add_trace(go.Scatter(x=maturities, y=lowers, name="Lower", line=dict(color="orange")))
    fig_sweep.update_layout(title="QD+ Boundary vs Maturity", xaxis_title="Maturity (years)",
                            yaxis_title="Boundary")
    st.plotly_chart(fig_sweep, use_container_width=True)
