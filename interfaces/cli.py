"""
Command-line interface for the double-boundary exercise solver.

This CLI provides access to:
- Exercise boundaries (QD+ with optional Kim refinement)
- Regime diagnostics (characteristic roots, critical volatility)
"""

import logging
import math
import sys

import click

from double_boundary.core.characteristic import (
    characteristic_roots,
    critical_volatility,
    perpetual_boundaries,
)
from double_boundary.core.regime import classify_regime
from double_boundary.solvers.double_boundary import solve
from double_boundary.utils.errors import BoundaryNotFoundError, InvalidInputError
from double_boundary.utils.types import OptionSpec


def _format(value) -> str:
    """Boundary value or a dash when not applicable."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return "-"
    return f"{value:.4f}"


def _build_spec(spot, strike, time, rate, div, vol, type) -> OptionSpec:
    """Construct the contract, exiting with code 2 on invalid input."""
    try:
        return OptionSpec(spot, strike, time, rate, div, vol, is_call=type == "call")
    except InvalidInputError as e:
        click.echo(f"\nError: {e}", err=True)
        sys.exit(2)


def contract_options(command):
    """Shared contract options for every command."""
    options = [
        click.option("--spot", "-S", type=float, required=True, help="Spot price"),
        click.option("--strike", "-K", type=float, required=True, help="Strike price"),
        click.option("--time", "-T", type=float, required=True, help="Time to expiry (years)"),
        click.option("--rate", "-r", type=float, required=True, help="Risk-free rate (may be negative)"),
        click.option("--div", "-q", type=float, default=0.0, help="Dividend yield (may be negative)"),
        click.option("--vol", "-v", type=float, required=True, help="Volatility (annualized)"),
        click.option("--type", "-t", type=click.Choice(["call", "put"]), default="put"),
    ]
    for option in reversed(options):
        command = option(command)
    return command


@click.group()
@click.version_option(version="1.0.0")
def cli():
    """Double-Boundary Solver - American exercise boundaries under negative rates."""
    pass


@cli.command(name="solve")
@contract_options
@click.option("--points", "-n", type=int, default=50, show_default=True,
              help="Kim collocation points")
@click.option("--no-refine", is_flag=True, help="Skip the Kim refinement stage")
@click.option("--paths", is_flag=True, help="Print the refined boundary path")
@click.option("--verbose", is_flag=True, help="Log solver progress to stderr")
def solve_command(spot, strike, time, rate, div, vol, type, points, no_refine, paths, verbose):
    """Solve the exercise boundaries of an American option."""
    if verbose:
        logging.basicConfig(level=logging.INFO,
                            format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    spec = _build_spec(spot, strike, time, rate, div, vol, type)
    try:
        result = solve(spec, collocation_points=points, use_refinement=not no_refine)
    except (InvalidInputError, BoundaryNotFoundError) as e:
        click.echo(f"\nError: {e}", err=True)
        sys.exit(2)

    click.echo(f"\nExercise Boundaries for {type.capitalize()} Option:")
    click.echo(f"  Upper:          {_format(result.upper_boundary):>12}")
    click.echo(f"  Lower:          {_format(result.lower_boundary):>12}")
    if result.is_refined:
        click.echo(f"  QD+ Upper:      {_format(result.qd_upper_boundary):>12}")
        click.echo(f"  QD+ Lower:      {_format(result.qd_lower_boundary):>12}")
    click.echo(f"  Regime:         {result.regime_label:>12}")
    click.echo(f"  Crossing Time:  {result.crossing_time:>12.4f}")
    click.echo(f"  Valid:          {str(result.is_valid):>12}")
    click.echo(f"Method: {result.method}")
    click.echo(f"Iterations: {result.iterations_used}")
    for violation in result.violations:
        click.echo(f"  Violation: {violation}", err=True)

    if paths and result.boundary_path is not None:
        click.echo(f"\n{'tau':>10} {'upper':>12} {'lower':>12}")
        for point in result.boundary_path:
            click.echo(f"{point.time:>10.5f} {_format(point.upper):>12} {_format(point.lower):>12}")


@cli.command()
@contract_options
def regime(spot, strike, time, rate, div, vol, type):
    """Show regime diagnostics for a contract."""
    spec = _build_spec(spot, strike, time, rate, div, vol, type)
    roots = characteristic_roots(spec)
    sigma_star = critical_volatility(spec.rate, spec.dividend_yield)

    click.echo(f"\nRegime: {classify_regime(spec).value}")
    click.echo(f"  lambda (upper side): {roots.smaller:>12.6f}")
    click.echo(f"  lambda (lower side): {roots.larger:>12.6f}")
    click.echo(f"  Critical vol:        {_format(sigma_star):>12}")

    try:
        perpetual_upper, perpetual_lower = perpetual_boundaries(spec)
    except ValueError as e:
        click.echo(f"  Perpetual:           n/a ({e})")
    else:
        click.echo(f"  Perpetual upper:     {_format(perpetual_upper):>12}")
        click.echo(f"  Perpetual lower:     {_format(perpetual_lower):>12}")


if __name__ == "__main__":
    cli()
