"""
Command-line interface for membrane simulations.

Usage:
    python -m membrane_dynamics --config configs/vesicle.yaml --out output/
"""

import argparse
import sys
from pathlib import Path

from .config import load_config
from .exceptions import ConfigurationError, ConvergenceError, GeometryError
from .exporters import export_results
from .runner import run_simulation
from .utils.logger import Logger


def main(argv=None):
    """Run one simulation from a YAML file and export its results."""
    parser = argparse.ArgumentParser(
        description="Mechanochemical dynamics of a triangulated membrane"
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        required=True,
        help="Path to YAML configuration file"
    )
    parser.add_argument(
        "--out", "-o",
        type=Path,
        default=None,
        help="Output directory (overrides config)"
    )
    parser.add_argument(
        "--name", "-n",
        type=str,
        default=None,
        help="Run name (overrides config)"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress output except errors"
    )

    args = parser.parse_args(argv)

    # Config errors are reported before any output is created
    try:
        config = load_config(args.config)
    except FileNotFoundError:
        print(f"Error: Config file not found: {args.config}", file=sys.stderr)
        return 1
    except ConfigurationError as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1

    # Command-line output settings win over the file
    out_dir = args.out or Path(config.output.out_dir)
    run_name = args.name or config.output.run_name

    Logger.initialize(out_dir / f"{run_name}.log")

    if not args.quiet:
        p = config.parameters
        print("Running membrane simulation...")
        print(f"  Mesh: {config.mesh.kind} (level {config.mesh.subdivisions}, radius {config.mesh.radius:g})")
        print(f"  Method: {config.integration.method}, dt={config.integration.time_step:g}, "
              f"max_steps={config.integration.max_steps}")
        print(f"  Shape variation: {p.variation.is_shape_variation}, "
              f"protein variation: {p.variation.is_protein_variation}")

    try:
        result = run_simulation(config)
    except (ConfigurationError, GeometryError, ConvergenceError) as e:
        print(f"Error: Simulation failed: {type(e).__name__}: {e}", file=sys.stderr)
        return 2

    paths = export_results(result, out_dir, run_name)

    if not args.quiet:
        run = result.run
        print()
        print("=" * 50)
        print("SIMULATION COMPLETE")
        print("=" * 50)
        print(f"  Outcome: {run.outcome.value}")
        print(f"  Steps: {run.steps}, time: {run.time:.6g}")
        print(f"  Energy: {run.initial_energy.total:.6g} -> {run.energy.total:.6g}")
        print(f"  |F| (L1): {run.mech_error_norm:.3e}, |mu| (L1): {run.chem_error_norm:.3e}")
        if run.chemical_failures:
            print(f"  Chemical line search failures: {run.chemical_failures}")
        if run.line_search_shrinks:
            print(f"  Line search step reductions: {run.line_search_shrinks}")
        if run.message:
            print(f"  Note: {run.message}")
        print()
        print("Output files:")
        for label, path in paths.items():
            print(f"  {label}: {path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
