#!/usr/bin/env python3
"""
SC-GEP Planner - Main Pipeline Entry Point.

Usage:
    scgep                                   # Baseline case study
    scgep --scenario lim_SC                 # Limited supply chain
    scgep --sensitivity --workers 4         # +/-10%, +/-20% material sweep
    scgep --compare                         # Solve and compare all scenarios
    scgep --constants my_case.yaml --output results/run1
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

from scgep.bottlenecks import analyze
from scgep.config import DEFAULT_CONSTANTS_PATH, ScenarioType, SolverSettings
from scgep.exceptions import InvalidConfigurationError, SolverUnavailableError
from scgep.formulation import formulate
from scgep.market import StaticMarketData, apply_market_signals, risk_weighted_materials
from scgep.plotting import plot_results
from scgep import reporting, utils
from scgep.scenarios import apply_scenario, compare_scenarios
from scgep.sensitivity import material_sweep, run_sensitivity
from scgep.solver import PlanningSolver


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Supply-Chain-Constrained Generation Expansion Planning",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  scgep --scenario high_demand --max-iterations 100
  scgep --scenario lim_SC --sensitivity --output results/limited
        """,
    )

    parser.add_argument(
        "--constants",
        type=str,
        default=None,
        help="Path to constants.yaml file (default: bundled Maryland case study)",
    )
    parser.add_argument(
        "--scenario",
        type=str,
        choices=[s.value for s in ScenarioType],
        default=ScenarioType.BASELINE.value,
        help="Scenario variant to solve (default: baseline)",
    )
    parser.add_argument(
        "--compare",
        action="store_true",
        help="Solve every scenario variant and write a comparison report",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Cutting-plane iteration budget (default: constants solver section or 50)",
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        default=None,
        help="Relative constraint-violation tolerance (default: 1e-6)",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Utilization at which a resource counts as binding (default: 0.95)",
    )
    parser.add_argument(
        "--time-limit",
        type=float,
        default=None,
        help="Wall-clock budget in seconds, checked between iterations",
    )
    parser.add_argument(
        "--sensitivity",
        action="store_true",
        help="Run a +/-10%%, +/-20%% supply sweep over every material",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker processes for the sensitivity sweep (default: sequential)",
    )
    parser.add_argument(
        "--market",
        action="store_true",
        help="Apply the static market snapshot from the constants file",
    )
    parser.add_argument(
        "--plot",
        action="store_true",
        help="Render build schedule and utilization figures into the output directory",
    )
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output directory for results (default: results/<timestamp>)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Formulate the problem but do not solve",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )

    return parser.parse_args(argv)


def create_settings(args: argparse.Namespace, constants: Any) -> SolverSettings:
    """SolverSettings from the constants file, overridden by CLI arguments."""
    if args.output:
        output_dir = Path(args.output)
    else:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_dir = Path(f"results/{timestamp}")

    return utils.load_solver_settings(
        constants,
        max_iterations=args.max_iterations,
        tolerance=args.tolerance,
        binding_threshold=args.threshold,
        time_limit=args.time_limit,
        output_dir=output_dir,
    )


def run_pipeline(
    args: argparse.Namespace,
    constants_path: Path | str,
) -> dict[str, Any]:
    """
    Run the planning pipeline: load, formulate, solve, analyze, export.

    Returns:
        Dictionary with ``status`` and, when solved, ``solution``/``report``
    """
    verbose = args.verbose
    constants = utils.load_constants_from_file(constants_path)
    settings = create_settings(args, constants)
    scenario = ScenarioType(args.scenario)

    if verbose:
        print("=" * 60)
        print("SC-GEP Planner")
        print("=" * 60)
        print(f"Scenario: {scenario.value}")
        print(f"Constants: {constants_path}")
        print(f"Max iterations: {settings.max_iterations}")
        print(f"Tolerance: {settings.tolerance}")
        print(f"Binding threshold: {settings.binding_threshold}")
        print(f"Output: {settings.output_dir}")
        print("=" * 60)

    try:
        # ---------------------------------------------------------------------
        # Step 1: Load Configuration
        # ---------------------------------------------------------------------
        if verbose:
            print("\n[Step 1] Loading configuration...")

        base = utils.load_configuration(constants)
        start_year = constants["planning"].get("start_year")
        provider = StaticMarketData.from_constants(constants) if args.market else None
        if provider is not None:
            base = apply_market_signals(base, provider)
        config = apply_scenario(base, scenario)

        if verbose:
            print(f"  - Materials: {len(config.materials)}")
            print(f"  - Components: {len(config.components)}")
            print(f"  - Technologies: {len(config.technologies)}")
            print(f"  - Zones: {len(config.zones)}")
            print(f"  - Horizon: {config.planning_horizon} periods")
            if provider is not None:
                print(f"  - Market signals applied: {len(provider)}")

        # ---------------------------------------------------------------------
        # Step 2: Formulate
        # ---------------------------------------------------------------------
        if verbose:
            print("[Step 2] Formulating problem...")

        problem = formulate(config)

        if verbose:
            print(f"  - Build variables: {len(problem.build_keys)}")
            print(f"  - Lazy rows: {len(problem.lazy_rows)}")

        if args.dry_run:
            if verbose:
                print("\n[Dry Run] Problem formulated successfully. Skipping solve.")
            return {"status": "DRY_RUN", "problem": problem}

        # ---------------------------------------------------------------------
        # Step 3: Solve
        # ---------------------------------------------------------------------
        if verbose:
            print(f"[Step 3] Solving (max {settings.max_iterations} iterations)...")

        planner = PlanningSolver(settings)
        solution = planner.solve(problem)

        if verbose:
            print(f"\n[Result] Status: {solution.status.value}")
            print(f"  - Feasible: {solution.feasibility}")
            print(f"  - Objective Value: {solution.objective_value:.4e}")
            print(f"  - Iterations: {solution.iterations}")
            print(f"  - Convergence Gap: {solution.convergence:.3g}")
            print(f"  - Solve Time: {solution.solve_time:.0f} ms")
            if solution.diagnostic:
                print(f"  - Diagnostic: {solution.diagnostic}")

        # ---------------------------------------------------------------------
        # Step 4: Bottleneck Analysis
        # ---------------------------------------------------------------------
        report = None
        if solution.feasibility:
            if verbose:
                print("[Step 4] Analyzing bottlenecks...")
            report = analyze(solution, config, settings.binding_threshold)
            if verbose:
                for b in report.material_bottlenecks:
                    if b.constraint:
                        print(
                            f"  - {b.material}: {b.utilization:.1%} ({b.severity}) "
                            f"in periods {list(b.periods)}"
                        )
                print(f"  - Delayed technology entries: {len(report.technology_delays)}")
        elif verbose:
            print("[Step 4] Skipping bottleneck analysis (solution not feasible)")

        # ---------------------------------------------------------------------
        # Step 5: Export Results
        # ---------------------------------------------------------------------
        if verbose:
            print(f"\n[Step 5] Exporting results to {settings.output_dir}...")

        risky = (
            risk_weighted_materials(config, provider) if provider is not None else []
        )
        reporting.export_solution_report(
            solution,
            config,
            settings.output_dir,
            report,
            start_year=start_year,
            risky_materials=risky,
        )
        if args.plot:
            for path in plot_results(settings.output_dir, settings.binding_threshold):
                if verbose:
                    print(f"  - Figure: {path}")

        sensitivity = None
        if args.sensitivity:
            if verbose:
                print("[Step 6] Running material sensitivity sweep...")
            sensitivity = run_sensitivity(
                config,
                solution,
                material_sweep(config),
                settings=settings,
                max_workers=args.workers,
            )
            reporting.export_sensitivity_table(sensitivity, settings.output_dir)

        comparison = None
        if args.compare:
            if verbose:
                print("[Step 7] Comparing scenarios...")
            comparison = compare_scenarios(base, settings=settings)
            reporting.export_comparison_report(comparison, settings.output_dir)
            if verbose:
                for line in comparison["insights"]:
                    print(f"  - {line}")

        if verbose:
            print("\n[Done]")

        return {
            "status": solution.status.value,
            "solution": solution,
            "report": report,
            "sensitivity": sensitivity,
            "comparison": comparison,
        }

    finally:
        if verbose:
            print("\n[Audit] Checking for unused configuration parameters...")
            constants.report_unused()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    constants_path = Path(args.constants) if args.constants else DEFAULT_CONSTANTS_PATH

    try:
        result = run_pipeline(args, constants_path)

        if result["status"] in ("converged", "DRY_RUN"):
            return 0
        print(f"Planner returned status: {result['status']}", file=sys.stderr)
        return 1

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except (InvalidConfigurationError, ValueError, KeyError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 3
    except SolverUnavailableError as e:
        print(f"Solver error: {e}", file=sys.stderr)
        return 4


if __name__ == "__main__":
    sys.exit(main())
