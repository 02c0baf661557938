#!/usr/bin/env python3
"""
Figures for an exported plan.

Reads build_schedule.csv and material_utilization.csv from a results
directory and renders:
  - build_schedule.png: stacked committed capacity per period and technology
  - material_utilization.png: utilization heatmap, binding cells outlined

Usage:
    python -m scgep.plotting results/20260202_144204 [--threshold 0.9]
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.patches import Rectangle
from matplotlib.ticker import FuncFormatter

from scgep.config.settings import DEFAULT_BINDING_THRESHOLD

logger = logging.getLogger(__name__)

# Style configuration
STYLE = "seaborn-v0_8-whitegrid"
RC_PARAMS = {
    "font.family": "serif",
    "font.size": 11,
    "axes.titlesize": 14,
    "axes.labelsize": 12,
    "figure.dpi": 150,
}

TECH_COLORS = ["#4A90D9", "#7CB342", "#F5A623", "#D0021B", "#9013FE", "#50E3C2"]


def load_results(results_dir: Path | str) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Load the schedule and utilization tables written by the exporter."""
    results_dir = Path(results_dir)
    frames = []
    for name in ("build_schedule.csv", "material_utilization.csv"):
        path = results_dir / name
        if not path.exists():
            raise FileNotFoundError(f"Results file not found: {path}")
        frames.append(pd.read_csv(path))
    return frames[0], frames[1]


def _x_axis(frame: pd.DataFrame) -> tuple[str, str]:
    if "year" in frame.columns and frame["year"].notna().all():
        return "year", "Year"
    return "period", "Period"


def plot_build_schedule(schedule: pd.DataFrame, output_path: Path | str) -> Path:
    """Stacked bar chart of committed capacity per period and technology."""
    output_path = Path(output_path)
    column, label = _x_axis(schedule)
    pivot = schedule.pivot_table(
        index=column,
        columns="technology",
        values="capacity_committed",
        aggfunc="sum",
        fill_value=0.0,
    ).sort_index()

    with plt.style.context(STYLE), plt.rc_context(RC_PARAMS):
        fig, ax = plt.subplots(figsize=(12, 6))
        bottom = np.zeros(len(pivot))
        x = pivot.index.to_numpy()
        for i, tech in enumerate(pivot.columns):
            heights = pivot[tech].to_numpy()
            ax.bar(
                x,
                heights,
                bottom=bottom,
                label=tech,
                color=TECH_COLORS[i % len(TECH_COLORS)],
                alpha=0.85,
            )
            bottom += heights

        ax.set_xlabel(label, fontweight="bold")
        ax.set_ylabel("Capacity Committed", fontweight="bold")
        ax.yaxis.set_major_formatter(FuncFormatter(lambda v, _: f"{v:,.0f}"))
        if len(pivot.columns):
            ax.legend(loc="upper left", framealpha=0.9)
        fig.suptitle("Build Schedule by Technology", fontsize=14, fontweight="bold")
        fig.tight_layout()
        fig.savefig(output_path, dpi=300, bbox_inches="tight", facecolor="white")
        plt.close(fig)

    logger.info("Saved %s", output_path)
    return output_path


def plot_utilization_heatmap(
    utilization: pd.DataFrame,
    output_path: Path | str,
    threshold: float = DEFAULT_BINDING_THRESHOLD,
) -> Path:
    """Material x period utilization heatmap; cells at or above threshold are outlined."""
    output_path = Path(output_path)
    column, label = _x_axis(utilization)
    pivot = utilization.pivot_table(
        index="material", columns=column, values="utilization", aggfunc="max"
    ).sort_index()
    data = pivot.to_numpy()

    with plt.style.context(STYLE), plt.rc_context(RC_PARAMS):
        fig, ax = plt.subplots(figsize=(12, max(3.0, 0.45 * len(pivot) + 1.5)))
        image = ax.imshow(data, aspect="auto", cmap="YlOrRd", vmin=0.0, vmax=1.0)
        ax.grid(False)
        ax.set_xticks(range(len(pivot.columns)))
        ax.set_xticklabels([str(c) for c in pivot.columns], rotation=45, ha="right")
        ax.set_yticks(range(len(pivot.index)))
        ax.set_yticklabels(pivot.index)
        ax.set_xlabel(label, fontweight="bold")

        for i, j in zip(*np.nonzero(data >= threshold)):
            ax.add_patch(
                Rectangle(
                    (j - 0.5, i - 0.5), 1, 1, fill=False, edgecolor="black", linewidth=1.5
                )
            )

        fig.colorbar(image, ax=ax, label="Utilization")
        fig.suptitle(
            f"Material Utilization (binding at {threshold:.0%})",
            fontsize=14,
            fontweight="bold",
        )
        fig.tight_layout()
        fig.savefig(output_path, dpi=300, bbox_inches="tight", facecolor="white")
        plt.close(fig)

    logger.info("Saved %s", output_path)
    return output_path


def plot_results(
    results_dir: Path | str, threshold: float = DEFAULT_BINDING_THRESHOLD
) -> list[Path]:
    """Render both figures next to the exported tables."""
    results_dir = Path(results_dir)
    schedule, utilization = load_results(results_dir)
    return [
        plot_build_schedule(schedule, results_dir / "build_schedule.png"),
        plot_utilization_heatmap(
            utilization, results_dir / "material_utilization.png", threshold
        ),
    ]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Plot an exported SC-GEP plan")
    parser.add_argument("results_dir", type=Path, help="Path to results directory")
    parser.add_argument(
        "--threshold",
        type=float,
        default=DEFAULT_BINDING_THRESHOLD,
        help="Utilization outlined as binding (default: 0.95)",
    )
    args = parser.parse_args(argv)

    if not args.results_dir.exists():
        print(f"Error: Results directory not found: {args.results_dir}")
        return 1

    for path in plot_results(args.results_dir, args.threshold):
        print(f"Saved: {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
