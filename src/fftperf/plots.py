"""
Figures for post-processed runs.

Renders the derived .mdat / .sdat files; raw datasets are not read here.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Sequence, Union

import matplotlib
matplotlib.use("Agg")
import matplotlib.colors as mcolors
import matplotlib.pyplot as plt
import numpy as np

from .postprocess import (
    COMPARISON_SUFFIX,
    SUMMARY_SUFFIX,
    load_comparison,
    load_summary,
)

COLORS = list(mcolors.TABLEAU_COLORS.values())


class RunCharts:
    """Charts of median timings and speedups against problem size."""

    @staticmethod
    def plot_medians(
        run_dirs: Sequence[Union[str, Path]],
        dataset: str,
        save_path: Optional[Path] = None,
    ) -> plt.Figure:
        """
        Median time vs size, one curve per run, with confidence bars.

        Args:
            run_dirs: Runs that have been post-processed.
            dataset: Dataset name.
            save_path: Path to save figure.

        Returns:
            Matplotlib Figure
        """
        fig, ax = plt.subplots(figsize=(10, 6))
        metadata = {}

        for i, run_dir in enumerate(run_dirs):
            path = Path(run_dir) / f"{dataset}{SUMMARY_SUFFIX}"
            if not path.exists():
                continue
            metadata, rows = load_summary(path)
            if not rows:
                continue
            x = np.array([r.size for r in rows])
            y = np.array([r.median for r in rows])
            err = np.array([[r.median - r.low for r in rows],
                            [r.high - r.median for r in rows]])
            ax.errorbar(x, y, yerr=err, marker='o', capsize=3,
                        color=COLORS[i % len(COLORS)], label=Path(run_dir).name)

        ax.set_xscale('log', base=2)
        ax.set_yscale('log')
        ax.set_xlabel(metadata.get('xlabel', 'Problem size'), fontsize=12)
        ax.set_ylabel(metadata.get('ylabel', 'Time (ms)'), fontsize=12)
        ax.set_title(metadata.get('title', dataset), fontsize=14, fontweight='bold')
        ax.grid(True, alpha=0.3)
        if ax.get_legend_handles_labels()[0]:
            ax.legend()

        plt.tight_layout()
        if save_path:
            fig.savefig(save_path, dpi=150, bbox_inches='tight')
        return fig

    @staticmethod
    def plot_speedup(
        comparison_file: Union[str, Path],
        save_path: Optional[Path] = None,
    ) -> plt.Figure:
        """
        Speedup vs size from one comparison file.

        Points with a significant median difference (p < 0.05) are filled.
        """
        metadata, rows = load_comparison(comparison_file)
        fig, ax = plt.subplots(figsize=(10, 6))

        if not rows:
            ax.text(0.5, 0.5, "No data available", ha='center', va='center',
                    transform=ax.transAxes)
            if save_path:
                fig.savefig(save_path, dpi=150, bbox_inches='tight')
            return fig

        x = np.array([r.size for r in rows])
        y = np.array([r.speedup for r in rows])
        err = np.array([[r.speedup - r.low for r in rows],
                        [r.high - r.speedup for r in rows]])
        significant = np.array([r.pval < 0.05 for r in rows])

        ax.errorbar(x, y, yerr=err, fmt='none', ecolor=COLORS[0], capsize=3)
        ax.scatter(x[significant], y[significant], color=COLORS[0], zorder=3,
                   label='significant')
        ax.scatter(x[~significant], y[~significant], facecolors='none',
                   edgecolors=COLORS[0], zorder=3, label='not significant')
        ax.axhline(1.0, color='gray', linestyle='--', linewidth=1)

        ax.set_xscale('log', base=2)
        ax.set_xlabel(metadata.get('xlabel', 'Problem size'), fontsize=12)
        ax.set_ylabel('Speedup (reference / comparison)', fontsize=12)
        ax.set_title(Path(comparison_file).stem, fontsize=14, fontweight='bold')
        ax.grid(True, alpha=0.3)
        ax.legend()

        plt.tight_layout()
        if save_path:
            fig.savefig(save_path, dpi=150, bbox_inches='tight')
        return fig


def plot_runs(
    reference_dir: Union[str, Path],
    other_dirs: Sequence[Union[str, Path]],
    out_dir: Union[str, Path],
    comparison_dir: Optional[Union[str, Path]] = None,
) -> List[Path]:
    """
    Render every median and speedup figure of a post-processed set of runs.

    Args:
        reference_dir: Reference run.
        other_dirs: Comparison runs.
        out_dir: Directory receiving PNG files.
        comparison_dir: Where .sdat files were written (default: comparison runs).

    Returns:
        Paths of the figures written.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    runs = [Path(reference_dir)] + [Path(d) for d in other_dirs]
    written = []

    datasets = sorted({p.stem for run in runs for p in run.glob(f"*{SUMMARY_SUFFIX}")})
    for dataset in datasets:
        path = out_dir / f"{dataset}.png"
        plt.close(RunCharts.plot_medians(runs, dataset, save_path=path))
        written.append(path)

    search_dirs = [Path(comparison_dir)] if comparison_dir else runs[1:]
    for directory in search_dirs:
        for sdat in sorted(directory.glob(f"{Path(reference_dir).name}-*{COMPARISON_SUFFIX}")):
            path = out_dir / f"{sdat.stem}.png"
            plt.close(RunCharts.plot_speedup(sdat, save_path=path))
            written.append(path)

    return written
