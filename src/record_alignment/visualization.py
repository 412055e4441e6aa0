from __future__ import annotations

from pathlib import Path
from typing import Protocol

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
from matplotlib.figure import Figure  # noqa: E402

from record_alignment.alignment.solver import Solution  # noqa: E402
from record_alignment.records import RecordSet  # noqa: E402

EPS = 1e-12


class Viewer(Protocol):
    def show(self, records: RecordSet, solution: Solution) -> object: ...

    def close_all(self) -> None: ...


def plot_record_section(
    records: RecordSet,
    *,
    title: str = "Record Section",
    labels: list[str] | None = None,
) -> Figure:
    """Plot each record normalized to unit peak, offset by its index."""
    height = max(3.0, 0.4 * len(records) + 1.5)
    fig, ax = plt.subplots(figsize=(10, height))
    if len(records) == 0:
        ax.text(0.5, 0.5, "No records", ha="center", va="center")
    for idx, rec in enumerate(records):
        peak = float(np.max(np.abs(rec.data))) if rec.npts else 0.0
        trace = rec.data / (peak + EPS) * 0.45
        ax.plot(rec.times(), idx + trace, color="k", linewidth=0.8)
    ax.set_yticks(range(len(records)))
    ax.set_yticklabels(labels if labels is not None else records.names)
    ax.set_ylim(-1, len(records))
    ax.invert_yaxis()
    ax.set_xlabel("Time")
    ax.set_title(title)
    ax.grid(True, axis="x", linestyle=":", linewidth=0.5, alpha=0.6)
    fig.tight_layout()
    return fig


class RecordSectionViewer:
    """Plot aligned records for review, optionally saving each plot as PNG."""

    def __init__(self, plot_dir: Path | None = None) -> None:
        self.plot_dir = plot_dir
        self.figures: list[Figure] = []
        self.saved: list[Path] = []
        self._count = 0

    def show(self, records: RecordSet, solution: Solution) -> Figure:
        self._count += 1
        labels = [
            f"{name} ({pol:+d})"
            for name, pol in zip(records.names, solution.polarities, strict=True)
        ]
        fig = plot_record_section(
            records,
            title=(
                f"Aligned records (std={solution.std:.3g}, "
                f"clusters={solution.cluster_count})"
            ),
            labels=labels,
        )
        if self.plot_dir is not None:
            path = self.plot_dir / f"alignment_{self._count:02d}.png"
            path.parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(path, dpi=150)
            self.saved.append(path)
        self.figures.append(fig)
        return fig

    def close_all(self) -> None:
        for fig in self.figures:
            plt.close(fig)
        self.figures.clear()


def format_solution_table(records: RecordSet, solution: Solution) -> str:
    """Plain-text summary of a solution for terminal review."""
    width = max([4, *(len(n) for n in records.names)])
    lines = [f"{'name':<{width}}  {'arrival':>10}  {'error':>10}  pol  cluster"]
    for idx, name in enumerate(records.names):
        err = solution.errors[idx]
        err_text = "-" if np.isnan(err) else f"{err:10.4f}"
        lines.append(
            f"{name:<{width}}  {solution.arrivals[idx]:10.4f}  {err_text:>10}  "
            f"{int(solution.polarities[idx]):+d}   {int(solution.clusters[idx])}"
        )
    lines.append(
        f"mean={solution.mean:.4g} std={solution.std:.4g} "
        f"clusters={solution.cluster_count} iterations={solution.iterations}"
    )
    lines.extend(f"warning: {w}" for w in solution.warnings)
    return "\n".join(lines)
