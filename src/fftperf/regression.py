"""
Performance regression detection between runs.

A problem regresses in a comparison run when all three hold:
- it got slower (reference median < comparison median)
- the relative difference exceeds a percent threshold
- Mood's median test p-value is below a significance threshold
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence, Union

import yaml

from . import stats
from .samples import SampleStore, load_run


def relative_difference(m1: float, m2: float) -> float:
    """|m1 - m2| / m1 in percent."""
    if m1 == 0:
        return 0.0 if m2 == 0 else float("inf")
    return abs(m1 - m2) / m1 * 100.0


def is_regression(
    m1: float,
    m2: float,
    pval: float,
    percent: float,
    moods_threshold: float,
) -> bool:
    """
    Decide whether a comparison median is a regression.

    Args:
        m1: Reference median.
        m2: Comparison median.
        pval: Median test p-value.
        percent: Minimum relative slowdown in percent.
        moods_threshold: Maximum p-value.

    Returns:
        True only if slower, by more than percent, and significant.
    """
    return (
        m1 < m2
        and relative_difference(m1, m2) > percent
        and pval < moods_threshold
    )


@dataclass(frozen=True)
class Regression:
    """One flagged problem."""
    run: str
    dataset: str
    token: str
    size: int
    reference_median: float
    median: float
    percent: float
    pval: float


@dataclass
class RegressionReport:
    """
    Regressions found against one reference run.

    Attributes:
        reference: Reference run directory.
        percent: Percent threshold used.
        moods_threshold: p-value threshold used.
        compared: Number of (run, dataset, token) comparisons made.
        regressions: Flagged problems ordered by size.
    """
    reference: str
    percent: float
    moods_threshold: float
    compared: int = 0
    regressions: List[Regression] = field(default_factory=list)

    @property
    def sizes(self) -> List[int]:
        """Flagged problem sizes, de-duplicated and ascending."""
        return sorted({r.size for r in self.regressions})

    def summary(self) -> str:
        """
        Generate a text summary of the results.

        Returns:
            Multi-line summary string.
        """
        lines = [
            "=" * 100,
            f"Regressions against {self.reference} "
            f"(> {self.percent}% slower, p < {self.moods_threshold})",
            "=" * 100,
        ]
        if not self.regressions:
            lines.append(f"No regressions in {self.compared} comparisons.")
            return "\n".join(lines)

        lines.append("{:<24} {:<48} {:>10} {:>10} {:>7} {:>10}".format(
            "Dataset", "Token", "Ref (ms)", "New (ms)", "Diff%", "p-value"
        ))
        lines.append("-" * 100)
        for r in self.regressions:
            lines.append("{:<24} {:<48} {:>10.4f} {:>10.4f} {:>7.1f} {:>10.2e}".format(
                r.dataset, r.token, r.reference_median, r.median, r.percent, r.pval
            ))
        lines.append("-" * 100)
        lines.append(f"{len(self.regressions)} regressions in {self.compared} comparisons.")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        return {
            "reference": self.reference,
            "percent": self.percent,
            "moods_threshold": self.moods_threshold,
            "compared": self.compared,
            "sizes": self.sizes,
            "regressions": [asdict(r) for r in self.regressions],
        }

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def __len__(self) -> int:
        return len(self.regressions)


class RegressionDetector:
    """
    Compares a reference run against one or more other runs.

    Problems absent from a comparison run are left out silently.
    """

    def __init__(self, percent: float = 5.0, moods_threshold: float = 0.001):
        if percent < 0:
            raise ValueError("percent must be non-negative")
        if not 0 < moods_threshold <= 1:
            raise ValueError("moods_threshold must be in (0, 1]")
        self.percent = percent
        self.moods_threshold = moods_threshold

    def compare_stores(
        self,
        reference: SampleStore,
        other: SampleStore,
        run: str = "",
    ) -> List[Regression]:
        """
        Regressions of one dataset.

        Returns:
            Flagged problems in size order.
        """
        flagged = []
        for ref_sample in reference.sorted_samples():
            other_sample = other.get(ref_sample.token)
            if other_sample is None or not other_sample.times or not ref_sample.times:
                continue
            m1 = ref_sample.median
            m2 = other_sample.median
            pval = stats.median_test(ref_sample.times, other_sample.times)
            if is_regression(m1, m2, pval, self.percent, self.moods_threshold):
                flagged.append(Regression(
                    run=run,
                    dataset=reference.name,
                    token=ref_sample.token,
                    size=ref_sample.size,
                    reference_median=m1,
                    median=m2,
                    percent=relative_difference(m1, m2),
                    pval=pval,
                ))
        return flagged

    def detect(
        self,
        reference_dir: Union[str, Path],
        other_dirs: Sequence[Union[str, Path]],
    ) -> RegressionReport:
        """
        Compare every shared dataset and problem.

        Raises:
            FileNotFoundError: If a run directory is missing.
        """
        reference_dir = Path(reference_dir)
        reference = load_run(reference_dir)
        report = RegressionReport(
            reference=str(reference_dir),
            percent=self.percent,
            moods_threshold=self.moods_threshold,
        )

        found: Dict[tuple, Regression] = {}
        for other_dir in other_dirs:
            other_dir = Path(other_dir)
            other = load_run(other_dir)
            for name, ref_store in reference.items():
                if name not in other:
                    continue
                report.compared += sum(1 for token in ref_store.tokens() if token in other[name])
                for r in self.compare_stores(ref_store, other[name], run=str(other_dir)):
                    found.setdefault((r.run, r.dataset, r.token), r)

        report.regressions = sorted(found.values(), key=lambda r: (r.size, r.dataset, r.token, r.run))
        return report
