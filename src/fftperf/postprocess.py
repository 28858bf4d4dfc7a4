"""
Post-processing of raw runs into derived files.

Raw datasets are never modified. For each dataset of a run a summary file
is derived:

    <run>/<dataset>.mdat     token  size  median  low  high  gflops

and for each (reference, comparison, dataset) triple a comparison file:

    <out>/<ref>-<other>-<dataset>.sdat   token  size  speedup  low  high  pval

Speedup is median(reference) / median(other). Only tokens present in both
runs are compared. Dataset metadata is copied verbatim into every derived
file header.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from . import stats
from .problem import Problem
from .samples import Sample, SampleStore, load_run, split_header, write_header

SUMMARY_SUFFIX = ".mdat"
COMPARISON_SUFFIX = ".sdat"


@dataclass
class SummaryRow:
    """Median and confidence bounds of one problem in one run."""
    token: str
    size: int
    median: float
    low: float
    high: float
    gflops: float


@dataclass
class ComparisonRow:
    """Speedup of one problem between a reference and a comparison run."""
    token: str
    size: int
    speedup: float
    low: float
    high: float
    pval: float


def _gflops(sample: Sample, median_ms: float) -> float:
    try:
        flops = Problem.from_token(sample.token).flops
    except ValueError:
        return 0.0
    if median_ms <= 0:
        return 0.0
    return flops / (1e6 * median_ms)


def summarize_store(
    store: SampleStore,
    alpha: float = stats.DEFAULT_ALPHA,
    nboot: int = stats.DEFAULT_NBOOT,
    seed: Optional[int] = None,
) -> List[SummaryRow]:
    """
    Median and bootstrap interval for every sample of a dataset.

    Samples without timings are left out.

    Returns:
        Rows in size order.
    """
    rows = []
    for sample in store.sorted_samples():
        if not sample.times:
            continue
        center = sample.median
        low, high = stats.confidence_interval(sample.times, alpha, nboot, seed)
        rows.append(SummaryRow(
            token=sample.token,
            size=sample.size,
            median=center,
            low=low,
            high=high,
            gflops=_gflops(sample, center),
        ))
    return rows


def compare_stores(
    reference: SampleStore,
    other: SampleStore,
    alpha: float = stats.DEFAULT_ALPHA,
    nboot: int = stats.DEFAULT_NBOOT,
    seed: Optional[int] = None,
) -> List[ComparisonRow]:
    """
    Speedup rows for the tokens present in both datasets.

    Tokens missing from either side are skipped without error.

    Returns:
        Rows in size order.
    """
    rows = []
    for ref_sample in reference.sorted_samples():
        other_sample = other.get(ref_sample.token)
        if other_sample is None or not other_sample.times or not ref_sample.times:
            continue
        low, high = stats.ratio_confidence_interval(
            ref_sample.times, other_sample.times, alpha, nboot, seed
        )
        rows.append(ComparisonRow(
            token=ref_sample.token,
            size=ref_sample.size,
            speedup=stats.speedup(ref_sample.times, other_sample.times),
            low=low,
            high=high,
            pval=stats.median_test(ref_sample.times, other_sample.times),
        ))
    return rows


def _write_rows(path: Path, metadata: Dict, rows: Sequence, fields: Sequence[str]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        write_header(f, metadata)
        for row in rows:
            f.write("\t".join(str(getattr(row, name)) for name in fields) + "\n")
    return path


SUMMARY_FIELDS = ("token", "size", "median", "low", "high", "gflops")
COMPARISON_FIELDS = ("token", "size", "speedup", "low", "high", "pval")


def write_summaries(
    run_dir: Union[str, Path],
    alpha: float = stats.DEFAULT_ALPHA,
    nboot: int = stats.DEFAULT_NBOOT,
    seed: Optional[int] = None,
) -> List[Path]:
    """
    Write a .mdat file next to every dataset of a run.

    Returns:
        Paths written.
    """
    run_dir = Path(run_dir)
    written = []
    for name, store in load_run(run_dir).items():
        rows = summarize_store(store, alpha, nboot, seed)
        path = run_dir / f"{name}{SUMMARY_SUFFIX}"
        written.append(_write_rows(path, store.metadata, rows, SUMMARY_FIELDS))
    return written


def comparison_path(out_dir: Path, reference_dir: Path, other_dir: Path, dataset: str) -> Path:
    return Path(out_dir) / f"{reference_dir.name}-{other_dir.name}-{dataset}{COMPARISON_SUFFIX}"


def write_comparisons(
    reference_dir: Union[str, Path],
    other_dirs: Sequence[Union[str, Path]],
    out_dir: Optional[Union[str, Path]] = None,
    alpha: float = stats.DEFAULT_ALPHA,
    nboot: int = stats.DEFAULT_NBOOT,
    seed: Optional[int] = None,
) -> List[Path]:
    """
    Write one .sdat file per (reference, other, dataset) triple.

    Datasets missing from a comparison run are skipped.

    Args:
        reference_dir: Reference run.
        other_dirs: Runs compared against the reference.
        out_dir: Destination; defaults to each comparison run directory.

    Returns:
        Paths written.
    """
    reference_dir = Path(reference_dir)
    reference = load_run(reference_dir)
    written = []
    for other_dir in other_dirs:
        other_dir = Path(other_dir)
        other = load_run(other_dir)
        dest = Path(out_dir) if out_dir is not None else other_dir
        for name, ref_store in reference.items():
            if name not in other:
                continue
            rows = compare_stores(ref_store, other[name], alpha, nboot, seed)
            path = comparison_path(dest, reference_dir, other_dir, name)
            written.append(_write_rows(path, ref_store.metadata, rows, COMPARISON_FIELDS))
    return written


def _read_rows(path: Union[str, Path], cls, fields: Sequence[str]):
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        metadata, lines = split_header(f.readlines())
    rows = []
    for line in lines:
        values = line.split("\t")
        kwargs = {"token": values[0], "size": int(values[1])}
        for name, value in zip(fields[2:], values[2:]):
            kwargs[name] = float(value)
        rows.append(cls(**kwargs))
    return metadata, rows


def load_summary(path: Union[str, Path]):
    """Read a .mdat file; returns (metadata, rows)."""
    return _read_rows(path, SummaryRow, SUMMARY_FIELDS)


def load_comparison(path: Union[str, Path]):
    """Read a .sdat file; returns (metadata, rows)."""
    return _read_rows(path, ComparisonRow, COMPARISON_FIELDS)
