"""
Sample storage for benchmark runs.

A run directory owns one SampleStore ("dat" file) per dataset. Files are
plain text so that runs can be inspected and diffed:

    # title: 1D complex forward inplace single
    # caption: ''
    complex_forward_len_64_single_ip_batch_1	64	64	3	0.011	0.010	0.012

The '# ' lines hold the metadata as YAML; each remaining row is
token, size, elements, sample count, then the raw timings in ms.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, TextIO, Tuple, Union
import warnings

import numpy as np
import yaml

from .problem import Problem

DAT_SUFFIX = ".dat"


@dataclass
class Sample:
    """
    Raw timings of one problem in one run.

    Attributes:
        token: Problem token (join key across runs).
        size: Product of the problem lengths.
        elements: Scalar elements transformed per execution.
        label: Display label.
        times: Timings in milliseconds, in collection order.
    """
    token: str
    size: int
    elements: int
    label: str = ""
    times: List[float] = field(default_factory=list)

    @classmethod
    def for_problem(cls, problem: Problem) -> "Sample":
        return cls(
            token=problem.token,
            size=problem.size,
            elements=problem.elements,
            label=problem.label,
        )

    def extend(self, times) -> None:
        """Append timings; existing timings are never modified."""
        self.times.extend(float(t) for t in times)

    @property
    def median(self) -> float:
        if not self.times:
            raise ValueError(f"No timings recorded for {self.token}")
        return float(np.median(self.times))

    def __len__(self) -> int:
        return len(self.times)


def write_header(f: TextIO, metadata: Dict[str, Any]) -> None:
    """Write metadata as '# '-prefixed YAML lines."""
    if not metadata:
        return
    text = yaml.safe_dump(metadata, default_flow_style=False, sort_keys=False)
    for line in text.splitlines():
        f.write(f"# {line}\n")


def split_header(lines: List[str]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Separate the metadata header from the data rows.

    Returns:
        (metadata, data_lines) with blank lines dropped.
    """
    header = []
    rows = []
    for line in lines:
        if line.startswith("#"):
            header.append(line[2:] if line.startswith("# ") else line[1:])
        elif line.strip():
            rows.append(line.rstrip("\n"))
    metadata = yaml.safe_load("\n".join(header)) if header else None
    return metadata or {}, rows


class SampleStore:
    """
    Token -> Sample mapping for one named dataset of one run.

    Iteration is ordered by ascending problem size (ties by token),
    regardless of insertion order.
    """

    def __init__(self, name: str, metadata: Optional[Dict[str, Any]] = None):
        self.name = name
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self._samples: Dict[str, Sample] = {}

    def add(self, problem: Problem, times) -> Sample:
        """
        Append timings for a problem, creating its Sample if needed.

        Args:
            problem: Problem that was measured.
            times: Timings in milliseconds.

        Returns:
            The (updated) Sample.
        """
        sample = self._samples.get(problem.token)
        if sample is None:
            sample = Sample.for_problem(problem)
            self._samples[problem.token] = sample
        sample.extend(times)
        return sample

    def get(self, token: str) -> Optional[Sample]:
        return self._samples.get(token)

    def tokens(self) -> List[str]:
        """Tokens in sorted (size) order."""
        return [s.token for s in self.sorted_samples()]

    def sorted_samples(self) -> List[Sample]:
        """Samples ordered by ascending size."""
        return sorted(self._samples.values(), key=lambda s: (s.size, s.token))

    def __iter__(self) -> Iterator[Sample]:
        return iter(self.sorted_samples())

    def __contains__(self, token: str) -> bool:
        return token in self._samples

    def __len__(self) -> int:
        return len(self._samples)

    def path_in(self, run_dir: Union[str, Path]) -> Path:
        return Path(run_dir) / f"{self.name}{DAT_SUFFIX}"

    def save(self, run_dir: Union[str, Path]) -> Path:
        """
        Write the store into a run directory.

        Returns:
            Path to the written file.
        """
        path = self.path_in(run_dir)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w', encoding='utf-8') as f:
            write_header(f, self.metadata)
            for sample in self.sorted_samples():
                row = [sample.token, str(sample.size), str(sample.elements), str(len(sample))]
                row += [repr(t) for t in sample.times]
                f.write("\t".join(row) + "\n")

        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "SampleStore":
        """
        Read a store written by save().

        Malformed rows are skipped with a warning.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Dataset file not found: {path}")

        with open(path, 'r', encoding='utf-8') as f:
            metadata, rows = split_header(f.readlines())

        store = cls(path.stem, metadata)
        for row in rows:
            fields = row.split("\t")
            try:
                token = fields[0]
                size, elements, count = int(fields[1]), int(fields[2]), int(fields[3])
                times = [float(v) for v in fields[4:4 + count]]
            except (IndexError, ValueError):
                warnings.warn(f"{path}: skipping malformed row: {row[:60]!r}")
                continue
            if len(times) != count:
                warnings.warn(f"{path}: {token} declares {count} samples, found {len(times)}")
            sample = store._samples.setdefault(
                token,
                Sample(token=token, size=size, elements=elements, label=_label_for(token)),
            )
            sample.extend(times)

        return store

    def __repr__(self) -> str:
        return f"SampleStore({self.name!r}, {len(self)} problems)"


def _label_for(token: str) -> str:
    try:
        return Problem.from_token(token).label
    except ValueError:
        return token


def list_datasets(run_dir: Union[str, Path]) -> List[str]:
    """Names of the datasets stored in a run directory."""
    return sorted(p.stem for p in Path(run_dir).glob(f"*{DAT_SUFFIX}"))


def load_run(run_dir: Union[str, Path]) -> Dict[str, SampleStore]:
    """
    Load every dataset of a run.

    Raises:
        FileNotFoundError: If the run directory does not exist.
    """
    run_dir = Path(run_dir)
    if not run_dir.is_dir():
        raise FileNotFoundError(f"Run directory not found: {run_dir}")
    return {name: SampleStore.load(run_dir / f"{name}{DAT_SUFFIX}")
            for name in list_datasets(run_dir)}
