"""
Timing collection.

Timer drives the rider over a problem sequence and fills one SampleStore
per dataset in every output directory. One output directory is used per
library; in single-library mode there is exactly one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from .launcher import require_executable
from .problem import Placement, Problem
from .rider import MeasurementError, Rider, RiderEnvironment
from .samples import SampleStore
from .specs import write_specs

SKIPPED_FILE = "skipped.txt"


def dataset_metadata(
    problem: Problem,
    suite_title: Optional[str] = None,
    caption: str = "",
) -> Dict[str, str]:
    """
    Default metadata of the dataset a problem belongs to.

    Problems from a named suite carry the suite title as a prefix and the
    suite caption.
    """
    placement = "in-place" if problem.placement is Placement.INPLACE else "out-of-place"
    title = (
        f"{problem.dimension}D {problem.field.value} {problem.direction.value}, "
        f"{placement}, {problem.precision.value} precision"
    )
    if suite_title:
        title = f"{suite_title}: {title}"
    return {
        "title": title,
        "caption": caption,
        "figtype": "linegraph",
        "xlabel": "Problem size",
        "ylabel": "Time (ms)",
    }


@dataclass
class TimerResult:
    """
    Outcome of one collection pass.

    Attributes:
        out_dirs: Run directories written, one per library.
        measured: Tokens measured successfully, in generator order.
        failed: Token -> failure reason for skipped problems.
    """
    out_dirs: List[Path]
    measured: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.measured) + len(self.failed)

    def summary(self) -> str:
        return (
            f"{len(self.measured)}/{self.total} problems measured, "
            f"{len(self.failed)} skipped"
        )


class Timer:
    """
    Repeatedly invokes the rider, one problem at a time.

    A failed problem is recorded and the pass continues with the next one.
    """

    def __init__(
        self,
        rider: Rider,
        env: Optional[RiderEnvironment] = None,
        metadata_factory: Callable[[Problem], Dict[str, str]] = dataset_metadata,
        query_device: bool = True,
        verbose: bool = True,
    ):
        """
        Initialize timer.

        Args:
            rider: Configured rider (executable, trial count, libraries).
            env: Solution-map configuration passed to every call.
            metadata_factory: Metadata for newly created datasets.
            query_device: Include device query output in specs.txt.
            verbose: Print progress.
        """
        self.rider = rider
        self.env = env or RiderEnvironment()
        self.metadata_factory = metadata_factory
        self.query_device = query_device
        self.verbose = verbose

    def run(
        self,
        problems: Iterable[Problem],
        out_dirs: Sequence[Union[str, Path]],
    ) -> TimerResult:
        """
        Measure every problem and write the datasets.

        Args:
            problems: Problems to measure, usually a filtered generator.
            out_dirs: One output directory per library.

        Returns:
            TimerResult with per-problem outcomes.

        Raises:
            FileNotFoundError: If the rider executable does not exist.
            ValueError: If the number of output directories does not match
                the number of libraries.
        """
        require_executable(self.rider.executable, "rider")
        out_dirs = [Path(d) for d in out_dirs]
        if len(out_dirs) != self.rider.nlibs:
            raise ValueError(
                f"{self.rider.nlibs} output directories required, got {len(out_dirs)}"
            )

        for out_dir in out_dirs:
            out_dir.mkdir(parents=True, exist_ok=True)
            write_specs(out_dir, query_device=self.query_device)

        stores: List[Dict[str, SampleStore]] = [{} for _ in out_dirs]
        result = TimerResult(out_dirs=out_dirs)

        if self.verbose:
            print(f"\n{'=' * 60}")
            print(f"Timing with {self.rider.executable} ({self.rider.ntrial} trials)")
            for out_dir in out_dirs:
                print(f"  output: {out_dir}")
            print(f"{'=' * 60}\n")

        for i, problem in enumerate(problems):
            if self.verbose:
                print(f"[{i + 1}] {problem.token}")

            try:
                output = self.rider.measure(problem, self.env)
            except MeasurementError as e:
                self._record_failure(result, problem, str(e))
                continue

            for out_dir, lib_stores, times in zip(out_dirs, stores, output.times):
                store = self._store_for(lib_stores, out_dir, problem)
                store.add(problem, times)
                store.save(out_dir)

            result.measured.append(problem.token)

        if self.verbose:
            print(f"\n{'=' * 60}")
            print(f"Timing complete: {result.summary()}")
            print(f"{'=' * 60}\n")

        return result

    def _store_for(
        self,
        lib_stores: Dict[str, SampleStore],
        out_dir: Path,
        problem: Problem,
    ) -> SampleStore:
        name = problem.dataset_name
        store = lib_stores.get(name)
        if store is None:
            existing = out_dir / f"{name}.dat"
            if existing.exists():
                store = SampleStore.load(existing)
            else:
                store = SampleStore(name, self.metadata_factory(problem))
            lib_stores[name] = store
        return store

    def _record_failure(self, result: TimerResult, problem: Problem, reason: str) -> None:
        result.failed[problem.token] = reason
        if self.verbose:
            print(f"  Warning: {problem.token} skipped - {reason}")
        for out_dir in result.out_dirs:
            with open(out_dir / SKIPPED_FILE, 'a', encoding='utf-8') as f:
                f.write(f"{problem.token}\t{reason}\n")
