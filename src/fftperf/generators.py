"""
Problem generators.

Generators lazily enumerate the problem space. Every generator can be
iterated more than once; each call to generate_problems() re-derives the
same sequence from its configuration.

- RadixGenerator: powers of a radix per dimension, crossed with batches
- SuiteGenerator: named suites authored in a YAML file
- TokenListGenerator: explicit problem tokens
- FilteredGenerator: wraps another generator and narrows its output
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Union
import itertools

import yaml

from .problem import Direction, FieldKind, Placement, Precision, Problem


class ProblemGenerator(ABC):
    """
    Abstract source of problems.

    Subclasses implement generate_problems(), which must return a fresh
    iterator on every call.
    """

    @abstractmethod
    def generate_problems(self) -> Iterator[Problem]:
        """
        Enumerate problems.

        Yields:
            Problem values in a deterministic order.
        """
        pass

    def __iter__(self) -> Iterator[Problem]:
        return self.generate_problems()


def radix_lengths(radix: int, lo: int, hi: int) -> List[int]:
    """
    Powers of radix within [lo, hi].

    Args:
        radix: Base, at least 2.
        lo: Smallest allowed length.
        hi: Largest allowed length.

    Returns:
        Ascending list of lengths.
    """
    if radix < 2:
        raise ValueError("radix must be at least 2")
    lengths = []
    n = 1
    while n <= hi:
        if n >= lo:
            lengths.append(n)
        n *= radix
    return lengths


class RadixGenerator(ProblemGenerator):
    """
    Enumerate power-of-radix lengths over 1-3 dimensions.

    For each requested dimension the per-dimension length lists are
    combined as a cartesian product, then crossed with batch counts and
    the transform attribute lists.
    """

    def __init__(
        self,
        radix: int = 2,
        dimensions: Sequence[int] = (1,),
        xmin: int = 2,
        xmax: int = 1024,
        ymin: int = 2,
        ymax: int = 1024,
        zmin: int = 2,
        zmax: int = 1024,
        batches: Sequence[int] = (1,),
        directions: Sequence[Direction] = (Direction.FORWARD,),
        fields: Sequence[FieldKind] = (FieldKind.COMPLEX,),
        placements: Sequence[Placement] = (Placement.INPLACE,),
        precisions: Sequence[Precision] = (Precision.SINGLE,),
    ):
        for dim in dimensions:
            if dim not in (1, 2, 3):
                raise ValueError(f"Unsupported dimension: {dim}")
        self.radix = radix
        self.dimensions = tuple(dimensions)
        self.bounds = ((xmin, xmax), (ymin, ymax), (zmin, zmax))
        self.batches = tuple(batches)
        self.directions = tuple(directions)
        self.fields = tuple(fields)
        self.placements = tuple(placements)
        self.precisions = tuple(precisions)

    def generate_problems(self) -> Iterator[Problem]:
        per_dim = [radix_lengths(self.radix, lo, hi) for lo, hi in self.bounds]
        for dim in self.dimensions:
            for lengths in itertools.product(*per_dim[:dim]):
                for nbatch, direction, field, placement, precision in itertools.product(
                    self.batches,
                    self.directions,
                    self.fields,
                    self.placements,
                    self.precisions,
                ):
                    yield Problem(
                        lengths=lengths,
                        direction=direction,
                        field=field,
                        placement=placement,
                        precision=precision,
                        nbatch=nbatch,
                    )

    def __repr__(self) -> str:
        return (
            f"RadixGenerator(radix={self.radix}, dimensions={list(self.dimensions)}, "
            f"batches={list(self.batches)})"
        )


def _parse_suite_entry(entry: Union[str, Dict[str, Any]]) -> Problem:
    """A suite entry is either a token or a problem mapping."""
    if isinstance(entry, str):
        return Problem.from_token(entry)
    return Problem.from_dict(entry)


def load_suite_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a suite definition file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file has no 'suites' mapping.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Suite file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    suites = data.get("suites")
    if not isinstance(suites, dict):
        raise ValueError(f"Suite file has no 'suites' mapping: {path}")
    return suites


def builtin_suite_path() -> Path:
    """Path of the suite file shipped with the package."""
    return Path(str(resources.files("fftperf").joinpath("suites.yaml")))


def available_suites(path: Optional[Union[str, Path]] = None) -> List[str]:
    """Names of the suites defined in a suite file (builtin file by default)."""
    return sorted(load_suite_file(path or builtin_suite_path()).keys())


class SuiteGenerator(ProblemGenerator):
    """
    Named collection of explicitly authored problems.

    Suite file format:

        suites:
          pow2_1d:
            title: "1D power of two"
            problems:
              - complex_forward_len_64_single_ip_batch_1
              - {length: [128], precision: double}

    The suite is looked up at construction so that a missing file or
    unknown suite fails before any work starts.
    """

    def __init__(self, path: Union[str, Path], suite: str):
        self.path = Path(path)
        self.suite = suite
        suites = load_suite_file(self.path)
        if suite not in suites:
            raise ValueError(
                f"Unknown suite '{suite}' in {self.path}; "
                f"available: {', '.join(sorted(suites))}"
            )
        definition = suites[suite]
        if isinstance(definition, list):
            definition = {"problems": definition}
        self.title = definition.get("title", suite)
        self.caption = definition.get("caption", "")
        self._entries = list(definition.get("problems", []))

    @classmethod
    def builtin(cls, suite: str) -> "SuiteGenerator":
        """Suite from the packaged suites.yaml."""
        return cls(builtin_suite_path(), suite)

    def generate_problems(self) -> Iterator[Problem]:
        for entry in self._entries:
            yield _parse_suite_entry(entry)

    def __repr__(self) -> str:
        return f"SuiteGenerator({self.suite!r}, {len(self._entries)} problems)"


class TokenListGenerator(ProblemGenerator):
    """Problems decoded from an explicit list of tokens."""

    def __init__(self, tokens: Iterable[str]):
        self.tokens = list(tokens)
        # Decode eagerly so bad tokens are reported up front
        for token in self.tokens:
            Problem.from_token(token)

    def generate_problems(self) -> Iterator[Problem]:
        for token in self.tokens:
            yield Problem.from_token(token)


class FilteredGenerator(ProblemGenerator):
    """
    Wraps a generator and yields only matching problems.

    An empty allow-set for an attribute means that attribute is not
    constrained.
    """

    def __init__(
        self,
        generator: ProblemGenerator,
        directions: Iterable[Direction] = (),
        placements: Iterable[Placement] = (),
        fields: Iterable[FieldKind] = (),
        precisions: Iterable[Precision] = (),
        dimensions: Iterable[int] = (),
    ):
        self.generator = generator
        self.directions = frozenset(directions)
        self.placements = frozenset(placements)
        self.fields = frozenset(fields)
        self.precisions = frozenset(precisions)
        self.dimensions = frozenset(dimensions)

    def accepts(self, problem: Problem) -> bool:
        """Check a problem against every configured allow-set."""
        checks = (
            (self.directions, problem.direction),
            (self.placements, problem.placement),
            (self.fields, problem.field),
            (self.precisions, problem.precision),
            (self.dimensions, problem.dimension),
        )
        return all(not allowed or value in allowed for allowed, value in checks)

    def generate_problems(self) -> Iterator[Problem]:
        for problem in self.generator.generate_problems():
            if self.accepts(problem):
                yield problem

    def __repr__(self) -> str:
        return f"FilteredGenerator({self.generator!r})"
