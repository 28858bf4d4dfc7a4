"""
Problem model for FFT benchmark cases.

A Problem is an immutable description of one transform handed to the
rider. Its token is the join key used across runs and the label shown in
reports.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple


class Direction(Enum):
    """Transform direction."""
    FORWARD = "forward"
    INVERSE = "inverse"


class FieldKind(Enum):
    """Scalar field of the transform input."""
    COMPLEX = "complex"
    REAL = "real"


class Placement(Enum):
    """Whether output overwrites input."""
    INPLACE = "inplace"
    OUTOFPLACE = "outofplace"

    @property
    def short(self) -> str:
        """Two-letter code used in tokens."""
        return "ip" if self is Placement.INPLACE else "op"

    @classmethod
    def from_short(cls, code: str) -> "Placement":
        if code == "ip":
            return cls.INPLACE
        if code == "op":
            return cls.OUTOFPLACE
        raise ValueError(f"Unknown placement code: {code}")


class Precision(Enum):
    """Floating point precision of the transform."""
    HALF = "half"
    SINGLE = "single"
    DOUBLE = "double"


# Rider transform-type codes: (field, direction) -> -t value
TRANSFORM_TYPES = {
    (FieldKind.COMPLEX, Direction.FORWARD): 0,
    (FieldKind.COMPLEX, Direction.INVERSE): 1,
    (FieldKind.REAL, Direction.FORWARD): 2,
    (FieldKind.REAL, Direction.INVERSE): 3,
}

_TOKEN_RE = re.compile(
    r"^(?P<field>complex|real)_(?P<direction>forward|inverse)"
    r"_len_(?P<lengths>\d+(?:_\d+){0,2})"
    r"_(?P<precision>half|single|double)"
    r"_(?P<placement>ip|op)"
    r"_batch_(?P<nbatch>\d+)$"
)


@dataclass(frozen=True)
class Problem:
    """
    One benchmark case.

    Attributes:
        lengths: Transform length per dimension (1 to 3 entries).
        direction: Forward or inverse.
        field: Complex or real input.
        placement: In-place or out-of-place.
        precision: Numeric precision.
        nbatch: Number of transforms per execution.
    """
    lengths: Tuple[int, ...]
    direction: Direction = Direction.FORWARD
    field: FieldKind = FieldKind.COMPLEX
    placement: Placement = Placement.INPLACE
    precision: Precision = Precision.SINGLE
    nbatch: int = 1

    def __post_init__(self):
        # Accept any sequence of lengths but store a tuple so the value stays hashable
        object.__setattr__(self, "lengths", tuple(int(n) for n in self.lengths))
        if not 1 <= len(self.lengths) <= 3:
            raise ValueError(f"Problem must have 1-3 dimensions, got {len(self.lengths)}")
        if any(n < 1 for n in self.lengths):
            raise ValueError(f"Lengths must be positive: {self.lengths}")
        if self.nbatch < 1:
            raise ValueError("nbatch must be at least 1")

    @property
    def dimension(self) -> int:
        return len(self.lengths)

    @property
    def size(self) -> int:
        """Product of lengths; the ordering key of every report."""
        return math.prod(self.lengths)

    @property
    def elements(self) -> int:
        """Total scalar elements transformed by one execution."""
        return self.size * self.nbatch

    @property
    def flops(self) -> float:
        """Nominal operation count of one execution (5 N log2 N, halved for real)."""
        if self.size < 2:
            return 0.0
        k = 2.5 if self.field is FieldKind.REAL else 5.0
        return self.nbatch * k * self.size * math.log2(self.size)

    @property
    def token(self) -> str:
        """Canonical string encoding of every field."""
        lengths = "_".join(str(n) for n in self.lengths)
        return (
            f"{self.field.value}_{self.direction.value}_len_{lengths}"
            f"_{self.precision.value}_{self.placement.short}_batch_{self.nbatch}"
        )

    @property
    def dataset_name(self) -> str:
        """Name of the dataset (transform family) this problem is stored in."""
        return (
            f"{self.dimension}D_{self.field.value}_{self.direction.value}"
            f"_{self.placement.value}_{self.precision.value}"
        )

    @property
    def label(self) -> str:
        """Short display label, e.g. '64x128 b4'."""
        text = "x".join(str(n) for n in self.lengths)
        if self.nbatch > 1:
            text += f" b{self.nbatch}"
        return text

    def rider_args(self) -> List[str]:
        """Discrete-flag form of this problem for the rider command line."""
        args = ["--length"] + [str(n) for n in self.lengths]
        args += ["-t", str(TRANSFORM_TYPES[(self.field, self.direction)])]
        args += ["-b", str(self.nbatch)]
        args += ["--precision", self.precision.value]
        if self.placement is Placement.OUTOFPLACE:
            args.append("-o")
        return args

    def to_dict(self) -> dict:
        """Convert to dictionary for YAML serialization."""
        return {
            "length": list(self.lengths),
            "direction": self.direction.value,
            "field": self.field.value,
            "placement": self.placement.value,
            "precision": self.precision.value,
            "nbatch": self.nbatch,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Problem":
        """Create from dictionary; unspecified attributes take defaults."""
        lengths = data["length"]
        if isinstance(lengths, int):
            lengths = [lengths]
        return cls(
            lengths=tuple(lengths),
            direction=Direction(data.get("direction", "forward")),
            field=FieldKind(data.get("field", "complex")),
            placement=Placement(data.get("placement", "inplace")),
            precision=Precision(data.get("precision", "single")),
            nbatch=int(data.get("nbatch", 1)),
        )

    @classmethod
    def from_token(cls, token: str) -> "Problem":
        """
        Decode a token produced by `Problem.token`.

        Raises:
            ValueError: If the token is not in canonical form.
        """
        m = _TOKEN_RE.match(token.strip())
        if m is None:
            raise ValueError(f"Invalid problem token: {token!r}")
        return cls(
            lengths=tuple(int(n) for n in m.group("lengths").split("_")),
            direction=Direction(m.group("direction")),
            field=FieldKind(m.group("field")),
            placement=Placement.from_short(m.group("placement")),
            precision=Precision(m.group("precision")),
            nbatch=int(m.group("nbatch")),
        )

    def __repr__(self) -> str:
        return f"Problem({self.token})"


def sort_key(problem: Problem) -> Tuple[int, str]:
    """Ordering used everywhere problems are reported: size, then token."""
    return (problem.size, problem.token)
