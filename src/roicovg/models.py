from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List


class BaseClass(enum.IntEnum):
    """Sequence-context class of a reference base.

    The first four members index the per-class counters; ``UNCLASSIFIED`` is
    only ever stored in a chromosome's tag array.
    """

    AT = 0
    CG = 1
    CPG = 2
    IUB = 3
    UNCLASSIFIED = 4


N_CLASSES = 4


@dataclass(frozen=True)
class DepthThresholds:
    """Minimum read depth per sample and minimum mapping quality of counted reads."""

    min_depth1: int = 6
    min_depth2: int = 8
    min_mapq: int = 20


@dataclass(frozen=True)
class RoiRecord:
    """One parsed ROI line, coordinates as written (1-based, inclusive)."""

    chrom: str
    start: int
    stop: int
    label: str
    line_no: int = 0

    def as_text(self) -> str:
        return f"{self.chrom}\t{self.start}\t{self.stop}\t{self.label}"


@dataclass(frozen=True)
class Region:
    """A region of interest.

    Coordinates are 0-based half-open in internal representation.

    Attributes
    ----------
    chrom:
        Contig name as present in the BAM headers and the reference FASTA.
    begin:
        0-based first position (inclusive).
    end:
        0-based end position (exclusive).
    label:
        Gene or annotation name carried through to the report.
    """

    chrom: str
    begin: int
    end: int
    label: str

    @property
    def length(self) -> int:
        return self.end - self.begin

    def display(self) -> str:
        """``chrom:start-stop`` with 1-based inclusive coordinates."""
        return f"{self.chrom}:{self.begin + 1}-{self.end}"


def _zero_counts() -> List[int]:
    return [0] * N_CLASSES


@dataclass
class CoverageTotals:
    """Genome-wide accumulator; each reference base is recorded at most once."""

    covered_bases: int = 0
    class_counts: List[int] = field(default_factory=_zero_counts)

    def record(self, cls: BaseClass) -> None:
        self.covered_bases += 1
        self.class_counts[cls] += 1

    @property
    def at(self) -> int:
        return self.class_counts[BaseClass.AT]

    @property
    def cg(self) -> int:
        return self.class_counts[BaseClass.CG]

    @property
    def cpg(self) -> int:
        return self.class_counts[BaseClass.CPG]

    @property
    def iub(self) -> int:
        return self.class_counts[BaseClass.IUB]


@dataclass
class RoiCoverage:
    """Per-ROI result.

    ``region`` holds the bounds actually evaluated (clamped at chromosome
    ends); ``length`` is the length of the ROI as requested.
    """

    region: Region
    length: int
    counts: CoverageTotals = field(default_factory=CoverageTotals)

    def as_row(self) -> List[str]:
        c = self.counts
        return [
            self.region.label,
            self.region.display(),
            str(self.length),
            str(c.covered_bases),
            str(c.at),
            str(c.cg),
            str(c.cpg),
        ]
