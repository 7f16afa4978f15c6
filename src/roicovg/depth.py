from __future__ import annotations

import logging
from typing import Iterator, Optional

import numpy as np
import pysam

logger = logging.getLogger(__name__)

# Matches the per-column cap of the classic samtools pileup buffer.
MAX_PILEUP_DEPTH = 8000


class CoverageMask:
    """Boolean per-position mask over ``[begin, end)`` of one chromosome.

    Indexing takes 0-based chromosome positions; positions outside the range
    raise ``IndexError`` rather than wrapping around.
    """

    def __init__(self, chrom: str, begin: int, end: int) -> None:
        self.chrom = chrom
        self.begin = begin
        self.end = end
        self._bits = np.zeros(max(0, end - begin), dtype=bool)

    def __len__(self) -> int:
        return len(self._bits)

    def _offset(self, pos0: int) -> int:
        if not self.begin <= pos0 < self.end:
            raise IndexError(f"{self.chrom}:{pos0} outside [{self.begin}, {self.end})")
        return pos0 - self.begin

    def __getitem__(self, pos0: int) -> bool:
        return bool(self._bits[self._offset(pos0)])

    def __setitem__(self, pos0: int, value: bool) -> None:
        self._bits[self._offset(pos0)] = value

    def count(self) -> int:
        return int(self._bits.sum())

    def positions(self) -> Iterator[int]:
        """Set positions in ascending order."""
        for off in np.flatnonzero(self._bits):
            yield self.begin + int(off)


def column_depth(column: pysam.PileupColumn, min_mapq: int) -> int:
    """Reads aligned with a base at this column and mapping quality >= ``min_mapq``."""
    n = 0
    for pread in column.pileups:
        if pread.is_del or pread.is_refskip:
            continue
        if pread.alignment.mapping_quality >= min_mapq:
            n += 1
    return n


class DepthEvaluator:
    """Answers which positions of a region reach a depth threshold in one BAM."""

    def __init__(self, bam: pysam.AlignmentFile, *, name: str = "sample") -> None:
        self.bam = bam
        self.name = name

    def qualifying_positions(
        self,
        chrom: str,
        begin: int,
        end: int,
        *,
        min_depth: int,
        min_mapq: int,
        restrict_to: Optional[CoverageMask] = None,
    ) -> CoverageMask:
        """Mask of positions in ``[begin, end)`` with depth >= ``min_depth``.

        With ``restrict_to``, columns not set in that mask are skipped without
        being counted, so the result is a subset of it.
        """
        mask = CoverageMask(chrom, begin, end)
        if begin >= end:
            return mask

        columns = self.bam.pileup(
            contig=chrom,
            start=begin,
            stop=end,
            truncate=True,
            stepper="all",
            ignore_overlaps=False,
            ignore_orphans=False,
            min_base_quality=0,
            max_depth=MAX_PILEUP_DEPTH,
        )
        for column in columns:
            pos0 = column.reference_pos
            if not begin <= pos0 < end:
                continue
            if restrict_to is not None and not restrict_to[pos0]:
                continue
            if column_depth(column, min_mapq) >= min_depth:
                mask[pos0] = True

        logger.debug(
            "%s %s:%d-%d: %d/%d positions at depth >= %d",
            self.name,
            chrom,
            begin + 1,
            end,
            mask.count(),
            len(mask),
            min_depth,
        )
        return mask
