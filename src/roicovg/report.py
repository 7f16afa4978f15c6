from __future__ import annotations

import logging
from typing import TextIO

from .models import CoverageTotals, RoiCoverage

logger = logging.getLogger(__name__)

HEADER_LINES = (
    "#NOTE: Last line in file shows non-overlapping totals across all ROIs",
    "#Gene\tROI\tLength\tCovered\tATs_Covered\tCGs_Covered\tCpGs_Covered",
)
TOTALS_TAG = "#NonOverlappingTotals"


class CoverageReportWriter:
    """Tab-delimited per-ROI coverage table.

    Rows are flushed as they are written so a run that dies part-way leaves
    every finished ROI on disk.
    """

    def __init__(self, fh: TextIO) -> None:
        self._fh = fh
        self.rows_written = 0

    def write_header(self) -> None:
        for line in HEADER_LINES:
            self._fh.write(line + "\n")
        self._fh.flush()

    def write_row(self, cov: RoiCoverage) -> None:
        self._fh.write("\t".join(cov.as_row()) + "\n")
        self._fh.flush()
        self.rows_written += 1

    def write_totals(self, totals: CoverageTotals) -> None:
        # IUB is part of covered_bases but has no column of its own.
        self._fh.write(
            f"{TOTALS_TAG}\t\t\t{totals.covered_bases}\t{totals.at}\t{totals.cg}\t{totals.cpg}\n"
        )
        self._fh.flush()
