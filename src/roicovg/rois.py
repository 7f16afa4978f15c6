from __future__ import annotations

import logging
from typing import Iterable, Iterator, TextIO

from .models import RoiRecord

logger = logging.getLogger(__name__)

ROI_FORMAT_HELP = (
    "ROI file should be a tab-delimited list of [chrom, start, stop, annotation]\n"
    "where start and stop are both 1-based chromosomal loci\n"
    "For example:\n"
    "20\t44429404\t44429608\tELMO2\n"
    "MT\t5903\t7445\tMT-CO1\n"
    "NOTE: ROI file *must* be sorted by chromosome/contig names"
)


class MalformedRoiError(ValueError):
    """Raised for an ROI line that cannot be parsed; ends the whole run."""

    def __init__(self, line: str, line_no: int) -> None:
        super().__init__(
            f"Badly formatted ROI (line {line_no}): {line.rstrip()}\n\n{ROI_FORMAT_HELP}"
        )
        self.line = line
        self.line_no = line_no


def parse_roi_line(line: str, line_no: int = 0) -> RoiRecord:
    """Parse ``chrom start stop label``; extra trailing columns are ignored."""
    fields = line.split()
    if len(fields) < 4:
        raise MalformedRoiError(line, line_no)
    chrom, start_s, stop_s, label = fields[:4]
    try:
        start = int(start_s)
        stop = int(stop_s)
    except ValueError:
        raise MalformedRoiError(line, line_no) from None
    return RoiRecord(chrom=chrom, start=start, stop=stop, label=label, line_no=line_no)


def iter_roi_records(lines: Iterable[str]) -> Iterator[RoiRecord]:
    """Yield records lazily; a malformed line raises when it is reached."""
    for line_no, line in enumerate(lines, start=1):
        if not line.strip() or line.startswith("#"):
            continue
        yield parse_roi_line(line, line_no)


def read_roi_records(fh: TextIO) -> Iterator[RoiRecord]:
    return iter_roi_records(fh)
