from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from typing import List, Optional, Sequence, TextIO

import pysam

from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"


class ResourceError(RuntimeError):
    """Raised when one or more inputs/outputs could not be opened.

    ``problems`` lists every failure found, not just the first one.
    """

    def __init__(self, problems: Sequence[str]) -> None:
        super().__init__("\n".join(problems))
        self.problems = list(problems)


def remap_contig(contig: str, style: str) -> str:
    """Remap a contig name to the requested style (ucsc or ensembl)."""
    if style == "ucsc":
        if contig.startswith(_UCSC_PREFIX):
            return contig
        if contig == "MT":
            return "chrM"
        return f"{_UCSC_PREFIX}{contig}"
    if style == "ensembl":
        if contig.startswith(_UCSC_PREFIX):
            core = contig[len(_UCSC_PREFIX) :]
            if core == "M":
                return "MT"
            return core
        return contig
    return contig


def contig_candidates(contig: str) -> List[str]:
    """Names ``contig`` would have under the other naming style (chr1 <-> 1)."""
    out = []
    for style in ("ucsc", "ensembl"):
        alt = remap_contig(contig, style)
        if alt != contig and alt not in out:
            out.append(alt)
    return out


def _open_bam(path: str, label: str, problems: List[str]) -> Optional[pysam.AlignmentFile]:
    try:
        bam = pysam.AlignmentFile(path, "rb")
    except (OSError, ValueError) as e:
        problems.append(f"Failed to open BAM file {path} ({label}): {e}")
        return None
    if not bam.has_index():
        problems.append(
            f"BAM index file is not available for {path} ({label}). Run: samtools index {path}"
        )
    return bam


def _open_fasta(path: str, problems: List[str]) -> Optional[pysam.FastaFile]:
    # pysam builds a missing .fai next to the FASTA when it can.
    try:
        return pysam.FastaFile(path)
    except (OSError, ValueError) as e:
        problems.append(
            f"Failed to open reference fasta file {path}: {e}. "
            f"Check that it is plain or bgzip-compressed and indexable (samtools faidx {path})"
        )
        return None


@dataclass
class RunInputs:
    bam1: pysam.AlignmentFile
    bam2: pysam.AlignmentFile
    rois: TextIO
    fasta: pysam.FastaFile
    out: TextIO


def open_inputs(
    stack: ExitStack,
    *,
    bam1: str,
    bam2: str,
    roi_file: str,
    ref_fasta: str,
    output_file: str,
) -> RunInputs:
    """Open every file a run needs, registering each on ``stack``.

    All problems are collected before raising ``ResourceError``, so a user
    sees every missing file or index in one go.
    """
    problems: List[str] = []

    sam1 = _open_bam(bam1, "bam1", problems)
    if sam1 is not None:
        stack.enter_context(sam1)
    sam2 = _open_bam(bam2, "bam2", problems)
    if sam2 is not None:
        stack.enter_context(sam2)

    rois: Optional[TextIO] = None
    try:
        rois = stack.enter_context(open_textmaybe_gzip(roi_file, "rt"))
    except OSError as e:
        problems.append(f"Failed to open ROI file {roi_file}: {e}")

    fasta = _open_fasta(ref_fasta, problems)
    if fasta is not None:
        stack.enter_context(fasta)

    out: Optional[TextIO] = None
    try:
        out = stack.enter_context(open(output_file, "wt", encoding="utf-8"))
    except OSError as e:
        problems.append(f"Failed to open output file {output_file}: {e}")

    if problems:
        raise ResourceError(problems)

    assert sam1 is not None and sam2 is not None and fasta is not None
    assert rois is not None and out is not None
    warn_reference_mismatch(sam1, sam2)
    return RunInputs(bam1=sam1, bam2=sam2, rois=rois, fasta=fasta, out=out)


def warn_reference_mismatch(bam1: pysam.AlignmentFile, bam2: pysam.AlignmentFile) -> None:
    """Both BAMs are expected to share one coordinate system; say so if they do not."""
    refs1 = list(bam1.references)
    refs2 = list(bam2.references)
    if refs1 == refs2:
        return
    only1 = sorted(set(refs1) - set(refs2))
    only2 = sorted(set(refs2) - set(refs1))
    logger.warning(
        "BAM headers list different references (%d only in bam1, %d only in bam2%s). "
        "ROIs on references missing from either BAM will be skipped.",
        len(only1),
        len(only2),
        f"; e.g. {(only1 or only2)[0]}" if (only1 or only2) else "",
    )
