from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pysam

from .utils import ensure_outdir, write_json


@dataclass(frozen=True)
class ReadStack:
    """``depth`` identical reference-matching reads spanning ``[start0, end0)``."""

    contig: str
    start0: int
    end0: int
    depth: int
    mapq: int = 60


def write_fasta(path: str | Path, contigs: Mapping[str, str]) -> Path:
    path = Path(path)
    lines: List[str] = []
    for name, seq in contigs.items():
        lines.append(f">{name}")
        for i in range(0, len(seq), 60):
            lines.append(seq[i : i + 60])
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    pysam.faidx(str(path))
    return path


def make_read(
    name: str,
    tid: int,
    start0: int,
    seq: str,
    *,
    mapq: int = 60,
    cigartuples: Optional[List[Tuple[int, int]]] = None,
    flag: int = 0,
) -> pysam.AlignedSegment:
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = flag
    a.reference_id = tid
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = cigartuples if cigartuples is not None else [(0, len(seq))]
    a.query_qualities = pysam.qualitystring_to_array("I" * len(seq))
    return a


def bam_header(contigs: Mapping[str, str]) -> Dict[str, object]:
    return {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": name, "LN": len(seq)} for name, seq in contigs.items()],
    }


def write_bam(
    path: str | Path,
    contigs: Mapping[str, str],
    stacks: Sequence[ReadStack] = (),
    *,
    extra_reads: Sequence[pysam.AlignedSegment] = (),
) -> Path:
    """Write a sorted, indexed BAM from read stacks plus any hand-built reads."""
    path = Path(path)
    tids = {name: i for i, name in enumerate(contigs)}

    reads: List[pysam.AlignedSegment] = list(extra_reads)
    for s_idx, stack in enumerate(stacks):
        seq = contigs[stack.contig][stack.start0 : stack.end0]
        for i in range(stack.depth):
            reads.append(
                make_read(
                    f"s{s_idx}_r{i}",
                    tids[stack.contig],
                    stack.start0,
                    seq,
                    mapq=stack.mapq,
                )
            )

    reads.sort(key=lambda r: (r.reference_id, r.reference_start))

    with pysam.AlignmentFile(str(path), "wb", header=bam_header(contigs)) as bam:
        for r in reads:
            bam.write(r)

    pysam.index(str(path))
    return path


def write_rois(path: str | Path, rows: Sequence[Tuple[str, int, int, str]]) -> Path:
    """ROI file rows are ``(chrom, start, stop, label)``, 1-based inclusive."""
    path = Path(path)
    path.write_text(
        "".join(f"{c}\t{s}\t{e}\t{g}\n" for c, s, e, g in rows),
        encoding="utf-8",
    )
    return path


TOY_CONTIG = "chr1"
TOY_SEQ = ("ACGTTGCAATCGGA" * 15)[:200]


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a tiny reference, two BAMs, and an ROI file for demos/tests.

    The outputs include:
    - toy_ref.fa (+ .fai)
    - sample1.bam, sample2.bam (+ .bai)
    - rois.txt (two overlapping ROIs, one disjoint ROI, one unknown contig)

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)
    contigs = {TOY_CONTIG: TOY_SEQ}

    ref_fa = write_fasta(outdir_p / "toy_ref.fa", contigs)
    bam1 = write_bam(
        outdir_p / "sample1.bam",
        contigs,
        [ReadStack(TOY_CONTIG, 0, 120, depth=10), ReadStack(TOY_CONTIG, 140, 200, depth=4)],
    )
    bam2 = write_bam(
        outdir_p / "sample2.bam",
        contigs,
        [ReadStack(TOY_CONTIG, 40, 200, depth=12)],
    )
    rois = write_rois(
        outdir_p / "rois.txt",
        [
            (TOY_CONTIG, 1, 80, "GENE_A"),
            (TOY_CONTIG, 61, 110, "GENE_A"),
            (TOY_CONTIG, 150, 200, "GENE_B"),
            ("chrUn", 1, 10, "NOWHERE"),
        ],
    )

    summary = {
        "ref_fa": str(ref_fa),
        "bam1": str(bam1),
        "bam2": str(bam2),
        "rois": str(rois),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
