import io
import logging
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

import pysam
import pytest

from roicovg.classify import classify_base
from roicovg.context import ChromosomeContextCache
from roicovg.depth import DepthEvaluator
from roicovg.engine import RoiCoverageEngine
from roicovg.models import BaseClass, DepthThresholds, RoiRecord
from roicovg.report import CoverageReportWriter
from roicovg.rois import MalformedRoiError, iter_roi_records
from roicovg.toy_data import ReadStack, write_bam, write_fasta

SEQ60 = "ACGTTGCAATCGGANNCGTA" * 3


def _engine(
    tmp_path: Path,
    contigs: Dict[str, str],
    stacks1: Sequence[ReadStack],
    stacks2: Sequence[ReadStack],
    thresholds: DepthThresholds = DepthThresholds(),
) -> RoiCoverageEngine:
    ref = write_fasta(tmp_path / "ref.fa", contigs)
    bam1 = write_bam(tmp_path / "s1.bam", contigs, stacks1)
    bam2 = write_bam(tmp_path / "s2.bam", contigs, stacks2)
    return RoiCoverageEngine(
        DepthEvaluator(pysam.AlignmentFile(str(bam1), "rb"), name="bam1"),
        DepthEvaluator(pysam.AlignmentFile(str(bam2), "rb"), name="bam2"),
        ChromosomeContextCache(pysam.FastaFile(str(ref))),
        thresholds,
    )


def _full(contigs: Dict[str, str], depth: int = 10) -> List[ReadStack]:
    return [ReadStack(name, 0, len(seq), depth=depth) for name, seq in contigs.items()]


def _run(engine: RoiCoverageEngine, rows: Sequence[Tuple[str, int, int, str]]) -> List[List[str]]:
    out = io.StringIO()
    records = [RoiRecord(c, s, e, g) for c, s, e, g in rows]
    engine.run(records, CoverageReportWriter(out), progress=False)
    lines = out.getvalue().splitlines()
    return [line.split("\t") for line in lines if not line.startswith("#")]


def test_scenario_short_chromosome_with_cpg(tmp_path: Path) -> None:
    contigs = {"chrT": "ACGTT"}
    engine = _engine(tmp_path, contigs, _full(contigs), _full(contigs))
    region = engine.resolve(RoiRecord("chrT", 1, 5, "G"))
    assert region is not None
    cov = engine.process(region)

    assert cov.length == 5
    assert cov.region.display() == "chrT:2-4"
    assert cov.counts.covered_bases == 3
    assert (cov.counts.at, cov.counts.cg, cov.counts.cpg, cov.counts.iub) == (1, 0, 2, 0)
    assert engine.totals.covered_bases == 3
    assert cov.as_row() == ["G", "chrT:2-4", "5", "3", "1", "0", "2"]


def test_insufficient_depth_in_first_sample(tmp_path: Path) -> None:
    contigs = {"c1": SEQ60}
    engine = _engine(tmp_path, contigs, _full(contigs, depth=5), _full(contigs, depth=20))
    rows = _run(engine, [("c1", 10, 30, "LOW")])
    assert rows == [["LOW", "c1:10-30", "21", "0", "0", "0", "0"]]
    assert engine.totals.covered_bases == 0
    assert engine.totals.class_counts == [0, 0, 0, 0]


def test_second_sample_threshold_applies_only_where_first_passes(tmp_path: Path) -> None:
    contigs = {"c1": SEQ60}
    engine = _engine(
        tmp_path,
        contigs,
        [ReadStack("c1", 0, 30, depth=6)],
        [ReadStack("c1", 20, 60, depth=8)],
    )
    rows = _run(engine, [("c1", 11, 50, "X")])
    # Joint coverage is [20, 30).
    assert rows[0][3] == "10"


def test_overlapping_rois_counted_once_in_totals(tmp_path: Path) -> None:
    contigs = {"c1": SEQ60}
    engine = _engine(tmp_path, contigs, _full(contigs), _full(contigs))
    rows = _run(engine, [("c1", 1, 30, "G1"), ("c1", 21, 50, "G1")])

    assert rows[0][1:4] == ["c1:2-30", "30", "29"]
    assert rows[1][1:4] == ["c1:21-50", "30", "30"]

    totals = engine.totals
    assert totals.covered_bases == 49
    expected = [0, 0, 0, 0]
    for pos0 in range(1, 50):
        expected[classify_base(SEQ60[pos0], SEQ60[pos0 - 1], SEQ60[pos0 + 1])] += 1
    assert totals.class_counts == expected
    assert sum(totals.class_counts) == totals.covered_bases


def test_per_roi_counts_reconcile(tmp_path: Path) -> None:
    contigs = {"c1": SEQ60}
    engine = _engine(tmp_path, contigs, _full(contigs), [ReadStack("c1", 5, 45, depth=9)])
    for rec in [RoiRecord("c1", 1, 60, "ALL"), RoiRecord("c1", 14, 18, "NN")]:
        region = engine.resolve(rec)
        assert region is not None
        cov = engine.process(region)
        assert cov.counts.covered_bases <= cov.length
        assert sum(cov.counts.class_counts) == cov.counts.covered_bases
    # SEQ60[14:16] is "NN"
    assert cov.counts.iub == 2


def test_disjoint_roi_sets_are_additive(tmp_path: Path) -> None:
    contigs = {"c1": SEQ60, "c2": SEQ60[::-1]}
    set_a = [("c1", 3, 20, "A1"), ("c2", 30, 45, "A2")]
    set_b = [("c1", 25, 40, "B1"), ("c2", 2, 12, "B2")]

    def engine(sub: str) -> RoiCoverageEngine:
        d = tmp_path / sub
        d.mkdir()
        return _engine(d, contigs, _full(contigs), _full(contigs))

    e_a, e_b, e_ab = engine("a"), engine("b"), engine("ab")
    rows_a = _run(e_a, set_a)
    rows_b = _run(e_b, set_b)
    rows_ab = _run(e_ab, set_a + set_b)

    assert rows_ab == rows_a + rows_b
    assert e_ab.totals.covered_bases == e_a.totals.covered_bases + e_b.totals.covered_bases
    assert e_ab.totals.class_counts == [
        a + b for a, b in zip(e_a.totals.class_counts, e_b.totals.class_counts)
    ]


def test_chromosome_end_is_clamped(tmp_path: Path) -> None:
    contigs = {"c1": SEQ60}
    engine = _engine(tmp_path, contigs, _full(contigs), _full(contigs))
    rows = _run(engine, [("c1", 41, 60, "END"), ("c1", 55, 70, "PAST")])
    assert rows[0][:4] == ["END", "c1:41-59", "20", "19"]
    assert rows[1][:4] == ["PAST", "c1:55-59", "16", "5"]
    assert engine.totals.covered_bases == 19


def test_single_base_roi_at_chromosome_start(tmp_path: Path) -> None:
    contigs = {"c1": SEQ60}
    engine = _engine(tmp_path, contigs, _full(contigs), _full(contigs))
    rows = _run(engine, [("c1", 1, 1, "TIP")])
    assert rows == [["TIP", "c1:2-1", "1", "0", "0", "0", "0"]]


def test_invalid_rois_are_skipped_with_warning(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    contigs = {"chr1": SEQ60}
    engine = _engine(tmp_path, contigs, _full(contigs), _full(contigs))
    with caplog.at_level(logging.WARNING):
        rows = _run(
            engine,
            [("1", 5, 10, "WRONGSTYLE"), ("chr1", 20, 10, "INVERTED"), ("chr1", 5, 10, "OK")],
        )
    assert [r[0] for r in rows] == ["OK"]
    assert engine.rois_skipped == 2
    assert engine.rois_processed == 1
    assert "did you mean chr1?" in caplog.text
    assert "start > stop" in caplog.text


def test_contig_missing_from_second_bam_is_skipped(tmp_path: Path) -> None:
    ref = write_fasta(tmp_path / "ref.fa", {"c1": SEQ60, "c2": SEQ60})
    bam1 = write_bam(tmp_path / "s1.bam", {"c1": SEQ60, "c2": SEQ60}, [])
    bam2 = write_bam(tmp_path / "s2.bam", {"c1": SEQ60}, [])
    engine = RoiCoverageEngine(
        DepthEvaluator(pysam.AlignmentFile(str(bam1), "rb")),
        DepthEvaluator(pysam.AlignmentFile(str(bam2), "rb")),
        ChromosomeContextCache(pysam.FastaFile(str(ref))),
        DepthThresholds(),
    )
    assert engine.resolve(RoiRecord("c2", 1, 10, "G")) is None
    assert engine.resolve(RoiRecord("c1", 1, 10, "G")) is not None


def test_malformed_record_stops_run_without_totals(tmp_path: Path) -> None:
    contigs = {"c1": SEQ60}
    engine = _engine(tmp_path, contigs, _full(contigs), _full(contigs))
    out = io.StringIO()
    lines = ["c1\t5\t10\tFIRST\n", "c1\t12\t20\n", "c1\t30\t40\tNEVER\n"]
    with pytest.raises(MalformedRoiError):
        engine.run(iter_roi_records(lines), CoverageReportWriter(out), progress=False)
    text = out.getvalue()
    assert "FIRST" in text
    assert "NEVER" not in text
    assert "#NonOverlappingTotals" not in text


def test_cpg_never_reported_as_cg(tmp_path: Path) -> None:
    contigs = {"c1": "ACGCGCGT"}
    engine = _engine(tmp_path, contigs, _full(contigs), _full(contigs))
    _run(engine, [("c1", 1, 8, "ISLAND")])
    assert engine.totals.class_counts[BaseClass.CG] == 0
    assert engine.totals.class_counts[BaseClass.CPG] == 6


def test_unsorted_input_gives_same_totals_as_sorted(tmp_path: Path) -> None:
    contigs = {"c1": SEQ60, "c2": SEQ60[::-1]}
    unsorted_rows = [
        ("c1", 11, 20, "G1"),
        ("c2", 11, 20, "G2"),
        ("c1", 11, 20, "G1"),
        ("c1", 15, 30, "G3"),
        ("c2", 5, 12, "G4"),
    ]
    sorted_rows = sorted(unsorted_rows, key=lambda r: r[0])

    (tmp_path / "unsorted").mkdir()
    (tmp_path / "sorted").mkdir()
    e_unsorted = _engine(tmp_path / "unsorted", contigs, _full(contigs), _full(contigs))
    e_sorted = _engine(tmp_path / "sorted", contigs, _full(contigs), _full(contigs))
    rows_unsorted = _run(e_unsorted, unsorted_rows)
    rows_sorted = _run(e_sorted, sorted_rows)

    assert sorted(rows_unsorted) == sorted(rows_sorted)
    # c1 positions 10..29 and c2 positions 4..19
    assert e_sorted.totals.covered_bases == 20 + 16
    assert e_unsorted.totals == e_sorted.totals


def test_contig_missing_from_reference_is_skipped(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    bam_contigs = {"c1": SEQ60, "c2": SEQ60}
    ref = write_fasta(tmp_path / "ref.fa", {"c1": SEQ60})
    bam1 = write_bam(tmp_path / "s1.bam", bam_contigs, _full(bam_contigs))
    bam2 = write_bam(tmp_path / "s2.bam", bam_contigs, _full(bam_contigs))
    engine = RoiCoverageEngine(
        DepthEvaluator(pysam.AlignmentFile(str(bam1), "rb")),
        DepthEvaluator(pysam.AlignmentFile(str(bam2), "rb")),
        ChromosomeContextCache(pysam.FastaFile(str(ref))),
        DepthThresholds(),
    )
    out = io.StringIO()
    records = [RoiRecord("c2", 5, 10, "NOREF"), RoiRecord("c1", 5, 10, "OK")]
    with caplog.at_level(logging.WARNING):
        engine.run(records, CoverageReportWriter(out), progress=False)

    assert "chromosome missing from reference FASTA" in caplog.text
    lines = out.getvalue().splitlines()
    assert [line.split("\t")[0] for line in lines[2:]] == ["OK", "#NonOverlappingTotals"]
    assert engine.rois_skipped == 1
