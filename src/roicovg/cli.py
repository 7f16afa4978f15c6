from __future__ import annotations

import argparse
import json
import logging
import sys
from contextlib import ExitStack
from pathlib import Path
from typing import NoReturn, Optional

from . import __version__
from .context import ChromosomeContextCache
from .depth import DepthEvaluator
from .engine import RoiCoverageEngine
from .models import DepthThresholds
from .report import CoverageReportWriter
from .rois import read_roi_records
from .toy_data import make_toy_data
from .validation import ResourceError, open_inputs

_DEFAULTS = DepthThresholds()

_USAGE_NOTES = (
    f"Defaults: min_depth_bam1 = {_DEFAULTS.min_depth1}, "
    f"min_depth_bam2 = {_DEFAULTS.min_depth2}, min_mapq = {_DEFAULTS.min_mapq}\n"
    "NOTE: ROI file *must* be sorted by chromosome/contig names"
)


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, ResourceError):
        msg = "\n".join(err.problems)
    else:
        msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 1


def _non_negative_int(s: str) -> int:
    try:
        v = int(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {s}") from None
    if v < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0: {s}")
    return v


class _UsageParser(argparse.ArgumentParser):
    """Usage errors exit with status 1 and repeat the defaults."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n{_USAGE_NOTES}\n")


def build_parser() -> argparse.ArgumentParser:
    p = _UsageParser(
        prog="roicovg",
        description=(
            "Count bases in regions of interest that have sufficient read depth in two BAMs, "
            "split into AT, CG and CpG context. Overlapping ROIs are not merged; the final "
            "#NonOverlappingTotals row counts each base once."
        ),
        epilog=_USAGE_NOTES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("--version", action="version", version=f"roicovg {__version__}")

    p.add_argument("bam1", help="First BAM (sorted, indexed), e.g. tumor.")
    p.add_argument("bam2", help="Second BAM (sorted, indexed), e.g. normal.")
    p.add_argument(
        "roi_file",
        help="ROIs: chrom, start, stop, label per line (1-based, inclusive; .gz accepted).",
    )
    p.add_argument("ref_fasta", help="Reference FASTA (.fai is created if missing).")
    p.add_argument("output_file", help="Output table path.")
    p.add_argument(
        "thresholds",
        nargs="*",
        type=_non_negative_int,
        metavar="THRESHOLD",
        help=(
            "Optional: min_depth_bam1 min_depth_bam2 min_mapq, all three together "
            f"(default: {_DEFAULTS.min_depth1} {_DEFAULTS.min_depth2} {_DEFAULTS.min_mapq})."
        ),
    )

    p.add_argument("--log-file", type=Path, default=None, help="Also write log messages here.")
    p.add_argument("--no-progress", action="store_true", help="Do not show a progress bar.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")
    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.thresholds and len(args.thresholds) != 3:
        parser.error(
            "expected either no thresholds or all three "
            f"(min_depth_bam1 min_depth_bam2 min_mapq), got {len(args.thresholds)}"
        )
    if args.thresholds:
        thresholds = DepthThresholds(
            min_depth1=args.thresholds[0],
            min_depth2=args.thresholds[1],
            min_mapq=args.thresholds[2],
        )
    else:
        thresholds = DepthThresholds()

    _setup_logging(args.verbose, logfile=args.log_file)

    logger = logging.getLogger("roicovg")
    logger.info("roicovg %s", __version__)
    logger.info(
        "min_depth_bam1=%d min_depth_bam2=%d min_mapq=%d",
        thresholds.min_depth1,
        thresholds.min_depth2,
        thresholds.min_mapq,
    )

    try:
        with ExitStack() as stack:
            inputs = open_inputs(
                stack,
                bam1=args.bam1,
                bam2=args.bam2,
                roi_file=args.roi_file,
                ref_fasta=args.ref_fasta,
                output_file=args.output_file,
            )
            engine = RoiCoverageEngine(
                DepthEvaluator(inputs.bam1, name="bam1"),
                DepthEvaluator(inputs.bam2, name="bam2"),
                ChromosomeContextCache(inputs.fasta),
                thresholds,
            )
            engine.run(
                read_roi_records(inputs.rois),
                CoverageReportWriter(inputs.out),
                progress=not args.no_progress,
            )
    except Exception as e:
        return _handle_error(e, log_path=args.log_file)

    logger.info("Results written: %s", args.output_file)
    return 0


def make_toy_data_main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(
        prog="roicovg-make-toy-data",
        description="Generate a tiny reference, two BAMs, and an ROI file for demos/tests.",
    )
    p.add_argument("--outdir", required=True, help="Output directory for toy data.")
    p.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")
    args = p.parse_args(argv)

    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
