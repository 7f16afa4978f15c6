"""roicovg: two-sample read-depth coverage of regions of interest.

Counts, per ROI, the bases with sufficient read depth in both of two BAMs,
split by sequence context (AT, CG, CpG). Most users should use the CLI:

    roicovg tumor.bam normal.bam rois.txt ref.fa coverage.tsv

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
