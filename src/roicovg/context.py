from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Optional, Tuple

import numpy as np
import pysam

from .classify import classify_base
from .models import BaseClass

logger = logging.getLogger(__name__)


class ChromosomeContextCache:
    """Reference sequence and per-base class tags for one resident chromosome.

    A tag moves from ``UNCLASSIFIED`` to a concrete class the first time the
    base is found jointly covered; later ROIs that overlap it see the stored
    class and must not add it to the genome-wide totals again.

    Only one sequence is held at a time, so ROIs sorted by chromosome load
    each sequence once. When a chromosome is released, its tagged positions
    are kept (positions and classes only) and restored if an unsorted ROI
    file comes back to it, so out-of-order input costs a reload but never
    recounts a base.
    """

    def __init__(self, fasta: pysam.FastaFile) -> None:
        self._fasta = fasta
        self._chrom: Optional[str] = None
        self._seq = ""
        self._tags = np.empty(0, dtype=np.int8)
        # chrom -> (tagged positions, their classes) for released chromosomes
        self._released: Dict[str, Tuple[np.ndarray, np.ndarray]] = {}

    @property
    def chrom(self) -> Optional[str]:
        return self._chrom

    @property
    def length(self) -> int:
        return len(self._seq)

    @property
    def references(self) -> FrozenSet[str]:
        """Chromosome names the reference FASTA can provide."""
        return frozenset(self._fasta.references)

    def _release(self) -> None:
        if self._chrom is None:
            return
        tagged = np.flatnonzero(self._tags != BaseClass.UNCLASSIFIED)
        self._released[self._chrom] = (tagged, self._tags[tagged].copy())
        logger.debug(
            "Releasing reference context for %s (%d tagged bases kept)", self._chrom, len(tagged)
        )
        # Drop the old chromosome before fetching; human chr1 is ~250 Mb.
        self._chrom = None
        self._seq = ""
        self._tags = np.empty(0, dtype=np.int8)

    def ensure_loaded(self, chrom: str) -> None:
        if chrom == self._chrom:
            return
        self._release()

        seq = self._fasta.fetch(chrom)
        tags = np.full(len(seq), BaseClass.UNCLASSIFIED, dtype=np.int8)
        restored = self._released.pop(chrom, None)
        if restored is not None:
            positions, classes = restored
            tags[positions] = classes
        self._seq = seq
        self._tags = tags
        self._chrom = chrom
        logger.debug(
            "Loaded reference context for %s (%d bp%s)",
            chrom,
            len(seq),
            f", {len(restored[0])} tagged bases restored" if restored is not None else "",
        )

    def get_sequence(self) -> str:
        return self._seq

    def get_tags(self) -> np.ndarray:
        return self._tags

    def _check_classifiable(self, pos0: int) -> None:
        if self._chrom is None:
            raise RuntimeError("No chromosome loaded")
        # Both neighbours must exist.
        if not 1 <= pos0 < len(self._seq) - 1:
            raise IndexError(
                f"{self._chrom}:{pos0} has no neighbour on both sides "
                f"(chromosome length {len(self._seq)})"
            )

    def classify_and_tag(self, pos0: int) -> Tuple[BaseClass, bool]:
        """Return ``(class, first_observation)`` for a jointly covered base."""
        self._check_classifiable(pos0)
        tag = int(self._tags[pos0])
        if tag != BaseClass.UNCLASSIFIED:
            return BaseClass(tag), False
        seq = self._seq
        cls = classify_base(seq[pos0], seq[pos0 - 1], seq[pos0 + 1])
        self._tags[pos0] = cls
        return cls, True
