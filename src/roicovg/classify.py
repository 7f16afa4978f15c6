from __future__ import annotations

from .models import BaseClass

_AT = frozenset("AaTt")
_C = frozenset("Cc")
_G = frozenset("Gg")


def classify_base(base: str, prev_base: str, next_base: str) -> BaseClass:
    """Classify a reference base by its local context.

    A C followed by a G, or a G preceded by a C, is a CpG even though it is
    also a plain C/G. Non-ACGT symbols (N and other IUB codes) are IUB.
    """
    if base in _AT:
        return BaseClass.AT
    if (base in _C and next_base in _G) or (base in _G and prev_base in _C):
        return BaseClass.CPG
    if base in _C or base in _G:
        return BaseClass.CG
    return BaseClass.IUB
