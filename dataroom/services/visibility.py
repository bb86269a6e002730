"""
Visibility policy — who may see which document.

Tiers nest strictly: a viewer of tier ``t`` sees a document of visibility
``v`` iff ``rank(v) <= rank(t)`` with

    public=0 < investors=1 < team=2 < private=3

A ``private`` viewer therefore sees everything and a ``public`` viewer sees
only public documents. Unknown visibility values rank as ``private``.

Usage:
    from dataroom.services.visibility import is_visible
    if not is_visible(doc, Visibility.INVESTORS):
        ...
"""

from __future__ import annotations

from collections.abc import Iterable

from dataroom.models.document import VISIBILITY_RANK, Document, Visibility, coerce_visibility


def rank(value) -> int:
    return VISIBILITY_RANK[coerce_visibility(value)]


def is_visible(document: Document, viewer_tier) -> bool:
    """Return True if a viewer of ``viewer_tier`` may see ``document``."""
    return rank(getattr(document, "visibility", None)) <= rank(viewer_tier)


def filter_visible(documents: Iterable[Document], viewer_tier) -> list[Document]:
    return [d for d in documents if is_visible(d, viewer_tier)]


def visible_tiers(document: Document) -> list[Visibility]:
    """All viewer tiers that can see ``document``, lowest first."""
    floor = rank(document.visibility)
    return [tier for tier, r in sorted(VISIBILITY_RANK.items(), key=lambda kv: kv[1]) if r >= floor]
