"""
Data room document model.

Documents are owned by the aggregating layer (project deliverables, KPI
reports, manual uploads). The governance engine only reads and writes
``visibility`` and membership in share sessions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from dataroom.core.exceptions import InvalidInputError


class Visibility(str, Enum):
    """Minimum viewer tier required to see a document."""
    PUBLIC = "public"
    INVESTORS = "investors"
    TEAM = "team"
    PRIVATE = "private"


# Strict nesting: public < investors < team < private.
VISIBILITY_RANK: dict[Visibility, int] = {
    Visibility.PUBLIC: 0,
    Visibility.INVESTORS: 1,
    Visibility.TEAM: 2,
    Visibility.PRIVATE: 3,
}


def coerce_visibility(value) -> Visibility:
    """Map any incoming value onto a Visibility; unknown values become PRIVATE."""
    if isinstance(value, Visibility):
        return value
    try:
        return Visibility(str(value).strip().lower())
    except (ValueError, AttributeError):
        return Visibility.PRIVATE


@dataclass
class Document:
    """A document record fed in by the aggregator."""
    id: str
    name: str
    visibility: Visibility = Visibility.PRIVATE
    category: str = "vdr_upload"
    source: str = "manual"
    size: int = 0
    is_representative: bool = False
    tags: list[str] = field(default_factory=list)
    description: str = ""

    def matches(self, query: str) -> bool:
        q = query.lower()
        return (
            q in self.name.lower()
            or q in (self.description or "").lower()
            or any(q in t.lower() for t in self.tags)
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "visibility": self.visibility.value,
            "category": self.category,
            "source": self.source,
            "size": self.size,
            "is_representative": self.is_representative,
            "tags": list(self.tags),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Document":
        try:
            size = int(data.get("size") or 0)
        except (TypeError, ValueError):
            raise InvalidInputError(
                f"Document size must be an integer, got {data.get('size')!r}", details={"size": "invalid"}
            ) from None
        if size < 0:
            raise InvalidInputError("Document size must be >= 0", details={"size": "invalid"})
        return cls(
            id=str(data["id"]),
            name=data.get("name") or str(data["id"]),
            visibility=coerce_visibility(data.get("visibility")),
            category=data.get("category") or "vdr_upload",
            source=data.get("source") or "manual",
            size=size,
            is_representative=bool(data.get("is_representative", False)),
            tags=list(data.get("tags") or []),
            description=data.get("description") or "",
        )
