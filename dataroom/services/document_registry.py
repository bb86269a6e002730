"""
Document registry — the aggregator's feed into the governance engine.

Source systems (project deliverables, KPI reports, manual uploads) push plain
document records here. The engine itself only changes ``visibility``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from dataroom.core.exceptions import InvalidInputError, NotFoundError
from dataroom.models.document import Document, Visibility, coerce_visibility
from dataroom.services.helpers.keyed_store import DataRoomStore
from dataroom.services.visibility import filter_visible

logger = logging.getLogger(__name__)


class DocumentRegistry:

    def __init__(self, store: DataRoomStore) -> None:
        self._docs = store.documents

    def register(self, data: Document | dict) -> Document:
        """Insert or replace a document record. Re-registering keeps the id."""
        if isinstance(data, dict):
            if not data.get("id"):
                raise InvalidInputError("Document id is required", details={"id": "required"})
            doc = Document.from_dict(data)
        elif isinstance(data, Document):
            doc = data
        else:
            raise InvalidInputError("Document must be an object", details={"document": type(data).__name__})
        if not str(doc.id).strip():
            raise InvalidInputError("Document id is required", details={"id": "required"})
        with self._docs.lock(doc.id):
            self._docs.put(doc.id, doc)
        logger.debug("Document registered: %s (%s)", doc.id, doc.visibility.value)
        return doc

    def register_many(self, records: Iterable[Document | dict]) -> list[Document]:
        return [self.register(r) for r in records]

    def get(self, document_id: str) -> Document:
        return self._docs.require(document_id)

    def update_visibility(self, document_id: str, visibility) -> Document:
        """Set a document's visibility; unrecognised values fall back to private."""
        with self._docs.lock(document_id):
            doc = self._docs.get(document_id)
            if doc is None:
                raise NotFoundError("Document", document_id)
            old = doc.visibility
            doc.visibility = coerce_visibility(visibility)
        logger.info("Document %s visibility %s -> %s", document_id, old.value, doc.visibility.value)
        return doc

    def list_documents(self, *, viewer_tier=None, category=None, search=None) -> list[Document]:
        docs = sorted(self._docs.values(), key=lambda d: d.name.lower())
        if viewer_tier is not None:
            docs = filter_visible(docs, viewer_tier)
        if category:
            docs = [d for d in docs if d.category == category]
        if search:
            docs = [d for d in docs if d.matches(search)]
        return docs

    def counts_by_visibility(self) -> dict[str, int]:
        counts = {v.value: 0 for v in Visibility}
        for doc in self._docs.values():
            counts[doc.visibility.value] += 1
        return counts
