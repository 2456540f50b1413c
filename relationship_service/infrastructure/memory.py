"""
In-process document backend for local development and tests
"""
import asyncio
import copy
from typing import Any, Dict, Optional, Sequence
import logging

from ..domain.models import Mutation, MutationOp
from ..domain.repositories import ApplyResult, IDocumentBackend

logger = logging.getLogger(__name__)


class InMemoryDocumentBackend(IDocumentBackend):
    """
    Dictionary-backed document store

    Applies every batch atomically under a lock, with the same version check
    the MongoDB backend performs, so it behaves like a transactional store.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    def _documents(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    async def find(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        document = self._documents(collection).get(document_id)
        return copy.deepcopy(document) if document is not None else None

    async def insert(self, collection: str, document: Dict[str, Any]) -> bool:
        async with self._lock:
            documents = self._documents(collection)
            if document["_id"] in documents:
                return False
            documents[document["_id"]] = copy.deepcopy(document)
            return True

    async def apply(
        self,
        collection: str,
        mutations: Sequence[Mutation],
        expected_versions: Dict[str, int],
    ) -> ApplyResult:
        async with self._lock:
            documents = self._documents(collection)
            order = list(dict.fromkeys(m.document_id for m in mutations))

            for document_id in order:
                document = documents.get(document_id)
                if document is None:
                    return ApplyResult(applied=False, conflict_on=document_id)
                expected = expected_versions.get(document_id)
                if expected is not None and document.get("version", 0) != expected:
                    return ApplyResult(applied=False, conflict_on=document_id)

            for mutation in mutations:
                document = documents[mutation.document_id]
                if mutation.op == MutationOp.SET:
                    document[mutation.field] = mutation.value
                    continue
                values = document.setdefault(mutation.field, [])
                if mutation.op == MutationOp.ADD and mutation.value not in values:
                    values.append(mutation.value)
                elif mutation.op == MutationOp.REMOVE and mutation.value in values:
                    values.remove(mutation.value)

            for document_id in order:
                documents[document_id]["version"] = documents[document_id].get("version", 0) + 1

            return ApplyResult(applied=True, written=order)
