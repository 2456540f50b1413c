"""
Relationship and group stores with transactional retry discipline
"""
import asyncio
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar
import logging

from .config import settings
from .domain.models import Account, AccountPrivacy, Group, Mutation, MutationOp, Plan
from .domain.repositories import ApplyResult, IDocumentBackend
from .exceptions import ConflictError, TransportError
from .infrastructure.memory import InMemoryDocumentBackend
from .infrastructure.mongodb import MongoDocumentBackend, mongodb

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DocumentStore(Generic[T]):
    """
    Typed adapter over one collection of a document backend

    transact() is the read-validate-write unit every service operation goes
    through: it reads a snapshot of each named document, lets the caller
    decide on a Plan, then applies the plan conditioned on the snapshot
    versions. Conflicts and transport failures are retried with exponential
    backoff; errors raised by decide() propagate untouched.
    """

    def __init__(
        self,
        backend: IDocumentBackend,
        collection: str,
        parse: Callable[[Dict[str, Any]], T],
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
    ):
        self.backend = backend
        self.collection = collection
        self.parse = parse
        self.max_attempts = max_attempts or settings.STORE_MAX_ATTEMPTS
        self.base_delay = settings.STORE_RETRY_BASE_DELAY if base_delay is None else base_delay
        self.max_delay = settings.STORE_RETRY_MAX_DELAY if max_delay is None else max_delay

    def _delay(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    async def get(self, document_id: str) -> Optional[T]:
        """Get a typed snapshot, or None if the document does not exist"""
        for attempt in range(1, self.max_attempts + 1):
            try:
                document = await self.backend.find(self.collection, document_id)
                return self.parse(document) if document is not None else None
            except TransportError as e:
                if attempt == self.max_attempts:
                    logger.error(f"Giving up reading {self.collection}/{document_id}: {e}")
                    raise
                logger.warning(
                    f"Read of {self.collection}/{document_id} failed "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )
                await asyncio.sleep(self._delay(attempt))

    async def apply(
        self, mutations: Sequence[Mutation], expected_versions: Optional[Dict[str, int]] = None
    ) -> ApplyResult:
        """Apply mutations once, without retry"""
        return await self.backend.apply(self.collection, mutations, expected_versions or {})

    async def create(self, document: Dict[str, Any]) -> bool:
        """Insert a new document; False if it already exists"""
        return await self.backend.insert(self.collection, document)

    async def transact(
        self,
        document_ids: Iterable[str],
        decide: Callable[[Dict[str, Optional[T]]], Plan],
    ) -> Any:
        """Run a read-validate-write unit and return the plan's result"""
        ids = list(dict.fromkeys(document_ids))
        last_error: Exception = ConflictError()

        for attempt in range(1, self.max_attempts + 1):
            try:
                raw = {i: await self.backend.find(self.collection, i) for i in ids}
                snapshots = {i: (self.parse(d) if d is not None else None) for i, d in raw.items()}

                plan = decide(snapshots)
                if not plan.mutations:
                    return plan.result

                versions = {i: d.get("version", 0) for i, d in raw.items() if d is not None}
                result = await self.backend.apply(self.collection, plan.mutations, versions)
                if result.applied:
                    return plan.result

                if result.written:
                    await self._compensate(plan.mutations, result.written, raw)
                logger.warning(
                    f"Write conflict on {self.collection}/{result.conflict_on} "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                last_error = ConflictError()
            except TransportError as e:
                logger.warning(
                    f"Store unavailable for {self.collection} "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )
                last_error = e

            if attempt < self.max_attempts:
                await asyncio.sleep(self._delay(attempt))

        logger.error(f"Retries exhausted on {self.collection} for {ids}: {last_error.reason}")
        raise last_error

    async def _compensate(
        self,
        mutations: Sequence[Mutation],
        written: List[str],
        snapshot: Dict[str, Optional[Dict[str, Any]]],
    ):
        """Undo the effective part of a partially applied plan"""
        inverse: List[Mutation] = []
        for mutation in mutations:
            if mutation.document_id not in written:
                continue
            document = snapshot.get(mutation.document_id) or {}
            if mutation.op == MutationOp.SET:
                inverse.append(
                    Mutation(mutation.document_id, mutation.field, MutationOp.SET, document.get(mutation.field))
                )
                continue
            present = mutation.value in (document.get(mutation.field) or [])
            if mutation.op == MutationOp.ADD and not present:
                inverse.append(
                    Mutation(mutation.document_id, mutation.field, MutationOp.REMOVE, mutation.value)
                )
            elif mutation.op == MutationOp.REMOVE and present:
                inverse.append(
                    Mutation(mutation.document_id, mutation.field, MutationOp.ADD, mutation.value)
                )

        if not inverse:
            return

        try:
            await self.backend.apply(self.collection, inverse, {})
            logger.warning(f"Compensated partial write on {self.collection}: {written}")
        except TransportError as e:
            # Leaves a one-sided edge for the reconciliation sweep
            logger.error(f"Failed to compensate partial write on {self.collection} {written}: {e}")


class RelationshipStore(DocumentStore[Account]):
    """Per-account relationship sets"""

    def __init__(self, backend: IDocumentBackend, collection: Optional[str] = None, **kwargs):
        super().__init__(
            backend,
            collection or settings.MONGODB_ACCOUNTS_COLLECTION,
            Account.from_document,
            **kwargs,
        )

    async def register(
        self,
        account_id: str,
        privacy: AccountPrivacy = AccountPrivacy.PUBLIC,
        display_name: Optional[str] = None,
    ) -> bool:
        """Create the relationship document for an account if missing"""
        created = await self.create(Account.new_document(account_id, privacy, display_name))
        if created:
            logger.info(f"Registered relationship document for account {account_id}")
        return created


class GroupStore(DocumentStore[Group]):
    """Per-group role sets"""

    def __init__(self, backend: IDocumentBackend, collection: Optional[str] = None, **kwargs):
        super().__init__(
            backend,
            collection or settings.MONGODB_GROUPS_COLLECTION,
            Group.from_document,
            **kwargs,
        )

    async def create_group(self, group_id: str, owner_id: str, name: Optional[str] = None) -> bool:
        return await self.create(Group.new_document(group_id, owner_id, name))


def create_backend() -> IDocumentBackend:
    """Build the configured document backend"""
    if settings.STORE_BACKEND == "memory":
        logger.info("Using in-memory document backend")
        return InMemoryDocumentBackend()
    return MongoDocumentBackend(mongodb, use_transactions=settings.MONGODB_TRANSACTIONS_ENABLED)
