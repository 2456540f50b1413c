"""
MongoDB connection and document backend
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, DuplicateKeyError, OperationFailure
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from ..config import settings
from ..domain.models import Mutation, MutationOp
from ..domain.repositories import ApplyResult, IDocumentBackend
from ..exceptions import TransportError

logger = logging.getLogger(__name__)

# (document_id, position among the updates of that document, update document)
Update = Tuple[str, int, Dict[str, Any]]


class _VersionMismatch(Exception):
    def __init__(self, document_id: str):
        super().__init__(document_id)
        self.document_id = document_id


def build_updates(mutations: Sequence[Mutation]) -> List[Update]:
    """
    Group mutations into MongoDB update documents

    Mutations on one document share an update unless a field would be hit
    by two different operators, which MongoDB rejects; that starts another
    update for the document. Every update increments the document version.
    """
    updates: List[Update] = []
    open_updates: Dict[str, Tuple[int, Dict[str, Any], Dict[str, MutationOp]]] = {}

    for mutation in mutations:
        entry = open_updates.get(mutation.document_id)
        if entry is not None:
            previous_op = entry[2].get(mutation.field)
            clash = previous_op is not None and (
                previous_op != mutation.op or mutation.op == MutationOp.SET
            )
            if clash:
                entry = (entry[0] + 1, {"$inc": {"version": 1}}, {})
                open_updates[mutation.document_id] = entry
                updates.append((mutation.document_id, entry[0], entry[1]))
        else:
            entry = (0, {"$inc": {"version": 1}}, {})
            open_updates[mutation.document_id] = entry
            updates.append((mutation.document_id, 0, entry[1]))

        _, update, ops = entry
        ops[mutation.field] = mutation.op
        if mutation.op == MutationOp.ADD:
            adds = update.setdefault("$addToSet", {})
            adds.setdefault(mutation.field, {"$each": []})["$each"].append(mutation.value)
        elif mutation.op == MutationOp.REMOVE:
            pulls = update.setdefault("$pull", {})
            pulls.setdefault(mutation.field, {"$in": []})["$in"].append(mutation.value)
        else:
            update.setdefault("$set", {})[mutation.field] = mutation.value

    return updates


class MongoDB:
    """MongoDB connection manager"""

    def __init__(self):
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    async def connect(self):
        """Connect to MongoDB"""
        self.client = AsyncIOMotorClient(
            settings.MONGODB_URL,
            serverSelectionTimeoutMS=settings.MONGODB_TIMEOUT_MS,
        )
        self.db = self.client[settings.MONGODB_DATABASE]

        try:
            await self.client.admin.command("ping")
        except ConnectionFailure as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

        # Group lookups by member
        await self.db[settings.MONGODB_GROUPS_COLLECTION].create_index("members")

        logger.info(f"Connected to MongoDB database {settings.MONGODB_DATABASE}")

    async def disconnect(self):
        """Disconnect from MongoDB"""
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")


class MongoDocumentBackend(IDocumentBackend):
    """Document backend using motor"""

    def __init__(self, mongodb: MongoDB, use_transactions: bool = True):
        self.mongodb = mongodb
        self.use_transactions = use_transactions

    def _collection(self, name: str) -> AsyncIOMotorCollection:
        return self.mongodb.db[name]

    @staticmethod
    def _filter(document_id: str, position: int, expected_versions: Dict[str, int]) -> Dict[str, Any]:
        query: Dict[str, Any] = {"_id": document_id}
        if document_id in expected_versions:
            query["version"] = expected_versions[document_id] + position
        return query

    async def find(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._collection(collection).find_one({"_id": document_id})
        except ConnectionFailure as e:
            raise TransportError(f"find {collection}/{document_id} failed: {e}")

    async def insert(self, collection: str, document: Dict[str, Any]) -> bool:
        try:
            await self._collection(collection).insert_one(document)
            return True
        except DuplicateKeyError:
            return False
        except ConnectionFailure as e:
            raise TransportError(f"insert into {collection} failed: {e}")

    async def apply(
        self,
        collection: str,
        mutations: Sequence[Mutation],
        expected_versions: Dict[str, int],
    ) -> ApplyResult:
        updates = build_updates(mutations)
        coll = self._collection(collection)
        try:
            if self.use_transactions:
                return await self._apply_in_transaction(coll, updates, expected_versions)
            return await self._apply_sequentially(coll, updates, expected_versions)
        except ConnectionFailure as e:
            raise TransportError(f"write to {collection} failed: {e}")

    async def _apply_in_transaction(
        self,
        coll: AsyncIOMotorCollection,
        updates: List[Update],
        expected_versions: Dict[str, int],
    ) -> ApplyResult:
        """
        All-or-nothing write of every touched document

        with_transaction re-runs the body on TransientTransactionError and
        retries the commit on UnknownTransactionCommitResult. A commit whose
        outcome is still unknown afterwards surfaces as a TransportError.
        """

        async def write(session):
            for document_id, position, update in updates:
                result = await coll.update_one(
                    self._filter(document_id, position, expected_versions),
                    update,
                    session=session,
                )
                if result.matched_count == 0:
                    raise _VersionMismatch(document_id)

        async with await self.mongodb.client.start_session() as session:
            try:
                await session.with_transaction(write)
            except _VersionMismatch as e:
                return ApplyResult(applied=False, conflict_on=e.document_id)
            except OperationFailure as e:
                if e.has_error_label("UnknownTransactionCommitResult"):
                    logger.error(f"Commit outcome unknown on {coll.name}: {e}")
                    raise TransportError("commit_outcome_unknown")
                if e.has_error_label("TransientTransactionError"):
                    logger.warning(f"Transaction aborted on {coll.name}: {e}")
                    return ApplyResult(applied=False)
                raise

        return ApplyResult(applied=True, written=list(dict.fromkeys(u[0] for u in updates)))

    async def _apply_sequentially(
        self,
        coll: AsyncIOMotorCollection,
        updates: List[Update],
        expected_versions: Dict[str, int],
    ) -> ApplyResult:
        """Ordered per-document writes for servers without transactions"""
        written: List[str] = []
        for document_id, position, update in updates:
            result = await coll.update_one(
                self._filter(document_id, position, expected_versions), update
            )
            if result.matched_count == 0:
                return ApplyResult(applied=False, written=written, conflict_on=document_id)
            if document_id not in written:
                written.append(document_id)
        return ApplyResult(applied=True, written=written)


# Global MongoDB instance
mongodb = MongoDB()
