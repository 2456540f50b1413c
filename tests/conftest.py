from typing import List, Optional, Tuple

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from relationship_service.cache import RedisCache
from relationship_service.directory import StoreAccountDirectory
from relationship_service.domain.models import AccountPrivacy, NotificationKind
from relationship_service.domain.repositories import INotificationDispatcher
from relationship_service.infrastructure.memory import InMemoryDocumentBackend
from relationship_service.membership import MembershipService
from relationship_service.service import RelationshipService
from relationship_service.store import GroupStore, RelationshipStore


class RecordingNotifier(INotificationDispatcher):
    """Keeps every emitted event for assertions"""

    def __init__(self):
        self.events: List[Tuple[NotificationKind, str, str, Optional[str]]] = []

    async def emit(self, kind, from_account_id, to_account_id, from_display_name=None):
        self.events.append((kind, from_account_id, to_account_id, from_display_name))


@pytest.fixture
def backend():
    return InMemoryDocumentBackend()


@pytest.fixture
def store(backend):
    return RelationshipStore(backend, base_delay=0, max_delay=0)


@pytest.fixture
def group_store(backend):
    return GroupStore(backend, base_delay=0, max_delay=0)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture
async def cache():
    client = FakeRedis(decode_responses=True)
    redis_cache = RedisCache()
    redis_cache.redis = client
    try:
        yield redis_cache
    finally:
        await client.flushall()


@pytest.fixture
def service(store, notifier, cache):
    return RelationshipService(store, StoreAccountDirectory(store), notifier, cache)


@pytest.fixture
def membership(group_store):
    return MembershipService(group_store)


@pytest.fixture
def register(store):
    """Register accounts: await register("alice", private=True)"""

    async def _register(account_id: str, private: bool = False, display_name: Optional[str] = None):
        privacy = AccountPrivacy.PRIVATE if private else AccountPrivacy.PUBLIC
        await store.register(account_id, privacy, display_name or account_id.title())
        return account_id

    return _register
