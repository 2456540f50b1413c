import asyncio

import httpx
import pytest

from relationship_service.domain.models import (
    AccountField,
    AccountPrivacy,
    FollowStatus,
    Mutation,
    NotificationKind,
    RelationshipSet,
)
from relationship_service.directory import HttpAccountDirectory, StoreAccountDirectory
from relationship_service.domain.repositories import IAccountDirectory, INotificationDispatcher
from relationship_service.exceptions import (
    ActorAccountMissing,
    AlreadyFollowing,
    AlreadyPending,
    BlockedRelationship,
    NoPendingRequest,
    NotAuthenticated,
    RelationshipError,
    SelfTarget,
    TargetAccountMissing,
)
from relationship_service.infrastructure.memory import InMemoryDocumentBackend
from relationship_service.service import RelationshipService
from relationship_service.store import RelationshipStore


class FailingNotifier(INotificationDispatcher):
    async def emit(self, kind, from_account_id, to_account_id, from_display_name=None):
        raise RuntimeError("broker down")


async def _account(store, account_id):
    account = await store.get(account_id)
    assert account is not None
    return account


async def _assert_mirrored(store, account_ids):
    accounts = {i: await _account(store, i) for i in account_ids}
    for a in accounts.values():
        assert a.id not in a.following
        for b in accounts.values():
            assert (b.id in a.following) == (a.id in b.followers)


async def test_follow_public_account_is_immediate(service, store, register, notifier):
    await register("alice")
    await register("bob")

    status = await service.request_or_direct_follow("alice", "bob")

    assert status == FollowStatus.FOLLOWING
    assert (await _account(store, "bob")).followers == {"alice"}
    assert (await _account(store, "alice")).following == {"bob"}
    assert notifier.events == [(NotificationKind.FOLLOW_ACCEPTED, "alice", "bob", "Alice")]


async def test_follow_private_account_creates_request(service, store, register, notifier):
    await register("alice")
    await register("bob", private=True)

    status = await service.request_or_direct_follow("alice", "bob")

    assert status == FollowStatus.PENDING
    assert (await _account(store, "bob")).pending_followers == {"alice"}
    assert (await _account(store, "alice")).following == frozenset()
    assert notifier.events == [(NotificationKind.FOLLOW_REQUESTED, "alice", "bob", "Alice")]


async def test_reject_leaves_no_follow(service, store, register):
    await register("alice")
    await register("bob", private=True)
    await service.request_or_direct_follow("alice", "bob")

    await service.reject_follow_request("bob", "alice")

    bob = await _account(store, "bob")
    assert bob.pending_followers == frozenset()
    assert "alice" not in bob.followers
    with pytest.raises(NoPendingRequest):
        await service.reject_follow_request("bob", "alice")


async def test_block_while_following_cascades(service, store, register):
    await register("alice")
    await register("bob")
    await service.request_or_direct_follow("alice", "bob")

    await service.block("alice", "bob")

    alice = await _account(store, "alice")
    bob = await _account(store, "bob")
    assert alice.blocked_users == {"bob"}
    assert alice.following == frozenset()
    assert bob.followers == frozenset()


async def test_duplicate_request_is_rejected(service, store, register):
    await register("alice")
    await register("bob", private=True)
    await service.request_or_direct_follow("alice", "bob")

    with pytest.raises(AlreadyPending):
        await service.request_or_direct_follow("alice", "bob")

    assert (await _account(store, "bob")).pending_followers == {"alice"}


async def test_concurrent_duplicate_requests_converge(service, store, register):
    await register("alice")
    await register("bob", private=True)

    results = await asyncio.gather(
        service.request_or_direct_follow("alice", "bob"),
        service.request_or_direct_follow("alice", "bob"),
        return_exceptions=True,
    )

    assert FollowStatus.PENDING in results
    assert all(r == FollowStatus.PENDING or isinstance(r, AlreadyPending) for r in results)
    assert (await _account(store, "bob")).pending_followers == {"alice"}


async def test_cancel_request(service, store, register):
    await register("alice")
    await register("bob", private=True)
    await service.request_or_direct_follow("alice", "bob")

    await service.cancel_follow_request("alice", "bob")

    assert "alice" not in (await _account(store, "bob")).pending_followers
    with pytest.raises(NoPendingRequest):
        await service.cancel_follow_request("alice", "bob")


async def test_request_then_accept_round_trip(service, store, register, notifier):
    await register("alice")
    await register("bob", private=True)
    await service.request_or_direct_follow("alice", "bob")

    await service.accept_follow_request("bob", "alice")

    alice = await _account(store, "alice")
    bob = await _account(store, "bob")
    assert "bob" in alice.following
    assert "alice" in bob.followers
    assert "alice" not in bob.pending_followers
    assert notifier.events[-1] == (NotificationKind.FOLLOW_ACCEPTED, "bob", "alice", "Bob")


async def test_accept_without_request(service, register):
    await register("alice")
    await register("bob", private=True)

    with pytest.raises(NoPendingRequest):
        await service.accept_follow_request("bob", "alice")


async def test_accept_across_block_is_refused(service, store, register):
    await register("alice")
    await register("bob", private=True)
    await service.request_or_direct_follow("alice", "bob")
    # A block that landed without its cascade
    await store.apply([Mutation.add("alice", RelationshipSet.BLOCKED_USERS, "bob")])

    with pytest.raises(BlockedRelationship):
        await service.accept_follow_request("bob", "alice")

    assert "alice" in (await _account(store, "bob")).pending_followers


async def test_follow_validation(service, register):
    await register("alice")
    await register("bob")

    with pytest.raises(SelfTarget):
        await service.request_or_direct_follow("alice", "alice")

    await service.request_or_direct_follow("alice", "bob")
    with pytest.raises(AlreadyFollowing):
        await service.request_or_direct_follow("alice", "bob")

    with pytest.raises(TargetAccountMissing):
        await service.request_or_direct_follow("alice", "nobody")

    with pytest.raises(ActorAccountMissing):
        await service.request_or_direct_follow("nobody", "bob")

    with pytest.raises(NotAuthenticated):
        await service.request_or_direct_follow("", "bob")


async def test_follow_across_block_is_refused(service, register):
    await register("alice")
    await register("bob")
    await service.block("bob", "alice")

    with pytest.raises(BlockedRelationship):
        await service.request_or_direct_follow("alice", "bob")
    with pytest.raises(BlockedRelationship):
        await service.request_or_direct_follow("bob", "alice")


async def test_block_is_idempotent(service, store, register):
    await register("alice")
    await register("bob")
    await service.request_or_direct_follow("alice", "bob")

    await service.block("alice", "bob")
    once = await _account(store, "alice")
    await service.block("alice", "bob")
    twice = await _account(store, "alice")

    assert once == twice


async def test_block_keeps_reverse_follow(service, store, register):
    await register("alice")
    await register("bob")
    await service.request_or_direct_follow("bob", "alice")

    await service.block("alice", "bob")

    assert "alice" in (await _account(store, "bob")).following
    assert "bob" in (await _account(store, "alice")).followers


async def test_symmetric_block_drops_reverse_follow(store, register, notifier):
    service = RelationshipService(store, StoreAccountDirectory(store), notifier, symmetric_block=True)
    await register("alice")
    await register("bob")
    await service.request_or_direct_follow("bob", "alice")
    await service.request_or_direct_follow("alice", "bob")

    await service.block("alice", "bob")

    alice = await _account(store, "alice")
    bob = await _account(store, "bob")
    assert alice.following == alice.followers == frozenset()
    assert bob.following == bob.followers == frozenset()


async def test_block_clears_requests_both_ways(service, store, register):
    await register("alice", private=True)
    await register("bob", private=True)
    await service.request_or_direct_follow("alice", "bob")
    await service.request_or_direct_follow("bob", "alice")

    await service.block("alice", "bob")

    assert (await _account(store, "alice")).pending_followers == frozenset()
    assert (await _account(store, "bob")).pending_followers == frozenset()


async def test_unblock_does_not_restore(service, store, register):
    await register("alice")
    await register("bob")
    await service.request_or_direct_follow("alice", "bob")
    await service.block("alice", "bob")

    await service.unblock("alice", "bob")
    await service.unblock("alice", "bob")

    alice = await _account(store, "alice")
    assert alice.blocked_users == frozenset()
    assert alice.following == frozenset()


async def test_unfollow(service, store, register):
    await register("alice")
    await register("bob")

    # Not following: no-op
    await service.unfollow("alice", "bob")

    await service.request_or_direct_follow("alice", "bob")
    await service.unfollow("alice", "bob")

    assert (await _account(store, "alice")).following == frozenset()
    assert (await _account(store, "bob")).followers == frozenset()

    with pytest.raises(SelfTarget):
        await service.unfollow("alice", "alice")


async def test_unfollow_repairs_one_sided_edge(service, store, register):
    await register("alice")
    await register("bob")
    await register("carol")
    await store.apply([Mutation.add("alice", RelationshipSet.FOLLOWING, "bob")])
    await store.apply([Mutation.add("carol", RelationshipSet.FOLLOWERS, "alice")])

    await service.unfollow("alice", "bob")
    await service.unfollow("alice", "carol")

    await _assert_mirrored(store, ["alice", "bob", "carol"])
    assert (await _account(store, "alice")).following == frozenset()


async def test_public_follow_clears_stale_request(service, store, register):
    await register("alice")
    await register("bob", private=True)
    await service.request_or_direct_follow("alice", "bob")
    await service.set_account_privacy("bob", AccountPrivacy.PUBLIC)

    status = await service.request_or_direct_follow("alice", "bob")

    bob = await _account(store, "bob")
    assert status == FollowStatus.FOLLOWING
    assert bob.pending_followers == frozenset()
    assert bob.followers == {"alice"}


async def test_mirror_invariant_after_mixed_operations(service, store, register):
    ids = ["a", "b", "c", "d"]
    for account_id in ids:
        await register(account_id, private=account_id in ("b", "d"))

    steps = [
        ("request_or_direct_follow", "a", "b"),
        ("request_or_direct_follow", "a", "c"),
        ("request_or_direct_follow", "c", "b"),
        ("accept_follow_request", "b", "a"),
        ("request_or_direct_follow", "d", "a"),
        ("block", "b", "c"),
        ("request_or_direct_follow", "c", "d"),
        ("accept_follow_request", "d", "c"),
        ("unfollow", "a", "c"),
        ("block", "a", "d"),
        ("request_or_direct_follow", "b", "a"),
        ("unblock", "b", "c"),
        ("request_or_direct_follow", "c", "a"),
        ("block", "c", "a"),
        ("accept_follow_request", "b", "c"),
    ]
    for name, actor, target in steps:
        try:
            await getattr(service, name)(actor, target)
        except RelationshipError:
            pass

    await _assert_mirrored(store, ids)


async def test_query_relationship(service, register):
    await register("alice")
    await register("bob", private=True)
    await service.request_or_direct_follow("alice", "bob")
    await service.request_or_direct_follow("bob", "alice")

    state = await service.query_relationship("alice", "bob")

    assert state.b_follows_a
    assert not state.a_follows_b
    assert state.pending
    assert not state.requested
    assert not state.blocked_by_a and not state.blocked_by_b

    reverse = await service.query_relationship("bob", "alice")
    assert reverse.requested
    assert reverse.a_follows_b


async def test_query_relationship_ignores_one_sided_edge(service, store, register):
    await register("alice")
    await register("bob")
    await store.apply([Mutation.add("alice", RelationshipSet.FOLLOWING, "bob")])

    state = await service.query_relationship("alice", "bob")

    assert not state.a_follows_b


async def test_relationship_cache_is_invalidated(service, cache, register):
    await register("alice")
    await register("bob")

    before = await service.query_relationship("alice", "bob")
    generation = await cache.generation("alice", "bob")
    assert await cache.get_relationship("alice", "bob", generation) is not None

    await service.request_or_direct_follow("alice", "bob")

    generation = await cache.generation("alice", "bob")
    assert await cache.get_relationship("alice", "bob", generation) is None
    after = await service.query_relationship("alice", "bob")
    assert not before.a_follows_b
    assert after.a_follows_b


async def test_read_racing_a_write_does_not_pin_stale_state(service, store, register, monkeypatch):
    await register("alice")
    await register("bob")
    read = store.get
    raced = []

    async def racing_get(account_id):
        account = await read(account_id)
        if not raced:
            raced.append(account_id)
            await service.request_or_direct_follow("alice", "bob")
        return account

    monkeypatch.setattr(store, "get", racing_get)

    stale = await service.query_relationship("alice", "bob")
    fresh = await service.query_relationship("alice", "bob")

    assert not stale.a_follows_b
    assert fresh.a_follows_b


class PrivacyFlipBackend(InMemoryDocumentBackend):
    """Makes an account private just before the first guarded write lands"""

    def __init__(self, account_id):
        super().__init__()
        self.account_id = account_id
        self.flipped = False

    async def apply(self, collection, mutations, expected_versions):
        if expected_versions and not self.flipped:
            self.flipped = True
            await super().apply(
                collection,
                [Mutation.set(self.account_id, AccountField.PRIVACY, AccountPrivacy.PRIVATE.value)],
                {},
            )
        return await super().apply(collection, mutations, expected_versions)


async def test_privacy_switch_during_follow_becomes_request(notifier):
    store = RelationshipStore(PrivacyFlipBackend("bob"), base_delay=0)
    await store.register("alice", AccountPrivacy.PUBLIC)
    await store.register("bob", AccountPrivacy.PUBLIC)
    service = RelationshipService(store, StoreAccountDirectory(store), notifier)

    status = await service.request_or_direct_follow("alice", "bob")

    bob = await store.get("bob")
    assert bob.is_private
    assert status == FollowStatus.PENDING
    assert bob.pending_followers == {"alice"}
    assert bob.followers == frozenset()


async def test_privacy_is_enforced_with_http_directory(store, register, notifier):
    def handler(request):
        account_id = request.url.path.rsplit("/", 1)[-1]
        return httpx.Response(200, json={"id": account_id, "username": account_id, "is_private": False})

    directory = HttpAccountDirectory(base_url="http://auth")
    directory.client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://auth")
    service = RelationshipService(store, directory, notifier)
    await register("alice")
    await register("bob")

    await service.set_account_privacy("bob", AccountPrivacy.PRIVATE)

    assert await service.request_or_direct_follow("alice", "bob") == FollowStatus.PENDING
    assert (await service.can_message("alice", "bob")).reason == "not_following"
    assert notifier.events[-1] == (NotificationKind.FOLLOW_REQUESTED, "alice", "bob", "alice")


class BrokenDirectory(IAccountDirectory):
    async def get(self, account_id):
        raise ValueError("malformed profile")


async def test_directory_failure_does_not_fail_follow(store, register, notifier):
    service = RelationshipService(store, BrokenDirectory(), notifier)
    await register("alice")
    await register("bob")

    status = await service.request_or_direct_follow("alice", "bob")

    assert status == FollowStatus.FOLLOWING
    assert notifier.events == [(NotificationKind.FOLLOW_ACCEPTED, "alice", "bob", None)]



async def test_notification_failure_does_not_fail_follow(store, register):
    service = RelationshipService(store, StoreAccountDirectory(store), FailingNotifier())
    await register("alice")
    await register("bob", private=True)

    status = await service.request_or_direct_follow("alice", "bob")

    assert status == FollowStatus.PENDING
    assert (await _account(store, "bob")).pending_followers == {"alice"}


async def test_can_message(service, register):
    await register("alice")
    await register("bob", private=True)
    await register("carol")

    assert (await service.can_message("alice", "alice")).reason == "self"
    assert (await service.can_message("bob", "carol")).allowed

    denied = await service.can_message("alice", "bob")
    assert not denied.allowed and denied.reason == "not_following"

    await service.request_or_direct_follow("alice", "bob")
    await service.accept_follow_request("bob", "alice")
    one_way = await service.can_message("alice", "bob")
    assert not one_way.allowed and one_way.reason == "not_followed_back"

    await service.request_or_direct_follow("bob", "alice")
    mutual = await service.can_message("alice", "bob")
    assert mutual.allowed and mutual.reason == "mutual_follow"

    await service.block("carol", "alice")
    assert (await service.can_message("alice", "carol")).reason == "blocked_by_target"
    assert (await service.can_message("carol", "alice")).reason == "blocked"


async def test_lists_are_sorted_and_paginated(service, register):
    await register("star")
    for follower in ["e", "c", "a", "d", "b"]:
        await register(follower)
        await service.request_or_direct_follow(follower, "star")

    items, total, has_more = await service.list_followers("star", page=1, page_size=2)
    assert items == ["a", "b"]
    assert total == 5
    assert has_more

    items, total, has_more = await service.list_followers("star", page=3, page_size=2)
    assert items == ["e"]
    assert not has_more

    items, total, _ = await service.list_following("a")
    assert items == ["star"]
    assert total == 1

    with pytest.raises(TargetAccountMissing):
        await service.list_followers("nobody")


async def test_pending_and_blocked_lists(service, register):
    await register("owner", private=True)
    await register("x")
    await register("y")
    await service.request_or_direct_follow("y", "owner")
    await service.request_or_direct_follow("x", "owner")
    await service.block("owner", "y")

    pending, total, _ = await service.list_pending_requests("owner")
    assert pending == ["x"]
    assert total == 1

    blocked, _, _ = await service.list_blocked("owner")
    assert blocked == ["y"]


async def test_stats(service, cache, register):
    await register("owner", private=True)
    await register("x")
    await register("y")
    await service.request_or_direct_follow("x", "owner")
    await service.accept_follow_request("owner", "x")
    await service.request_or_direct_follow("y", "owner")

    stats = await service.get_stats("owner")
    assert stats.follower_count == 1
    assert stats.following_count == 0
    assert stats.pending_requests_count == 1
    assert stats.blocked_count == 0

    await service.block("owner", "y")
    stats = await service.get_stats("owner")
    assert stats.pending_requests_count == 0
    assert stats.blocked_count == 1


async def test_privacy_change(service, store, register):
    await register("alice")
    await register("bob")

    await service.set_account_privacy("bob", AccountPrivacy.PRIVATE)

    assert (await _account(store, "bob")).is_private
    assert await service.request_or_direct_follow("alice", "bob") == FollowStatus.PENDING


async def test_register_is_idempotent(service, store):
    assert await service.register_account("alice", AccountPrivacy.PRIVATE, "Alice")
    assert not await service.register_account("alice")

    alice = await _account(store, "alice")
    assert alice.is_private
    assert alice.display_name == "Alice"
