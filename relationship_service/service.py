"""
Relationship Service business logic
"""
from dataclasses import asdict
from typing import Dict, List, Optional, Tuple
import logging

from .cache import RedisCache
from .config import settings
from .domain.models import (
    Account,
    AccountField,
    AccountPrivacy,
    AccountStats,
    FollowStatus,
    MessagingPermission,
    Mutation,
    NotificationKind,
    Plan,
    RelationshipSet,
    RelationshipState,
)
from .domain.repositories import IAccountDirectory, INotificationDispatcher
from .exceptions import (
    ActorAccountMissing,
    AlreadyFollowing,
    AlreadyPending,
    BlockedRelationship,
    NoPendingRequest,
    NotAuthenticated,
    SelfTarget,
    TargetAccountMissing,
)
from .store import RelationshipStore

logger = logging.getLogger(__name__)

FOLLOWING = RelationshipSet.FOLLOWING
FOLLOWERS = RelationshipSet.FOLLOWERS
BLOCKED = RelationshipSet.BLOCKED_USERS
PENDING = RelationshipSet.PENDING_FOLLOWERS


def _actor(accounts: Dict[str, Optional[Account]], account_id: str) -> Account:
    account = accounts.get(account_id)
    if account is None:
        raise ActorAccountMissing()
    return account


def _target(accounts: Dict[str, Optional[Account]], account_id: str) -> Account:
    account = accounts.get(account_id)
    if account is None:
        raise TargetAccountMissing()
    return account


def _paginate(ids, page: int, page_size: int) -> Tuple[List[str], int, bool]:
    page = max(1, page)
    page_size = max(1, min(page_size, settings.MAX_PAGE_SIZE))
    offset = (page - 1) * page_size
    ordered = sorted(ids)
    items = ordered[offset:offset + page_size]
    return items, len(ordered), offset + page_size < len(ordered)


class RelationshipService:
    """
    Follow graph, follow requests and blocks

    Every mutating operation is a single store transaction over the
    documents it touches. Within a plan the document carrying the
    precondition being checked is written last, so a partially applied
    sequential write re-validates against unchanged state on retry.
    """

    def __init__(
        self,
        store: RelationshipStore,
        directory: IAccountDirectory,
        notifier: INotificationDispatcher,
        cache: Optional[RedisCache] = None,
        symmetric_block: Optional[bool] = None,
    ):
        self.store = store
        self.directory = directory
        self.notifier = notifier
        self.cache = cache
        self.symmetric_block = (
            settings.BLOCK_CASCADE_SYMMETRIC if symmetric_block is None else symmetric_block
        )

    @staticmethod
    def _require_actor(actor_id: Optional[str]):
        if not actor_id:
            raise NotAuthenticated()

    async def _invalidate(self, account_id: str, other_account_id: str):
        if self.cache:
            await self.cache.invalidate_pair(account_id, other_account_id)

    async def _notify(self, kind: NotificationKind, from_account_id: str, to_account_id: str):
        """Best-effort notification; failures are logged and dropped"""
        display_name = None
        try:
            profile = await self.directory.get(from_account_id)
            if profile:
                display_name = profile.display_name
        except Exception as e:
            logger.warning(f"Sending {kind.value} without display name for {from_account_id}: {e}")

        try:
            await self.notifier.emit(kind, from_account_id, to_account_id, display_name)
        except Exception as e:
            logger.error(f"Failed to emit {kind.value} from {from_account_id} to {to_account_id}: {e}")

    async def request_or_direct_follow(self, actor_id: str, target_id: str) -> FollowStatus:
        """
        Follow a public account, or request to follow a private one

        Returns:
            FollowStatus.FOLLOWING for a public target, FollowStatus.PENDING
            for a private one

        Raises:
            SelfTarget, BlockedRelationship, AlreadyFollowing, AlreadyPending,
            TargetAccountMissing, ActorAccountMissing
        """
        self._require_actor(actor_id)
        if actor_id == target_id:
            raise SelfTarget()

        def decide(accounts: Dict[str, Optional[Account]]) -> Plan:
            actor = _actor(accounts, actor_id)
            target = _target(accounts, target_id)

            if actor.has_blocked(target_id) or target.has_blocked(actor_id):
                raise BlockedRelationship()
            if actor.is_following(target_id):
                raise AlreadyFollowing()

            # Privacy comes from the guarded snapshot, not the directory
            if target.is_private:
                if target.has_pending_from(actor_id):
                    raise AlreadyPending()
                return Plan([Mutation.add(target_id, PENDING, actor_id)], FollowStatus.PENDING)

            mutations = [Mutation.add(target_id, FOLLOWERS, actor_id)]
            if target.has_pending_from(actor_id):
                # Left over from before the target went public
                mutations.append(Mutation.remove(target_id, PENDING, actor_id))
            mutations.append(Mutation.add(actor_id, FOLLOWING, target_id))
            return Plan(mutations, FollowStatus.FOLLOWING)

        status = await self.store.transact([actor_id, target_id], decide)
        logger.info(f"Account {actor_id} -> {target_id}: {status.value}")

        await self._invalidate(actor_id, target_id)
        if status == FollowStatus.PENDING:
            await self._notify(NotificationKind.FOLLOW_REQUESTED, actor_id, target_id)
        else:
            await self._notify(NotificationKind.FOLLOW_ACCEPTED, actor_id, target_id)
        return status

    async def accept_follow_request(self, owner_id: str, requester_id: str) -> None:
        """Turn a pending request into a follow"""
        self._require_actor(owner_id)
        if owner_id == requester_id:
            raise SelfTarget()

        def decide(accounts: Dict[str, Optional[Account]]) -> Plan:
            owner = _actor(accounts, owner_id)
            requester = _target(accounts, requester_id)

            if not owner.has_pending_from(requester_id):
                raise NoPendingRequest()
            if owner.has_blocked(requester_id) or requester.has_blocked(owner_id):
                raise BlockedRelationship()

            return Plan([
                Mutation.add(requester_id, FOLLOWING, owner_id),
                Mutation.remove(owner_id, PENDING, requester_id),
                Mutation.add(owner_id, FOLLOWERS, requester_id),
            ])

        await self.store.transact([owner_id, requester_id], decide)
        logger.info(f"Account {owner_id} accepted follow request from {requester_id}")

        await self._invalidate(owner_id, requester_id)
        await self._notify(NotificationKind.FOLLOW_ACCEPTED, owner_id, requester_id)

    async def reject_follow_request(self, owner_id: str, requester_id: str) -> None:
        """Drop a pending request without following"""
        self._require_actor(owner_id)

        def decide(accounts: Dict[str, Optional[Account]]) -> Plan:
            owner = _actor(accounts, owner_id)
            if not owner.has_pending_from(requester_id):
                raise NoPendingRequest()
            return Plan([Mutation.remove(owner_id, PENDING, requester_id)])

        await self.store.transact([owner_id], decide)
        logger.info(f"Account {owner_id} rejected follow request from {requester_id}")
        await self._invalidate(owner_id, requester_id)

    async def cancel_follow_request(self, requester_id: str, owner_id: str) -> None:
        """Withdraw the actor's own pending request"""
        self._require_actor(requester_id)

        def decide(accounts: Dict[str, Optional[Account]]) -> Plan:
            owner = _target(accounts, owner_id)
            if not owner.has_pending_from(requester_id):
                raise NoPendingRequest()
            return Plan([Mutation.remove(owner_id, PENDING, requester_id)])

        await self.store.transact([owner_id], decide)
        logger.info(f"Account {requester_id} cancelled follow request to {owner_id}")
        await self._invalidate(requester_id, owner_id)

    async def unfollow(self, actor_id: str, target_id: str) -> None:
        """
        Remove both sides of the actor -> target edge

        A no-op when the actor does not follow the target. A one-sided edge
        left behind by an earlier partial write is removed as well.
        """
        self._require_actor(actor_id)
        if actor_id == target_id:
            raise SelfTarget()

        def decide(accounts: Dict[str, Optional[Account]]) -> Plan:
            actor = _actor(accounts, actor_id)
            target = accounts.get(target_id)

            mutations = []
            if target is not None and target.is_followed_by(actor_id):
                mutations.append(Mutation.remove(target_id, FOLLOWERS, actor_id))
            if actor.is_following(target_id):
                mutations.append(Mutation.remove(actor_id, FOLLOWING, target_id))
            return Plan(mutations, bool(mutations))

        changed = await self.store.transact([actor_id, target_id], decide)
        if changed:
            logger.info(f"Account {actor_id} unfollowed {target_id}")
            await self._invalidate(actor_id, target_id)

    async def block(self, actor_id: str, target_id: str) -> None:
        """
        Block the target account

        Cascades: drops the actor's follow of the target and every pending
        request between the two. The target's follow of the actor is kept
        unless symmetric blocking is configured.
        """
        self._require_actor(actor_id)
        if actor_id == target_id:
            raise SelfTarget()

        symmetric = self.symmetric_block

        def decide(accounts: Dict[str, Optional[Account]]) -> Plan:
            actor = _actor(accounts, actor_id)
            target = _target(accounts, target_id)

            target_side = []
            actor_side = []

            if target.is_followed_by(actor_id):
                target_side.append(Mutation.remove(target_id, FOLLOWERS, actor_id))
            if actor.is_following(target_id):
                actor_side.append(Mutation.remove(actor_id, FOLLOWING, target_id))

            if target.has_pending_from(actor_id):
                target_side.append(Mutation.remove(target_id, PENDING, actor_id))
            if actor.has_pending_from(target_id):
                actor_side.append(Mutation.remove(actor_id, PENDING, target_id))

            if symmetric:
                if target.is_following(actor_id):
                    target_side.append(Mutation.remove(target_id, FOLLOWING, actor_id))
                if actor.is_followed_by(target_id):
                    actor_side.append(Mutation.remove(actor_id, FOLLOWERS, target_id))

            if not actor.has_blocked(target_id):
                actor_side.append(Mutation.add(actor_id, BLOCKED, target_id))

            mutations = target_side + actor_side
            return Plan(mutations, bool(mutations))

        changed = await self.store.transact([actor_id, target_id], decide)
        if changed:
            logger.info(f"Account {actor_id} blocked {target_id}")
            await self._invalidate(actor_id, target_id)

    async def unblock(self, actor_id: str, target_id: str) -> None:
        """Lift a block; earlier relationships are not restored"""
        self._require_actor(actor_id)
        if actor_id == target_id:
            raise SelfTarget()

        def decide(accounts: Dict[str, Optional[Account]]) -> Plan:
            actor = _actor(accounts, actor_id)
            if not actor.has_blocked(target_id):
                return Plan([], False)
            return Plan([Mutation.remove(actor_id, BLOCKED, target_id)], True)

        changed = await self.store.transact([actor_id], decide)
        if changed:
            logger.info(f"Account {actor_id} unblocked {target_id}")
            await self._invalidate(actor_id, target_id)

    async def query_relationship(self, account_id: str, other_account_id: str) -> RelationshipState:
        """Get both directions of the relationship between two accounts"""
        generation = None
        if self.cache:
            generation = await self.cache.generation(account_id, other_account_id)
            cached = await self.cache.get_relationship(account_id, other_account_id, generation)
            if cached:
                return RelationshipState(**cached)

        account = await self.store.get(account_id)
        if account is None:
            raise ActorAccountMissing()
        other = await self.store.get(other_account_id)
        if other is None:
            raise TargetAccountMissing()

        state = RelationshipState.between(account, other)
        if self.cache:
            await self.cache.set_relationship(account_id, other_account_id, asdict(state), generation)
        return state

    async def can_message(self, actor_id: str, target_id: str) -> MessagingPermission:
        """
        Check whether the actor may message the target

        Blocks in either direction forbid messaging. Public accounts accept
        messages from anyone else; private accounts require a mutual follow.
        """
        self._require_actor(actor_id)
        if actor_id == target_id:
            return MessagingPermission(False, "self")

        state = await self.query_relationship(actor_id, target_id)
        if state.blocked_by_a:
            return MessagingPermission(False, "blocked")
        if state.blocked_by_b:
            return MessagingPermission(False, "blocked_by_target")

        target = await self.store.get(target_id)
        if target is None:
            raise TargetAccountMissing()
        if not target.is_private:
            return MessagingPermission(True, "public")

        if not state.a_follows_b:
            return MessagingPermission(False, "not_following")
        if not state.b_follows_a:
            return MessagingPermission(False, "not_followed_back")
        return MessagingPermission(True, "mutual_follow")

    async def _account(self, account_id: str) -> Account:
        account = await self.store.get(account_id)
        if account is None:
            raise TargetAccountMissing()
        return account

    async def list_followers(
        self, account_id: str, page: int = 1, page_size: int = 20
    ) -> Tuple[List[str], int, bool]:
        """
        Get an account's followers

        Returns:
            Tuple of (follower ids, total count, has_more)
        """
        account = await self._account(account_id)
        return _paginate(account.followers, page, page_size)

    async def list_following(
        self, account_id: str, page: int = 1, page_size: int = 20
    ) -> Tuple[List[str], int, bool]:
        """Get the accounts an account follows"""
        account = await self._account(account_id)
        return _paginate(account.following, page, page_size)

    async def list_pending_requests(
        self, owner_id: str, page: int = 1, page_size: int = 20
    ) -> Tuple[List[str], int, bool]:
        """Get requests awaiting the owner's approval"""
        self._require_actor(owner_id)
        account = await self._account(owner_id)
        return _paginate(account.pending_followers, page, page_size)

    async def list_blocked(
        self, owner_id: str, page: int = 1, page_size: int = 20
    ) -> Tuple[List[str], int, bool]:
        """Get the accounts the owner has blocked"""
        self._require_actor(owner_id)
        account = await self._account(owner_id)
        return _paginate(account.blocked_users, page, page_size)

    async def get_stats(self, account_id: str) -> AccountStats:
        """Get follower, following, pending request and blocked counts"""
        generation = None
        if self.cache:
            generation = await self.cache.generation(account_id)
            cached = await self.cache.get_stats(account_id, generation)
            if cached:
                return AccountStats(**cached)

        account = await self._account(account_id)
        stats = AccountStats(
            account_id=account.id,
            follower_count=len(account.followers),
            following_count=len(account.following),
            pending_requests_count=len(account.pending_followers),
            blocked_count=len(account.blocked_users),
        )

        if self.cache:
            await self.cache.set_stats(account_id, asdict(stats), generation)
        return stats

    async def set_account_privacy(self, actor_id: str, privacy: AccountPrivacy) -> None:
        """Switch the actor's account between public and private"""
        self._require_actor(actor_id)

        def decide(accounts: Dict[str, Optional[Account]]) -> Plan:
            actor = _actor(accounts, actor_id)
            if actor.account_privacy == privacy:
                return Plan()
            return Plan([Mutation.set(actor_id, AccountField.PRIVACY, privacy.value)])

        await self.store.transact([actor_id], decide)
        logger.info(f"Account {actor_id} is now {privacy.value}")

    async def register_account(
        self,
        account_id: str,
        privacy: AccountPrivacy = AccountPrivacy.PUBLIC,
        display_name: Optional[str] = None,
    ) -> bool:
        """Provision the relationship document for a new account"""
        self._require_actor(account_id)
        return await self.store.register(account_id, privacy, display_name)
