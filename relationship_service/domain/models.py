"""
Domain models - Core business entities
"""
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional
from enum import Enum


class AccountPrivacy(str, Enum):
    """Account visibility setting"""
    PUBLIC = "public"
    PRIVATE = "private"


class AccountField(str, Enum):
    """Scalar profile fields stored on every account document"""
    PRIVACY = "accountPrivacy"
    DISPLAY_NAME = "displayName"


class RelationshipSet(str, Enum):
    """Relationship sets stored on every account document"""
    FOLLOWING = "following"
    FOLLOWERS = "followers"
    BLOCKED_USERS = "blockedUsers"
    PENDING_FOLLOWERS = "pendingFollowers"


class GroupField(str, Enum):
    """Role fields stored on every group document"""
    OWNER = "owner"
    ADMINS = "admins"
    MEMBERS = "members"


class MemberRole(str, Enum):
    """Group role, highest first"""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class FollowStatus(str, Enum):
    """Outcome of a follow attempt"""
    FOLLOWING = "following"
    PENDING = "pending"


class NotificationKind(str, Enum):
    """Events emitted to the notification dispatcher"""
    FOLLOW_REQUESTED = "follow_requested"
    FOLLOW_ACCEPTED = "follow_accepted"


class MutationOp(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    SET = "set"


@dataclass(frozen=True)
class Mutation:
    """A single field change on one stored document"""
    document_id: str
    field: str
    op: MutationOp
    value: Any

    @classmethod
    def add(cls, document_id: str, set_field: Enum, value: str) -> "Mutation":
        return cls(document_id, set_field.value, MutationOp.ADD, value)

    @classmethod
    def remove(cls, document_id: str, set_field: Enum, value: str) -> "Mutation":
        return cls(document_id, set_field.value, MutationOp.REMOVE, value)

    @classmethod
    def set(cls, document_id: str, scalar_field: Enum, value: Any) -> "Mutation":
        return cls(document_id, scalar_field.value, MutationOp.SET, value)


def _id_set(values: Optional[Any]) -> FrozenSet[str]:
    return frozenset(str(v) for v in (values or []))


@dataclass(frozen=True)
class Account:
    """Account relationship aggregate, parsed from a stored document"""
    id: str
    account_privacy: AccountPrivacy = AccountPrivacy.PUBLIC
    display_name: Optional[str] = None
    following: FrozenSet[str] = frozenset()
    followers: FrozenSet[str] = frozenset()
    blocked_users: FrozenSet[str] = frozenset()
    pending_followers: FrozenSet[str] = frozenset()
    version: int = 0

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Account":
        """Build an Account from a raw document, tolerating missing sets"""
        privacy = document.get(AccountField.PRIVACY.value) or AccountPrivacy.PUBLIC.value
        return cls(
            id=str(document["_id"]),
            account_privacy=AccountPrivacy(privacy),
            display_name=document.get(AccountField.DISPLAY_NAME.value),
            following=_id_set(document.get(RelationshipSet.FOLLOWING.value)),
            followers=_id_set(document.get(RelationshipSet.FOLLOWERS.value)),
            blocked_users=_id_set(document.get(RelationshipSet.BLOCKED_USERS.value)),
            pending_followers=_id_set(document.get(RelationshipSet.PENDING_FOLLOWERS.value)),
            version=int(document.get("version", 0)),
        )

    @staticmethod
    def new_document(
        account_id: str,
        privacy: AccountPrivacy = AccountPrivacy.PUBLIC,
        display_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Empty relationship document for a freshly registered account"""
        return {
            "_id": account_id,
            AccountField.PRIVACY.value: privacy.value,
            AccountField.DISPLAY_NAME.value: display_name,
            RelationshipSet.FOLLOWING.value: [],
            RelationshipSet.FOLLOWERS.value: [],
            RelationshipSet.BLOCKED_USERS.value: [],
            RelationshipSet.PENDING_FOLLOWERS.value: [],
            "version": 0,
        }

    @property
    def is_private(self) -> bool:
        return self.account_privacy == AccountPrivacy.PRIVATE

    def is_following(self, account_id: str) -> bool:
        return account_id in self.following

    def is_followed_by(self, account_id: str) -> bool:
        return account_id in self.followers

    def has_blocked(self, account_id: str) -> bool:
        return account_id in self.blocked_users

    def has_pending_from(self, account_id: str) -> bool:
        return account_id in self.pending_followers


@dataclass(frozen=True)
class Group:
    """Group membership aggregate"""
    id: str
    owner: str
    name: Optional[str] = None
    admins: FrozenSet[str] = frozenset()
    members: FrozenSet[str] = frozenset()
    version: int = 0

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Group":
        return cls(
            id=str(document["_id"]),
            owner=str(document[GroupField.OWNER.value]),
            name=document.get("name"),
            admins=_id_set(document.get(GroupField.ADMINS.value)),
            members=_id_set(document.get(GroupField.MEMBERS.value)),
            version=int(document.get("version", 0)),
        )

    @staticmethod
    def new_document(
        group_id: str, owner_id: str, name: Optional[str] = None
    ) -> Dict[str, Any]:
        return {
            "_id": group_id,
            "name": name,
            GroupField.OWNER.value: owner_id,
            GroupField.ADMINS.value: [],
            GroupField.MEMBERS.value: [owner_id],
            "version": 0,
        }

    def role_of(self, account_id: str) -> Optional[MemberRole]:
        """Return the account's role, or None if not a member"""
        if account_id == self.owner:
            return MemberRole.OWNER
        if account_id in self.admins:
            return MemberRole.ADMIN
        if account_id in self.members:
            return MemberRole.MEMBER
        return None


@dataclass(frozen=True)
class AccountProfile:
    """Directory view of an account"""
    account_id: str
    account_privacy: AccountPrivacy = AccountPrivacy.PUBLIC
    display_name: Optional[str] = None

    @property
    def is_private(self) -> bool:
        return self.account_privacy == AccountPrivacy.PRIVATE


@dataclass(frozen=True)
class RelationshipState:
    """Both directions of the relationship between accounts a and b"""
    account_id: str
    other_account_id: str
    a_follows_b: bool = False
    b_follows_a: bool = False
    pending: bool = False  # a has an outstanding request to b
    requested: bool = False  # b has an outstanding request to a
    blocked_by_a: bool = False
    blocked_by_b: bool = False

    @classmethod
    def between(cls, a: Account, b: Account) -> "RelationshipState":
        return cls(
            account_id=a.id,
            other_account_id=b.id,
            a_follows_b=a.is_following(b.id) and b.is_followed_by(a.id),
            b_follows_a=b.is_following(a.id) and a.is_followed_by(b.id),
            pending=b.has_pending_from(a.id),
            requested=a.has_pending_from(b.id),
            blocked_by_a=a.has_blocked(b.id),
            blocked_by_b=b.has_blocked(a.id),
        )


@dataclass(frozen=True)
class MessagingPermission:
    """Whether an account may open a conversation with another"""
    allowed: bool
    reason: str


@dataclass(frozen=True)
class AccountStats:
    """Relationship counts for an account"""
    account_id: str
    follower_count: int
    following_count: int
    pending_requests_count: int
    blocked_count: int


@dataclass
class Plan:
    """Mutations decided inside a read-validate-write unit, plus its result"""
    mutations: list = field(default_factory=list)
    result: Any = None
