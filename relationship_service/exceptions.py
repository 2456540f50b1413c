"""Domain-level exceptions for follows, blocks and group roles."""

from typing import Optional


class RelationshipError(Exception):
    """Base class for relationship engine errors."""

    reason: str = "unknown"

    def __init__(self, reason: Optional[str] = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


# Validation errors
class ValidationError(RelationshipError):
    reason = "invalid"


class SelfTarget(ValidationError):
    reason = "self_target"


class AlreadyFollowing(ValidationError):
    reason = "already_following"


class AlreadyPending(ValidationError):
    reason = "already_pending"


class BlockedRelationship(ValidationError):
    reason = "blocked"


class NotAuthenticated(ValidationError):
    reason = "not_authenticated"


class InsufficientRole(ValidationError):
    reason = "insufficient_role"


class AlreadyAdmin(ValidationError):
    reason = "already_admin"


class CannotRemoveOwner(ValidationError):
    reason = "cannot_remove_owner"


# Not-found errors
class NotFoundError(RelationshipError):
    reason = "not_found"


class TargetAccountMissing(NotFoundError):
    reason = "target_account_missing"


class ActorAccountMissing(NotFoundError):
    reason = "actor_account_missing"


class NoPendingRequest(NotFoundError):
    reason = "no_pending_request"


class GroupMissing(NotFoundError):
    reason = "group_missing"


class NotGroupMember(NotFoundError):
    reason = "not_group_member"


class NotGroupAdmin(NotFoundError):
    reason = "not_group_admin"


# Infrastructure errors
class ConflictError(RelationshipError):
    """Optimistic retries were exhausted under contention."""

    reason = "conflict"


class TransportError(RelationshipError):
    """The backing store or a collaborator could not be reached."""

    reason = "store_unavailable"
