"""
Group role transitions (owner > admin > member)
"""
from typing import Dict, Optional
import logging

from .domain.models import Group, GroupField, MemberRole, Mutation, Plan
from .exceptions import (
    AlreadyAdmin,
    CannotRemoveOwner,
    GroupMissing,
    InsufficientRole,
    NotAuthenticated,
    NotGroupAdmin,
    NotGroupMember,
    SelfTarget,
)
from .store import GroupStore

logger = logging.getLogger(__name__)


def _group(groups: Dict[str, Optional[Group]], group_id: str) -> Group:
    group = groups.get(group_id)
    if group is None:
        raise GroupMissing()
    return group


def _require_owner(group: Group, actor_id: str):
    if group.role_of(actor_id) != MemberRole.OWNER:
        raise InsufficientRole()


class MembershipService:
    """Role changes on a single group document, each one store transaction"""

    def __init__(self, store: GroupStore):
        self.store = store

    async def get_group(self, group_id: str) -> Group:
        group = await self.store.get(group_id)
        if group is None:
            raise GroupMissing()
        return group

    async def promote(self, actor_id: str, group_id: str, member_id: str) -> None:
        """Make a plain member an admin; owner only"""
        if not actor_id:
            raise NotAuthenticated()

        def decide(groups: Dict[str, Optional[Group]]) -> Plan:
            group = _group(groups, group_id)
            _require_owner(group, actor_id)
            role = group.role_of(member_id)
            if role is None:
                raise NotGroupMember()
            if role != MemberRole.MEMBER:
                raise AlreadyAdmin()
            return Plan([Mutation.add(group_id, GroupField.ADMINS, member_id)])

        await self.store.transact([group_id], decide)
        logger.info(f"Group {group_id}: {actor_id} promoted {member_id} to admin")

    async def demote(self, actor_id: str, group_id: str, admin_id: str) -> None:
        """Return an admin to plain membership; owner only"""
        if not actor_id:
            raise NotAuthenticated()

        def decide(groups: Dict[str, Optional[Group]]) -> Plan:
            group = _group(groups, group_id)
            _require_owner(group, actor_id)
            if group.role_of(admin_id) != MemberRole.ADMIN:
                raise NotGroupAdmin()
            return Plan([Mutation.remove(group_id, GroupField.ADMINS, admin_id)])

        await self.store.transact([group_id], decide)
        logger.info(f"Group {group_id}: {actor_id} demoted {admin_id}")

    async def remove_member(self, actor_id: str, group_id: str, member_id: str) -> None:
        """
        Remove a member from the group

        The owner may remove anyone but themselves; an admin may only remove
        plain members.
        """
        if not actor_id:
            raise NotAuthenticated()
        if actor_id == member_id:
            raise SelfTarget()

        def decide(groups: Dict[str, Optional[Group]]) -> Plan:
            group = _group(groups, group_id)
            actor_role = group.role_of(actor_id)
            if actor_role not in (MemberRole.OWNER, MemberRole.ADMIN):
                raise InsufficientRole()

            target_role = group.role_of(member_id)
            if target_role is None:
                raise NotGroupMember()
            if target_role == MemberRole.OWNER:
                raise CannotRemoveOwner()
            if target_role == MemberRole.ADMIN and actor_role != MemberRole.OWNER:
                raise InsufficientRole()

            mutations = [Mutation.remove(group_id, GroupField.MEMBERS, member_id)]
            if target_role == MemberRole.ADMIN:
                mutations.append(Mutation.remove(group_id, GroupField.ADMINS, member_id))
            return Plan(mutations)

        await self.store.transact([group_id], decide)
        logger.info(f"Group {group_id}: {actor_id} removed {member_id}")

    async def transfer_ownership(self, actor_id: str, group_id: str, new_owner_id: str) -> None:
        """Hand the owner slot to another member; the previous owner becomes an admin"""
        if not actor_id:
            raise NotAuthenticated()
        if actor_id == new_owner_id:
            raise SelfTarget()

        def decide(groups: Dict[str, Optional[Group]]) -> Plan:
            group = _group(groups, group_id)
            _require_owner(group, actor_id)
            role = group.role_of(new_owner_id)
            if role is None:
                raise NotGroupMember()

            mutations = [Mutation.set(group_id, GroupField.OWNER, new_owner_id)]
            if role == MemberRole.ADMIN:
                mutations.append(Mutation.remove(group_id, GroupField.ADMINS, new_owner_id))
            mutations.append(Mutation.add(group_id, GroupField.ADMINS, actor_id))
            return Plan(mutations)

        await self.store.transact([group_id], decide)
        logger.info(f"Group {group_id}: ownership moved from {actor_id} to {new_owner_id}")
