"""
Reconciliation of one AD user against the OpenLDAP state.

Both sides are loaded into in-memory DiffSync adapters: the desired state
(the AD user and the OpenLDAP groups it should be in) and the current state
(what OpenLDAP already has). The diff between them is the list of creates
needed to converge. Nothing is ever deleted.
"""

import logging
from typing import Callable, Dict, FrozenSet, Mapping

from diffsync import Adapter
from diffsync.enum import DiffSyncFlags

from models import (
    DirectorySnapshot,
    Group,
    GroupMembership,
    Identity,
    ReconciliationDecision,
    User,
    UserState,
)


logger = logging.getLogger(__name__)

MemberLookup = Callable[[str], FrozenSet[str]]


class DesiredStateAdapter(Adapter):
    """
    DiffSync adapter for the state OpenLDAP should reach.
    Holds the AD user and its memberships, translated to OpenLDAP group names.
    """

    user = User
    membership = GroupMembership
    top_level = ["user", "membership"]

    def load_identity(self, identity: Identity, group_names):
        self.add(User(name=identity.name, uid=identity.uid))
        for group_name in group_names:
            self.add(GroupMembership(user_name=identity.name, group_name=group_name))


class DirectoryStateAdapter(Adapter):
    """
    DiffSync adapter for the state OpenLDAP is in.
    Only the records relevant to the user being synced are loaded.
    """

    user = User
    membership = GroupMembership
    top_level = ["user", "membership"]

    def load_directory(self, identity: Identity, user_state: UserState, members: Mapping[str, FrozenSet[str]]):
        if user_state is UserState.ALREADY_SYNCED:
            self.add(User(name=identity.name, uid=identity.uid))

        for group_name, group_members in members.items():
            if identity.name in group_members:
                logger.info(f"{identity.name} is already in {group_name}")
                self.add(GroupMembership(user_name=identity.name, group_name=group_name))
            else:
                logger.info(f"{identity.name} should be added to {group_name}")


def classify_user(identity: Identity, users: Mapping[str, int]) -> UserState:
    """
    Decide how the user relates to the existing OpenLDAP users.
    Checks run in priority order; the first match wins.
    """
    existing_uid = users.get(identity.name)
    if existing_uid is not None and existing_uid != identity.uid:
        return UserState.UID_CONFLICT

    if any(uid == identity.uid and name != identity.name for name, uid in users.items()):
        return UserState.NAME_CONFLICT

    if existing_uid == identity.uid:
        return UserState.ALREADY_SYNCED

    return UserState.ABSENT


def _conflicting_value(identity: Identity, user_state: UserState, users: Mapping[str, int]) -> str:
    if user_state is UserState.UID_CONFLICT:
        return str(users[identity.name])
    if user_state is UserState.NAME_CONFLICT:
        return ", ".join(sorted(name for name, uid in users.items() if uid == identity.uid))
    return ""


def candidate_groups(primary_group: Group, memberships: Mapping[str, int],
                     snapshot: DirectorySnapshot):
    """
    Map the user's AD groups to OpenLDAP groups by gid.
    Names are not compared: the two directories may not keep them aligned.
    """
    candidates = set()
    for name, gid in sorted(memberships.items()):
        if name == primary_group.name:
            continue

        matches = snapshot.groups_with_gid(gid)
        if not matches:
            logger.debug(f"Skipping group {name} (gid {gid}) - no OpenLDAP group with this gid")
            continue

        candidates.update(matches)

    return sorted(candidates)


def reconcile(identity: Identity, primary_group: Group, memberships: Mapping[str, int],
              snapshot: DirectorySnapshot, member_list: MemberLookup) -> ReconciliationDecision:
    """
    Compute what has to happen in OpenLDAP for the user to be in sync.

    Conflicts end the reconciliation before any group is looked at.
    `member_list` is called once per OpenLDAP group that matches one of the user's groups.
    """
    user_state = classify_user(identity, snapshot.users)
    if user_state in (UserState.UID_CONFLICT, UserState.NAME_CONFLICT):
        return ReconciliationDecision(
            identity=identity,
            user_state=user_state,
            conflicting=_conflicting_value(identity, user_state, snapshot.users),
        )

    group_names = candidate_groups(primary_group, memberships, snapshot)
    members: Dict[str, FrozenSet[str]] = {name: member_list(name) for name in group_names}

    desired = DesiredStateAdapter(name="desired")
    desired.load_identity(identity, group_names)

    current = DirectoryStateAdapter(name="openldap")
    current.load_directory(identity, user_state, members)

    diff = current.diff_from(desired, flags=DiffSyncFlags.SKIP_UNMATCHED_DST)
    logger.debug(f"Diff summary: {diff.summary()}")

    groups_to_append = set()
    for element in diff.get_children():
        if element.action != "create":
            continue
        if element.type == "membership":
            groups_to_append.add(element.keys["group_name"])

    return ReconciliationDecision(
        identity=identity,
        user_state=user_state,
        groups_to_append=tuple(sorted(groups_to_append)),
    )
