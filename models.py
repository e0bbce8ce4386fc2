"""
Records and DiffSync models for the AD to OpenLDAP user sync
"""

import enum
from dataclasses import dataclass, field
from typing import Dict, Tuple

from diffsync import DiffSyncModel

from exceptions import NameConflict, UidConflict


@dataclass(frozen=True)
class Identity:
    """A directory-service account."""
    name: str
    uid: int


@dataclass(frozen=True)
class Group:
    name: str
    gid: int


@dataclass(frozen=True)
class IdentityRecord:
    """
    Everything the identity-resolution layer knows about one user.
    `groups` maps secondary group name to gid and never contains the primary group.
    """
    identity: Identity
    primary_group: Group
    groups: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class DirectorySnapshot:
    """Point-in-time listing of the users and groups in OpenLDAP."""
    users: Dict[str, int] = field(default_factory=dict)
    groups: Dict[str, int] = field(default_factory=dict)

    def groups_with_gid(self, gid: int) -> Tuple[str, ...]:
        return tuple(sorted(name for name, value in self.groups.items() if value == gid))


class UserState(enum.Enum):
    ABSENT = "absent"
    UID_CONFLICT = "uid_conflict"
    NAME_CONFLICT = "name_conflict"
    ALREADY_SYNCED = "already_synced"


@dataclass(frozen=True)
class ReconciliationDecision:
    """Outcome of comparing one AD user with the OpenLDAP state."""
    identity: Identity
    user_state: UserState
    groups_to_append: Tuple[str, ...] = ()
    conflicting: str = ""

    @property
    def create_user(self) -> bool:
        return self.user_state is UserState.ABSENT

    @property
    def is_conflict(self) -> bool:
        return self.user_state in (UserState.UID_CONFLICT, UserState.NAME_CONFLICT)

    @property
    def has_actions(self) -> bool:
        return self.create_user or bool(self.groups_to_append)

    def raise_for_conflict(self):
        """Raise the matching ConflictError if the decision is a conflict."""
        if self.user_state is UserState.UID_CONFLICT:
            raise UidConflict(self.identity.name, self.identity.uid, self.conflicting)
        if self.user_state is UserState.NAME_CONFLICT:
            raise NameConflict(self.identity.name, self.identity.uid, self.conflicting)


class User(DiffSyncModel):
    """
    DiffSync model representing a user account.
    A user is identified by name; the UID is compared as an attribute.
    """
    _modelname = "user"
    _identifiers = ("name",)
    _attributes = ("uid",)

    name: str
    uid: int


class GroupMembership(DiffSyncModel):
    """
    DiffSync model representing a group membership.
    A membership is a relationship between a user (identified by username) and an OpenLDAP group.
    """
    _modelname = "membership"
    _identifiers = ("user_name", "group_name")
    _attributes = ()

    user_name: str
    group_name: str
