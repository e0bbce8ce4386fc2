"""
Bright cluster-management shell (cmsh) client.
Reads the OpenLDAP users and groups and issues the commands that change them.
"""

import re
import logging
import subprocess
from typing import Dict, FrozenSet, List

from config import Config
from exceptions import CmshParseError, PendingOperationsFailed, ToolInvocationFailure
from models import DirectorySnapshot, ReconciliationDecision


logger = logging.getLogger(__name__)

LIST_USERS = "user; list -f name:0,id:0"
LIST_GROUPS = "group; list -f name:0,id:0"

MEMBER_ENTRY = re.compile(r"^(?P<name>[^\[\],\s]+)(?:\[[^\[\]]*\])?$")


def add_user_script(name: str, uid: int) -> str:
    return f"user; add {name}; set id {uid}; commit"


def append_member_script(group_name: str, user_name: str) -> str:
    return f"group; use {group_name}; append members {user_name}; commit"


def parse_listing(text: str) -> Dict[str, int]:
    """
    Parse `<name> <id>` lines as printed by `list -f name:0,id:0`.
    A name listed twice keeps its last id.
    """
    entries: Dict[str, int] = {}
    for line in text.splitlines():
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 2 or not fields[1].isdigit():
            raise CmshParseError(f"Unrecognised cmsh list line: {line!r}")

        name, value = fields[0], int(fields[1])
        if name in entries and entries[name] != value:
            logger.debug(f"Duplicate entry for {name}: {entries[name]} replaced by {value}")
        entries[name] = value

    return entries


def parse_members(text: str) -> FrozenSet[str]:
    """
    Parse the member list out of `group; show <group>` output.
    Entries are `name` or `name[id]`, comma separated, optionally bracketed.
    """
    for line in text.splitlines():
        fields = line.split(None, 1)
        if not fields or fields[0] != "Members":
            continue

        value = fields[1].strip() if len(fields) > 1 else ""
        if value.startswith("[") and value.endswith("]"):
            value = value[1:-1].strip()

        members = set()
        for entry in value.split(","):
            entry = entry.strip()
            if not entry:
                continue
            match = MEMBER_ENTRY.match(entry)
            if not match:
                raise CmshParseError(f"Unrecognised group member entry: {entry!r}")
            members.add(match.group("name"))
        return frozenset(members)

    raise CmshParseError("No Members line in cmsh group output")


class CmshClient:
    """
    Wrapper around the cmsh command line tool.
    Reads OpenLDAP state and executes (or, in dry run mode, prints) queued changes.
    """

    def __init__(self, config: Config):
        self.cmsh_path = config.cmsh_path
        self.dry_run = config.dry_run
        self.pending_operations: List[tuple] = []

    def _command(self, script: str, quiet: bool = False) -> List[str]:
        command = [self.cmsh_path]
        if quiet:
            command.append("-q")
        command.extend(["-c", script])
        return command

    def run(self, script: str, quiet: bool = False) -> str:
        """Run a cmsh script and return its standard output."""
        command = self._command(script, quiet)
        logger.debug(f"Running: {' '.join(command)}")

        try:
            result = subprocess.run(command, capture_output=True, text=True)
        except OSError as e:
            raise ToolInvocationFailure(command, stderr=str(e)) from e

        if result.returncode != 0:
            raise ToolInvocationFailure(command, result.returncode, result.stderr)

        return result.stdout

    def list_users(self) -> Dict[str, int]:
        users = parse_listing(self.run(LIST_USERS))
        logger.info(f"Loaded {len(users)} users from OpenLDAP")
        return users

    def list_groups(self) -> Dict[str, int]:
        groups = parse_listing(self.run(LIST_GROUPS, quiet=True))
        logger.info(f"Loaded {len(groups)} groups from OpenLDAP")
        return groups

    def snapshot(self) -> DirectorySnapshot:
        """Read all users and groups currently in OpenLDAP."""
        snapshot = DirectorySnapshot(users=self.list_users(), groups=self.list_groups())
        for name, gid in sorted(snapshot.groups.items()):
            logger.info(f"Existing OpenLDAP group: {name} (gid {gid})")
        return snapshot

    def member_list(self, group_name: str) -> FrozenSet[str]:
        """Return the member names of an OpenLDAP group."""
        members = parse_members(self.run(f"group; show {group_name}"))
        logger.debug(f"Group {group_name} has {len(members)} members")
        return members

    def queue_decision(self, decision: ReconciliationDecision):
        """Queue the commands needed to carry out a reconciliation decision."""
        identity = decision.identity
        if decision.create_user:
            self.pending_operations.append(('add_user', identity.name, identity.uid))
        for group_name in decision.groups_to_append:
            self.pending_operations.append(('append_member', group_name, identity.name))

    def add_user(self, name: str, uid: int):
        """Create a user with a fixed UID in OpenLDAP."""
        script = add_user_script(name, uid)
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add user {name} with uid {uid}")
            print(f'{self.cmsh_path} -c "{script}"')
            return

        self.run(script)
        logger.info(f"Added user {name} with uid {uid}")

    def append_member(self, group_name: str, user_name: str):
        """Append a user to the members of an OpenLDAP group."""
        script = append_member_script(group_name, user_name)
        if self.dry_run:
            logger.info(f"[DRY RUN] Would add {user_name} to group {group_name}")
            print(f'{self.cmsh_path} -q -c "{script}"')
            return

        self.run(script, quiet=True)
        logger.info(f"Added {user_name} to group {group_name}")

    def execute_pending_operations(self):
        """Execute all pending operations in the order they were queued."""
        if not self.pending_operations:
            logger.info("No pending operations to execute")
            return

        logger.info(f"Executing {len(self.pending_operations)} pending operations")

        failures = []
        for operation, *args in self.pending_operations:
            try:
                if operation == 'add_user':
                    self.add_user(*args)
                elif operation == 'append_member':
                    self.append_member(*args)
            except ToolInvocationFailure as e:
                logger.error(f"Pending operation {operation} failed: {e}")
                failures.append(e)

        # Clear the pending operations
        self.pending_operations = []

        if failures:
            raise PendingOperationsFailed(failures)
