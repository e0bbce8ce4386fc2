"""
Identity lookup through the local identity-resolution layer (SSSD via `id`)
"""

import re
import logging
import subprocess
from typing import Dict

from config import Config
from exceptions import IdentityParseError, ToolInvocationFailure, UnknownIdentity
from models import Group, Identity, IdentityRecord


logger = logging.getLogger(__name__)

# uid=1001(alice) gid=1001(alice) groups=1001(alice),2000(domain users) context=...
ID_LINE = re.compile(
    r"^uid=(?P<uid>\d+)\((?P<name>[^()]+)\)"
    r" gid=(?P<gid>\d+)\((?P<group>[^()]+)\)"
    r"(?: groups=(?P<groups>.*?))?"
    r"(?: context=\S+)?$"
)
GROUP_ENTRY = re.compile(r"(?P<gid>\d+)\((?P<name>[^()]+)\)")


def parse_group_list(text: str) -> Dict[str, int]:
    """Parse `N(name),N(name),...` into a name -> gid mapping."""
    groups: Dict[str, int] = {}
    if not text:
        return groups

    position = 0
    for match in GROUP_ENTRY.finditer(text):
        separator = text[position:match.start()]
        if separator not in ("", ","):
            raise IdentityParseError(f"Unexpected text in group list: {separator!r}")
        groups[match.group("name")] = int(match.group("gid"))
        position = match.end()

    if position != len(text):
        raise IdentityParseError(f"Unexpected text in group list: {text[position:]!r}")

    return groups


def parse_id_output(text: str) -> IdentityRecord:
    """
    Parse one line of `id` output.
    The primary group is dropped from the secondary groups.
    """
    line = text.strip()
    match = ID_LINE.match(line)
    if not match:
        raise IdentityParseError(f"Unrecognised id output: {line!r}")

    identity = Identity(name=match.group("name"), uid=int(match.group("uid")))
    primary_group = Group(name=match.group("group"), gid=int(match.group("gid")))

    groups = parse_group_list(match.group("groups") or "")
    groups.pop(primary_group.name, None)

    return IdentityRecord(identity=identity, primary_group=primary_group, groups=groups)


class IdentityLookup:
    """Resolves AD users through the `id` command."""

    def __init__(self, config: Config):
        self.id_path = config.id_path

    def fetch(self, username: str) -> IdentityRecord:
        """Look up a user, its primary group and its secondary groups."""
        command = [self.id_path, username]
        logger.info(f"Looking up identity of {username}")

        try:
            result = subprocess.run(command, capture_output=True, text=True)
        except OSError as e:
            raise ToolInvocationFailure(command, stderr=str(e)) from e

        if result.returncode != 0:
            raise UnknownIdentity(username, result.stderr.strip())

        record = parse_id_output(result.stdout)
        logger.info(f"User: {record.identity.name} (uid {record.identity.uid})")
        logger.info(f"Primary group: {record.primary_group.name} (gid {record.primary_group.gid})")
        for name, gid in sorted(record.groups.items()):
            logger.info(f"Additional group: {name} (gid {gid})")

        return record
