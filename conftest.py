"""
Shared fixtures: a fake `id` and `cmsh` backed by in-memory state
"""

import re
import subprocess
from typing import Dict, List, Set

import pytest

from cmsh import LIST_GROUPS, LIST_USERS


ADD_USER = re.compile(r"^user; add (?P<name>\S+); set id (?P<uid>\d+); commit$")
APPEND_MEMBER = re.compile(r"^group; use (?P<group>\S+); append members (?P<name>\S+); commit$")
SHOW_GROUP = re.compile(r"^group; show (?P<group>\S+)$")


class FakeTools:
    """Stands in for subprocess.run when the code under test calls `id` or `cmsh`."""

    def __init__(self):
        self.id_outputs: Dict[str, str] = {}
        self.users: Dict[str, int] = {}
        self.groups: Dict[str, int] = {}
        self.members: Dict[str, Set[str]] = {}
        self.calls: List[List[str]] = []
        self.fail_scripts: Set[str] = set()
        self.apply_changes = True

    def add_group(self, name: str, gid: int, members=()):
        self.groups[name] = gid
        self.members[name] = set(members)

    @property
    def executed_scripts(self) -> List[str]:
        return [call[-1] for call in self.calls
                if call[0] == "cmsh" and (ADD_USER.match(call[-1]) or APPEND_MEMBER.match(call[-1]))]

    @property
    def shown_groups(self) -> List[str]:
        return [SHOW_GROUP.match(call[-1]).group("group") for call in self.calls
                if call[0] == "cmsh" and SHOW_GROUP.match(call[-1])]

    def _result(self, command, stdout="", returncode=0, stderr=""):
        return subprocess.CompletedProcess(command, returncode, stdout=stdout, stderr=stderr)

    def _listing(self, entries: Dict[str, int]) -> str:
        return "".join(f"{name} {value}\n" for name, value in entries.items())

    def _show(self, group: str) -> str:
        members = ",".join(sorted(self.members.get(group, ())))
        return (
            f"Parameter                        Value\n"
            f"-------------------------------- ------------------------\n"
            f"Name                             {group}\n"
            f"ID                               {self.groups[group]}\n"
            f"Members                          {members}\n"
        )

    def __call__(self, command, capture_output=False, text=False, **kwargs):
        self.calls.append(list(command))

        if command[0] == "id":
            username = command[1]
            if username not in self.id_outputs:
                return self._result(command, returncode=1, stderr=f"id: '{username}': no such user\n")
            return self._result(command, stdout=self.id_outputs[username] + "\n")

        if command[0] != "cmsh":
            raise FileNotFoundError(2, "No such file or directory", command[0])

        script = command[-1]
        if script in self.fail_scripts:
            return self._result(command, returncode=1, stderr="cmsh: commit failed\n")

        if script == LIST_USERS:
            return self._result(command, stdout=self._listing(self.users))
        if script == LIST_GROUPS:
            return self._result(command, stdout=self._listing(self.groups))

        match = SHOW_GROUP.match(script)
        if match:
            return self._result(command, stdout=self._show(match.group("group")))

        match = ADD_USER.match(script)
        if match:
            if self.apply_changes:
                self.users[match.group("name")] = int(match.group("uid"))
            return self._result(command)

        match = APPEND_MEMBER.match(script)
        if match:
            if self.apply_changes:
                self.members[match.group("group")].add(match.group("name"))
            return self._result(command)

        return self._result(command, returncode=1, stderr=f"unknown script: {script}\n")


@pytest.fixture
def tools(monkeypatch) -> FakeTools:
    fake = FakeTools()
    monkeypatch.setattr(subprocess, "run", fake)
    return fake


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep CMSH_PATH, ID_PATH and SYNC_* settings of the shell out of the tests."""
    for name in ("CMSH_PATH", "ID_PATH", "SYNC_DRY_RUN", "SYNC_VERIFY", "SYNC_PROMPT_ATTEMPTS"):
        monkeypatch.delenv(name, raising=False)

