"""
Tests for parsing `id` output and the identity lookup
"""

import pytest

from config import Config
from exceptions import IdentityParseError, ToolInvocationFailure, UnknownIdentity
from identity import IdentityLookup, parse_group_list, parse_id_output
from models import Group, Identity


def test_parse_full_line():
    record = parse_id_output(
        "uid=1001(alice) gid=1001(alice) groups=1001(alice),5000(developers),5001(operations)\n"
    )

    assert record.identity == Identity(name="alice", uid=1001)
    assert record.primary_group == Group(name="alice", gid=1001)
    assert record.groups == {"developers": 5000, "operations": 5001}


def test_primary_group_is_not_a_secondary_group():
    record = parse_id_output("uid=1001(alice) gid=2000(domain users) groups=2000(domain users)")

    assert record.primary_group == Group(name="domain users", gid=2000)
    assert record.groups == {}


def test_group_names_with_spaces():
    record = parse_id_output(
        "uid=201105(jdoe) gid=200513(domain users) "
        "groups=200513(domain users),201200(hpc users),201201(lab-admins)"
    )

    assert record.identity == Identity(name="jdoe", uid=201105)
    assert record.groups == {"hpc users": 201200, "lab-admins": 201201}


def test_empty_or_missing_group_list():
    assert parse_id_output("uid=1001(alice) gid=1001(alice) groups=").groups == {}
    assert parse_id_output("uid=1001(alice) gid=1001(alice)").groups == {}


def test_selinux_context_is_ignored():
    record = parse_id_output(
        "uid=1001(alice) gid=1001(alice) groups=1001(alice),5000(developers) "
        "context=unconfined_u:unconfined_r:unconfined_t:s0-s0:c0.c1023"
    )

    assert record.groups == {"developers": 5000}


@pytest.mark.parametrize("line", [
    "",
    "id: 'nobody-here': no such user",
    "uid=abc(alice) gid=1001(alice) groups=1001(alice)",
    "uid=1001(alice) groups=1001(alice)",
    "uid=1001(alice) gid=1001(alice) groups=1001(alice);5000(developers)",
])
def test_malformed_lines_are_rejected(line):
    with pytest.raises(IdentityParseError):
        parse_id_output(line)


def test_parse_group_list_rejects_trailing_garbage():
    assert parse_group_list("5000(developers),5001(operations)") == {"developers": 5000, "operations": 5001}
    with pytest.raises(IdentityParseError):
        parse_group_list("5000(developers),oops")


def test_lookup_runs_id(tools):
    tools.id_outputs["alice"] = "uid=1001(alice) gid=1001(alice) groups=1001(alice),5000(developers)"

    record = IdentityLookup(Config()).fetch("alice")

    assert tools.calls == [["id", "alice"]]
    assert record.identity == Identity(name="alice", uid=1001)
    assert record.groups == {"developers": 5000}


def test_lookup_of_unknown_user(tools):
    with pytest.raises(UnknownIdentity) as excinfo:
        IdentityLookup(Config()).fetch("mallory")

    assert excinfo.value.username == "mallory"
    assert "no such user" in str(excinfo.value)


def test_lookup_without_id_binary(tools):
    with pytest.raises(ToolInvocationFailure):
        IdentityLookup(Config(id_path="/nonexistent/id")).fetch("alice")
