#!/usr/bin/env python3
"""
AD to OpenLDAP User Sync

Run on a Bright Cluster Manager head node. Takes an Active Directory username,
gathers the user's details from the identity-resolution layer (SSSD) and
synchronizes the user and its group memberships with the local OpenLDAP server
through cmsh.

Users or memberships removed from AD are not removed from OpenLDAP, and groups
missing from OpenLDAP are never created.
"""

import sys
import logging
import argparse
from typing import List, Optional

import structlog

from cmsh import CmshClient
from config import Config, load_config
from exceptions import SyncError, UsageError, VerificationFailed
from identity import IdentityLookup
from models import UserState
from reconcile import reconcile


logger = logging.getLogger(__name__)


class ArgumentParser(argparse.ArgumentParser):
    """argparse with usage errors reported as exit status 1."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="sync-user",
        description="Sync user to local OpenLDAP server based on AD details",
    )
    parser.add_argument('-u', '--user', dest='username',
                        help='Username to be included in OpenLDAP')
    parser.add_argument('-v', '--verbose', dest='verbosity', action='count', default=0,
                        help='Print details about the user and OpenLDAP. '
                             'May be given more than once for more output')
    parser.add_argument('-d', '--dry-run', action='store_true',
                        help='Print the cmsh commands instead of running them')
    parser.add_argument('--verify', action='store_true',
                        help='Re-read OpenLDAP after running the commands and fail if anything is missing')
    return parser


def configure_logging(verbosity: int):
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # diffsync logs through structlog; send it to the same handlers instead of stdout
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.KeyValueRenderer(key_order=["event"]),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
    )


def prompt_username(attempts: int, prompt=None) -> str:
    """Ask for a username until a non-empty one is given or attempts run out."""
    prompt = prompt or input
    for _ in range(attempts):
        try:
            username = prompt("Username to synchronize: ").strip()
        except EOFError:
            raise UsageError("No username given")
        if username:
            return username

    raise UsageError(f"No username given after {attempts} attempts")


def resolve_config(argv: Optional[List[str]] = None, prompt=None) -> Config:
    """Turn the command line (and the environment) into the run configuration."""
    args = build_parser().parse_args(argv)
    config = load_config(
        username=args.username,
        dry_run=args.dry_run,
        verbosity=args.verbosity,
        verify=args.verify,
    )
    if not config.username:
        config = config.with_username(prompt_username(config.prompt_attempts, prompt))
    return config


def verify_sync(record, cmsh: CmshClient):
    """Read OpenLDAP back and make sure nothing is left to do."""
    logger.info("Verifying OpenLDAP state")
    snapshot = cmsh.snapshot()
    decision = reconcile(record.identity, record.primary_group, record.groups,
                         snapshot, cmsh.member_list)
    decision.raise_for_conflict()

    if decision.has_actions:
        missing = list(decision.groups_to_append)
        if decision.create_user:
            missing.insert(0, f"user {record.identity.name}")
        raise VerificationFailed(f"OpenLDAP is still missing: {', '.join(missing)}")

    logger.info("OpenLDAP matches AD for this user")


def sync_user(config: Config):
    """
    Main sync function.
    Syncs one AD user and its group memberships to OpenLDAP.
    """
    logger.info(f"Starting AD to OpenLDAP sync of {config.username}")
    if config.dry_run:
        logger.info("Running in DRY RUN mode - no changes will be made")

    identity_lookup = IdentityLookup(config)
    cmsh = CmshClient(config)

    record = identity_lookup.fetch(config.username)
    snapshot = cmsh.snapshot()

    decision = reconcile(record.identity, record.primary_group, record.groups,
                         snapshot, cmsh.member_list)
    decision.raise_for_conflict()

    if decision.user_state is UserState.ALREADY_SYNCED:
        logger.warning(f"{record.identity.name} is not added: the user already exists in OpenLDAP")

    cmsh.queue_decision(decision)
    cmsh.execute_pending_operations()

    if config.verify and not config.dry_run:
        verify_sync(record, cmsh)

    logger.info("Sync completed successfully")


def main(argv: Optional[List[str]] = None) -> int:
    try:
        config = resolve_config(argv)
    except UsageError as e:
        build_parser().print_usage(sys.stderr)
        print(f"sync-user: error: {e}", file=sys.stderr)
        return 1

    configure_logging(config.verbosity)

    try:
        sync_user(config)
    except SyncError as e:
        logger.error(f"Sync failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
