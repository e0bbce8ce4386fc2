"""
Configuration for the AD to OpenLDAP user sync
"""

import os
import logging
from dataclasses import dataclass, replace
from typing import Optional

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class Config:
    """Settings for one run. Built once and passed to the fetchers and the emitter."""
    username: Optional[str] = None
    dry_run: bool = False
    verbosity: int = 0
    verify: bool = False
    cmsh_path: str = "cmsh"
    id_path: str = "id"
    prompt_attempts: int = 3

    def with_username(self, username: str) -> "Config":
        return replace(self, username=username)


def load_config(username: Optional[str] = None, dry_run: bool = False,
                verbosity: int = 0, verify: bool = False) -> Config:
    """
    Build the configuration from the environment (and a .env file, if present).
    Command line values win: the flags can only switch dry run and verification on.
    """
    load_dotenv()

    attempts = os.getenv("SYNC_PROMPT_ATTEMPTS", "3")
    try:
        prompt_attempts = max(1, int(attempts))
    except ValueError:
        logger.warning(f"Ignoring invalid SYNC_PROMPT_ATTEMPTS value: {attempts}")
        prompt_attempts = 3

    return Config(
        username=username or None,
        dry_run=dry_run or _env_flag("SYNC_DRY_RUN"),
        verbosity=verbosity,
        verify=verify or _env_flag("SYNC_VERIFY"),
        cmsh_path=os.getenv("CMSH_PATH", "cmsh"),
        id_path=os.getenv("ID_PATH", "id"),
        prompt_attempts=prompt_attempts,
    )
