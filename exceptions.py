"""
Errors raised while syncing an AD user into OpenLDAP
"""

import shlex
from typing import List, Optional, Sequence


class SyncError(Exception):
    """Base class for every error that aborts a sync run."""


class UsageError(SyncError):
    """Bad or missing command line input."""


class UnknownIdentity(SyncError):
    """The identity-resolution layer does not know the user."""

    def __init__(self, username: str, detail: str = ""):
        self.username = username
        self.detail = detail
        message = f"User '{username}' is unknown to the identity-resolution layer"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ParseError(SyncError):
    """Output of an external tool did not match the expected format."""


class IdentityParseError(ParseError):
    pass


class CmshParseError(ParseError):
    pass


class ConflictError(SyncError):
    """OpenLDAP already holds state that cannot be reconciled automatically."""

    def __init__(self, username: str, uid: int, existing: str):
        self.username = username
        self.uid = uid
        self.existing = existing
        super().__init__(self.describe())

    def describe(self) -> str:
        raise NotImplementedError


class UidConflict(ConflictError):
    """The username exists in OpenLDAP bound to a different UID."""

    def describe(self) -> str:
        return (
            f"The username '{self.username}' was found in OpenLDAP with UID {self.existing} "
            f"instead of {self.uid}. The user will need to be manually synced."
        )


class NameConflict(ConflictError):
    """The UID exists in OpenLDAP under a different username."""

    def describe(self) -> str:
        return (
            f"UID {self.uid} of '{self.username}' is already used in OpenLDAP by "
            f"'{self.existing}'. The user will need to be manually synced."
        )


class ToolInvocationFailure(SyncError):
    """An external command could not be run or exited non-zero."""

    def __init__(self, command: Sequence[str], returncode: Optional[int] = None, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr.strip()
        if returncode is None:
            message = f"Could not run {shlex.join(self.command)}"
        else:
            message = f"{shlex.join(self.command)} exited with status {returncode}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class PendingOperationsFailed(ToolInvocationFailure):
    """One or more queued cmsh commands failed; the others were still issued."""

    def __init__(self, failures: List[ToolInvocationFailure]):
        self.failures = list(failures)
        first = self.failures[0]
        self.command = first.command
        self.returncode = first.returncode
        self.stderr = first.stderr
        details = "; ".join(str(failure) for failure in self.failures)
        SyncError.__init__(self, f"{len(self.failures)} cmsh command(s) failed: {details}")


class VerificationFailed(SyncError):
    """Read-back after executing the commands still shows outstanding work."""
