"""Error types raised by zipcast."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .session import CommandResult


class DeployError(Exception):
    """Base class for every deployment failure."""


class ExtractionError(DeployError):
    """The archive could not be decoded into the staging directory."""


class ConnectError(DeployError):
    """A host could not be reached or the SSH/SFTP channel failed to open."""


class AuthError(ConnectError):
    """The host rejected the credentials."""


class MirrorError(DeployError):
    """Creating or uploading part of the tree on the remote side failed."""


class TransferError(MirrorError):
    """A single file upload failed."""


class CommandError(DeployError):
    """A remote command exited with a non-zero status."""

    def __init__(self, result: CommandResult):
        self.result = result
        message = f"command {result.command!r} exited with status {result.exit_status}"
        if result.output.strip():
            message = f"{message}: {result.output.strip()}"
        super().__init__(message)


class InstallError(DeployError):
    """The remote install step failed; carries whatever output it produced."""

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output
