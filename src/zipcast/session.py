"""SSH/SFTP session wrapper for a single host."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import asyncssh

from .config import HostAddress
from .errors import AuthError, CommandError, ConnectError, MirrorError, TransferError

# asyncssh.connect or a stand-in with the same call signature
Connector = Callable[..., Any]


@dataclass
class CommandResult:
    """Outcome of one remote command, stdout and stderr merged."""

    command: str
    output: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class RemoteSession:
    """One SSH connection plus the SFTP channel bound to it.

    Owned by exactly one host pipeline. Use as an async context manager so
    both layers are closed on every exit path.
    """

    def __init__(
        self,
        address: HostAddress,
        conn: asyncssh.SSHClientConnection,
        sftp: asyncssh.SFTPClient,
    ):
        self.address = address
        self._conn = conn
        self._sftp = sftp
        self._closed = False

    @classmethod
    async def open(
        cls,
        address: HostAddress,
        username: str,
        password: str,
        *,
        connect: Connector = asyncssh.connect,
    ) -> RemoteSession:
        """Connect with password authentication and start the SFTP client."""
        try:
            conn = await connect(
                address.host,
                port=address.port,
                username=username,
                password=password,
                client_keys=None,
                agent_path=None,
                preferred_auth="password",
                known_hosts=None,  # Host keys are not verified
            )
        except asyncssh.PermissionDenied as e:
            raise AuthError(f"Authentication failed for {username}@{address}: {e}") from e
        except (asyncssh.Error, OSError) as e:
            raise ConnectError(f"Failed to dial server {address}: {e}") from e

        try:
            sftp = await conn.start_sftp_client()
        except (asyncssh.Error, OSError) as e:
            conn.close()
            await conn.wait_closed()
            raise ConnectError(f"Failed to create SFTP client on {address}: {e}") from e

        return cls(address, conn, sftp)

    async def __aenter__(self) -> RemoteSession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Close the SFTP channel, then the connection. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        try:
            self._sftp.exit()
            await self._sftp.wait_closed()
        finally:
            self._conn.close()
            await self._conn.wait_closed()

    async def run_command(self, command: str, *, check: bool = True) -> CommandResult:
        """Run a command and wait for it to exit.

        Output is captured whatever the exit status. With ``check`` a
        non-zero exit raises CommandError, which carries the result.
        """
        try:
            completed = await self._conn.run(
                command,
                stderr=asyncssh.STDOUT,
                check=False,
                encoding="utf-8",
                errors="replace",
            )
        except (asyncssh.Error, OSError) as e:
            raise ConnectError(f"Failed to run {command!r} on {self.address}: {e}") from e

        exit_status = completed.exit_status
        result = CommandResult(
            command=command,
            output=completed.stdout or "",
            exit_status=-1 if exit_status is None else exit_status,
        )
        if check and not result.ok:
            raise CommandError(result)
        return result

    async def create_directory(self, path: str) -> bool:
        """Create a remote directory.

        Returns True if it was created and False if it already existed.
        Any other failure raises MirrorError.
        """
        try:
            await self._sftp.mkdir(path)
            return True
        except asyncssh.SFTPError as e:
            # SFTPv3 servers report "exists" as a generic failure, so look
            if await self._is_directory(path):
                return False
            raise MirrorError(f"Failed to create remote directory {path}: {e}") from e
        except (asyncssh.Error, OSError) as e:
            raise MirrorError(f"Failed to create remote directory {path}: {e}") from e

    async def _is_directory(self, path: str) -> bool:
        try:
            return await self._sftp.isdir(path)
        except (asyncssh.Error, OSError):
            return False

    async def transfer_file(
        self, local_path: str | Path, remote_path: str, mode: int | None = None
    ) -> int:
        """Upload a local file, optionally setting its mode afterwards.

        Returns the number of bytes sent.
        """
        local_path = Path(local_path)
        try:
            size = os.path.getsize(local_path)
        except OSError as e:
            raise TransferError(f"Failed to open source file {local_path}: {e}") from e

        try:
            await self._sftp.put(str(local_path), remote_path)
        except OSError as e:
            raise TransferError(f"Failed to open source file {local_path}: {e}") from e
        except asyncssh.Error as e:
            raise TransferError(f"Failed to copy {local_path} to {remote_path}: {e}") from e

        if mode is not None:
            try:
                await self._sftp.chmod(remote_path, mode)
            except (asyncssh.Error, OSError) as e:
                raise TransferError(
                    f"Failed to set mode {oct(mode)} on {remote_path}: {e}"
                ) from e

        return size
