"""Per-host deployment pipeline."""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Awaitable, Callable

from .config import DeploymentRequest, HostAddress
from .errors import ConnectError, DeployError, InstallError
from .extractor import StagingTree
from .mirror import mirror_tree
from .session import RemoteSession


class PipelineState(Enum):
    """Where a host's pipeline currently is."""

    INIT = "init"
    CONNECTED = "connected"
    MIRRORED = "mirrored"
    CONFIG_SENT = "config-sent"
    INSTALLED = "installed"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.FAILED)


@dataclass(frozen=True)
class HostOutcome:
    """Final result of one host's pipeline."""

    host: HostAddress
    succeeded: bool
    state: PipelineState  # last state reached before finishing
    error: str = ""
    output: str = ""


# Type aliases for callbacks
OutputCallback = Callable[[str, str], None]  # (host, line) -> None
StatusCallback = Callable[[str, PipelineState], None]  # (host, state) -> None
SessionOpener = Callable[[HostAddress, str, str], Awaitable[RemoteSession]]


def install_command(target_dir: str, script: str) -> str:
    """Shell command that runs the install script from inside target_dir."""
    return f"cd {shlex.quote(target_dir)} && ./{shlex.quote(script)}"


class HostPipeline:
    """Connect, mirror, send config, install: for one host.

    ``run`` always returns exactly one HostOutcome; deployment errors are
    turned into a failed outcome instead of propagating.
    """

    def __init__(
        self,
        request: DeploymentRequest,
        address: HostAddress,
        staging: StagingTree,
        open_session: SessionOpener = RemoteSession.open,
        on_output: OutputCallback | None = None,
        on_status: StatusCallback | None = None,
    ):
        self.request = request
        self.address = address
        self.staging = staging
        self.open_session = open_session
        self.on_output = on_output
        self.on_status = on_status
        self.state = PipelineState.INIT
        self.output = ""

    @property
    def name(self) -> str:
        return str(self.address)

    def _emit(self, line: str) -> None:
        if self.on_output:
            self.on_output(self.name, line)

    def _advance(self, state: PipelineState) -> None:
        self.state = state
        if self.on_status:
            self.on_status(self.name, state)

    async def run(self) -> HostOutcome:
        """Drive the pipeline to DONE or FAILED."""
        request = self.request

        try:
            self._emit(f"Connecting to {request.username}@{self.address}...")
            session = await self.open_session(
                self.address, request.username, request.password
            )
            async with session:
                self._advance(PipelineState.CONNECTED)
                self._emit("Connected successfully")

                await self._mirror(session)
                await self._send_config(session)
                await self._install(session)
        except DeployError as e:
            reached = self.state
            if isinstance(e, InstallError):
                self.output = e.output
            self._emit(f"ERROR: {e}")
            self._advance(PipelineState.FAILED)
            return HostOutcome(
                host=self.address,
                succeeded=False,
                state=reached,
                error=str(e),
                output=self.output,
            )

        reached = self.state
        self._advance(PipelineState.DONE)
        return HostOutcome(
            host=self.address, succeeded=True, state=reached, output=self.output
        )

    async def _mirror(self, session: RemoteSession) -> None:
        target = self.request.target_dir
        self._emit(f"Mirroring {self.staging.root} to ~/{target}")

        def on_entry(remote_path: str, is_dir: bool) -> None:
            self._emit(f"  {remote_path}/" if is_dir else f"  {remote_path}")

        stats = await mirror_tree(
            session,
            self.staging.root,
            target,
            on_entry=on_entry,
            entries=self.staging.entries,
        )
        self._emit(
            f"Mirrored {stats.files} file(s), {stats.directories} new director(ies), "
            f"{stats.bytes_sent} bytes"
        )
        self._advance(PipelineState.MIRRORED)

    async def _send_config(self, session: RemoteSession) -> None:
        companion = self.request.companion_path
        remote_path = str(PurePosixPath(self.request.target_dir) / companion.name)
        self._emit(f"Uploading {companion.name} to ~/{remote_path}")
        await session.transfer_file(companion, remote_path)
        self._advance(PipelineState.CONFIG_SENT)

    async def _install(self, session: RemoteSession) -> None:
        cmd = install_command(self.request.target_dir, self.request.install_script)
        self._emit(f"$ {cmd}")

        try:
            result = await session.run_command(cmd, check=False)
        except ConnectError as e:
            raise InstallError(f"failed to execute command on server: {e}") from e
        self.output = result.output
        # Remote output is shown whatever the exit status
        for line in result.output.splitlines():
            self._emit(line)

        if not result.ok:
            self._emit(f"Command exited with status {result.exit_status}")
            raise InstallError(
                f"failed to execute command on server: {cmd!r} exited with status "
                f"{result.exit_status}",
                output=result.output,
            )
        self._advance(PipelineState.INSTALLED)
