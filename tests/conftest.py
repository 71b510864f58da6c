"""Shared fixtures: an in-memory remote host and zip archive builders."""

from __future__ import annotations

import os
import zipfile
from pathlib import Path, PurePosixPath

import pytest

from zipcast.config import DeploymentRequest, HostAddress
from zipcast.errors import CommandError, ConnectError, MirrorError, TransferError
from zipcast.session import CommandResult

ENV_NAMES = (
    "USERNAME",
    "PASSWORD",
    "SERVER_ADDRESS",
    "ZIP_FILE_PATH",
    "LOG_DIR",
    "INSTALL_SCRIPT",
    "STAGING_DIR",
)


class FakeRemote:
    """Filesystem and command log of one fake host."""

    def __init__(self, exit_status: int = 0, output: str = "installed\n"):
        self.dirs: set[str] = set()
        self.files: dict[str, bytes] = {}
        self.modes: dict[str, int | None] = {}
        self.commands: list[str] = []
        self.events: list[tuple[str, str]] = []
        self.exit_status = exit_status
        self.output = output
        self.fail_on: set[str] = set()
        self.command_error: Exception | None = None

    def _check_parent(self, path: str) -> bool:
        parent = str(PurePosixPath(path).parent)
        return parent == "." or parent in self.dirs


class FakeSession:
    """Stands in for RemoteSession against a FakeRemote."""

    def __init__(self, address: HostAddress, remote: FakeRemote):
        self.address = address
        self.remote = remote
        self.close_calls = 0

    async def __aenter__(self) -> FakeSession:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def close(self) -> None:
        self.close_calls += 1

    async def create_directory(self, path: str) -> bool:
        if path in self.remote.fail_on or not self.remote._check_parent(path):
            raise MirrorError(f"Failed to create remote directory {path}: no such file")
        if path in self.remote.dirs:
            return False
        self.remote.dirs.add(path)
        self.remote.events.append(("mkdir", path))
        return True

    async def transfer_file(self, local_path, remote_path: str, mode=None) -> int:
        if remote_path in self.remote.fail_on or not self.remote._check_parent(remote_path):
            raise TransferError(f"Failed to copy {local_path} to {remote_path}")
        data = Path(local_path).read_bytes()
        self.remote.files[remote_path] = data
        self.remote.modes[remote_path] = mode
        self.remote.events.append(("put", remote_path))
        return len(data)

    async def run_command(self, command: str, *, check: bool = True) -> CommandResult:
        self.remote.commands.append(command)
        if self.remote.command_error:
            raise self.remote.command_error
        result = CommandResult(command, self.remote.output, self.remote.exit_status)
        if check and not result.ok:
            raise CommandError(result)
        return result


class FakeOpener:
    """Session opener handing out FakeSessions, one FakeRemote per host."""

    def __init__(self, unreachable: tuple[str, ...] = ()):
        self.remotes: dict[str, FakeRemote] = {}
        self.sessions: list[FakeSession] = []
        self.unreachable = set(unreachable)
        self.calls: list[tuple[str, str, str]] = []

    def remote(self, host: str) -> FakeRemote:
        return self.remotes.setdefault(host, FakeRemote())

    async def __call__(self, address: HostAddress, username: str, password: str):
        self.calls.append((str(address), username, password))
        if str(address) in self.unreachable:
            raise ConnectError(f"Failed to dial server {address}: connection refused")
        session = FakeSession(address, self.remote(str(address)))
        self.sessions.append(session)
        return session


def write_zip(path: Path, entries: dict[str, tuple[bytes | None, int]]) -> Path:
    """Write a zip; a None payload means a directory entry."""
    with zipfile.ZipFile(path, "w") as zf:
        for name, (data, mode) in entries.items():
            info = zipfile.ZipInfo(name)
            if data is None:
                info.external_attr = (0o040000 | mode) << 16
                zf.writestr(info, b"")
            else:
                info.external_attr = (0o100000 | mode) << 16
                zf.writestr(info, data)
    return path


@pytest.fixture
def clean_env():
    """Remove deployment settings from the environment for the test."""
    saved = {name: os.environ.pop(name) for name in ENV_NAMES if name in os.environ}
    yield
    for name in ENV_NAMES:
        os.environ.pop(name, None)
    os.environ.update(saved)


@pytest.fixture
def app_zip(tmp_path) -> Path:
    return write_zip(
        tmp_path / "app.zip",
        {
            "bin/": (None, 0o755),
            "bin/run.sh": (b"#!/bin/sh\necho run\n", 0o755),
            "README.md": (b"# app\n", 0o644),
        },
    )


@pytest.fixture
def companion(tmp_path) -> Path:
    path = tmp_path / "config.env"
    path.write_text("APP_MODE=production\n")
    return path


@pytest.fixture
def make_request(tmp_path, app_zip, companion):
    def _make(*hosts: str, **overrides) -> DeploymentRequest:
        fields = dict(
            username="deploy",
            password="s3cret",
            hosts=tuple(HostAddress(h.split(":")[0], int(h.split(":")[1])) for h in hosts),
            archive_path=app_zip,
            companion_path=companion,
            log_dir=tmp_path / "logs",
        )
        fields.update(overrides)
        return DeploymentRequest(**fields)

    return _make


@pytest.fixture
def env_file(tmp_path, app_zip, clean_env):
    path = tmp_path / "deploy.env"
    path.write_text(
        "USERNAME=deploy\n"
        "PASSWORD=s3cret\n"
        "SERVER_ADDRESS=h1:22,h2:22\n"
        f"ZIP_FILE_PATH={app_zip.name}\n"
        "LOG_DIR=logs\n"
    )
    return path
