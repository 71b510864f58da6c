"""Replicate a local directory tree onto a remote host over SFTP."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, Protocol

from .errors import MirrorError
from .extractor import StagingEntry

DEFAULT_FILE_MODE = 0o755

# (remote_path, is_dir) -> None
EntryCallback = Callable[[str, bool], None]


class MirrorTarget(Protocol):
    """The part of RemoteSession the mirror needs."""

    async def create_directory(self, path: str) -> bool: ...

    async def transfer_file(
        self, local_path: str | Path, remote_path: str, mode: int | None = None
    ) -> int: ...


@dataclass
class MirrorStats:
    """What a mirror run put on the remote side."""

    directories: int = 0
    files: int = 0
    bytes_sent: int = 0


def staged_paths(entries: Iterable[StagingEntry]) -> set[PurePosixPath]:
    """Every entry path plus the directories implied by it."""
    paths: set[PurePosixPath] = set()
    for entry in entries:
        paths.add(entry.path)
        paths.update(p for p in entry.path.parents if p != PurePosixPath("."))
    return paths


async def mirror_tree(
    session: MirrorTarget,
    local_root: str | Path,
    remote_root: str,
    *,
    mode: int = DEFAULT_FILE_MODE,
    on_entry: EntryCallback | None = None,
    entries: Iterable[StagingEntry] | None = None,
) -> MirrorStats:
    """Copy everything under ``local_root`` to ``remote_root``.

    ``remote_root`` itself is created first, and every remote directory is
    created before anything is uploaded into it. Uploaded files get ``mode``.
    The first failure stops the walk; whatever was already uploaded stays.

    When ``entries`` is given, only those paths (and their parent
    directories) are sent; anything else lying under ``local_root`` is
    skipped.
    """
    stats = MirrorStats()
    local_root = Path(local_root)
    remote_root_path = PurePosixPath(remote_root)
    allowed = staged_paths(entries) if entries is not None else None

    if await session.create_directory(str(remote_root_path)):
        stats.directories += 1
    await _mirror_dir(
        session,
        local_root,
        remote_root_path,
        PurePosixPath(),
        allowed,
        mode,
        stats,
        on_entry,
    )
    return stats


async def _mirror_dir(
    session: MirrorTarget,
    local_dir: Path,
    remote_dir: PurePosixPath,
    rel_dir: PurePosixPath,
    allowed: set[PurePosixPath] | None,
    mode: int,
    stats: MirrorStats,
    on_entry: EntryCallback | None,
) -> None:
    try:
        with os.scandir(local_dir) as it:
            children = sorted(it, key=lambda e: e.name)
    except OSError as e:
        raise MirrorError(f"Failed to list {local_dir}: {e}") from e

    for child in children:
        rel_path = rel_dir / child.name
        if allowed is not None and rel_path not in allowed:
            continue
        remote_path = remote_dir / child.name

        if child.is_dir(follow_symlinks=False):
            if await session.create_directory(str(remote_path)):
                stats.directories += 1
            if on_entry:
                on_entry(str(remote_path), True)
            await _mirror_dir(
                session,
                Path(child.path),
                remote_path,
                rel_path,
                allowed,
                mode,
                stats,
                on_entry,
            )
        elif child.is_file():
            stats.bytes_sent += await session.transfer_file(
                child.path, str(remote_path), mode
            )
            stats.files += 1
            if on_entry:
                on_entry(str(remote_path), False)
