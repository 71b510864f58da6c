"""Archive extraction into a local staging directory."""

from __future__ import annotations

import os
import shutil
import stat
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .errors import ExtractionError

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644


@dataclass(frozen=True)
class StagingEntry:
    """One archive entry, relative to the staging root."""

    path: PurePosixPath
    is_dir: bool
    mode: int


@dataclass(frozen=True)
class StagingTree:
    """The decoded archive on disk. Read-only once extraction returns."""

    root: Path
    entries: tuple[StagingEntry, ...]

    @property
    def files(self) -> list[StagingEntry]:
        return [entry for entry in self.entries if not entry.is_dir]

    @property
    def directories(self) -> list[StagingEntry]:
        return [entry for entry in self.entries if entry.is_dir]

    def local_path(self, entry: StagingEntry) -> Path:
        return self.root.joinpath(*entry.path.parts)


def _entry_mode(info: zipfile.ZipInfo) -> int:
    """Permission bits stored for an entry, if the archive recorded any."""
    mode = stat.S_IMODE(info.external_attr >> 16)
    if mode:
        return mode
    return DEFAULT_DIR_MODE if info.is_dir() else DEFAULT_FILE_MODE


def _relative_path(info: zipfile.ZipInfo) -> PurePosixPath:
    """Validated entry path, relative to the staging root."""
    name = info.filename.replace("\\", "/")
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise ExtractionError(f"Unsafe path in archive: {info.filename!r}")
    return path


def extract_archive(archive_path: str | Path, destination: str | Path) -> StagingTree:
    """Decode every entry of a zip archive into ``destination``.

    Directories are created before the files inside them are written, and
    existing files are truncated and rewritten, so extracting twice into the
    same directory is safe. Permission bits recorded in the archive are
    applied to the extracted entries.

    Raises:
        ExtractionError: if the archive can't be opened or decoded, or the
            destination can't be written.
    """
    archive_path = Path(archive_path)
    root = Path(destination)

    try:
        archive = zipfile.ZipFile(archive_path)
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        raise ExtractionError(f"Error opening zip file {archive_path}: {e}") from e
    except OSError as e:
        raise ExtractionError(f"Error opening zip file {archive_path}: {e}") from e

    entries: list[StagingEntry] = []
    with archive:
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ExtractionError(f"Error creating staging directory {root}: {e}") from e

        for info in archive.infolist():
            rel_path = _relative_path(info)
            target = root.joinpath(*rel_path.parts)
            mode = _entry_mode(info)

            try:
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    os.chmod(target, mode)
                else:
                    target.parent.mkdir(parents=True, exist_ok=True)
                    with archive.open(info) as src, open(target, "wb") as dst:
                        shutil.copyfileobj(src, dst)
                    os.chmod(target, mode)
            except (zipfile.BadZipFile, zlib.error, RuntimeError, EOFError) as e:
                # RuntimeError covers encrypted entries; EOFError truncated ones
                raise ExtractionError(f"Failed to decode {info.filename!r}: {e}") from e
            except OSError as e:
                raise ExtractionError(f"Failed to write {target}: {e}") from e

            entries.append(StagingEntry(path=rel_path, is_dir=info.is_dir(), mode=mode))

    return StagingTree(root=root, entries=tuple(entries))
