"""Filesystem primitives for the asset cache.

Every file the cache publishes is written to a hidden temporary file in the
destination directory and renamed into place, so a reader that sees the
final name always sees complete content. Temporary names start with "." and
never match the names the cache looks up.
"""

from __future__ import annotations

import contextlib
import errno
import os
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

import structlog

if TYPE_CHECKING:
    import re
    from collections.abc import Iterable, Iterator

logger = structlog.get_logger()

_CACHE_FILE_MODE = 0o644


@contextlib.contextmanager
def atomic_write(target: Path) -> Iterator[BinaryIO]:
    """Open a temporary file next to target and rename it onto target on success.

    If the block raises (including cancellation), the temporary file is
    removed and target is left untouched.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(target.parent), prefix=f".{target.name}.", suffix=".part")
    tmp_path = Path(tmp_name)
    fd_owned = True
    try:
        with os.fdopen(fd, "wb") as f:
            fd_owned = False  # os.fdopen took ownership; it will close fd
            yield f
            f.flush()
            os.fsync(f.fileno())
        tmp_path.chmod(_CACHE_FILE_MODE)
        tmp_path.replace(target)
    except BaseException:
        if fd_owned:
            with contextlib.suppress(OSError):
                os.close(fd)
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        raise


@contextlib.contextmanager
def temporary_path(directory: Path, *, prefix: str, suffix: str = ".part") -> Iterator[Path]:
    """Reserve an empty temporary file in directory for the duration of the block.

    The file is deleted on exit unless the caller has already moved it away.
    """
    directory.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(directory), prefix=prefix, suffix=suffix)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        yield tmp_path
    finally:
        with contextlib.suppress(FileNotFoundError):
            tmp_path.unlink()


@contextlib.contextmanager
def temporary_directory(parent: Path, *, prefix: str) -> Iterator[Path]:
    """Create a scratch directory inside parent and remove it, with contents, on exit."""
    parent.mkdir(parents=True, exist_ok=True)
    tmp_dir = Path(tempfile.mkdtemp(dir=str(parent), prefix=prefix))
    try:
        yield tmp_dir
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)


def publish_file(source: Path, target: Path) -> None:
    """Move source onto target, replacing any existing file.

    Uses an atomic rename when both live on the same filesystem, and an
    atomic_write copy otherwise.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        source.replace(target)
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        with source.open("rb") as src, atomic_write(target) as dst:
            shutil.copyfileobj(src, dst)
        source.unlink()
    with contextlib.suppress(OSError):
        target.chmod(_CACHE_FILE_MODE)


def remove_matching(directory: Path, pattern: re.Pattern[str]) -> list[Path]:
    """Delete regular files in directory whose names fully match pattern.

    Returns the removed paths. A missing directory removes nothing; any other
    OSError propagates so the caller can fail the request.
    """
    if not directory.is_dir():
        return []

    removed: list[Path] = []
    for entry in directory.iterdir():
        if entry.is_symlink() or not entry.is_file() or not pattern.fullmatch(entry.name):
            continue
        entry.unlink(missing_ok=True)
        removed.append(entry)
    return removed


def prune_children(root: Path, names: Iterable[str]) -> list[str]:
    """Remove top-level entries of root whose lower-cased names are in names.

    Directories are removed recursively. Returns the removed entry names.
    """
    wanted = {name.lower() for name in names}
    removed: list[str] = []
    for entry in root.iterdir():
        if entry.name.lower() not in wanted:
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed.append(entry.name)
    return sorted(removed)


def merge_tree(source: Path, destination: Path, *, commit_last: Path | None = None) -> int:
    """Move every file under source into the same relative place under destination.

    Existing files are overwritten. When commit_last (a path relative to
    source) is given, that file is moved after all others, so its presence
    at the destination implies the rest of the tree landed. Returns the
    number of files moved.
    """
    files = sorted(p for p in source.rglob("*") if p.is_file() and not p.is_symlink())
    if commit_last is not None:
        last = source / commit_last
        files = [p for p in files if p != last]
        if last.is_file():
            files.append(last)

    for path in files:
        publish_file(path, destination / path.relative_to(source))

    if files:
        logger.debug("merged staged tree", source=str(source), destination=str(destination), files=len(files))
    return len(files)
