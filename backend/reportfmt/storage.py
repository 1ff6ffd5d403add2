"""Asset store for report format directories."""

from __future__ import annotations

import errno
import logging
import os
import shutil
from typing import Iterable, Sequence

# purpose: keep report format files on disk in step with their database rows
# status: production
# related_docs: DESIGN.md (storage)

_logger = logging.getLogger(__name__)

DIR_MODE = 0o755
EXECUTABLE_MODE = 0o755
FILE_MODE = 0o644
ENTRY_POINT = "generate"


class InvalidFileName(ValueError):
    """Raised when a report format file has an empty or path-qualified name."""


def check_file_names(files: Iterable[tuple[str, bytes]]) -> None:
    for name, _content in files:
        if not name:
            raise InvalidFileName("File name is empty")
        if "/" in name or os.sep in name or name in {".", ".."}:
            raise InvalidFileName(f"File name {name!r} must not contain a path")


def make_dir(directory: str, *, fix_parent: bool = False) -> None:
    """Create ``directory`` with mode 0755 even under a restrictive umask."""

    # purpose: makedirs does not apply the mode to intermediate directories
    # status: production
    os.makedirs(directory, mode=DIR_MODE, exist_ok=True)
    if fix_parent:
        os.chmod(os.path.dirname(directory), DIR_MODE)
    os.chmod(directory, DIR_MODE)


def remove_tree(directory: str) -> None:
    if os.path.lexists(directory):
        if os.path.isdir(directory) and not os.path.islink(directory):
            shutil.rmtree(directory)
        else:
            os.unlink(directory)


def discard_tree(directory: str) -> None:
    """Best effort removal used on failure paths."""

    try:
        remove_tree(directory)
    except OSError as exc:
        _logger.warning("Failed to remove %s: %s", directory, exc)


def write_files(directory: str, files: Sequence[tuple[str, bytes]]) -> None:
    """Replace ``directory`` with exactly ``files``.

    ``generate`` is made executable, every other file is written 0644.
    """

    # purpose: materialize the files of a new report format
    # inputs: target directory, sequence of (name, content) pairs
    # outputs: None, raises InvalidFileName or OSError
    # status: production
    check_file_names(files)
    remove_tree(directory)
    make_dir(directory, fix_parent=True)
    for name, content in files:
        path = os.path.join(directory, name)
        with open(path, "wb") as handle:
            handle.write(content)
        os.chmod(path, EXECUTABLE_MODE if name == ENTRY_POINT else FILE_MODE)


def read_files(directory: str) -> list[tuple[str, bytes]]:
    """Return the regular files of ``directory`` as (name, content) pairs."""

    entries: list[tuple[str, bytes]] = []
    for name in os.listdir(directory):
        path = os.path.join(directory, name)
        if not os.path.isfile(path):
            continue
        with open(path, "rb") as handle:
            entries.append((name, handle.read()))
    entries.sort(key=lambda entry: entry[0].encode("utf-8"))
    return entries


def copy_tree(source: str, destination: str) -> None:
    if not os.path.isdir(source):
        raise FileNotFoundError(errno.ENOENT, "Report format directory missing", source)
    remove_tree(destination)
    os.makedirs(os.path.dirname(destination), mode=DIR_MODE, exist_ok=True)
    shutil.copytree(source, destination, symlinks=True)
    os.chmod(os.path.dirname(destination), DIR_MODE)
    os.chmod(destination, DIR_MODE)


def move_tree(source: str, destination: str) -> None:
    """Move ``source`` to ``destination``, falling back to copying across devices.

    The source is only removed once every entry has been moved.
    """

    if not os.path.isdir(source):
        raise FileNotFoundError(errno.ENOENT, "Report format directory missing", source)
    remove_tree(destination)
    os.makedirs(os.path.dirname(destination), mode=DIR_MODE, exist_ok=True)
    try:
        os.rename(source, destination)
        return
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            _logger.warning("Failed to rename %s to %s: %s", source, destination, exc)
            raise
    make_dir(destination)
    for name in os.listdir(source):
        shutil.move(os.path.join(source, name), os.path.join(destination, name))
    shutil.rmtree(source)
