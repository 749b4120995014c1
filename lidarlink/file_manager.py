"""File-system helpers for the directories that hold lidar log files."""

from __future__ import annotations

import logging
import os
from typing import Union

logger = logging.getLogger(__name__)

PathType = Union[str, "os.PathLike[str]"]

RECORD_KEY_LENGTH = 19


def dir_total_size(path: PathType) -> int:
    """Total size in bytes of a file, or of every file under a directory."""
    try:
        info = os.stat(path)
    except OSError:
        logger.error("get directory stat error: %s", path)
        return 0
    if os.path.isfile(path):
        return info.st_size
    if not os.path.isdir(path):
        logger.warning("unknown directory type: %s", path)
        return 0
    try:
        entries = [entry.path for entry in os.scandir(path)]
    except OSError:
        logger.error("opendir: %s failed", path)
        return 0
    return sum(dir_total_size(entry) for entry in entries)


def record_key(file_name: str) -> str:
    """The recording time that leads a log file name, used to order files."""
    if not file_name:
        raise ValueError("file name is empty")
    return file_name[:RECORD_KEY_LENGTH]


def file_names(path: PathType) -> list[tuple[str, str]]:
    """(record key, file name) of every visible log file under path, oldest first.

    Hidden files and symbolic links are skipped; subdirectories are searched.
    """
    found: list[tuple[str, str]] = []

    def collect(directory: PathType) -> None:
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.is_symlink():
                    continue
                if entry.is_file(follow_symlinks=False):
                    if entry.name.startswith("."):
                        continue
                    found.append((record_key(entry.name), entry.name))
                elif entry.is_dir(follow_symlinks=False):
                    try:
                        collect(entry.path)
                    except OSError:
                        logger.error("opendir: %s failed", entry.path)

    collect(path)
    found.sort(key=lambda item: item[0])
    return found


def restore_hidden_file(directory: PathType, file_name: str) -> bool:
    """Rename a hidden file to its visible name, replacing any file there.

    Returns whether the file was renamed.
    """
    if not file_name or not file_name.startswith("."):
        return False
    source = os.path.join(directory, file_name)
    if not os.path.exists(source):
        logger.warning("The file to be renamed: %s does not exist", file_name)
        return False
    target = os.path.join(directory, file_name[1:])
    if os.path.exists(target):
        try:
            os.remove(target)
        except OSError as exc:
            logger.warning("Failed to remove the existing file %s: %s", target, exc)
    try:
        os.replace(source, target)
    except OSError as exc:
        logger.warning("Rename hidden file %s failed: %s", file_name, exc)
        return False
    return True


def restore_hidden_files(path: PathType) -> None:
    """Make every hidden file under path visible, searching subdirectories."""
    if not os.fspath(path):
        raise ValueError("directory name is empty")
    with os.scandir(path) as entries:
        items = list(entries)
    for entry in items:
        if entry.is_symlink():
            continue
        if entry.is_file(follow_symlinks=False):
            if entry.name.startswith("."):
                restore_hidden_file(path, entry.name)
        elif entry.is_dir(follow_symlinks=False):
            try:
                restore_hidden_files(entry.path)
            except OSError:
                logger.error("opendir: %s failed", entry.path)


def delete_hidden_files(path: PathType) -> None:
    """Remove every hidden file under path, searching subdirectories."""
    with os.scandir(path) as entries:
        items = list(entries)
    for entry in items:
        if entry.is_symlink():
            continue
        if entry.is_file(follow_symlinks=False):
            if entry.name.startswith("."):
                try:
                    os.remove(entry.path)
                except OSError as exc:
                    logger.warning("Failed to remove %s: %s", entry.path, exc)
        elif entry.is_dir(follow_symlinks=False):
            try:
                delete_hidden_files(entry.path)
            except OSError:
                logger.error("opendir: %s failed", entry.path)


def make_directory(path: PathType) -> None:
    """Create one directory; raises OSError if it exists or cannot be made."""
    os.mkdir(path, 0o777)


def directory_exists(path: PathType) -> bool:
    """Whether anything exists at path."""
    return os.path.exists(path)