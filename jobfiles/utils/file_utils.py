"""
File Utilities Module.

Provides reusable functions for file system operations including:
- Directory walking and file discovery
- Copying with OS error translation
- Whole-document JSON persistence (read-modify-rewrite, atomic replace)
"""

import errno
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Iterator, Union
import structlog

from jobfiles.exceptions import InsufficientSpace, PermissionDenied


logger = structlog.get_logger("file_utils")


def walk_directory(
    root: Union[str, Path],
    include_hidden: bool = False,
    follow_symlinks: bool = False
) -> Iterator[Path]:
    """
    Recursively walk a directory tree and yield file paths.

    Unreadable subdirectories are skipped rather than aborting the walk.

    Args:
        root: Root directory to start walking from
        include_hidden: Include hidden files (starting with . or ~)
        follow_symlinks: Follow symbolic links when walking

    Yields:
        Path objects for each file found, in sorted order per directory

    Example:
        >>> for file_path in walk_directory("/old/jobs"):
        ...     print(file_path)
        /old/jobs/Acme_Engineer_20240101.txt
        /old/jobs/globex/job.json
    """
    root = Path(root)

    try:
        entries = sorted(root.iterdir())
    except OSError as e:
        logger.debug("directory_unreadable", path=str(root), error=str(e))
        return

    for path in entries:
        # Skip hidden files unless explicitly included
        if not include_hidden:
            if path.name.startswith('.') or path.name.startswith('~'):
                continue

        # Handle symlinks
        if path.is_symlink() and not follow_symlinks:
            continue

        if path.is_dir():
            yield from walk_directory(path, include_hidden, follow_symlinks)
        elif path.is_file():
            yield path


def get_file_extension(file_path: Union[str, Path]) -> str:
    """
    Get the lowercase extension of a file including the leading dot.

    Example:
        >>> get_file_extension("/path/to/Resume.PDF")
        '.pdf'
        >>> get_file_extension("/path/to/README")
        ''
    """
    return Path(file_path).suffix.lower()


def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists

    Returns:
        Path object for the directory

    Raises:
        PermissionDenied: The OS refused to create the directory
        InsufficientSpace: The filesystem is full
        OSError: Any other failure, unchanged
    """
    dir_path = Path(path)
    try:
        dir_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        translated = translate_os_error(e, f"create folder {dir_path}")
        if translated is e:
            raise
        raise translated from e
    return dir_path


def translate_os_error(error: OSError, action: str) -> Exception:
    """
    Map an OSError raised while writing into a managed location onto the
    lifecycle error taxonomy. Unrecognized errors are returned unchanged.
    """
    if error.errno in (errno.EACCES, errno.EPERM) or isinstance(error, PermissionError):
        return PermissionDenied(
            f"Permission denied: unable to {action}. Check folder permissions. ({error})"
        )
    if error.errno == errno.ENOSPC:
        return InsufficientSpace(f"Not enough disk space to {action}. ({error})")
    return error


def copy_file(source: Union[str, Path], target: Union[str, Path]) -> Path:
    """
    Copy a file's bytes and metadata to target.

    Raises:
        PermissionDenied: The OS refused the read or write
        InsufficientSpace: The target filesystem is full
        OSError: Any other I/O failure, unchanged
    """
    source, target = Path(source), Path(target)
    try:
        shutil.copy2(source, target)
    except OSError as e:
        translated = translate_os_error(e, f"copy {source.name} to {target.parent}")
        if translated is e:
            raise
        raise translated from e
    return target


def read_json(path: Union[str, Path], default: Any = None) -> Any:
    """
    Read a JSON document, returning default when it is missing or corrupt.
    """
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("json_document_unreadable", path=str(path), error=str(e))
        return default


def atomic_write_json(path: Union[str, Path], data: Any) -> Path:
    """
    Rewrite a whole JSON document atomically.

    Writes to a temp file in the same directory, fsyncs it, then renames it
    over the target so readers only ever see the old or the new document.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    return path


def remove_path(path: Union[str, Path]) -> bool:
    """
    Remove a file or a directory tree.

    Returns:
        True if something was removed, False if the path did not exist
    """
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    if path.exists() or path.is_symlink():
        path.unlink()
        return True
    return False
