"""Symlink setup and copy-sync of shared source trees."""

import logging
import os
import shutil
import stat
import sys
from pathlib import Path

from devloop_core.models import SyncConfigItem

logger = logging.getLogger(__name__)

READ_ONLY = 0o444


def _make_writable(func, path, _exc) -> None:
    """rmtree error hook: read-only files are expected in synced trees."""
    os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
    func(path)


_RMTREE_HOOK = {"onexc": _make_writable} if sys.version_info >= (3, 12) else {"onerror": _make_writable}


def remove_path(path: Path) -> None:
    """Remove a file, link or directory tree if it exists."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path, **_RMTREE_HOOK)


def ensure_symlink(src: Path, dst: Path) -> bool:
    """Make `dst` a symlink to `src`, replacing whatever is there.

    Args:
        src: Link target (must exist)
        dst: Link location

    Returns:
        True if a link was created, False if the correct link already existed

    Raises:
        FileNotFoundError: If src does not exist
        OSError: If the link cannot be created
    """
    src = Path(src)
    dst = Path(dst)
    if not src.exists():
        raise FileNotFoundError(f"Symlink source does not exist: {src}")

    if dst.is_symlink() and dst.resolve() == src.resolve():
        logger.debug(f"Symlink already in place: {dst} -> {src}")
        return False

    remove_path(dst)
    dst.parent.mkdir(parents=True, exist_ok=True)
    target = os.path.relpath(src.resolve(), dst.parent.resolve())
    os.symlink(target, dst, target_is_directory=src.is_dir())
    logger.info(f"Linked {dst} -> {target}")
    return True


def _mark_read_only(root: Path) -> int:
    count = 0
    for directory, _dirs, files in os.walk(root):
        for name in files:
            os.chmod(os.path.join(directory, name), READ_ONLY)
            count += 1
    return count


def sync_tree(item: SyncConfigItem) -> int:
    """Bulk copy: replace the destination with a read-only copy of the source tree.

    Returns:
        Number of files copied
    """
    remove_path(item.to_path)
    shutil.copytree(item.from_path, item.to_path, symlinks=False)
    copied = _mark_read_only(item.to_path)
    logger.info(f"Synced {copied} file(s) from {item.from_path} to {item.to_path}")
    return copied


def sync_path(src: Path, dst: Path, is_directory: bool = False) -> None:
    """Incremental copy of one path; copied files are marked read-only.

    A directory is copied with its whole content, replacing what was there.
    """
    dst.parent.mkdir(parents=True, exist_ok=True)
    # A previous sync left the destination read-only
    remove_path(dst)
    if is_directory or src.is_dir():
        shutil.copytree(src, dst, symlinks=False)
        _mark_read_only(dst)
        return
    shutil.copy2(src, dst)
    os.chmod(dst, READ_ONLY)


def map_destination(item: SyncConfigItem, path: Path) -> Path:
    """Destination of `path` inside the synced copy."""
    relative = Path(os.path.normpath(path)).relative_to(os.path.normpath(item.from_path))
    return item.to_path / relative
