"""Tests for symlink setup and copy-sync collaborators."""

import os
import stat

import pytest

from devloop.sync import READ_ONLY, ensure_symlink, map_destination, remove_path, sync_path, sync_tree
from devloop_core.models import SyncConfigItem


def mode(path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


@pytest.fixture
def shared(tmp_path):
    src = tmp_path / "src" / "shared"
    (src / "protocols").mkdir(parents=True)
    (src / "a.py").write_text("A = 1\n")
    (src / "b.py").write_text("B = 2\n")
    (src / "protocols" / "PtlLogin.py").write_text("class ReqLogin: ...\n")
    return src


class TestEnsureSymlink:
    """One-time symlink setup."""

    def test_creates_relative_link(self, shared, tmp_path):
        dst = tmp_path / "client" / "shared"

        assert ensure_symlink(shared, dst) is True

        assert dst.is_symlink()
        assert not os.path.isabs(os.readlink(dst))
        assert (dst / "a.py").read_text() == "A = 1\n"

    def test_is_idempotent(self, shared, tmp_path):
        dst = tmp_path / "client" / "shared"
        ensure_symlink(shared, dst)

        assert ensure_symlink(shared, dst) is False

    def test_replaces_existing_directory(self, shared, tmp_path):
        dst = tmp_path / "client" / "shared"
        dst.mkdir(parents=True)
        (dst / "stale.py").write_text("")

        ensure_symlink(shared, dst)

        assert dst.is_symlink()
        assert not (shared / "stale.py").exists()

    def test_missing_source_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ensure_symlink(tmp_path / "nope", tmp_path / "link")


class TestSyncTree:
    """Bulk copy."""

    def test_copies_everything_read_only(self, shared, tmp_path):
        item = SyncConfigItem(type="copy", from_path=shared, to_path=tmp_path / "dist" / "shared")

        assert sync_tree(item) == 3

        assert (item.to_path / "protocols" / "PtlLogin.py").exists()
        assert mode(item.to_path / "a.py") == READ_ONLY

    def test_removes_stale_files(self, shared, tmp_path):
        item = SyncConfigItem(type="copy", from_path=shared, to_path=tmp_path / "dist" / "shared")
        sync_tree(item)
        (shared / "b.py").unlink()

        sync_tree(item)

        assert not (item.to_path / "b.py").exists()


class TestIncremental:
    """Single-path actions used after the first bulk sync."""

    def test_sync_path_overwrites_read_only_copy(self, shared, tmp_path):
        dst = tmp_path / "dist" / "a.py"
        sync_path(shared / "a.py", dst)
        (shared / "a.py").write_text("A = 42\n")

        sync_path(shared / "a.py", dst)

        assert dst.read_text() == "A = 42\n"
        assert mode(dst) == READ_ONLY

    def test_sync_path_directory_copies_content(self, shared, tmp_path):
        dst = tmp_path / "dist" / "protocols"
        sync_path(shared / "protocols", dst, is_directory=True)

        assert (dst / "PtlLogin.py").read_text() == "class ReqLogin: ...\n"
        assert mode(dst / "PtlLogin.py") == READ_ONLY

    def test_sync_path_directory_replaces_read_only_copy(self, shared, tmp_path):
        dst = tmp_path / "dist" / "protocols"
        sync_path(shared / "protocols", dst, is_directory=True)
        (shared / "protocols" / "PtlLogin.py").write_text("class ReqLogin2: ...\n")
        (shared / "protocols" / "MsgChat.py").write_text("")

        sync_path(shared / "protocols", dst, is_directory=True)

        assert (dst / "PtlLogin.py").read_text() == "class ReqLogin2: ...\n"
        assert mode(dst / "MsgChat.py") == READ_ONLY

    def test_remove_path(self, shared, tmp_path):
        item = SyncConfigItem(type="copy", from_path=shared, to_path=tmp_path / "dist")
        sync_tree(item)

        remove_path(item.to_path / "protocols")
        remove_path(item.to_path / "a.py")
        remove_path(item.to_path / "missing.py")

        assert not (item.to_path / "protocols").exists()
        assert not (item.to_path / "a.py").exists()
        assert (item.to_path / "b.py").exists()

    def test_map_destination(self, shared, tmp_path):
        item = SyncConfigItem(type="copy", from_path=shared, to_path=tmp_path / "dist")
        assert map_destination(item, shared / "protocols" / "PtlLogin.py") == tmp_path / "dist" / "protocols" / "PtlLogin.py"

    def test_map_destination_outside_source(self, shared, tmp_path):
        item = SyncConfigItem(type="copy", from_path=shared, to_path=tmp_path / "dist")
        with pytest.raises(ValueError):
            map_destination(item, tmp_path / "elsewhere.py")
