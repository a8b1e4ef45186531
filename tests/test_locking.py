"""Tests for ralf.runner.locking."""

import fcntl
import pytest

from ralf.runner.locking import LockTimeout, is_locked, project_lock


class TestProjectLock:
    def test_creates_lock_file(self, tmp_path):
        with project_lock(tmp_path):
            assert (tmp_path / ".ralf" / "ralf.lock").exists()

    def test_is_locked_while_held(self, tmp_path):
        assert is_locked(tmp_path) is False
        with project_lock(tmp_path):
            assert is_locked(tmp_path) is True
        assert is_locked(tmp_path) is False

    def test_times_out_when_held_elsewhere(self, tmp_path):
        lock_file = tmp_path / ".ralf" / "ralf.lock"
        lock_file.parent.mkdir(parents=True)
        with open(lock_file, "w") as other:
            fcntl.flock(other, fcntl.LOCK_EX | fcntl.LOCK_NB)
            with pytest.raises(LockTimeout) as exc_info:
                with project_lock(tmp_path, timeout=0.3):
                    pass
            assert exc_info.value.exit_code == 7

    def test_lock_file_kept_after_release(self, tmp_path):
        with project_lock(tmp_path):
            pass
        assert (tmp_path / ".ralf" / "ralf.lock").exists()
