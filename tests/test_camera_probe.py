"""Tests for lamp_monitor/camera_probe.py using a fake /proc tree."""

import os

import pytest

from lamp_monitor.camera_probe import V4L2CameraProbe
from lamp_monitor.errors import ProbeError


@pytest.fixture
def dev_dir(tmp_path):
    path = tmp_path / "dev"
    path.mkdir()
    (path / "video0").write_text("")
    (path / "video1").write_text("")
    return path


@pytest.fixture
def proc_root(tmp_path):
    path = tmp_path / "proc"
    path.mkdir()
    # Non-process entries are ignored
    (path / "self").mkdir()
    (path / "meminfo").write_text("")
    return path


def add_process(proc_root, pid, targets):
    fd_dir = proc_root / str(pid) / "fd"
    fd_dir.mkdir(parents=True)
    for fd, target in enumerate(targets):
        os.symlink(str(target), fd_dir / str(fd))


class TestV4L2CameraProbe:
    def test_inactive_when_nobody_holds_device(self, dev_dir, proc_root, tmp_path):
        add_process(proc_root, 100, [tmp_path / "some.log", "pipe:[1234]"])
        probe = V4L2CameraProbe(str(dev_dir / "video*"), proc_root)

        assert probe.is_active() is False
        assert probe.find_holder() is None

    def test_active_when_process_holds_device(self, dev_dir, proc_root, tmp_path):
        add_process(proc_root, 100, [tmp_path / "some.log"])
        add_process(proc_root, 200, ["socket:[99]", dev_dir / "video1"])
        probe = V4L2CameraProbe(str(dev_dir / "video*"), proc_root)

        assert probe.is_active() is True
        assert probe.find_holder() == (200, str(dev_dir / "video1"))

    def test_own_process_ignored(self, dev_dir, proc_root):
        add_process(proc_root, os.getpid(), [dev_dir / "video0"])
        probe = V4L2CameraProbe(str(dev_dir / "video*"), proc_root)

        assert probe.is_active() is False

    def test_unreadable_process_skipped(self, dev_dir, proc_root):
        # Process without an fd directory (exited, or another user's)
        (proc_root / "300").mkdir()
        add_process(proc_root, 400, [dev_dir / "video0"])
        probe = V4L2CameraProbe(str(dev_dir / "video*"), proc_root)

        assert probe.find_holder() == (400, str(dev_dir / "video0"))

    def test_no_devices_means_inactive(self, tmp_path, proc_root):
        probe = V4L2CameraProbe(str(tmp_path / "nothing*"), proc_root)

        assert probe.is_active() is False

    def test_unreadable_proc_raises(self, dev_dir, tmp_path):
        probe = V4L2CameraProbe(str(dev_dir / "video*"), tmp_path / "no-proc")

        with pytest.raises(ProbeError):
            probe.is_active()
