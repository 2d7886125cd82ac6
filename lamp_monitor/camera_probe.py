"""Capture-device activity probe for Linux.

A V4L2 camera is "active" when some process holds it open. There is no
single kernel flag for that, so we walk /proc/<pid>/fd and look for
descriptors pointing at a video device node.
"""

import glob
import logging
import os
from pathlib import Path
from typing import Optional

from lamp_monitor.errors import ProbeError

logger = logging.getLogger(__name__)


class V4L2CameraProbe:
    """Report whether any other process has a camera device open.

    Args:
        device_glob: Pattern of device nodes to consider (default /dev/video*)
        proc_root: Root of the proc filesystem (overridable for tests)
    """

    def __init__(self, device_glob: str = "/dev/video*", proc_root: Path | str = "/proc"):
        self.device_glob = device_glob
        self.proc_root = Path(proc_root)
        self._own_pid = os.getpid()

    def _devices(self) -> set[str]:
        devices = set()
        for path in glob.glob(self.device_glob):
            devices.add(path)
            devices.add(os.path.realpath(path))
        return devices

    def find_holder(self) -> Optional[tuple[int, str]]:
        """Find a process holding a camera open.

        Returns:
            (pid, device path) of the first holder found, or None

        Raises:
            ProbeError: the proc filesystem couldn't be read
        """
        devices = self._devices()
        if not devices:
            logger.debug(f"No camera devices match {self.device_glob}")
            return None

        try:
            entries = list(self.proc_root.iterdir())
        except OSError as e:
            raise ProbeError(f"Cannot read {self.proc_root}: {e}") from e

        for entry in entries:
            if not entry.name.isdigit():
                continue
            pid = int(entry.name)
            if pid == self._own_pid:
                continue

            try:
                fds = list((entry / "fd").iterdir())
            except OSError:
                # Other users' processes, or the process already exited
                continue

            for fd in fds:
                try:
                    target = os.readlink(fd)
                except OSError:
                    continue
                if target in devices:
                    logger.debug(f"Camera {target} is ACTIVE (held by PID {pid})")
                    return pid, target

        return None

    def is_active(self) -> bool:
        return self.find_holder() is not None
