#!/usr/bin/env python3
"""
Daemon plumbing shared by the lamp monitor

- InstanceLock: one running monitor per state directory
- BaseDaemon: asyncio lifecycle, SIGTERM/SIGINT, --status/--stop CLI
- sd_notify / watchdog: systemd Type=notify support

Subclass BaseDaemon, set `name`, implement `run_daemon()` and run it with
`daemon.run()`. Mixins such as SleepWakeAwareDaemon go BEFORE BaseDaemon in
the bases list so their hooks resolve first:

    class LampMonitorDaemon(SleepWakeAwareDaemon, BaseDaemon): ...
"""

import argparse
import asyncio
import fcntl
import logging
import os
import signal
import socket
import sys
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import IO, Optional

from lamp_monitor.errors import AlreadyRunningError, LockError

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(name)s - %(levelname)s - %(message)s"

# Retries while a freshly started holder writes its PID
PID_READ_RETRIES = 3
PID_READ_DELAY = 0.05


# =============================================================================
# SYSTEMD
# =============================================================================


def sd_notify(state: str) -> bool:
    """
    Send one sd_notify message ("READY=1", "WATCHDOG=1", "STATUS=...").

    Returns:
        False when not started by systemd (no NOTIFY_SOCKET) or the send failed
    """
    address = os.environ.get("NOTIFY_SOCKET")
    if not address:
        return False
    if address.startswith("@"):
        # Linux abstract namespace
        address = "\0" + address[1:]

    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
            sock.connect(address)
            sock.sendall(state.encode())
    except OSError as e:
        logger.warning(f"sd_notify({state}) failed: {e}")
        return False
    return True


def get_watchdog_interval() -> float:
    """Seconds between WATCHDOG=1 pings (half of WatchdogSec), 0 when disabled."""
    try:
        usec = int(os.environ.get("WATCHDOG_USEC", "0"))
    except ValueError:
        return 0
    return usec / 2_000_000 if usec > 0 else 0


# =============================================================================
# SINGLE INSTANCE LOCK
# =============================================================================


def is_process_running(pid: int) -> bool:
    """Check whether a process exists (signal 0 probes without sending)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    except OSError:
        return False
    return True


class InstanceLock:
    """
    Ensures only one instance of the daemon runs at a time.

    Uses file locking (fcntl.flock) for atomic acquisition; the holder's PID
    is written into the lock file. A lock whose recorded PID is dead is
    stale and gets reclaimed once.

    Args:
        lock_path: Path of the lock file
    """

    def __init__(self, lock_path: Path):
        self.lock_path = Path(lock_path)
        self._lock_file: Optional[IO[str]] = None

    def _try_lock(self) -> bool:
        """Open the lock file and try a non-blocking exclusive lock."""
        # "a+" creates without truncating a live holder's PID
        lock_file = open(self.lock_path, "a+")
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            lock_file.close()
            return False
        self._lock_file = lock_file
        return True

    def _write_pid(self) -> None:
        assert self._lock_file is not None
        self._lock_file.seek(0)
        self._lock_file.truncate()
        self._lock_file.write(str(os.getpid()))
        self._lock_file.flush()

    def read_holder_pid(self) -> Optional[int]:
        """PID recorded in the lock file, or None if missing/unreadable."""
        try:
            return int(self.lock_path.read_text().strip())
        except (OSError, ValueError):
            return None

    def _clean_stale_lock(self) -> bool:
        """Remove the lock file if its holder is gone.

        Returns:
            True if the lock was stale and removed, False if the holder is alive
        """
        pid = self.read_holder_pid()
        # A new holder may not have written its PID yet
        for _ in range(PID_READ_RETRIES):
            if pid is not None:
                break
            time.sleep(PID_READ_DELAY)
            pid = self.read_holder_pid()

        if pid is None:
            # The flock is held, so whoever holds it is alive
            logger.warning(f"Lock {self.lock_path} is held but records no PID")
            return False
        if is_process_running(pid):
            return False

        logger.warning(f"Removing stale lock file (PID {pid} is not running)")

        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
        return True

    def acquire(self) -> "InstanceLock":
        """
        Acquire the lock, reclaiming it once if stale.

        Returns:
            self, holding the lock

        Raises:
            AlreadyRunningError: another live process holds the lock
            LockError: the lock file could not be created or locked
        """
        if self.is_acquired:
            return self

        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            if not self._try_lock():
                if not self._clean_stale_lock():
                    raise AlreadyRunningError(self.read_holder_pid())
                if not self._try_lock():
                    raise LockError("Could not acquire lock after cleanup")
            self._write_pid()
        except OSError as e:
            self.release()
            raise LockError(f"Could not create lock file {self.lock_path}: {e}") from e

        logger.debug(f"Lock acquired: {self.lock_path}")
        return self

    def release(self) -> None:
        """Release the lock and remove the lock file. Safe to call repeatedly."""
        if self._lock_file is None:
            return

        lock_file, self._lock_file = self._lock_file, None
        try:
            lock_file.seek(0)
            lock_file.truncate()
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        except OSError as e:
            logger.debug(f"Suppressed error unlocking {self.lock_path}: {e}")
        finally:
            lock_file.close()

        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove lock file {self.lock_path}: {e}")

    def get_running_pid(self) -> Optional[int]:
        """
        Get PID of running instance.

        Returns:
            PID if running, None otherwise.
        """
        pid = self.read_holder_pid()
        if pid is not None and is_process_running(pid):
            return pid
        return None

    @property
    def is_acquired(self) -> bool:
        """Whether this instance holds the lock."""
        return self._lock_file is not None

    def __enter__(self) -> "InstanceLock":
        return self.acquire()

    def __exit__(self, *exc) -> None:
        self.release()




# =============================================================================
# DAEMON
# =============================================================================


class BaseDaemon(ABC):
    """
    asyncio daemon skeleton.

    run() takes the instance lock, calls preflight(), then drives
    startup() -> run_daemon() -> shutdown() inside asyncio.run(). SIGTERM and
    SIGINT set the shutdown event that run_daemon() is expected to watch.
    While systemd's watchdog is enabled, pings are sent only as long as
    health_check() reports healthy.

    Args:
        lock_path: Single-instance lock file
        verbose: Debug logging was requested
    """

    name: str = ""
    description: str = ""

    def __init__(self, lock_path: Path, verbose: bool = False):
        if not self.name:
            raise ValueError(f"{type(self).__name__}.name must be set")

        self.verbose = verbose
        self._shutdown_event = asyncio.Event()
        self._instance_lock = InstanceLock(lock_path)
        self._watchdog_task: Optional[asyncio.Task] = None
        self._pinging = True

    @property
    def lock_file(self) -> Path:
        return self._instance_lock.lock_path

    # ==================== Hooks ====================

    def preflight(self) -> bool:
        """Synchronous checks made while holding the lock. False exits with status 1."""
        return True

    async def startup(self):
        pass

    @abstractmethod
    async def run_daemon(self):
        """Run until self._shutdown_event is set."""

    async def shutdown(self):
        pass

    async def health_check(self) -> dict:
        return {"healthy": True, "message": "ok"}

    def request_shutdown(self):
        logger.info(f"Shutdown requested for {self.name}")
        self._shutdown_event.set()

    # ==================== Lifecycle ====================

    def run(self) -> int:
        """Blocking entry point. Returns the process exit code."""
        try:
            self._instance_lock.acquire()
        except AlreadyRunningError as e:
            logger.error(str(e))
            return 1
        except LockError as e:
            logger.error(f"Could not acquire instance lock: {e}")
            return 1

        try:
            if not self.preflight():
                return 1
            asyncio.run(self._run())
            return 0
        finally:
            self._instance_lock.release()

    async def _run(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._on_signal, sig)

        try:
            await self.startup()
            sd_notify("READY=1")
            sd_notify(f"STATUS={self.description or self.name} running")
            logger.info(f"{self.name} ready")

            self._watchdog_task = asyncio.create_task(self._watchdog_loop(), name="watchdog")
            await self.run_daemon()
        except asyncio.CancelledError:
            logger.info(f"{self.name} cancelled")
        except Exception as e:
            logger.exception(f"{self.name} failed: {e}")
            sd_notify(f"STATUS=Failed: {e}")
            raise
        finally:
            await self._stop_watchdog()
            sd_notify("STOPPING=1")
            await self.shutdown()

    def _on_signal(self, sig: signal.Signals):
        logger.info(f"Received {sig.name}")
        self.request_shutdown()

    # ==================== Watchdog ====================

    async def _is_healthy(self) -> bool:
        try:
            result = await self.health_check()
        except Exception as e:
            logger.warning(f"health_check() raised: {e}")
            return False
        if not result.get("healthy", True):
            logger.warning(f"Unhealthy: {result.get('message', 'no details')}")
            return False
        return True

    async def _watchdog_loop(self):
        interval = get_watchdog_interval()
        if not interval:
            logger.debug("systemd watchdog disabled")
            return

        logger.info(f"systemd watchdog enabled, ping every {interval:.1f}s")
        while not self._shutdown_event.is_set():
            healthy = await self._is_healthy()
            if healthy:
                sd_notify("WATCHDOG=1")
            if healthy != self._pinging:
                logger.warning("Watchdog pings resumed" if healthy else "Watchdog pings paused")
                self._pinging = healthy

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def _stop_watchdog(self):
        task, self._watchdog_task = self._watchdog_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ==================== CLI ====================

    @classmethod
    def configure_logging(cls, verbose: bool = False, level: str = "INFO"):
        """Log to stderr (journald under systemd); --verbose forces DEBUG."""
        logging.basicConfig(
            level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
            format=LOG_FORMAT,
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=[logging.StreamHandler(sys.stderr)],
        )

    @classmethod
    def create_argument_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(prog=cls.name, description=cls.description or None)
        parser.add_argument("--status", action="store_true", help="Report whether an instance is running")
        parser.add_argument("--stop", action="store_true", help="Send SIGTERM to the running instance")
        parser.add_argument(
            "-v",
            "--verbose",
            "-d",
            "--debug",
            action="store_true",
            dest="verbose",
            help="Enable debug logging",
        )
        return parser

    @classmethod
    def handle_status(cls, lock_path: Path) -> int:
        pid = InstanceLock(lock_path).get_running_pid()
        if pid is None:
            print(f"{cls.name} is not running")
            return 1
        print(f"{cls.name} is running (PID: {pid})")
        return 0

    @classmethod
    def handle_stop(cls, lock_path: Path) -> int:
        pid = InstanceLock(lock_path).get_running_pid()
        if pid is None:
            print(f"{cls.name} is not running")
            return 1
        try:
            os.kill(pid, signal.SIGTERM)
        except OSError as e:
            print(f"Could not stop {cls.name} (PID: {pid}): {e}")
            return 1
        print(f"Sent SIGTERM to {cls.name} (PID: {pid})")
        return 0
