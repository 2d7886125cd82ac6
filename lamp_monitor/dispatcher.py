"""Action Dispatcher.

Runs named actions on the actuator from a single background worker thread:

- Never more than one actuator invocation in flight
- A single pending slot instead of a queue, so rapid ON/OFF toggles
  collapse into the latest desired state
- Advisory actions (warnings) never replace or queue behind a pending
  exclusive action
- Bounded retries with a fixed delay; failures are logged, never fatal

Usage:
    dispatcher = ActionDispatcher(actuator, max_retries=2, retry_delay=3.0)
    dispatcher.start()

    dispatcher.submit("MeetingON", ActionKind.EXCLUSIVE)
    dispatcher.submit("MeetingSOON", ActionKind.ADVISORY)

    dispatcher.stop()
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from lamp_monitor.errors import ActuatorError
from lamp_monitor.protocols import Actuator

logger = logging.getLogger(__name__)


class ActionKind(Enum):
    """How a submission interacts with the pending slot."""

    # Terminal desired state; latest submission wins
    EXCLUSIVE = "exclusive"
    # Notification; only fills an empty slot
    ADVISORY = "advisory"


class ActionDispatcher:
    """Coalescing, serial, retrying executor of named actions.

    Args:
        actuator: Executes one action per call, raises ActuatorError on failure
        max_retries: Additional attempts after a failed one
        retry_delay: Seconds to wait between attempts
        sleep: Sleep function (injectable for tests)
    """

    def __init__(
        self,
        actuator: Actuator,
        max_retries: int = 2,
        retry_delay: float = 3.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.actuator = actuator
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

        self._lock = threading.Lock()
        self._pending: Optional[str] = None
        # Released only on an empty -> filled transition, so it never counts past 1
        self._wake = threading.Semaphore(0)
        self._stopping = threading.Event()
        self._worker: Optional[threading.Thread] = None

        self._completed = 0
        self._failed = 0

    # ==================== Producer side ====================

    @property
    def pending(self) -> Optional[str]:
        """The action waiting to run, if any."""
        with self._lock:
            return self._pending

    def submit(self, name: str, kind: ActionKind = ActionKind.EXCLUSIVE) -> bool:
        """Request an action.

        Args:
            name: Action name understood by the actuator
            kind: EXCLUSIVE overwrites the pending slot, ADVISORY only fills it when empty

        Returns:
            True if the action now occupies the pending slot, False if dropped
        """
        with self._lock:
            was_empty = self._pending is None

            if kind is ActionKind.EXCLUSIVE:
                if self._pending is not None and self._pending != name:
                    logger.debug(f"Replacing pending action '{self._pending}' with '{name}'")
                self._pending = name
            elif was_empty:
                self._pending = name
            else:
                logger.debug(f"Skipping '{name}' - action '{self._pending}' is pending")
                return False

        if was_empty:
            self._wake.release()
        return True

    # ==================== Worker side ====================

    def _take_pending(self) -> Optional[str]:
        with self._lock:
            name = self._pending
            self._pending = None
            return name

    def execute(self, name: str) -> bool:
        """Run one action with retries. Returns True on success."""
        max_attempts = self.max_retries + 1

        for attempt in range(1, max_attempts + 1):
            attempt_label = f" (attempt {attempt}/{max_attempts})" if attempt > 1 else ""
            start = time.monotonic()
            try:
                self.actuator.run(name)
            except ActuatorError as e:
                duration = time.monotonic() - start
                message = f"Action '{name}' failed after {duration:.2f}s{attempt_label}: {e}"
                if attempt < max_attempts:
                    logger.warning(f"{message}, retrying in {self.retry_delay:g}s...")
                    self._sleep(self.retry_delay)
                    continue
                logger.error(f"{message}, giving up after {attempt} attempts")
                self._failed += 1
                return False

            duration = time.monotonic() - start
            logger.debug(f"Action '{name}' completed successfully in {duration:.2f}s{attempt_label}")
            self._completed += 1
            return True

        return False

    def run_pending(self) -> Optional[str]:
        """Take and execute the pending action, if any. Returns its name."""
        name = self._take_pending()
        if name is not None:
            logger.info(f"Running action: {name}")
            self.execute(name)
        return name

    def _worker_loop(self) -> None:
        while True:
            self._wake.acquire()
            if self._stopping.is_set():
                break
            try:
                self.run_pending()
            except Exception as e:
                # Keep the worker alive whatever the actuator does
                logger.exception(f"Unexpected error running action: {e}")
        logger.debug("Action worker stopped")

    # ==================== Lifecycle ====================

    def start(self) -> None:
        """Start the background worker thread."""
        if self.is_running:
            return
        self._stopping.clear()
        self._worker = threading.Thread(target=self._worker_loop, name="action-worker", daemon=True)
        self._worker.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Ask the worker to exit once idle.

        Does not wait for an in-flight action unless a timeout is given.
        """
        self._stopping.set()
        self._wake.release()
        if self._worker and timeout is not None:
            self._worker.join(timeout)

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    @property
    def stats(self) -> dict:
        return {"completed": self._completed, "failed": self._failed, "pending": self.pending}
