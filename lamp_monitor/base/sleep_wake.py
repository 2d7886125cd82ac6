#!/usr/bin/env python3
"""
Sleep/Wake detection for the lamp monitor

While the machine is suspended the poll loop makes no progress, so debounce
tracking and meeting bookkeeping from before suspend are stale on resume.

Two sources, whichever fires first:
- systemd-logind PrepareForSleep(true/false) on the system bus
- A clock gap: CLOCK_BOOTTIME keeps counting through suspend, so a check
  that arrives much later than scheduled means we were asleep

Usage:
    from lamp_monitor.base import SleepWakeMonitor

    async def on_wake():
        print("resumed")

    monitor = SleepWakeMonitor(on_wake)
    await monitor.start()
    ...
    await monitor.stop()
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

LOGIND_BUS_NAME = "org.freedesktop.login1"
LOGIND_PATH = "/org/freedesktop/login1"
LOGIND_MANAGER = "org.freedesktop.login1.Manager"


def boottime() -> float:
    """Seconds since boot, including time spent suspended."""
    try:
        return time.clock_gettime(time.CLOCK_BOOTTIME)
    except (AttributeError, OSError):
        # Not Linux: wall time also advances across suspend
        return time.time()


class SleepWakeMonitor:
    """
    Notify callbacks when the system suspends and resumes.

    Args:
        on_wake: Coroutine function called after resume
        on_sleep: Optional coroutine function called before suspend
        gap_threshold: Extra seconds beyond check_interval that count as a suspend
        check_interval: Seconds between clock-gap checks
        use_logind: Subscribe to logind signals (disable for tests)
        clock: Suspend-inclusive clock
    """

    def __init__(
        self,
        on_wake: Callable[[], Awaitable[None]],
        on_sleep: Optional[Callable[[], Awaitable[None]]] = None,
        gap_threshold: float = 30.0,
        check_interval: float = 10.0,
        use_logind: bool = True,
        clock: Callable[[], float] = boottime,
    ):
        self._on_wake = on_wake
        self._on_sleep = on_sleep
        self.gap_threshold = gap_threshold
        self.check_interval = check_interval
        self.use_logind = use_logind
        self._clock = clock

        self._last_check = clock()
        self._bus = None
        self._gap_task: Optional[asyncio.Task] = None
        self._callbacks: set[asyncio.Task] = set()
        self.wake_count = 0

    @property
    def running(self) -> bool:
        return self._gap_task is not None

    async def start(self) -> None:
        if self.running:
            return

        self._last_check = self._clock()
        self._gap_task = asyncio.create_task(self._watch_clock(), name="sleep-wake-gap")

        source = "clock gap"
        if self.use_logind:
            try:
                await self._subscribe_logind()
                source = "logind + clock gap"
            except Exception as e:
                logger.debug(f"logind unavailable, relying on clock gaps: {e}")
        logger.info(f"Sleep/wake monitor started ({source})")

    async def stop(self) -> None:
        if self._gap_task:
            self._gap_task.cancel()
            try:
                await self._gap_task
            except asyncio.CancelledError:
                pass
            self._gap_task = None

        if self._bus:
            self._bus.disconnect()
            self._bus = None

        logger.debug("Sleep/wake monitor stopped")

    def check_time_gap(self, now: Optional[float] = None) -> bool:
        """Record a check. True if it came late enough to imply a suspend."""
        now = self._clock() if now is None else now
        elapsed = now - self._last_check
        self._last_check = now
        if elapsed > self.check_interval + self.gap_threshold:
            logger.info(f"Detected resume from suspend ({elapsed:.0f}s since last check)")
            return True
        return False

    async def _watch_clock(self) -> None:
        while True:
            await asyncio.sleep(self.check_interval)
            if self.check_time_gap():
                await self.notify_wake()

    async def _subscribe_logind(self) -> None:
        from dbus_next import BusType
        from dbus_next.aio import MessageBus

        bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        introspection = await bus.introspect(LOGIND_BUS_NAME, LOGIND_PATH)
        manager = bus.get_proxy_object(LOGIND_BUS_NAME, LOGIND_PATH, introspection).get_interface(LOGIND_MANAGER)
        manager.on_prepare_for_sleep(self._on_prepare_for_sleep)
        self._bus = bus

    def _on_prepare_for_sleep(self, going_to_sleep: bool) -> None:
        if going_to_sleep:
            logger.info("System suspending")
            coro = self.notify_sleep()
        else:
            logger.info("System resumed (logind)")
            coro = self.notify_wake()
        # Keep a reference until the callback finishes
        task = asyncio.create_task(coro)
        self._callbacks.add(task)
        task.add_done_callback(self._callbacks.discard)

    async def notify_sleep(self) -> None:
        if self._on_sleep is None:
            return
        try:
            await self._on_sleep()
        except Exception as e:
            logger.error(f"Error in sleep callback: {e}")

    async def notify_wake(self) -> None:
        self.wake_count += 1
        # Don't report the same suspend again through the clock gap
        self._last_check = self._clock()
        try:
            await self._on_wake()
        except Exception as e:
            logger.error(f"Error in wake callback: {e}")


class SleepWakeAwareDaemon(ABC):
    """
    Mixin giving a BaseDaemon subclass suspend/resume hooks.

    List it before BaseDaemon:
        class MyDaemon(SleepWakeAwareDaemon, BaseDaemon): ...
    """

    _sleep_monitor: Optional[SleepWakeMonitor] = None

    @abstractmethod
    async def on_system_wake(self):
        """Called after the system resumes."""

    async def on_system_sleep(self):  # noqa: B027
        """Called before the system suspends. Default does nothing."""

    async def start_sleep_monitor(self, use_logind: bool = True):
        self._sleep_monitor = SleepWakeMonitor(self.on_system_wake, self.on_system_sleep, use_logind=use_logind)
        await self._sleep_monitor.start()

    async def stop_sleep_monitor(self):
        if self._sleep_monitor:
            await self._sleep_monitor.stop()
            self._sleep_monitor = None

    @property
    def wake_count(self) -> int:
        return self._sleep_monitor.wake_count if self._sleep_monitor else 0
