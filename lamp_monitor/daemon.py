#!/usr/bin/env python3
"""
Webcam Lamp Monitor Daemon

Watches camera activity and upcoming calendar meetings and drives lamp
automations from the result. Designed to run as a systemd user service.

Features:
- Debounced camera ON/OFF detection every poll tick
- "Meeting soon" warning once per meeting, expired if never joined
- Coalescing, retrying action worker (never more than one action in flight)
- Restart-safe meeting tracking persisted to disk
- Single-instance lock with stale-lock recovery
- Sleep/wake awareness and systemd watchdog support

Usage:
    python -m lamp_monitor                 # Run daemon
    python -m lamp_monitor --status        # Check if running
    python -m lamp_monitor --stop          # Stop running daemon
    python -m lamp_monitor --dry-run -v    # Log actions instead of running them

Systemd:
    systemctl --user start lamp-monitor
    systemctl --user status lamp-monitor
"""

import asyncio
import dataclasses
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from lamp_monitor.actuator import CommandActuator, DryRunActuator, validate_actions
from lamp_monitor.base.daemon import BaseDaemon
from lamp_monitor.base.sleep_wake import SleepWakeAwareDaemon
from lamp_monitor.calendar_provider import GoogleCalendarProvider
from lamp_monitor.camera_probe import V4L2CameraProbe
from lamp_monitor.config_manager import MonitorConfig, load_config
from lamp_monitor.debouncer import PresenceDebouncer, Transition
from lamp_monitor.dispatcher import ActionDispatcher, ActionKind
from lamp_monitor.errors import CalendarUnavailableError, ConfigValidationError, ProbeError
from lamp_monitor.meeting_scanner import MeetingScanner
from lamp_monitor.paths import ensure_state_dir, lock_file_for, state_file_for
from lamp_monitor.protocols import Actuator, CalendarProvider, PresenceProbe
from lamp_monitor.state_store import StateStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LampMonitorDaemon(SleepWakeAwareDaemon, BaseDaemon):
    """Orchestration loop tying probe, debouncer, scanner and dispatcher together."""

    # BaseDaemon configuration
    name = "lamp-monitor"
    description = "Webcam Lamp Monitor"

    def __init__(
        self,
        config: MonitorConfig,
        probe: Optional[PresenceProbe] = None,
        calendar: Optional[CalendarProvider] = None,
        actuator: Optional[Actuator] = None,
        verbose: bool = False,
        skip_validation: bool = False,
        use_logind: bool = True,
        monotonic: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
    ):
        BaseDaemon.__init__(self, lock_path=lock_file_for(config.state_dir), verbose=verbose)
        self.config = config
        self.skip_validation = skip_validation
        self.use_logind = use_logind
        self._monotonic = monotonic
        self._now = now

        self.probe = probe or V4L2CameraProbe(config.camera_device_glob)
        if calendar is None and config.meetings_enabled:
            calendar = GoogleCalendarProvider(config.calendar_ids, config.google_config_dir)
        self.calendar = calendar if config.meetings_enabled else None

        if actuator is None:
            if config.dry_run:
                actuator = DryRunActuator()
            else:
                actuator = CommandActuator(
                    config.actuator_command,
                    config.actuator_list_command,
                    timeout=config.actuator_timeout_seconds,
                )
        self.actuator = actuator

        self.store = StateStore(state_file_for(config.state_dir))
        self.debouncer = PresenceDebouncer(config.debounce_count, config.debounce_timeout_seconds)
        self.dispatcher = ActionDispatcher(self.actuator, config.max_retries, config.retry_delay_seconds)
        self.scanner = MeetingScanner(self.calendar, self.store, config)

        self._tick_count = 0
        self._last_tick: Optional[float] = None
        self._started_at: Optional[float] = None
        self._woke = False

    # ==================== Lifecycle ====================

    def preflight(self) -> bool:
        """Load persisted state and check the actuator knows our actions."""
        self.scanner.tracker = self.store.load()

        if self.config.dry_run or self.skip_validation:
            return True

        missing = validate_actions(self.actuator, self.config.actions.all())
        if missing:
            logger.error("Exiting due to missing actions")
            return False
        return True

    async def startup(self):
        """Start the action worker, open the calendar and the sleep monitor."""
        actions = self.config.actions
        logger.info(f"Webcam Lamp Monitor started{' [DRY-RUN MODE]' if self.config.dry_run else ''}")
        logger.info(f"Actions: ON='{actions.on}', OFF='{actions.off}', WARN='{actions.warn}'")
        logger.info(
            f"Check interval: {self.config.poll_interval_seconds:g}s, "
            f"Meeting warning: {int(self.config.warning_window.total_seconds() // 60)} min before"
        )
        logger.info(
            f"Debounce: {self.config.debounce_count} consistent readings required "
            f"(timeout {self.config.debounce_timeout_seconds:g}s)"
        )

        self.dispatcher.start()

        if self.calendar is not None:
            try:
                await asyncio.to_thread(self.calendar.open)
            except CalendarUnavailableError as e:
                logger.warning(f"Calendar access denied - meeting warnings will be disabled: {e}")
        else:
            logger.info("Meeting warnings disabled")

        await self.start_sleep_monitor(use_logind=self.use_logind)

    async def shutdown(self):
        """Persist tracker state and let the worker go; the lock is released by run()."""
        logger.info("Shutting down...")
        await self.stop_sleep_monitor()
        self.scanner.persist()
        self.dispatcher.stop()

    async def run_daemon(self):
        """Tick until shutdown is requested."""
        self._started_at = self._monotonic()
        while not self._shutdown_event.is_set():
            try:
                await asyncio.to_thread(self.tick)
            except Exception as e:
                logger.exception(f"Tick failed: {e}")

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.config.poll_interval_seconds)
                break
            except asyncio.TimeoutError:
                pass

    async def on_system_wake(self):
        # Consumed by the next tick so the debouncer is only touched by the loop
        self._woke = True

    async def health_check(self) -> dict:
        """Healthy while the loop keeps ticking and the action worker is alive."""
        # Before the first tick completes, measure from loop start
        last = self._last_tick if self._last_tick is not None else self._started_at
        checks = {
            "worker_running": self.dispatcher.is_running,
            "loop_ticking": last is not None and self._monotonic() - last < 3 * self.config.poll_interval_seconds,
        }
        healthy = all(checks.values())
        if healthy:
            message = "Lamp monitor is healthy"
        else:
            message = f"Unhealthy: {', '.join(k for k, v in checks.items() if not v)}"
        return {
            "healthy": healthy,
            "checks": checks,
            "message": message,
            "actions": self.dispatcher.stats,
            "in_warning_state": self.scanner.in_warning_state,
            "wakes": self.wake_count,
        }

    # ==================== Loop ====================

    def read_presence(self) -> Optional[bool]:
        """Raw probe reading, or None when the probe failed."""
        try:
            return self.probe.is_active()
        except ProbeError as e:
            logger.warning(f"Presence probe failed, skipping reading: {e}")
            return None

    def tick(self) -> Optional[Transition]:
        """One poll cycle. Returns the confirmed transition, if any."""
        now_mono = self._monotonic()
        force_meeting_check = False

        if self._woke:
            self._woke = False
            self.debouncer.reset_pending()
            force_meeting_check = True

        transition = None
        try:
            raw = self.read_presence()
            if raw is not None:
                transition = self.debouncer.observe(raw, now_mono)
                if transition:
                    self.handle_transition(transition)

            if force_meeting_check or self._tick_count % self.config.meeting_check_every_ticks == 0:
                self.check_meetings(self._now())
        finally:
            self._tick_count += 1
            self._last_tick = now_mono
        return transition

    def handle_transition(self, transition: Transition) -> None:
        actions = self.config.actions
        if transition.to:
            logger.info(f"Camera became ACTIVE ({transition.reason})")
            self.dispatcher.submit(actions.on, ActionKind.EXCLUSIVE)
            if self.scanner.clear_warning():
                logger.debug("Warning state cleared by camera activation")
        else:
            logger.info(f"Camera became INACTIVE ({transition.reason})")
            self.dispatcher.submit(actions.off, ActionKind.EXCLUSIVE)

    def check_meetings(self, now: datetime) -> None:
        """Warn about upcoming meetings and expire stale warnings."""
        presence_active = self.debouncer.confirmed

        for action in self.scanner.scan(now, presence_active):
            self.dispatcher.submit(action, ActionKind.ADVISORY)

        cancel = self.scanner.check_expiration(now, presence_active)
        if cancel:
            self.dispatcher.submit(cancel, ActionKind.EXCLUSIVE)


# ==================== CLI ====================


def create_argument_parser():
    parser = LampMonitorDaemon.create_argument_parser()
    parser.add_argument(
        "-n",
        "--dry-run",
        action="store_true",
        help="Run without executing actions (testing mode)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: ~/.config/lamp-monitor/config.yaml)",
    )
    parser.add_argument(
        "--skip-validation",
        action="store_true",
        help="Don't check that the configured actions exist at startup",
    )
    return parser


def main(args: Optional[list] = None) -> int:
    """
    Main entry point for the daemon.

    Args:
        args: Command line arguments (defaults to sys.argv)

    Returns:
        Process exit code
    """
    parsed = create_argument_parser().parse_args(args)

    try:
        config = load_config(parsed.config)
    except (ConfigValidationError, FileNotFoundError) as e:
        print(f"Invalid configuration: {e}")
        return 2

    lock_path = lock_file_for(config.state_dir)
    if parsed.status:
        return LampMonitorDaemon.handle_status(lock_path)
    if parsed.stop:
        return LampMonitorDaemon.handle_stop(lock_path)

    if parsed.dry_run:
        config = dataclasses.replace(config, dry_run=True)

    LampMonitorDaemon.configure_logging(verbose=parsed.verbose, level=config.log_level)
    ensure_state_dir(config.state_dir)

    daemon = LampMonitorDaemon(config, verbose=parsed.verbose, skip_validation=parsed.skip_validation)
    return daemon.run()
