"""Presence debouncing.

Turns raw, jittery "is the camera on" readings into a stable ON/OFF value.
A new value is confirmed when EITHER enough consecutive readings agree
(rejects single-tick glitches) OR the value has been pending long enough
(a flapping signal can't starve confirmation forever).

Usage:
    debouncer = PresenceDebouncer(threshold=2, timeout_seconds=10)

    transition = debouncer.observe(probe.is_active(), time.monotonic())
    if transition:
        print(f"now {'active' if transition.to else 'inactive'} ({transition.reason})")
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class DebounceState:
    """Mutable debounce bookkeeping, owned by one PresenceDebouncer."""

    confirmed: bool = False
    pending: Optional[bool] = None
    consistent_count: int = 0
    pending_since: Optional[float] = None

    def clear_pending(self) -> None:
        self.pending = None
        self.consistent_count = 0
        self.pending_since = None


@dataclass(frozen=True)
class Transition:
    """A confirmed change of the stable presence value."""

    to: bool
    reason: str


class PresenceDebouncer:
    """Hysteresis-protected presence state machine.

    Args:
        threshold: Consecutive opposite readings needed to confirm
        timeout_seconds: Time in pending state after which a change is forced
        initial: Initial confirmed value
    """

    def __init__(self, threshold: int = 2, timeout_seconds: float = 10.0, initial: bool = False):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold
        self.timeout_seconds = timeout_seconds
        self.state = DebounceState(confirmed=initial)

    @property
    def confirmed(self) -> bool:
        """The current stable value."""
        return self.state.confirmed

    def observe(self, raw: bool, now: float) -> Optional[Transition]:
        """Feed one raw reading.

        Args:
            raw: Raw probe reading
            now: Monotonic timestamp of the reading, in seconds

        Returns:
            Transition if this reading confirmed a change, else None
        """
        state = self.state

        if raw == state.confirmed:
            if state.pending is not None:
                logger.debug(f"Pending {state.pending} dropped after {state.consistent_count} reading(s)")
            state.clear_pending()
            return None

        if state.pending == raw:
            state.consistent_count += 1
        else:
            state.pending = raw
            state.consistent_count = 1
            state.pending_since = now

        reason = None
        if state.consistent_count >= self.threshold:
            reason = f"after {state.consistent_count} consistent readings"
        elif state.pending_since is not None:
            in_pending = now - state.pending_since
            if in_pending >= self.timeout_seconds:
                reason = f"timeout after {int(in_pending)}s in pending state"

        if reason is None:
            logger.debug(f"Pending {raw}: {state.consistent_count}/{self.threshold} readings")
            return None

        state.confirmed = raw
        state.clear_pending()
        return Transition(to=raw, reason=reason)

    def reset_pending(self) -> None:
        """Forget any in-progress change, keeping the confirmed value.

        Used after system wake, where a pending value recorded before sleep
        would otherwise be confirmed by the timeout on the first new reading.
        """
        self.state.clear_pending()
