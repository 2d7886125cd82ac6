"""Actuators: the things that actually switch the lamps.

CommandActuator runs an external automation tool with the action name
substituted into a command template, e.g. ``shortcuts run MeetingON`` on
macOS or a Home Assistant CLI call elsewhere. DryRunActuator only logs.
"""

import logging
import subprocess
from typing import Optional, Sequence

from lamp_monitor.errors import ActuatorError

logger = logging.getLogger(__name__)


class CommandActuator:
    """Run actions as subprocesses.

    Args:
        command: Argument template; every "{action}" is replaced by the action name
        list_command: Command printing one available action per line, or None
        timeout: Seconds before a single invocation is abandoned
    """

    def __init__(
        self,
        command: Sequence[str],
        list_command: Optional[Sequence[str]] = None,
        timeout: float = 30.0,
    ):
        self.command = list(command)
        self.list_command = list(list_command) if list_command else None
        self.timeout = timeout

    def build_command(self, action: str) -> list[str]:
        return [part.replace("{action}", action) for part in self.command]

    def run(self, action: str) -> None:
        """Run one action.

        Raises:
            ActuatorError: the command could not start, timed out, or exited non-zero
        """
        args = self.build_command(action)
        try:
            result = subprocess.run(args, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise ActuatorError(action, f"timed out after {self.timeout:g}s") from e
        except OSError as e:
            raise ActuatorError(action, f"could not run {args[0]}: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            detail = f": {stderr}" if stderr else ""
            raise ActuatorError(action, f"exit code {result.returncode}{detail}", returncode=result.returncode)

    def available_actions(self) -> Optional[list[str]]:
        """List runnable actions via the list command.

        Returns:
            Action names, or None if no list command is configured or it failed
        """
        if not self.list_command:
            return None

        try:
            result = subprocess.run(self.list_command, capture_output=True, text=True, timeout=self.timeout)
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"Failed to list actions: {e}")
            return None

        if result.returncode != 0:
            logger.warning(f"Failed to list actions: exit code {result.returncode}")
            return None

        return [line.strip() for line in result.stdout.splitlines() if line.strip()]


class DryRunActuator:
    """Logs actions instead of running them (testing mode)."""

    def __init__(self):
        self.executed: list[str] = []

    def run(self, action: str) -> None:
        logger.info(f"[DRY-RUN] Would execute action '{action}'")
        self.executed.append(action)

    def available_actions(self) -> Optional[list[str]]:
        return None


def validate_actions(actuator, required: Sequence[str]) -> list[str]:
    """Check that every required action exists.

    Args:
        actuator: Actuator to ask for its available actions
        required: Action names the daemon will submit

    Returns:
        Missing action names. Empty when all exist or the actuator can't list them.
    """
    logger.info("Validating actions...")

    available = actuator.available_actions()
    if available is None:
        logger.info("Actuator cannot list actions, skipping validation")
        return []

    missing = []
    for name in required:
        if name in available:
            logger.debug(f"✓ Action '{name}' found")
        else:
            logger.error(f"✗ Action '{name}' NOT FOUND")
            missing.append(name)

    if missing:
        logger.error("Some required actions are missing:")
        for name in missing:
            logger.error(f"  - {name}")
    else:
        logger.info("All required actions are available ✓")

    return missing
