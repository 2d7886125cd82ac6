"""Centralized path definitions for the lamp monitor.

All runtime files live under ~/.config/lamp-monitor/ following XDG conventions.
This module is the single source of truth for their locations.

Usage:
    from lamp_monitor.paths import CONFIG_FILE, STATE_FILE, LOCK_FILE
"""

from pathlib import Path

# Base directory for all state
LAMP_MONITOR_DIR = Path.home() / ".config" / "lamp-monitor"


def ensure_state_dir(state_dir: Path = LAMP_MONITOR_DIR) -> None:
    """Create the state directory if it doesn't exist.

    Call this explicitly before writing the lock or state file.
    """
    state_dir.mkdir(parents=True, exist_ok=True)


# =============================================================================
# Files
# =============================================================================

# Optional YAML configuration
CONFIG_FILE = LAMP_MONITOR_DIR / "config.yaml"

# Persisted meeting tracker (warned ids, start times, warning state)
STATE_FILE = LAMP_MONITOR_DIR / "state.json"

# Single-instance lock, holds the owning PID
LOCK_FILE = LAMP_MONITOR_DIR / "lamp-monitor.lock"

# =============================================================================
# Google Calendar credentials
# =============================================================================

GOOGLE_CONFIG_DIR = Path.home() / ".config" / "google_calendar"


def state_file_for(state_dir: Path) -> Path:
    """State file path inside an alternate state directory."""
    return state_dir / STATE_FILE.name


def lock_file_for(state_dir: Path) -> Path:
    """Lock file path inside an alternate state directory."""
    return state_dir / LOCK_FILE.name
