"""Configuration loading for the lamp monitor.

Reads an optional YAML file, applies environment overrides, validates the
result against a small schema and freezes it into a MonitorConfig. All
values are fixed at process start; there is no live reconfiguration.

Usage:
    from lamp_monitor.config_manager import load_config

    config = load_config()                       # ~/.config/lamp-monitor/config.yaml
    config = load_config("/etc/lamp.yaml")       # explicit file
    config.poll_interval_seconds                 # 2.0
    config.actions.on                            # "MeetingON"

Example config.yaml:
    poll_interval_seconds: 2
    debounce:
      count: 2
      timeout_seconds: 10
    meetings:
      warning_minutes: 5
      calendar_ids: [primary, team@example.com]
    actions:
      on: MeetingON
      off: MeetingOFF
      warn: MeetingSOON
    actuator:
      command: ["shortcuts", "run", "{action}"]
      list_command: ["shortcuts", "list"]
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import yaml

from lamp_monitor.errors import ConfigValidationError
from lamp_monitor.paths import CONFIG_FILE, GOOGLE_CONFIG_DIR, LAMP_MONITOR_DIR

logger = logging.getLogger(__name__)

# Video conferencing URL patterns
DEFAULT_VIDEO_LINK_PATTERNS = [
    "zoom.us",
    "meet.google.com",
    "teams.microsoft.com",
    "webex.com",
    "gotomeeting.com",
    "whereby.com",
    "around.co",
    "gather.town",
    "discord.gg",
    "slack.com/call",
    "facetime:",
    "tel:",
]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

TRUTHY = ("1", "true", "yes", "on")


# ==================== Schema ====================

# Format: {section: {key: (type, default)}}; section None holds top-level keys
CONFIG_SCHEMA: dict[Optional[str], dict[str, tuple]] = {
    None: {
        "poll_interval_seconds": ((int, float), 2),
        "state_dir": (str, str(LAMP_MONITOR_DIR)),
        "log_level": (str, "INFO"),
        "dry_run": (bool, False),
    },
    "debounce": {
        "count": (int, 2),
        "timeout_seconds": ((int, float), 10),
    },
    "meetings": {
        "enabled": (bool, True),
        "warning_minutes": ((int, float), 5),
        "check_every_ticks": (int, 15),
        "lookahead_buffer_seconds": ((int, float), 60),
        "cleanup_window_seconds": ((int, float), 3600),
        "calendar_ids": (list, ["primary"]),
        "video_link_patterns": (list, DEFAULT_VIDEO_LINK_PATTERNS),
    },
    "actions": {
        "on": (str, "MeetingON"),
        "off": (str, "MeetingOFF"),
        "warn": (str, "MeetingSOON"),
    },
    "actuator": {
        "command": (list, ["shortcuts", "run", "{action}"]),
        "list_command": ((list, type(None)), ["shortcuts", "list"]),
        "timeout_seconds": ((int, float), 30),
        "max_retries": (int, 2),
        "retry_delay_seconds": ((int, float), 3),
    },
    "camera": {
        "device_glob": (str, "/dev/video*"),
    },
    "google": {
        "config_dir": (str, str(GOOGLE_CONFIG_DIR)),
    },
}

# Keys that must be strictly positive
POSITIVE_KEYS = [
    (None, "poll_interval_seconds"),
    ("debounce", "count"),
    ("debounce", "timeout_seconds"),
    ("meetings", "warning_minutes"),
    ("meetings", "check_every_ticks"),
    ("meetings", "cleanup_window_seconds"),
    ("actuator", "timeout_seconds"),
]

# Keys that must not be negative
NON_NEGATIVE_KEYS = [
    ("meetings", "lookahead_buffer_seconds"),
    ("actuator", "max_retries"),
    ("actuator", "retry_delay_seconds"),
]


def _type_name(expected: Any) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _get(config: dict[str, Any], section: Optional[str], key: str) -> Any:
    data = config if section is None else config.get(section, {})
    return data.get(key)


def get_config_defaults() -> dict[str, Any]:
    """Get default config values from schema.

    Returns:
        Nested dict with the default for every key
    """
    defaults: dict[str, Any] = {}
    for section, schema in CONFIG_SCHEMA.items():
        target = defaults if section is None else defaults.setdefault(section, {})
        for key, (_, default) in schema.items():
            target[key] = list(default) if isinstance(default, list) else default
    return defaults


def merge_with_defaults(raw: dict[str, Any]) -> dict[str, Any]:
    """Overlay a user config dict on top of the defaults (one level deep)."""
    merged = get_config_defaults()
    for key, value in raw.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def validate_config(config: dict[str, Any]) -> list[str]:
    """Validate a merged config dict against the schema.

    Args:
        config: Config dict (defaults already applied)

    Returns:
        List of validation error messages (empty if valid)
    """
    errors: list[str] = []

    for section, schema in CONFIG_SCHEMA.items():
        if section is not None and not isinstance(config.get(section), dict):
            errors.append(f"Section '{section}' must be a mapping, got {type(config.get(section)).__name__}")
            continue

        for key, (expected_type, _) in schema.items():
            value = _get(config, section, key)
            label = key if section is None else f"{section}.{key}"
            # bool is an int subclass; don't let `count: true` slip through
            if isinstance(value, bool) and expected_type is not bool:
                errors.append(f"Invalid type for {label}: expected {_type_name(expected_type)}, got bool")
            elif not isinstance(value, expected_type):
                errors.append(
                    f"Invalid type for {label}: expected {_type_name(expected_type)}, got {type(value).__name__}"
                )

    if errors:
        return errors

    for section, key in POSITIVE_KEYS:
        if _get(config, section, key) <= 0:
            errors.append(f"{key if section is None else f'{section}.{key}'} must be positive")

    for section, key in NON_NEGATIVE_KEYS:
        if _get(config, section, key) < 0:
            errors.append(f"{section}.{key} must not be negative")

    for key in ("on", "off", "warn"):
        if not config["actions"][key].strip():
            errors.append(f"actions.{key} must not be empty")

    command = config["actuator"]["command"]
    if not command or not all(isinstance(part, str) for part in command):
        errors.append("actuator.command must be a non-empty list of strings")
    elif not any("{action}" in part for part in command):
        errors.append("actuator.command must contain an '{action}' placeholder")

    list_command = config["actuator"]["list_command"]
    if list_command is not None and not all(isinstance(part, str) for part in list_command):
        errors.append("actuator.list_command must be null or a list of strings")

    for key in ("calendar_ids", "video_link_patterns"):
        values = config["meetings"][key]
        if not all(isinstance(value, str) for value in values):
            errors.append(f"meetings.{key} must be a list of strings")

    if str(config["log_level"]).upper() not in LOG_LEVELS:
        errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")

    return errors


# ==================== Typed config ====================


@dataclass(frozen=True)
class ActionNames:
    """Names of the three actions understood by the actuator."""

    on: str = "MeetingON"
    off: str = "MeetingOFF"
    warn: str = "MeetingSOON"

    def all(self) -> list[str]:
        return [self.on, self.off, self.warn]


@dataclass(frozen=True)
class MonitorConfig:
    """Immutable process-wide configuration."""

    poll_interval_seconds: float = 2.0
    debounce_count: int = 2
    debounce_timeout_seconds: float = 10.0
    meetings_enabled: bool = True
    warning_window: timedelta = timedelta(minutes=5)
    meeting_check_every_ticks: int = 15
    lookahead_buffer: timedelta = timedelta(seconds=60)
    cleanup_window: timedelta = timedelta(hours=1)
    calendar_ids: tuple[str, ...] = ("primary",)
    video_link_patterns: tuple[str, ...] = tuple(DEFAULT_VIDEO_LINK_PATTERNS)
    actions: ActionNames = field(default_factory=ActionNames)
    actuator_command: tuple[str, ...] = ("shortcuts", "run", "{action}")
    actuator_list_command: Optional[tuple[str, ...]] = ("shortcuts", "list")
    actuator_timeout_seconds: float = 30.0
    max_retries: int = 2
    retry_delay_seconds: float = 3.0
    camera_device_glob: str = "/dev/video*"
    google_config_dir: Path = GOOGLE_CONFIG_DIR
    state_dir: Path = LAMP_MONITOR_DIR
    log_level: str = "INFO"
    dry_run: bool = False

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> "MonitorConfig":
        """Build from a merged, validated config dict."""
        meetings = config["meetings"]
        actuator = config["actuator"]
        list_command = actuator["list_command"]
        return cls(
            poll_interval_seconds=float(config["poll_interval_seconds"]),
            debounce_count=config["debounce"]["count"],
            debounce_timeout_seconds=float(config["debounce"]["timeout_seconds"]),
            meetings_enabled=meetings["enabled"],
            warning_window=timedelta(minutes=meetings["warning_minutes"]),
            meeting_check_every_ticks=meetings["check_every_ticks"],
            lookahead_buffer=timedelta(seconds=meetings["lookahead_buffer_seconds"]),
            cleanup_window=timedelta(seconds=meetings["cleanup_window_seconds"]),
            calendar_ids=tuple(meetings["calendar_ids"]),
            video_link_patterns=tuple(p.lower() for p in meetings["video_link_patterns"]),
            actions=ActionNames(
                on=config["actions"]["on"],
                off=config["actions"]["off"],
                warn=config["actions"]["warn"],
            ),
            actuator_command=tuple(actuator["command"]),
            actuator_list_command=tuple(list_command) if list_command else None,
            actuator_timeout_seconds=float(actuator["timeout_seconds"]),
            max_retries=actuator["max_retries"],
            retry_delay_seconds=float(actuator["retry_delay_seconds"]),
            camera_device_glob=config["camera"]["device_glob"],
            google_config_dir=Path(config["google"]["config_dir"]).expanduser(),
            state_dir=Path(config["state_dir"]).expanduser(),
            log_level=str(config["log_level"]).upper(),
            dry_run=config["dry_run"],
        )


def _env_override(config: dict[str, Any]) -> None:
    """Apply LAMP_MONITOR_* environment overrides in place."""
    state_dir = os.environ.get("LAMP_MONITOR_STATE_DIR")
    if state_dir:
        config["state_dir"] = state_dir

    log_level = os.environ.get("LAMP_MONITOR_LOG_LEVEL")
    if log_level:
        config["log_level"] = log_level

    dry_run = os.environ.get("LAMP_MONITOR_DRY_RUN")
    if dry_run is not None:
        config["dry_run"] = dry_run.strip().lower() in TRUTHY


def load_config(config_path: Optional[Path | str] = None) -> MonitorConfig:
    """Load configuration from YAML, with env-var overrides.

    Args:
        config_path: Explicit file. Defaults to $LAMP_MONITOR_CONFIG, then
            ~/.config/lamp-monitor/config.yaml. A missing default file means
            "all defaults"; a missing explicit file is an error.

    Returns:
        Validated MonitorConfig

    Raises:
        FileNotFoundError: explicit config file does not exist
        ConfigValidationError: the file is not valid YAML or fails validation
    """
    explicit = config_path or os.environ.get("LAMP_MONITOR_CONFIG")
    path = Path(explicit).expanduser() if explicit else CONFIG_FILE

    raw: dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError([f"Invalid YAML in {path}: {e}"]) from e
        if not isinstance(raw, dict):
            raise ConfigValidationError([f"Top level of {path} must be a mapping"])
        logger.debug(f"Config loaded from {path}")
    elif explicit:
        raise FileNotFoundError(f"Config file not found: {path}")
    else:
        logger.debug(f"No config file at {path}, using defaults")

    config = merge_with_defaults(raw)
    _env_override(config)

    errors = validate_config(config)
    if errors:
        raise ConfigValidationError(errors)

    return MonitorConfig.from_dict(config)
