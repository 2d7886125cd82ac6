"""Webcam lamp monitor.

Watches capture-device activity and upcoming calendar meetings and drives
lamp automations (ON / OFF / meeting-soon warning) from the result.
"""

__version__ = "0.1.0"
