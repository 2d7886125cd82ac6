#!/usr/bin/env python3
"""Entry point for running the lamp monitor as a module."""

import sys

from lamp_monitor.daemon import main

if __name__ == "__main__":
    sys.exit(main())
