#!/usr/bin/env python3
"""
DayZ Dedicated Server Launcher
Container entrypoint: `launcher.py run` supervises the server with crash-restart,
health probing and automatic backups. See `launcher.py --help` for the other commands.
"""

import sys
from dayz_launcher.cli import main

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:] or ["run"]))
