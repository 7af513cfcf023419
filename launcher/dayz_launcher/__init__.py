"""
dayz_launcher package
---------------------
Supervisor for a DayZ dedicated server process on Linux / Docker hosts.
Contains modules for configuration, logging, SteamCMD updates, crash-restart
supervision, health probing, metrics, alerting and rotated backups.
"""

__version__ = "0.4.0"
