"""
health.py — periodic health probing of the DayZ server
------------------------------------------------------
One probe cycle:
  1. find the server process by name/command line; if it is gone the cycle
     ends here with server_running=0 and an alert
  2. check that the game port is bound (UDP or listening TCP)
  3. sample resident memory against the optional MAX_MEMORY ceiling
  4. sample disk usage of the server volume
Checks 2-4 are independent of each other: an error in one is logged and the
remaining checks still run.
"""

from __future__ import annotations
import logging
import os
import socket
import threading
from pathlib import Path
from typing import Callable, Optional
import psutil
from .alerts import AlertSink
from .metrics import MetricRecorder
from .models import HealthVerdict
from .logging_setup import get_logger

log = get_logger("dayz.launcher.health")


class HealthProbe:
    def __init__(self, process_pattern: str, port: int, volume: Path, metrics: MetricRecorder, alerts: AlertSink, *,
                 max_memory_mb: Optional[float] = None, disk_limit_percent: float = 90.0):
        self.process_pattern = process_pattern
        self.port = port
        self.volume = volume
        self.metrics = metrics
        self.alerts = alerts
        self.max_memory_mb = max_memory_mb or None
        self.disk_limit_percent = disk_limit_percent

    # --- samplers (patched in tests) ---
    def find_process(self) -> Optional[psutil.Process]:
        for proc in psutil.process_iter(attrs=["pid", "name", "cmdline"]):
            try:
                info = proc.info
                name = info.get("name") or ""
                cmdline = " ".join(info.get("cmdline") or [])
                if proc.pid == os.getpid():
                    continue
                if self.process_pattern in name or self.process_pattern in cmdline:
                    return proc
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return None

    def port_listening(self) -> bool:
        for conn in psutil.net_connections(kind="inet"):
            if not conn.laddr or conn.laddr.port != self.port:
                continue
            if conn.type == socket.SOCK_DGRAM or conn.status == psutil.CONN_LISTEN:
                return True
        return False

    def memory_mb(self, proc: psutil.Process) -> float:
        return proc.memory_info().rss / 1024 / 1024

    def cpu_percent(self, proc: psutil.Process) -> float:
        return proc.cpu_percent(interval=None)

    def disk_percent(self) -> float:
        return psutil.disk_usage(str(self.volume)).percent

    # --- cycle ---
    def run_once(self) -> HealthVerdict:
        proc = None
        try:
            proc = self.find_process()
        except psutil.Error as e:
            log.warning("Process lookup failed: %s", e)

        if proc is None:
            self.metrics.record("server_running", "0")
            self.alerts.notify("Server process is not running!")
            return HealthVerdict(process_alive=False, port_listening=False, memory_mb=0.0, exceeded_memory_limit=False)

        self.metrics.record("server_running", "1")

        listening = self._guarded("port", self._check_port, False)
        memory, exceeded = self._guarded("memory", lambda: self._check_memory(proc), (0.0, False))
        disk = self._guarded("disk", self._check_disk, None)

        verdict = HealthVerdict(
            process_alive=True,
            port_listening=listening,
            memory_mb=memory,
            exceeded_memory_limit=exceeded,
            disk_percent=disk,
            pid=proc.pid,
        )
        log.debug("Health verdict: %s", verdict.to_dict())
        return verdict

    def _guarded(self, what: str, check: Callable, fallback):
        try:
            return check()
        except Exception as e:
            log.exception("Health check '%s' failed: %s", what, e)
            return fallback

    def _check_port(self) -> bool:
        if self.port_listening():
            self.metrics.record("port_listening", "1")
            return True
        self.metrics.record("port_listening", "0")
        self.alerts.notify(f"Server port {self.port} is not listening!")
        return False

    def _check_memory(self, proc: psutil.Process) -> tuple[float, bool]:
        try:
            self.metrics.record("cpu_usage", f"{self.cpu_percent(proc):.1f}")
        except psutil.Error as e:
            log.debug("CPU sample failed: %s", e)
        memory = self.memory_mb(proc)
        self.metrics.record("memory_usage", f"{memory:.1f}")
        exceeded = bool(self.max_memory_mb) and memory > self.max_memory_mb
        if exceeded:
            self.alerts.notify(f"Memory usage exceeded limit: {memory:.0f}MB > {self.max_memory_mb:.0f}MB",
                               level=logging.WARNING)
        return memory, exceeded

    def _check_disk(self) -> float:
        usage = self.disk_percent()
        self.metrics.record("disk_usage", f"{usage:.0f}")
        if usage > self.disk_limit_percent:
            self.alerts.notify(f"Disk usage critical: {usage:.0f}%")
        return usage

    def run(self, stop: threading.Event, interval: float) -> None:
        """Probe every `interval` seconds until `stop` is set."""
        log.info("Health check loop started (interval: %ss)", interval)
        while not stop.wait(interval):
            try:
                verdict = self.run_once()
            except Exception as e:
                log.exception("Health probe cycle failed: %s", e)
                continue
            if not verdict.healthy:
                log.warning("Health check failed - server may have crashed or is degraded")
        log.info("Health check loop stopped.")
