"""
supervisor.py — crash-restart supervision of the DayZ server process
--------------------------------------------------------------------
The foreground loop owns the child process:

    STARTING -> RUNNING -> EXITED_CLEAN                      (exit 0, done)
                        -> EXITED_CRASH -> RESTART_WAIT -> STARTING ...
                        -> EXITED_CRASH -> TERMINAL_FAILURE  (attempts exhausted)
    any state           -> STOPPED_BY_SIGNAL                 (SIGTERM/SIGINT)

A failed preflight counts as a crash. Health probing and interval backups
run as background tasks that only share the metrics file, the logs and the
backup directory with the loop.
"""

from __future__ import annotations
import os
import signal
import stat
import threading
from typing import List, Optional
import psutil
from .alerts import CRITICAL_RESTARTS_EXHAUSTED
from .context import SupervisorContext
from .models import RestartState, SupervisorState
from .process_runner import ProcessRunner
from .tasks import TaskGroup
from .logging_setup import get_logger

log = get_logger("dayz.launcher.supervisor")

STOP_GRACE_SECONDS = 10.0


class ServerSupervisor:
    def __init__(self, ctx: SupervisorContext, runner: Optional[ProcessRunner] = None, *,
                 embedded_probe: bool = True):
        self.ctx = ctx
        self.settings = ctx.settings
        self.layout = ctx.layout
        self.runner = runner or ProcessRunner()
        self.embedded_probe = embedded_probe
        self.restart = RestartState(
            max_attempts=self.settings.max_restart_attempts if self.settings.auto_restart else 1,
            base_delay=self.settings.restart_delay,
        )
        self.state: Optional[SupervisorState] = None
        self.transitions: List[SupervisorState] = []
        self._stop = threading.Event()
        self._state_changed = threading.Condition()
        self._initial_backup_done = False

    # --- state ---
    def _transition(self, state: SupervisorState) -> None:
        with self._state_changed:
            self.state = state
            self.transitions.append(state)
            self._state_changed.notify_all()
        log.info("Supervisor state -> %s (attempt %d/%d)", state.value,
                 self.restart.attempt_count, self.restart.max_attempts)

    def wait_for_state(self, state: SupervisorState, timeout: Optional[float] = None) -> bool:
        with self._state_changed:
            return self._state_changed.wait_for(lambda: self.state == state, timeout)

    # --- shutdown ---
    def request_stop(self, signum: Optional[int] = None, frame=None) -> None:
        """Graceful shutdown; safe to call from a signal handler or another thread."""
        if signum is not None:
            log.info("Server stopped by signal %s", signal.Signals(signum).name)
        self._stop.set()
        handle = self.runner.current
        if handle is not None and handle.proc.poll() is None:
            handle.proc.terminate()
            timer = threading.Timer(STOP_GRACE_SECONDS, self._kill_if_alive, args=(handle,))
            timer.daemon = True
            timer.start()

    @staticmethod
    def _kill_if_alive(handle) -> None:
        if handle.proc.poll() is None:
            log.warning("Server did not stop within %ss, killing pid=%s", STOP_GRACE_SECONDS, handle.pid)
            handle.proc.kill()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    # --- launch ---
    def preflight(self) -> bool:
        log.info("Running pre-flight checks...")
        binary = self.layout.binary
        if not binary.is_file():
            log.error("Server binary not found: %s", binary)
            return False
        if not self.layout.server_cfg.is_file():
            log.error("Configuration file not found: %s", self.layout.server_cfg)
            return False
        if not os.access(binary, os.X_OK):
            log.warning("Server binary is not executable, fixing...")
            try:
                binary.chmod(binary.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            except OSError as e:
                log.error("Failed to make server binary executable: %s", e)
                return False
        try:
            usage = psutil.disk_usage(str(self.layout.root)).percent
            if usage > self.settings.disk_usage_limit:
                log.warning("Disk usage critical: %.0f%%", usage)
        except OSError as e:
            log.debug("Disk usage check skipped: %s", e)
        log.info("Pre-flight checks passed")
        return True

    def build_mod_string(self) -> str:
        if self.settings.client_mods:
            return self.settings.client_mods
        mods = []
        for mod_id in self.settings.mod_id_list():
            if (self.layout.root / f"@{mod_id}").is_dir():
                mods.append(f"@{mod_id}")
            else:
                log.warning("Mod @%s is not installed, leaving it out of -mod", mod_id)
        return ";".join(mods)

    def build_command(self) -> List[str]:
        cmd = [
            str(self.layout.binary),
            f"-port={self.settings.server_port}",
            f"-profiles={self.settings.server_profiles}",
            "-bepath=./",
            f"-config={self.settings.server_config}",
        ]
        mods = self.build_mod_string()
        if mods:
            cmd.append(f"-mod={mods}")
        if self.settings.server_mods:
            cmd.append(f"-serverMod={self.settings.server_mods}")
        return cmd + self.settings.startup_args()

    def _backup(self, reason: str) -> None:
        if self.ctx.backups is None:
            return
        log.info("Creating %s backup", reason)
        try:
            self.ctx.backups.snapshot()
        except Exception as e:
            log.exception("Backup (%s) failed: %s", reason, e)

    def _launch_once(self) -> Optional[int]:
        """Preflight + run the server to completion. None means it never started."""
        if not self.preflight():
            return None
        if not self._initial_backup_done:
            self._initial_backup_done = True
            self._backup("pre-start")
        if self.stopping:
            return None
        try:
            handle = self.runner.start("server", self.build_command(), cwd=self.layout.root,
                                       log_file=self.layout.server_log)
        except OSError as e:
            log.error("Failed to start server: %s", e)
            return None
        self._transition(SupervisorState.RUNNING)
        self.ctx.metrics.record("server_pid", handle.pid)
        if self.stopping:
            handle.proc.terminate()
        rc = handle.wait()
        log.info("Server exited with rc=%s after %.0fs", rc, handle.uptime())
        if self.settings.restart_reset_after and handle.uptime() >= self.settings.restart_reset_after:
            if self.restart.attempt_count:
                log.info("Server ran %.0fs before exiting, resetting restart counter.", handle.uptime())
            self.restart.reset()
        return rc

    # --- main loop ---
    def _start_background(self) -> TaskGroup:
        group = TaskGroup()
        interval = self.settings.health_interval(embedded=self.embedded_probe)
        group.spawn("health-probe", self.ctx.probe.run, interval)
        if self.ctx.backups is not None:
            group.spawn("backup-loop", self.ctx.backups.run, self.settings.backup_interval)
        return group

    def run(self, *, install_signal_handlers: bool = False) -> int:
        """Supervise until clean exit (0), signal (0) or exhausted restarts (1)."""
        log.info("==========================================")
        log.info("DayZ Server - supervised launch")
        log.info("==========================================")
        previous = {}
        if install_signal_handlers:
            for sig in (signal.SIGTERM, signal.SIGINT):
                previous[sig] = signal.signal(sig, self.request_stop)

        group = self._start_background()
        try:
            return self._loop()
        finally:
            group.cancel()
            self.runner.stop()
            for sig, handler in previous.items():
                signal.signal(sig, handler)

    def _stopped(self) -> int:
        self._transition(SupervisorState.STOPPED_BY_SIGNAL)
        return 0

    def _loop(self) -> int:
        while True:
            if self.stopping:
                return self._stopped()
            self._transition(SupervisorState.STARTING)
            log.info("Starting DayZ server (Attempt: %d/%d)", self.restart.attempt_count + 1, self.restart.max_attempts)
            rc = self._launch_once()

            if self.stopping:
                return self._stopped()
            if rc == 0:
                self._transition(SupervisorState.EXITED_CLEAN)
                self.restart.reset()
                log.info("Server exited normally")
                return 0

            self.restart.attempt_count += 1
            self._transition(SupervisorState.EXITED_CRASH)
            self.ctx.metrics.record("restart_count", self.restart.attempt_count)

            if self.restart.exhausted:
                self._transition(SupervisorState.TERMINAL_FAILURE)
                log.error("Max restart attempts (%d) reached. Server will not restart.", self.restart.max_attempts)
                self.ctx.alerts.critical(CRITICAL_RESTARTS_EXHAUSTED)
                return 1

            log.warning("Server crashed, restarting in %ss (%d/%d)", self.restart.base_delay,
                        self.restart.attempt_count, self.restart.max_attempts)
            self._backup("crash-restart")
            self._transition(SupervisorState.RESTART_WAIT)
            if self._stop.wait(self.restart.base_delay):
                return self._stopped()
