"""
retry.py — bounded re-execution of external commands
----------------------------------------------------
Runs a command as a discrete argument list (never through a shell), retrying
a nonzero exit with exponential backoff. Every attempt's combined
stdout/stderr is appended to a shared log file.
"""

from __future__ import annotations
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence
from .models import RetryResult
from .logging_setup import get_logger

log = get_logger("dayz.launcher.retry")


class RetryExecutor:
    def __init__(self, log_file: Optional[Path] = None, *,
                 sleep: Callable[[float], None] = time.sleep,
                 mask: Optional[Callable[[List[str]], List[str]]] = None):
        self.log_file = log_file
        self._sleep = sleep
        self._mask = mask or (lambda tokens: tokens)

    def _append_output(self, display: str, attempt: int, output: str) -> None:
        if not self.log_file:
            return
        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a", encoding="utf-8") as fh:
                fh.write(f"[{datetime.now().isoformat(timespec='seconds')}] attempt {attempt}: {display}\n")
                if output:
                    fh.write(output if output.endswith("\n") else output + "\n")
        except OSError as e:
            log.warning("Could not append command output to %s: %s", self.log_file, e)

    def _run_once(self, cmd: List[str], cwd: Optional[Path], timeout: Optional[float]) -> tuple[int, str]:
        try:
            proc = subprocess.run(cmd, cwd=str(cwd) if cwd else None, stdout=subprocess.PIPE,
                                  stderr=subprocess.STDOUT, text=True, timeout=timeout)
        except FileNotFoundError:
            return 127, f"command not found: {cmd[0]}"
        except PermissionError:
            return 126, f"permission denied: {cmd[0]}"
        except subprocess.TimeoutExpired as e:
            out = e.output or ""
            if isinstance(out, bytes):
                out = out.decode("utf-8", errors="replace")
            return 124, out + f"\ntimed out after {timeout}s"
        except OSError as e:
            # ENOEXEC, ENOTDIR and friends: the command could not be executed at all
            return 126, f"could not execute {cmd[0]}: {e}"
        return proc.returncode, proc.stdout or ""

    def execute(self, command: Sequence[str], max_attempts: int = 3, initial_delay: float = 5.0, *,
                cwd: Optional[Path] = None, timeout: Optional[float] = None) -> RetryResult:
        """
        Run `command` up to `max_attempts` times.

        The delay before attempt k (k >= 2) is initial_delay * 2**(k-2).
        Never raises for a failing command; the caller decides what a failed
        RetryResult means.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        cmd = [str(c) for c in command]
        display = " ".join(self._mask(list(cmd)))
        delay = initial_delay
        rc: Optional[int] = None

        for attempt in range(1, max_attempts + 1):
            log.info("Attempt %d/%d: %s", attempt, max_attempts, display)
            rc, output = self._run_once(cmd, cwd, timeout)
            self._append_output(display, attempt, output)
            if output:
                log.debug("output (tail): %s", output[-4000:])
            if rc == 0:
                log.info("Command succeeded on attempt %d/%d.", attempt, max_attempts)
                return RetryResult(ok=True, attempts_used=attempt, last_exit_code=0)

            if attempt < max_attempts:
                log.warning("Command failed (rc=%s), retrying in %ss...", rc, delay)
                self._sleep(delay)
                delay *= 2

        log.error("Command failed after %d attempts (last rc=%s).", max_attempts, rc)
        return RetryResult(ok=False, attempts_used=max_attempts, last_exit_code=rc)
