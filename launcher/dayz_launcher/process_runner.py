from __future__ import annotations
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, List, Optional
from .logging_setup import get_logger

log = get_logger("dayz.launcher.proc")

@dataclass
class ProcessHandle:
    name: str
    proc: subprocess.Popen
    started_at: float = field(default_factory=time.monotonic)
    returncode: Optional[int] = None
    _log_fh: Optional[IO[str]] = None

    @property
    def pid(self) -> int:
        return self.proc.pid

    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    def wait(self) -> int:
        """Block until the child exits; a child killed by signal N reports -N."""
        rc = self.proc.wait()
        self.returncode = rc
        if self._log_fh is not None:
            self._log_fh.close()
            self._log_fh = None
        return rc

def _open_log_file(path: Path):
    path.parent.mkdir(parents=True, exist_ok=True)
    return open(path, "a", encoding="utf-8", buffering=1)

class ProcessRunner:
    def __init__(self):
        self.current: Optional[ProcessHandle] = None

    def start(self, name: str, cmd: List[str], *, cwd: Optional[Path] = None, log_file: Optional[Path] = None,
              env: Optional[dict] = None) -> ProcessHandle:
        log.info("Executing %s: %s", name, " ".join(cmd))
        stdout = stderr = None
        fh = None
        if log_file:
            fh = _open_log_file(log_file)
            stdout = fh
            stderr = subprocess.STDOUT

        try:
            proc = subprocess.Popen(cmd, cwd=str(cwd) if cwd else None, stdout=stdout, stderr=stderr, env=env)
        except BaseException:
            if fh is not None:
                fh.close()
            raise
        h = ProcessHandle(name=name, proc=proc, _log_fh=fh)
        self.current = h
        return h

    def stop(self, timeout: float = 10.0) -> None:
        h = self.current
        if h is None or h.proc.poll() is not None:
            return
        log.info("Stopping %s (pid=%s)", h.name, h.pid)
        h.proc.terminate()
        try:
            h.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            log.warning("Killing %s (pid=%s)", h.name, h.pid)
            h.proc.kill()

    def status(self) -> dict:
        h = self.current
        if h is None:
            return {}
        return {h.name: {"pid": h.pid, "returncode": h.proc.poll()}}
