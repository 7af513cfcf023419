from __future__ import annotations
import enum
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional
from pydantic import BaseModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SupervisorState(str, enum.Enum):
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    EXITED_CLEAN = "EXITED_CLEAN"
    EXITED_CRASH = "EXITED_CRASH"
    RESTART_WAIT = "RESTART_WAIT"
    TERMINAL_FAILURE = "TERMINAL_FAILURE"
    STOPPED_BY_SIGNAL = "STOPPED_BY_SIGNAL"


@dataclass
class RestartState:
    max_attempts: int
    base_delay: float
    attempt_count: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt_count >= self.max_attempts

    def reset(self) -> None:
        self.attempt_count = 0


@dataclass
class RetryResult:
    """Outcome of a RetryExecutor run. `ok` False means every attempt failed."""
    ok: bool
    attempts_used: int
    last_exit_code: Optional[int]

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class HealthVerdict:
    process_alive: bool
    port_listening: bool
    memory_mb: float
    exceeded_memory_limit: bool
    disk_percent: Optional[float] = None
    pid: Optional[int] = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def healthy(self) -> bool:
        return self.process_alive and self.port_listening and not self.exceeded_memory_limit

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        d["healthy"] = self.healthy
        return d


@dataclass(frozen=True)
class BackupRecord:
    path: Path
    created_at: datetime
    size_bytes: int
    uploaded: bool = False

    @property
    def name(self) -> str:
        return self.path.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": str(self.path),
            "created_at": self.created_at.isoformat(),
            "size_bytes": self.size_bytes,
            "uploaded": self.uploaded,
        }


class MetricEntry(BaseModel):
    """One line of metrics.json; the key is the mapping key, not part of the stored value."""
    key: str
    value: str
    timestamp: int

    def stored(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"key"})
