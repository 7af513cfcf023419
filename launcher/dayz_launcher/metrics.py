from __future__ import annotations
import json
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, Optional
from .models import MetricEntry
from .logging_setup import get_logger

log = get_logger("dayz.launcher.metrics")


class MetricRecorder:
    """
    Flat key -> {value, timestamp} store in a JSON file read by external dashboards.

    Writes go to a temp file in the same directory and are renamed over the
    target, so readers see either the old or the new mapping, never a partial one.
    Recording is best-effort: an unwritable store only produces a warning.
    """

    def __init__(self, path: Path, *, enabled: bool = True):
        self.path = path
        self.enabled = enabled
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            log.warning("Metrics file %s is not valid JSON, starting over: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def record(self, key: str, value, timestamp: Optional[int] = None) -> None:
        if not self.enabled:
            return
        entry = MetricEntry(key=key, value=str(value), timestamp=int(timestamp if timestamp is not None else time.time()))
        with self._lock:
            try:
                data = self._load()
                data[entry.key] = entry.stored()
                self._save(data)
            except (OSError, ValueError) as e:
                log.warning("Could not record metric %s=%s in %s: %s", key, entry.value, self.path, e)
                return
        log.debug("metric %s=%s", key, entry.value)

    def read(self) -> Dict[str, MetricEntry]:
        try:
            raw = self._load()
        except (OSError, ValueError) as e:
            log.warning("Could not read metrics from %s: %s", self.path, e)
            return {}
        out: Dict[str, MetricEntry] = {}
        for key, item in raw.items():
            if isinstance(item, dict) and "value" in item:
                out[key] = MetricEntry(key=key, value=str(item["value"]), timestamp=int(item.get("timestamp", 0)))
        return out
