from __future__ import annotations
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from .settings import Settings
from .fs_layout import build_layout

# component loggers that also get their own file next to launcher.log
_COMPONENT_LOGS = {
    "dayz.launcher.health": "health.log",
    "dayz.launcher.backup": "backup.log",
}

class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)

def _file_handler(path: Path, settings: Settings, fmt: logging.Formatter) -> RotatingFileHandler:
    # one old generation, like server.log -> server.log.old in the shell scripts
    fh = RotatingFileHandler(path, maxBytes=settings.max_log_size, backupCount=1, encoding="utf-8")
    fh.setFormatter(fmt)
    fh.setLevel(settings.log_level.upper())
    return fh

def setup_logging(settings: Settings) -> None:
    logs_dir = build_layout(settings).logs
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(settings.log_level.upper())

    fmt = _JsonFormatter() if settings.log_json else logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z"
    )

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    root.addHandler(ch)

    launcher = logging.getLogger("dayz.launcher")
    launcher.handlers.clear()
    launcher.addHandler(_file_handler(logs_dir / "launcher.log", settings, fmt))
    launcher.propagate = True

    for name, filename in _COMPONENT_LOGS.items():
        component = logging.getLogger(name)
        component.handlers.clear()
        component.addHandler(_file_handler(logs_dir / filename, settings, fmt))
        component.propagate = True

def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
