from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from .settings import Settings

@dataclass(frozen=True)
class Layout:
    root: Path
    binary: Path
    server_cfg: Path
    profiles: Path
    backups: Path
    logs: Path
    metrics_file: Path
    steamcmd_dir: Path

    @property
    def launcher_log(self) -> Path:
        return self.logs / "launcher.log"

    @property
    def server_log(self) -> Path:
        return self.logs / "server.log"

    @property
    def steamcmd_log(self) -> Path:
        return self.logs / "steamcmd.log"

def _under_root(root: Path, value: str) -> Path:
    p = Path(value)
    return p if p.is_absolute() else root / p

def build_layout(settings: Settings) -> Layout:
    root = settings.server_root
    return Layout(
        root=root,
        binary=_under_root(root, settings.server_binary),
        server_cfg=_under_root(root, settings.server_config),
        profiles=_under_root(root, settings.server_profiles),
        backups=root / "backups",
        logs=root / "logs",
        metrics_file=settings.metrics_file or root / "metrics.json",
        steamcmd_dir=settings.steamcmd_dir or root / "steamcmd",
    )

def ensure_dirs(layout: Layout) -> None:
    for p in [layout.backups, layout.logs, layout.profiles, layout.metrics_file.parent]:
        p.mkdir(parents=True, exist_ok=True)
