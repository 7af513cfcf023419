"""
backup.py — rotated snapshots of the server working directory
-------------------------------------------------------------
Archives the configured files/directories into
backups/backup_YYYY-MM-DD_HH-MM-SS.tar.gz, verifies the archive, optionally
mirrors it to S3 and prunes the retained set by count and age.

Snapshots may be triggered concurrently (startup, crash-restart, timer).
Archives are built under a temp name and linked into place without
overwriting, so two snapshots in the same second both survive, and cleanup
tolerates files that another cleanup already removed.
"""

from __future__ import annotations
import fnmatch
import os
import re
import shutil
import tarfile
import tempfile
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from .alerts import AlertSink
from .metrics import MetricRecorder
from .models import BackupRecord
from .retry import RetryExecutor
from .logging_setup import get_logger

log = get_logger("dayz.launcher.backup")

ARCHIVE_PREFIX = "backup_"
ARCHIVE_SUFFIX = ".tar.gz"
_STAMP_FMT = "%Y-%m-%d_%H-%M-%S"
_ARCHIVE_RE = re.compile(r"^backup_(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})(?:_(\d+))?\.tar\.gz$")

DEFAULT_EXCLUDES = ["backups", "steamcmd", "steamapps", "*.log", "*.log.old", "*.tmp"]


class BackupError(RuntimeError):
    pass


def parse_archive_name(name: str) -> Optional[Tuple[datetime, int]]:
    m = _ARCHIVE_RE.match(name)
    if not m:
        return None
    return datetime.strptime(m.group(1), _STAMP_FMT), int(m.group(2) or 0)


class S3Uploader:
    """Mirrors archives with the aws CLI; a missing CLI or a failed copy is only a warning."""

    def __init__(self, bucket: str, *, region: str = "us-east-1", prefix: str = "dayz",
                 timeout: float = 5.0, executor: Optional[RetryExecutor] = None):
        self.bucket = bucket
        self.region = region
        self.prefix = prefix.strip("/")
        self.timeout = timeout
        self.executor = executor or RetryExecutor()

    def target(self, archive: Path) -> str:
        key = f"{self.prefix}/{archive.name}" if self.prefix else archive.name
        return f"s3://{self.bucket}/{key}"

    def upload(self, archive: Path) -> bool:
        if shutil.which("aws") is None:
            log.warning("aws CLI not available, skipping upload of %s", archive.name)
            return False
        log.info("Uploading backup to %s", self.target(archive))
        result = self.executor.execute(
            ["aws", "s3", "cp", str(archive), self.target(archive), "--region", self.region],
            max_attempts=1, initial_delay=0, timeout=self.timeout,
        )
        if result.ok:
            log.info("Backup uploaded to S3")
        else:
            log.warning("Failed to upload backup to S3 (rc=%s)", result.last_exit_code)
        return result.ok


class BackupScheduler:
    def __init__(self, root: Path, backup_dir: Path, patterns: List[str], *,
                 max_backups: int = 3, retention_days: float = 7,
                 excludes: Optional[List[str]] = None,
                 uploader: Optional[S3Uploader] = None,
                 metrics: Optional[MetricRecorder] = None,
                 alerts: Optional[AlertSink] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.root = root
        self.backup_dir = backup_dir
        self.patterns = patterns
        self.max_backups = max_backups
        self.retention_days = retention_days
        self.excludes = DEFAULT_EXCLUDES if excludes is None else excludes
        self.uploader = uploader
        self.metrics = metrics
        self.alerts = alerts
        self._clock = clock

    # --- archive creation ---
    def _sources(self) -> List[Path]:
        found: List[Path] = []
        for pattern in self.patterns:
            matches = sorted(self.root.glob(pattern))
            if not matches:
                log.debug("Backup source not present, skipping: %s", pattern)
            for p in matches:
                if p not in found and not self._excluded(p.name):
                    found.append(p)
        return found

    def _excluded(self, name: str) -> bool:
        return any(fnmatch.fnmatch(name, pat) for pat in self.excludes)

    def _filter(self, info: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        if self._excluded(Path(info.name).name):
            return None
        return info

    def _publish(self, tmp: Path, stamp: datetime) -> Path:
        """Hard-link the finished temp archive to the first free timestamped name."""
        base = f"{ARCHIVE_PREFIX}{stamp.strftime(_STAMP_FMT)}"
        n = 0
        while True:
            name = f"{base}{ARCHIVE_SUFFIX}" if n == 0 else f"{base}_{n}{ARCHIVE_SUFFIX}"
            dest = self.backup_dir / name
            try:
                os.link(tmp, dest)
                return dest
            except FileExistsError:
                n += 1

    @staticmethod
    def verify(archive: Path) -> bool:
        try:
            with tarfile.open(archive, "r:gz") as tar:
                for _ in tar:
                    pass
            return True
        except (tarfile.TarError, OSError, EOFError) as e:
            log.error("Backup file is corrupted: %s (%s)", archive.name, e)
            return False

    def snapshot(self) -> Optional[BackupRecord]:
        """Create, verify, upload and prune. Returns None when no valid archive was produced."""
        sources = self._sources()
        if not sources:
            return self._failed(f"none of {self.patterns} exist under {self.root}")

        stamp = self._clock()
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".backup_", suffix=".partial", dir=self.backup_dir)
            os.close(fd)
        except OSError as e:
            return self._failed(f"cannot write to {self.backup_dir}: {e}")
        tmp = Path(tmp_name)
        try:
            try:
                with tarfile.open(tmp, "w:gz") as tar:
                    for src in sources:
                        tar.add(src, arcname=src.relative_to(self.root).as_posix(), filter=self._filter)
            except (tarfile.TarError, OSError) as e:
                return self._failed(str(e))

            # a corrupt archive never reaches the retained set
            if not self.verify(tmp):
                return self._failed("archive failed verification")
            try:
                path = self._publish(tmp, stamp)
                size = path.stat().st_size
            except OSError as e:
                return self._failed(f"could not publish archive: {e}")
        finally:
            tmp.unlink(missing_ok=True)

        log.info("Backup created: %s (Size: %d bytes)", path.name, size)

        uploaded = False
        if self.uploader is not None:
            try:
                uploaded = self.uploader.upload(path)
            except Exception as e:
                log.warning("Failed to upload backup %s: %s", path.name, e)

        if self.metrics is not None:
            self.metrics.record("last_backup", path.name)
            self.metrics.record("last_backup_size", size)
        self.cleanup()
        return BackupRecord(path=path, created_at=stamp, size_bytes=size, uploaded=uploaded)

    def _failed(self, reason: str) -> None:
        log.error("Failed to create backup: %s", reason)
        if self.alerts is not None:
            self.alerts.notify(f"Backup failed: {reason}")
        return None

    # --- retained set ---
    def list_backups(self) -> List[BackupRecord]:
        """Retained archives, oldest first."""
        if not self.backup_dir.is_dir():
            return []
        out: List[Tuple[Tuple[datetime, int], BackupRecord]] = []
        for p in self.backup_dir.iterdir():
            parsed = parse_archive_name(p.name)
            if parsed is None or not p.is_file():
                continue
            try:
                size = p.stat().st_size
            except FileNotFoundError:
                continue
            out.append((parsed, BackupRecord(path=p, created_at=parsed[0], size_bytes=size)))
        out.sort(key=lambda item: item[0])
        return [rec for _, rec in out]

    def cleanup(self) -> List[BackupRecord]:
        """Remove archives beyond MAX_BACKUPS (oldest first) and older than the retention window."""
        records = self.list_backups()
        doomed: List[BackupRecord] = []
        excess = len(records) - self.max_backups
        if excess > 0:
            doomed.extend(records[:excess])
        if self.retention_days:
            cutoff = self._clock() - timedelta(days=self.retention_days)
            doomed.extend(r for r in records[max(excess, 0):] if r.created_at < cutoff)

        for rec in doomed:
            rec.path.unlink(missing_ok=True)
        if doomed:
            log.info("Cleaned up %d old backup(s)", len(doomed))
        return doomed

    def restore(self, archive: Path) -> None:
        if not archive.is_file():
            raise BackupError(f"Backup file not found: {archive}")
        if not self.verify(archive):
            raise BackupError(f"Backup file is corrupted: {archive}")
        log.info("Restoring backup: %s", archive)
        try:
            # opened before the pre-restore snapshot, whose cleanup may rotate `archive` away
            with tarfile.open(archive, "r:gz") as tar:
                if self.snapshot() is None:
                    log.warning("Failed to create pre-restore backup")
                tar.extractall(self.root, filter="data")
        except (tarfile.TarError, OSError) as e:
            raise BackupError(f"Failed to restore backup {archive.name}: {e}") from e
        log.info("Backup restored successfully")

    def run(self, stop: threading.Event, interval: float) -> None:
        log.info("Automatic backup loop started (interval: %ss)", interval)
        while not stop.wait(interval):
            try:
                self.snapshot()
            except Exception as e:
                log.exception("Scheduled backup failed: %s", e)
        log.info("Automatic backup loop stopped.")
