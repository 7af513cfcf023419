"""
Tests for BackupScheduler: archive contents, verification, rotation, restore.
"""

import tarfile
import pytest
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import Mock, patch

from dayz_launcher.alerts import AlertSink
from dayz_launcher.backup import BackupError, BackupScheduler, S3Uploader, parse_archive_name
from dayz_launcher.metrics import MetricRecorder
from dayz_launcher.models import RetryResult


PATTERNS = ["serverDZ.cfg", "battleye", "mpmissions", "profiles", "keys", "@*"]


class Clock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start=datetime(2026, 10, 1, 12, 0, 0), step=timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def server_root(tmp_path):
    root = tmp_path / "server"
    (root / "profiles").mkdir(parents=True)
    (root / "mpmissions" / "dayzOffline.chernarusplus").mkdir(parents=True)
    (root / "@1559212036").mkdir()
    (root / "steamapps").mkdir()
    (root / "serverDZ.cfg").write_text('hostname = "test";\n')
    (root / "profiles" / "BattlEye.cfg").write_text("RConPort 2306\n")
    (root / "profiles" / "server.log").write_text("noise\n")
    (root / "profiles" / "scratch.tmp").write_text("tmp\n")
    (root / "mpmissions" / "dayzOffline.chernarusplus" / "init.c").write_text("void main() {}\n")
    (root / "@1559212036" / "meta.cpp").write_text("name = \"CF\";\n")
    (root / "steamapps" / "big.bin").write_text("x" * 100)
    return root


def make_scheduler(root, **kw):
    kw.setdefault("clock", Clock())
    return BackupScheduler(root, root / "backups", PATTERNS, **kw)


def names(scheduler):
    return [r.name for r in scheduler.list_backups()]


class TestSnapshot:

    def test_archive_contents_and_excludes(self, server_root):
        sched = make_scheduler(server_root)
        record = sched.snapshot()

        assert record is not None
        assert record.path.name == "backup_2026-10-01_12-00-00.tar.gz"
        assert record.size_bytes == record.path.stat().st_size
        assert record.uploaded is False

        with tarfile.open(record.path, "r:gz") as tar:
            members = set(tar.getnames())
        assert "serverDZ.cfg" in members
        assert "profiles/BattlEye.cfg" in members
        assert "mpmissions/dayzOffline.chernarusplus/init.c" in members
        assert "@1559212036/meta.cpp" in members
        assert "profiles/server.log" not in members
        assert "profiles/scratch.tmp" not in members
        assert not any(m.startswith("steamapps") for m in members)
        assert not any(m.startswith("backups") for m in members)

    def test_no_sources_fails(self, tmp_path):
        alerts = Mock(spec=AlertSink)
        sched = BackupScheduler(tmp_path, tmp_path / "backups", ["missing.cfg"], alerts=alerts)
        assert sched.snapshot() is None
        alerts.notify.assert_called_once()

    def test_corrupt_archive_never_retained(self, server_root):
        """A snapshot failing verification leaves nothing in the backup dir."""
        alerts = Mock(spec=AlertSink)
        sched = make_scheduler(server_root, alerts=alerts)
        with patch.object(BackupScheduler, "verify", return_value=False):
            assert sched.snapshot() is None

        assert names(sched) == []
        assert list((server_root / "backups").iterdir()) == []
        assert "Backup failed" in alerts.notify.call_args.args[0]

    def test_backup_dir_is_a_file(self, server_root):
        (server_root / "backups").write_text("x")
        alerts = Mock(spec=AlertSink)
        sched = make_scheduler(server_root, alerts=alerts)

        assert sched.snapshot() is None
        assert "Backup failed" in alerts.notify.call_args.args[0]

    def test_publish_failure_leaves_no_partial(self, server_root):
        """A filesystem without hard links fails the snapshot instead of raising."""
        alerts = Mock(spec=AlertSink)
        sched = make_scheduler(server_root, alerts=alerts)
        with patch("dayz_launcher.backup.os.link", side_effect=OSError(1, "Operation not permitted")):
            assert sched.snapshot() is None

        assert list((server_root / "backups").iterdir()) == []
        alerts.notify.assert_called_once()

    def test_same_second_snapshots_both_survive(self, server_root):
        fixed = datetime(2026, 10, 1, 12, 0, 0)
        sched = make_scheduler(server_root, clock=lambda: fixed)

        first = sched.snapshot()
        second = sched.snapshot()

        assert first.path != second.path
        assert names(sched) == [
            "backup_2026-10-01_12-00-00.tar.gz",
            "backup_2026-10-01_12-00-00_1.tar.gz",
        ]

    def test_metrics_recorded(self, server_root, tmp_path):
        metrics = MetricRecorder(tmp_path / "metrics.json")
        record = make_scheduler(server_root, metrics=metrics).snapshot()
        assert metrics.read()["last_backup"].value == record.name


class TestUpload:

    def test_upload_success_marks_record(self, server_root):
        uploader = Mock(spec=S3Uploader)
        uploader.upload.return_value = True
        record = make_scheduler(server_root, uploader=uploader).snapshot()
        assert record.uploaded is True
        uploader.upload.assert_called_once_with(record.path)

    def test_upload_failure_keeps_local_backup(self, server_root):
        uploader = Mock(spec=S3Uploader)
        uploader.upload.side_effect = RuntimeError("s3 down")
        sched = make_scheduler(server_root, uploader=uploader)

        record = sched.snapshot()

        assert record is not None
        assert record.uploaded is False
        assert record.path.exists()

    def test_s3_uploader_without_cli(self, tmp_path):
        executor = Mock()
        up = S3Uploader("bucket", executor=executor)
        with patch("dayz_launcher.backup.shutil.which", return_value=None):
            assert up.upload(tmp_path / "backup_x.tar.gz") is False
        executor.execute.assert_not_called()

    def test_s3_uploader_command(self, tmp_path):
        executor = Mock()
        executor.execute.return_value = RetryResult(ok=True, attempts_used=1, last_exit_code=0)
        up = S3Uploader("my-bucket", region="eu-central-1", prefix="dayz", timeout=5, executor=executor)
        archive = tmp_path / "backup_2026-10-01_12-00-00.tar.gz"

        with patch("dayz_launcher.backup.shutil.which", return_value="/usr/bin/aws"):
            assert up.upload(archive) is True

        cmd = executor.execute.call_args.args[0]
        assert cmd == ["aws", "s3", "cp", str(archive),
                       "s3://my-bucket/dayz/backup_2026-10-01_12-00-00.tar.gz", "--region", "eu-central-1"]
        assert executor.execute.call_args.kwargs["timeout"] == 5


class TestCleanup:

    def _fill(self, backup_dir: Path, stamps):
        backup_dir.mkdir(parents=True, exist_ok=True)
        for s in stamps:
            (backup_dir / f"backup_{s.strftime('%Y-%m-%d_%H-%M-%S')}.tar.gz").write_bytes(b"x")

    def test_count_bound_keeps_newest(self, server_root):
        base = datetime(2026, 10, 1, 0, 0, 0)
        stamps = [base + timedelta(hours=h) for h in (3, 0, 4, 1, 2)]
        self._fill(server_root / "backups", stamps)
        sched = make_scheduler(server_root, max_backups=3, retention_days=0,
                               clock=lambda: base + timedelta(hours=5))

        removed = sched.cleanup()

        assert len(removed) == 2
        assert names(sched) == [
            "backup_2026-10-01_02-00-00.tar.gz",
            "backup_2026-10-01_03-00-00.tar.gz",
            "backup_2026-10-01_04-00-00.tar.gz",
        ]

    def test_age_bound(self, server_root):
        now = datetime(2026, 10, 16, 12, 0, 0)
        self._fill(server_root / "backups", [now - timedelta(days=10), now - timedelta(days=1)])
        sched = make_scheduler(server_root, max_backups=5, retention_days=7, clock=lambda: now)

        sched.cleanup()

        assert names(sched) == ["backup_2026-10-15_12-00-00.tar.gz"]

    def test_snapshot_prunes_to_bound(self, server_root):
        sched = make_scheduler(server_root, max_backups=2, retention_days=0)
        for _ in range(4):
            sched.snapshot()
        assert names(sched) == [
            "backup_2026-10-01_12-00-02.tar.gz",
            "backup_2026-10-01_12-00-03.tar.gz",
        ]

    def test_foreign_files_ignored(self, server_root):
        backups = server_root / "backups"
        backups.mkdir()
        (backups / "notes.txt").write_text("keep me")
        (backups / ".backup_abc.partial").write_bytes(b"")
        make_scheduler(server_root, max_backups=1).cleanup()
        assert (backups / "notes.txt").exists()

    def test_cleanup_tolerates_concurrent_removal(self, server_root):
        base = datetime(2026, 10, 1)
        self._fill(server_root / "backups", [base + timedelta(minutes=m) for m in range(3)])
        sched = make_scheduler(server_root, max_backups=1, retention_days=0)
        stale = sched.list_backups()
        stale[0].path.unlink()  # removed by a concurrent cleanup
        with patch.object(sched, "list_backups", return_value=stale):
            sched.cleanup()
        assert len(names(sched)) == 1

    def test_parse_archive_name(self):
        assert parse_archive_name("backup_2026-10-01_12-00-00.tar.gz") == (datetime(2026, 10, 1, 12), 0)
        assert parse_archive_name("backup_2026-10-01_12-00-00_2.tar.gz") == (datetime(2026, 10, 1, 12), 2)
        assert parse_archive_name("dayz-backup-20261001-120000.tar.gz") is None


class TestRestore:

    def test_restore_overwrites_changed_files(self, server_root):
        sched = make_scheduler(server_root)
        record = sched.snapshot()
        (server_root / "serverDZ.cfg").write_text("broken")

        sched.restore(record.path)

        assert (server_root / "serverDZ.cfg").read_text() == 'hostname = "test";\n'

    def test_restore_takes_pre_restore_snapshot(self, server_root):
        sched = make_scheduler(server_root, max_backups=5)
        record = sched.snapshot()
        sched.restore(record.path)
        assert len(names(sched)) == 2

    def test_restore_survives_rotation_of_its_archive(self, server_root):
        """With MAX_BACKUPS=1 the pre-restore snapshot rotates the source archive away."""
        sched = make_scheduler(server_root, max_backups=1)
        record = sched.snapshot()
        (server_root / "serverDZ.cfg").write_text("broken")

        sched.restore(record.path)

        assert (server_root / "serverDZ.cfg").read_text() == 'hostname = "test";\n'
        assert not record.path.exists()

    def test_restore_missing_file(self, server_root):
        with pytest.raises(BackupError):
            make_scheduler(server_root).restore(server_root / "backups" / "nope.tar.gz")

    def test_restore_corrupt_file(self, server_root):
        bad = server_root / "backups" / "backup_2026-10-01_00-00-00.tar.gz"
        bad.parent.mkdir()
        bad.write_bytes(b"definitely not gzip")
        with pytest.raises(BackupError):
            make_scheduler(server_root).restore(bad)
