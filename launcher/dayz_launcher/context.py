from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from .alerts import AlertSink
from .backup import BackupScheduler, S3Uploader
from .fs_layout import Layout, build_layout
from .health import HealthProbe
from .metrics import MetricRecorder
from .retry import RetryExecutor
from .settings import Settings
from .steamcmd import mask_login


@dataclass
class SupervisorContext:
    """Shared handles every component is constructed with; replaces process-wide globals."""
    settings: Settings
    layout: Layout
    metrics: MetricRecorder
    alerts: AlertSink
    probe: HealthProbe
    backups: Optional[BackupScheduler]
    executor: RetryExecutor

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupervisorContext":
        layout = build_layout(settings)
        metrics = MetricRecorder(layout.metrics_file, enabled=settings.enable_monitoring)
        alerts = AlertSink(settings.alert_webhook_url, timeout=settings.alert_timeout)
        probe = HealthProbe(
            process_pattern=layout.binary.name,
            port=settings.server_port,
            volume=layout.root,
            metrics=metrics,
            alerts=alerts,
            max_memory_mb=settings.max_memory,
            disk_limit_percent=settings.disk_usage_limit,
        )
        uploader = None
        if settings.backup_s3_bucket:
            uploader = S3Uploader(
                settings.backup_s3_bucket,
                region=settings.backup_s3_region,
                prefix=settings.backup_s3_prefix,
                timeout=settings.backup_upload_timeout,
            )
        backups = BackupScheduler(
            layout.root,
            layout.backups,
            settings.backup_patterns(),
            max_backups=settings.max_backups,
            retention_days=settings.backup_retention_days,
            uploader=uploader,
            metrics=metrics,
            alerts=alerts,
        ) if settings.auto_backup else None
        return cls(
            settings=settings,
            layout=layout,
            metrics=metrics,
            alerts=alerts,
            probe=probe,
            backups=backups,
            executor=RetryExecutor(layout.steamcmd_log, mask=mask_login),
        )
