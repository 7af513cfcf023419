from __future__ import annotations
import argparse
import json
import threading
from pathlib import Path
import uvicorn
from .settings import Settings
from .logging_setup import setup_logging, get_logger
from .fs_layout import ensure_dirs
from .context import SupervisorContext
from .backup import BackupError, BackupScheduler
from .steamcmd import SteamCMD
from .supervisor import ServerSupervisor
from .api import create_app

log = get_logger("dayz.launcher.cli")

def _backups(ctx: SupervisorContext) -> BackupScheduler:
    # `backup` subcommands work even with AUTO_BACKUP=0
    if ctx.backups is not None:
        return ctx.backups
    s = ctx.settings
    return BackupScheduler(ctx.layout.root, ctx.layout.backups, s.backup_patterns(),
                           max_backups=s.max_backups, retention_days=s.backup_retention_days,
                           metrics=ctx.metrics, alerts=ctx.alerts)

def _cmd_run(ctx: SupervisorContext, args) -> int:
    if ctx.settings.auto_update and not args.no_update:
        SteamCMD(ctx.settings, ctx.executor).update_server()
    return ServerSupervisor(ctx).run(install_signal_handlers=True)

def _cmd_health(ctx: SupervisorContext, args) -> int:
    verdict = ctx.probe.run_once()
    if args.once:
        print(json.dumps(verdict.to_dict(), indent=2))
        return 0 if verdict.healthy else 1
    interval = args.interval or ctx.settings.health_interval(embedded=False)
    stop = threading.Event()
    try:
        ctx.probe.run(stop, interval)
    except KeyboardInterrupt:
        stop.set()
    return 0

def _cmd_backup(ctx: SupervisorContext, args) -> int:
    backups = _backups(ctx)
    if args.action == "create":
        record = backups.snapshot()
        if record is None:
            return 1
        print(record.path)
        return 0
    if args.action == "list":
        records = backups.list_backups()
        if not records:
            log.info("No backups found")
        for rec in records:
            print(f"{rec.name} ({rec.size_bytes} bytes)")
        return 0
    if args.action == "cleanup":
        backups.cleanup()
        return 0
    if args.action == "restore":
        if not args.file:
            log.error("Usage: backup restore <backup_file>")
            return 2
        try:
            backups.restore(Path(args.file))
        except BackupError as e:
            log.error("%s", e)
            return 1
        return 0
    return 2

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="dayz-launcher")
    sub = parser.add_subparsers(dest="cmd", required=True)

    run_p = sub.add_parser("run", help="Update (optional) and supervise the server with crash-restart")
    run_p.add_argument("--no-update", action="store_true", help="Skip the SteamCMD app_update before starting")

    health_p = sub.add_parser("health", help="Standalone health monitor")
    health_p.add_argument("--once", action="store_true", help="Run a single probe cycle and print the verdict")
    health_p.add_argument("--interval", type=float, default=None, help="Seconds between probes (default 60)")

    backup_p = sub.add_parser("backup", help="Create, list, clean up or restore backups")
    backup_p.add_argument("action", choices=["create", "list", "cleanup", "restore"], nargs="?", default="create")
    backup_p.add_argument("file", nargs="?", help="Archive to restore")

    api_p = sub.add_parser("api", help="Run REST API (FastAPI)")
    api_p.add_argument("--host", default="0.0.0.0")
    api_p.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)
    settings = Settings()
    setup_logging(settings)
    ctx = SupervisorContext.from_settings(settings)
    ensure_dirs(ctx.layout)

    if args.cmd == "run":
        return _cmd_run(ctx, args)
    if args.cmd == "health":
        return _cmd_health(ctx, args)
    if args.cmd == "backup":
        return _cmd_backup(ctx, args)
    if args.cmd == "api":
        app = create_app(settings, ctx=ctx)
        uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())
        return 0

    return 2
