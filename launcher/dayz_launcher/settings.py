from __future__ import annotations
import shlex
from pathlib import Path
from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

def _split(value: str) -> List[str]:
    return [p.strip() for p in value.split(";") if p.strip()]

class Settings(BaseSettings):
    server_root: Path = Field(default=Path("/mnt/server"), alias="SERVER_ROOT")
    server_binary: str = Field(default="DayZServer", alias="SERVER_BINARY")
    server_config: str = Field(default="serverDZ.cfg", alias="SERVER_CONFIG")
    server_profiles: str = Field(default="profiles", alias="SERVER_PROFILES")
    server_port: int = Field(default=2302, alias="SERVER_PORT")

    client_mods: str = Field(default="", alias="CLIENT_MODS")
    mod_ids: str = Field(default="", alias="MOD_IDS")
    server_mods: str = Field(default="", alias="SERVERMODS")
    startup_params: str = Field(default="-dologs -adminlog -netlog -freezecheck", alias="STARTUP_PARAMS")

    auto_restart: bool = Field(default=True, alias="AUTO_RESTART")
    max_restart_attempts: int = Field(default=5, ge=1, alias="MAX_RESTART_ATTEMPTS")
    restart_delay: float = Field(default=10, ge=0, alias="RESTART_DELAY")
    restart_reset_after: float = Field(default=0, ge=0, alias="RESTART_RESET_AFTER")

    auto_backup: bool = Field(default=True, alias="AUTO_BACKUP")
    backup_interval: float = Field(default=3600, gt=0, alias="BACKUP_INTERVAL")
    max_backups: int = Field(default=3, ge=1, alias="MAX_BACKUPS")
    backup_retention_days: float = Field(default=7, ge=0, alias="BACKUP_RETENTION_DAYS")
    backup_paths: str = Field(default="serverDZ.cfg;battleye;mpmissions;profiles;keys;@*", alias="BACKUP_PATHS")
    backup_s3_bucket: str = Field(default="", alias="BACKUP_S3_BUCKET")
    backup_s3_region: str = Field(default="us-east-1", alias="BACKUP_S3_REGION")
    backup_s3_prefix: str = Field(default="dayz", alias="BACKUP_S3_PREFIX")
    backup_upload_timeout: float = Field(default=5, gt=0, alias="BACKUP_UPLOAD_TIMEOUT")

    health_check_interval: Optional[float] = Field(default=None, gt=0, alias="HEALTH_CHECK_INTERVAL")
    max_memory: Optional[float] = Field(default=None, alias="MAX_MEMORY")
    disk_usage_limit: float = Field(default=90, alias="DISK_USAGE_LIMIT")
    enable_monitoring: bool = Field(default=True, alias="ENABLE_MONITORING")
    metrics_file: Optional[Path] = Field(default=None, alias="METRICS_FILE")

    alert_webhook_url: str = Field(default="", alias="ALERT_WEBHOOK_URL")
    alert_timeout: float = Field(default=5, gt=0, le=5, alias="ALERT_TIMEOUT")

    auto_update: bool = Field(default=True, alias="AUTO_UPDATE")
    steamcmd_dir: Optional[Path] = Field(default=None, alias="STEAMCMD_DIR")
    steamcmd_app_id: int = Field(default=223350, alias="STEAMCMD_APPID")
    steamcmd_beta_id: str = Field(default="", alias="STEAMCMD_BETAID")
    steamcmd_beta_pass: str = Field(default="", alias="STEAMCMD_BETAPASS")
    steam_user: str = Field(default="anonymous", alias="STEAM_USER")
    steam_password: str = Field(default="", alias="STEAM_PASS")
    steamcmd_attempts: int = Field(default=3, ge=1, alias="STEAMCMD_ATTEMPTS")
    steamcmd_retry_delay: float = Field(default=5, ge=0, alias="STEAMCMD_RETRY_DELAY")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    max_log_size: int = Field(default=52_428_800, gt=0, alias="MAX_LOG_SIZE")

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True, env_ignore_empty=True)

    def mod_id_list(self) -> List[str]:
        return _split(self.mod_ids)

    def backup_patterns(self) -> List[str]:
        return _split(self.backup_paths)

    def startup_args(self) -> List[str]:
        return shlex.split(self.startup_params)

    def health_interval(self, *, embedded: bool) -> float:
        """Probe cadence: 30s next to the supervised server, 60s for the standalone monitor."""
        if self.health_check_interval:
            return self.health_check_interval
        return 30.0 if embedded else 60.0
