from __future__ import annotations
from typing import List
from .retry import RetryExecutor
from .settings import Settings
from .fs_layout import build_layout
from .logging_setup import get_logger

log = get_logger("dayz.launcher.steamcmd")


def mask_login(tokens: List[str]) -> List[str]:
    """Copy of a steamcmd argument list with the values after '+login' redacted."""
    out = list(tokens)
    for idx, t in enumerate(out):
        if t == "+login":
            if idx + 1 < len(out) and out[idx + 1] != "anonymous":
                out[idx + 1] = "<REDACTED_USER>"
            if idx + 2 < len(out) and not out[idx + 2].startswith("+"):
                out[idx + 2] = "<REDACTED_PW>"
            break
    return out


class SteamCMD:
    def __init__(self, settings: Settings, executor: RetryExecutor):
        self.settings = settings
        self.layout = build_layout(settings)
        self.bin = self.layout.steamcmd_dir / "steamcmd.sh"
        self.executor = executor

    def update_args(self) -> List[str]:
        s = self.settings
        args: List[str] = [
            str(self.bin),
            "+force_install_dir", str(self.layout.root),
            "+login", s.steam_user,
        ]
        if s.steam_password:
            args.append(s.steam_password)
        args += ["+app_update", str(s.steamcmd_app_id)]
        if s.steamcmd_beta_id:
            args += ["-beta", s.steamcmd_beta_id]
            if s.steamcmd_beta_pass:
                args += ["-betapassword", s.steamcmd_beta_pass]
        args.append("+quit")
        return args

    def update_server(self) -> bool:
        """app_update the server install. A failure is reported, never raised."""
        if not self.bin.exists():
            log.warning("steamcmd not found at %s, skipping server update.", self.bin)
            return False
        log.info("Checking for server updates...")
        result = self.executor.execute(
            self.update_args(),
            max_attempts=self.settings.steamcmd_attempts,
            initial_delay=self.settings.steamcmd_retry_delay,
            cwd=self.layout.steamcmd_dir,
        )
        if result.ok:
            log.info("Server updated successfully")
        else:
            log.warning("Server update failed after %d attempt(s) (rc=%s), starting existing install.",
                        result.attempts_used, result.last_exit_code)
        return result.ok
