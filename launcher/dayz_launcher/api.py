from __future__ import annotations
from typing import Optional
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from .settings import Settings
from .context import SupervisorContext
from .fs_layout import ensure_dirs

class ActionResult(BaseModel):
    ok: bool
    detail: str | None = None
    data: dict | None = None

def create_app(settings: Settings, ctx: Optional[SupervisorContext] = None) -> FastAPI:
    app = FastAPI(title="DayZ Launcher API", version="0.4.0")
    ctx = ctx or SupervisorContext.from_settings(settings)
    ensure_dirs(ctx.layout)

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/probe", response_model=ActionResult)
    def probe():
        verdict = ctx.probe.run_once()
        return ActionResult(ok=verdict.healthy, data=verdict.to_dict())

    @app.get("/metrics")
    def metrics():
        return {key: entry.stored() for key, entry in ctx.metrics.read().items()}

    @app.get("/backups")
    def list_backups():
        if ctx.backups is None:
            return {"ok": True, "enabled": False, "backups": []}
        return {"ok": True, "enabled": True, "backups": [r.to_dict() for r in ctx.backups.list_backups()]}

    @app.post("/backups", response_model=ActionResult)
    def create_backup():
        if ctx.backups is None:
            raise HTTPException(status_code=409, detail="backups_disabled")
        record = ctx.backups.snapshot()
        if record is None:
            raise HTTPException(status_code=500, detail="backup_failed")
        return ActionResult(ok=True, detail="created", data=record.to_dict())

    return app
