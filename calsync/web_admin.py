from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from calsync.config_manager import MASK, SECRET_FIELDS, ConfigManager
from calsync.models import parse_iso_datetime
from calsync.scheduler import SyncScheduler
from calsync.sync_engine import SyncEngine


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class CustomWindowSyncRequest(BaseModel):
    start: str
    end: str


class AppContext:
    def __init__(self, config_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.sync_engine = SyncEngine(self.config_manager)
        self.scheduler = SyncScheduler(self.sync_engine, self.config_manager)


def _sanitize_config_payload(payload: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    sanitized = dict(payload)
    for section_name, field_name in SECRET_FIELDS:
        section = sanitized.get(section_name)
        if not isinstance(section, dict):
            continue
        secret = section.get(field_name)
        if secret is not None and str(secret).strip() in {"", MASK}:
            if str(current.get(section_name, {}).get(field_name, "")):
                section.pop(field_name, None)
            else:
                section[field_name] = ""
        if not section:
            sanitized.pop(section_name, None)
    return sanitized


def create_app(start_scheduler: bool = True) -> FastAPI:
    config_path = os.getenv("CALSYNC_CONFIG_PATH", "config.yaml")
    context = AppContext(config_path=config_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            app.state.context.scheduler.start()
        yield
        if start_scheduler:
            app.state.context.scheduler.stop()

    app = FastAPI(title="calsync", version="0.1.0", lifespan=lifespan)
    app.state.context = context

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        current = app.state.context.config_manager.load().to_dict()
        sanitized_payload = _sanitize_config_payload(request.payload, current)
        app.state.context.config_manager.update(sanitized_payload)
        return {
            "message": "config updated",
            "config": app.state.context.config_manager.masked(),
        }

    @app.post("/api/sync/run")
    def trigger_sync() -> dict[str, str]:
        app.state.context.scheduler.trigger_manual()
        return {"message": "sync triggered"}

    @app.post("/api/sync/run-window")
    def trigger_sync_with_custom_window(request: CustomWindowSyncRequest) -> dict[str, Any]:
        try:
            start = parse_iso_datetime(request.start)
            end = parse_iso_datetime(request.end)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid start/end datetime") from exc
        if start is None or end is None:
            raise HTTPException(status_code=400, detail="Invalid start/end datetime")
        if end < start:
            raise HTTPException(status_code=400, detail="end must be later than start")
        report = app.state.context.sync_engine.run_once(
            trigger="manual-window",
            window_start_override=start,
            window_end_override=end,
        )
        return {"message": "sync completed", "result": report.to_dict()}

    @app.get("/api/sync/status")
    def sync_status(limit: int = 20) -> dict[str, Any]:
        return {"runs": app.state.context.sync_engine.recent_reports(limit=limit)}

    return app
