from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class SyncRunOut(BaseModel):
    id: str
    trigger: str
    outcome: str | None
    started_at: datetime
    finished_at: datetime | None
    duration_seconds: float
    counts: dict[str, int] = Field(default_factory=dict)
    errors: list[dict[str, Any]] = Field(default_factory=list)


class TriggerSyncResponse(BaseModel):
    status: str  # "completed"
    run_id: str
    outcome: str | None
    created: int
    updated: int
    skipped: int
    failed: int
    duration_seconds: float


class SyncStatusResponse(BaseModel):
    state: str  # "idle" | "running" | "stopped"
    last_sync_time: datetime | None
    listings_total: int | None
    last_run: SyncRunOut | None = None
