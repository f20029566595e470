from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from opentelemetry import trace

from app.core.clock import Clock
from app.models.base import gen_id
from app.services.errors import StorageError
from app.services.pipeline import RunTrigger, SyncPipeline, SyncRun
from app.services.storage import SyncStore


log = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SchedulerState = Literal["idle", "running", "stopped"]


@dataclass(frozen=True)
class SyncResult:
    """What a trigger returns: the run's tallies, or already_running."""
    status: Literal["completed", "already_running", "stopped"]
    run: SyncRun | None = None

    @property
    def created(self) -> int:
        return self.run.created if self.run else 0

    @property
    def updated(self) -> int:
        return self.run.updated if self.run else 0

    @property
    def skipped(self) -> int:
        return self.run.skipped if self.run else 0

    @property
    def failed(self) -> int:
        return self.run.failed if self.run else 0

    @property
    def duration(self) -> float:
        return self.run.duration_seconds if self.run else 0.0


class SyncScheduler:
    """
    Drives SyncPipeline on a fixed interval and on demand.

    At most one run is in flight: the state flag is checked and set with no
    await in between, so a trigger that loses the race gets already_running
    and causes no upstream calls or writes. stop() cancels the timer and
    waits for an in-flight run instead of aborting it.

    There is no retry loop: a failed run is simply followed by the next tick.
    """

    def __init__(
        self,
        *,
        pipeline: SyncPipeline,
        clock: Clock,
        interval_seconds: float = 15 * 60,
        run_on_start: bool = True,
        history_size: int = 20,
    ):
        self._pipeline = pipeline
        self._clock = clock
        self._interval = interval_seconds
        self._run_on_start = run_on_start
        self._state: SchedulerState = "idle"
        self._timer: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._stopping = False
        self._runs: deque[SyncRun] = deque(maxlen=max(1, history_size))

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def runs(self) -> list[SyncRun]:
        return list(self._runs)

    @property
    def last_run(self) -> SyncRun | None:
        return self._runs[-1] if self._runs else None

    @property
    def pipeline(self) -> SyncPipeline:
        return self._pipeline

    @property
    def store(self) -> SyncStore:
        return self._pipeline.store

    async def start(self) -> None:
        if self._timer is not None or self._state == "stopped":
            return
        log.info("sync scheduler started interval=%ss run_on_start=%s", self._interval, self._run_on_start)
        self._timer = asyncio.create_task(self._timer_loop(), name="sync-scheduler-timer")

    async def stop(self) -> None:
        if self._state == "stopped":
            return
        self._stopping = True

        if self._timer is not None:
            self._timer.cancel()
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
            self._timer = None

        inflight = self._inflight
        if inflight is not None:
            log.info("sync scheduler stopping: waiting for in-flight run")
            await asyncio.wait([inflight])

        self._state = "stopped"
        log.info("sync scheduler stopped")

    async def trigger_manual_sync(self) -> SyncResult:
        return await self._trigger("manual")

    async def get_last_sync_time(self) -> datetime | None:
        for run in reversed(self._runs):
            if run.finished_at is not None:
                return run.finished_at
        try:
            return await self._pipeline.store.most_recent_sync_timestamp()
        except StorageError as e:
            log.warning("could not read last sync time from store: %s", e)
            return None

    async def _trigger(self, trigger: RunTrigger) -> SyncResult:
        if self._stopping:
            log.info("sync trigger ignored: scheduler stopped trigger=%s", trigger)
            return SyncResult(status="stopped")
        if self._state == "running":
            log.info("sync trigger ignored: run already in flight trigger=%s", trigger)
            return SyncResult(status="already_running")

        self._state = "running"
        self._inflight = asyncio.create_task(self._execute(trigger), name=f"sync-run-{trigger}")
        # the run outlives a cancelled caller (e.g. a dropped HTTP request)
        run = await asyncio.shield(self._inflight)
        return SyncResult(status="completed", run=run)

    async def _execute(self, trigger: RunTrigger) -> SyncRun:
        try:
            with tracer.start_as_current_span("sync.run") as span:
                span.set_attribute("sync.trigger", trigger)
                try:
                    run = await self._pipeline.run(trigger)
                except Exception as e:
                    # never let a run take the host process down
                    log.exception("sync run crashed trigger=%s", trigger)
                    now = self._clock.now()
                    run = SyncRun(id=gen_id("run"), trigger=trigger, started_at=now, finished_at=now, outcome="failed")
                    run.errors.append({"stage": "run", "key": None, "message": f"{type(e).__name__}: {e}"})
                span.set_attribute("sync.outcome", run.outcome or "unknown")
                span.set_attribute("sync.failed", run.failed)
            self._runs.append(run)
            return run
        finally:
            self._inflight = None
            if self._state == "running":
                self._state = "idle"

    async def _timer_loop(self) -> None:
        if self._run_on_start:
            await self._trigger("startup")
        while True:
            await self._clock.sleep(self._interval)
            result = await self._trigger("scheduled")
            if result.status == "stopped":
                return
