from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from app.canonical.v1.agent import AgentRecordV1
from app.canonical.v1.listing import ListingRecordV1
from app.core.clock import Clock
from app.models.base import gen_id
from app.services.errors import AuthError, RecordValidationError, StorageError, UpstreamError
from app.services.normalizer import parse_agent, parse_listing
from app.services.notifier import Notifier
from app.services.reconciler import Reconciler, StatusTransition
from app.services.storage import SyncStore
from app.services.upstream import UpstreamClient


log = logging.getLogger(__name__)

RunTrigger = Literal["scheduled", "manual", "startup"]
RunOutcome = Literal["succeeded", "failed", "partially_failed"]


@dataclass
class SyncRun:
    id: str
    trigger: RunTrigger
    started_at: datetime
    finished_at: datetime | None = None
    outcome: RunOutcome | None = None

    agents_upserted: int = 0
    listings_upserted: int = 0
    listings_enriched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0

    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return round((self.finished_at - self.started_at).total_seconds(), 3)

    def counts(self) -> dict[str, int]:
        return {
            "agents_upserted": self.agents_upserted,
            "listings_upserted": self.listings_upserted,
            "listings_enriched": self.listings_enriched,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "notifications_sent": self.notifications_sent,
            "notifications_failed": self.notifications_failed,
        }

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "trigger": self.trigger,
            "outcome": self.outcome,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": self.duration_seconds,
            "counts": self.counts(),
            "errors": self.errors,
        }


class SyncPipeline:
    """
    One run: fetch -> normalize -> reconcile (agents, then listings with
    geocoding) -> notify.

    Auth and fetch failures end the run as "failed" before anything is
    written. Everything after that is per record and only degrades the run
    to "partially_failed".
    """

    def __init__(
        self,
        *,
        upstream: UpstreamClient,
        reconciler: Reconciler,
        notifier: Notifier,
        store: SyncStore,
        clock: Clock,
        notify_on_create: bool = True,
    ):
        self.upstream = upstream
        self.reconciler = reconciler
        self.notifier = notifier
        self.store = store
        self._clock = clock
        self._notify_on_create = notify_on_create

    async def run(self, trigger: RunTrigger = "manual") -> SyncRun:
        run = SyncRun(id=gen_id("run"), trigger=trigger, started_at=self._clock.now())
        log.info("sync run started id=%s trigger=%s", run.id, trigger)

        try:
            raw_agents = await self.upstream.fetch_active_agents()
            raw_listings = await self.upstream.fetch_pending_listings()
        except (AuthError, UpstreamError) as e:
            stage = "auth" if isinstance(e, AuthError) else "fetch"
            log.error("sync run aborted id=%s stage=%s error=%s", run.id, stage, e)
            run.errors.append({"stage": stage, "key": None, "message": str(e)})
            return await self._finish(run, "failed")

        agents = self._normalize(raw_agents, parse_agent, "agents", run)
        listings = self._normalize(raw_listings, parse_listing, "listings", run)

        agent_tally = await self.reconciler.upsert_agents(agents)
        run.agents_upserted = agent_tally.upserted
        run.failed += agent_tally.failed
        run.skipped += agent_tally.skipped
        run.errors.extend(agent_tally.errors)

        listing_tally = await self.reconciler.upsert_listings(listings)
        run.listings_upserted = listing_tally.upserted
        run.listings_enriched = listing_tally.enriched
        run.created += listing_tally.created
        run.updated += listing_tally.updated
        run.skipped += listing_tally.skipped
        run.failed += listing_tally.failed
        run.errors.extend(listing_tally.errors)

        await self._notify(listing_tally.transitions, {a.member_key: a for a in agents}, run)

        return await self._finish(run, "partially_failed" if run.failed else "succeeded")

    def _normalize(self, raws: list[dict[str, Any]], parse, stage: str, run: SyncRun) -> list:
        out = []
        for raw in raws:
            try:
                out.append(parse(raw))
            except RecordValidationError as e:
                log.warning("dropping malformed %s record key=%s reason=%s", stage, e.key, e)
                run.failed += 1
                run.errors.append({"stage": f"normalize_{stage}", "key": e.key, "message": str(e)})
        return out

    async def _notify(
        self,
        transitions: list[StatusTransition],
        agents_by_key: dict[str, AgentRecordV1],
        run: SyncRun,
    ) -> None:
        if not self.notifier.enabled:
            return

        tasks = []
        for t in transitions:
            if t.previous_status is None and not self._notify_on_create:
                continue
            agent = await self._agent_for(t.listing, agents_by_key)
            tasks.append(asyncio.create_task(
                self.notifier.notify_status_change(t.listing, agent, t.previous_status)
            ))

        if not tasks:
            return
        results = await asyncio.gather(*tasks)
        run.notifications_sent = sum(1 for ok in results if ok)
        run.notifications_failed = len(results) - run.notifications_sent

    async def _agent_for(
        self,
        listing: ListingRecordV1,
        agents_by_key: dict[str, AgentRecordV1],
    ) -> AgentRecordV1 | None:
        key = listing.list_agent_key
        if not key:
            return None
        if key in agents_by_key:
            return agents_by_key[key]
        try:
            return await self.store.find_agent_by_key(key)
        except StorageError as e:
            log.warning("agent lookup for notification failed member_key=%s error=%s", key, e)
            return None

    async def _finish(self, run: SyncRun, outcome: RunOutcome) -> SyncRun:
        run.outcome = outcome
        run.finished_at = self._clock.now()
        log.info(
            "sync run finished id=%s outcome=%s duration=%.3fs agents=%d listings=%d enriched=%d "
            "created=%d updated=%d skipped=%d failed=%d",
            run.id, outcome, run.duration_seconds, run.agents_upserted, run.listings_upserted,
            run.listings_enriched, run.created, run.updated, run.skipped, run.failed,
        )
        try:
            await self.store.record_sync_run(run.as_dict())
        except StorageError as e:
            log.error("could not persist sync run id=%s error=%s", run.id, e)
        return run
