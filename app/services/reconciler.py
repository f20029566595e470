from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from app.canonical.v1.agent import AgentRecordV1
from app.canonical.v1.listing import AddressV1, ListingRecordV1, StatusChangeV1
from app.core.clock import Clock
from app.services.errors import StorageError
from app.services.geocoding import GeoEnricher
from app.services.storage import SyncStore


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusTransition:
    listing: ListingRecordV1
    # None when the listing was created by this write
    previous_status: str | None


@dataclass
class ReconcileTally:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    enriched: int = 0
    transitions: list[StatusTransition] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def upserted(self) -> int:
        return self.created + self.updated

    def fail(self, *, stage: str, key: str, message: str) -> None:
        self.failed += 1
        self.errors.append({"stage": stage, "key": key, "message": message})


def _unique_by_key(records: Iterable, key_attr: str, tally: ReconcileTally) -> list:
    seen: set[str] = set()
    out = []
    for r in records:
        k = getattr(r, key_attr)
        if k in seen:
            tally.skipped += 1
            log.info("skipping duplicate %s=%s within batch", key_attr, k)
            continue
        seen.add(k)
        out.append(r)
    return out


class Reconciler:
    """
    Idempotent upsert of canonical agents and listings by natural key.

    Records are independent: a failure on one is tallied and the batch
    moves on. Listing status history grows only on an observed transition,
    so re-applying the same input leaves the stored state unchanged apart
    from last_synced_at.
    """

    def __init__(self, *, store: SyncStore, geo: GeoEnricher, clock: Clock):
        self._store = store
        self._geo = geo
        self._clock = clock

    @property
    def geo_enabled(self) -> bool:
        return self._geo.enabled

    async def upsert_agents(self, agents: Iterable[AgentRecordV1]) -> ReconcileTally:
        tally = ReconcileTally()
        now = self._clock.now()

        for agent in _unique_by_key(agents, "member_key", tally):
            incoming = agent.model_copy(update={"last_synced_at": now})
            try:
                created = await self._store.upsert_agent(incoming)
            except StorageError as e:
                log.error("agent upsert failed member_key=%s error=%s", agent.member_key, e)
                tally.fail(stage="agents", key=agent.member_key, message=str(e))
                continue
            if created:
                tally.created += 1
            else:
                tally.updated += 1

        log.info("agents reconciled created=%d updated=%d skipped=%d failed=%d",
                 tally.created, tally.updated, tally.skipped, tally.failed)
        return tally

    async def upsert_listings(self, listings: Iterable[ListingRecordV1]) -> ReconcileTally:
        tally = ReconcileTally()

        for listing in _unique_by_key(listings, "listing_key", tally):
            try:
                await self._upsert_listing(listing, tally)
            except StorageError as e:
                log.error("listing upsert failed listing_key=%s error=%s", listing.listing_key, e)
                tally.fail(stage="listings", key=listing.listing_key, message=str(e))

        log.info("listings reconciled created=%d updated=%d skipped=%d failed=%d enriched=%d transitions=%d",
                 tally.created, tally.updated, tally.skipped, tally.failed, tally.enriched, len(tally.transitions))
        return tally

    async def _upsert_listing(self, incoming: ListingRecordV1, tally: ReconcileTally) -> None:
        existing = await self._store.find_listing_by_key(incoming.listing_key)
        now = self._clock.now()

        address = await self._resolve_address(incoming.address, existing, tally)

        history = list(existing.status_history) if existing else []
        previous_status = existing.status if existing else None
        changed = previous_status != incoming.status
        if changed:
            history.append(StatusChangeV1(status=incoming.status, timestamp=now))

        record = incoming.model_copy(update={
            "address": address,
            "status_history": history,
            "last_synced_at": now,
        })

        created = await self._store.upsert_listing(record)
        if created:
            tally.created += 1
        else:
            tally.updated += 1

        if changed:
            log.info("listing status transition listing_key=%s %s -> %s",
                     record.listing_key, previous_status, record.status)
            tally.transitions.append(StatusTransition(listing=record, previous_status=previous_status))

    async def _resolve_address(
        self,
        incoming: AddressV1,
        existing: ListingRecordV1 | None,
        tally: ReconcileTally,
    ) -> AddressV1:
        # upstream never carries coordinates; keep the stored ones while the address is unchanged
        if existing and existing.address.has_coordinates and existing.address.same_location(incoming):
            return incoming.model_copy(update={"lat": existing.address.lat, "lng": existing.address.lng})

        if incoming.has_coordinates or not incoming.is_complete:
            return incoming

        geo = await self._geo.enrich(incoming)
        if not geo.resolved:
            return incoming

        tally.enriched += 1
        return incoming.model_copy(update={"lat": geo.lat, "lng": geo.lng})

    async def backfill_coordinates(self, *, limit: int = 500) -> ReconcileTally:
        """
        Geocode stored listings that still have a complete address but no
        coordinates (e.g. left over from a geocoder outage).
        """
        tally = ReconcileTally()
        for listing in await self._store.listings_missing_coordinates(limit):
            geo = await self._geo.enrich(listing.address)
            if not geo.resolved:
                tally.skipped += 1
                continue
            record = listing.model_copy(update={
                "address": listing.address.model_copy(update={"lat": geo.lat, "lng": geo.lng}),
            })
            try:
                await self._store.upsert_listing(record)
            except StorageError as e:
                log.error("coordinate backfill failed listing_key=%s error=%s", listing.listing_key, e)
                tally.fail(stage="backfill", key=listing.listing_key, message=str(e))
                continue
            tally.enriched += 1
            tally.updated += 1

        log.info("coordinate backfill done enriched=%d unresolved=%d failed=%d",
                 tally.enriched, tally.skipped, tally.failed)
        return tally
