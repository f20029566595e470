from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.canonical.v1.agent import AgentRecordV1
from app.canonical.v1.listing import AddressV1, ListingRecordV1, StatusChangeV1
from app.models.agent import Agent
from app.models.listing import Listing
from app.models.sync_run import SyncRunRecord
from app.services.errors import StorageError


log = logging.getLogger(__name__)


class SyncStore(Protocol):
    """
    What the sync pipeline needs from persistence. Every write is an
    upsert keyed on the record's natural key.
    """

    async def find_agent_by_key(self, member_key: str) -> AgentRecordV1 | None: ...
    async def upsert_agent(self, agent: AgentRecordV1) -> bool: ...
    async def find_listing_by_key(self, listing_key: str) -> ListingRecordV1 | None: ...
    async def upsert_listing(self, listing: ListingRecordV1) -> bool: ...
    async def count_listings(self) -> int: ...
    async def most_recent_sync_timestamp(self) -> datetime | None: ...
    async def listings_missing_coordinates(self, limit: int) -> list[ListingRecordV1]: ...
    async def record_sync_run(self, run: dict[str, Any]) -> None: ...
    async def recent_sync_runs(self, limit: int) -> list[dict[str, Any]]: ...


def _aware(dt: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything we write is UTC
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def _agent_out(row: Agent) -> AgentRecordV1:
    return AgentRecordV1(
        member_key=row.member_key,
        first_name=row.first_name,
        last_name=row.last_name,
        full_name=row.full_name,
        email=row.email,
        phone=row.phone,
        mls_id=row.mls_id,
        office_name=row.office_name,
        modification_timestamp=_aware(row.modification_timestamp),
        last_synced_at=_aware(row.last_synced_at),
    )


def _listing_out(row: Listing) -> ListingRecordV1:
    return ListingRecordV1(
        listing_key=row.listing_key,
        list_price=row.list_price,
        list_agent_key=row.list_agent_key,
        address=AddressV1(
            street=row.street,
            city=row.city,
            state=row.state,
            postal_code=row.postal_code,
            lat=row.lat,
            lng=row.lng,
        ),
        status=row.status,
        status_history=[StatusChangeV1.model_validate(h) for h in (row.status_history or [])],
        modification_timestamp=_aware(row.modification_timestamp),
        last_synced_at=_aware(row.last_synced_at),
    )


def _listing_values(listing: ListingRecordV1) -> dict[str, Any]:
    a = listing.address
    return {
        "list_price": listing.list_price,
        "list_agent_key": listing.list_agent_key,
        "street": a.street,
        "city": a.city,
        "state": a.state,
        "postal_code": a.postal_code,
        "lat": a.lat,
        "lng": a.lng,
        "status": listing.status,
        "status_history": [h.model_dump(mode="json") for h in listing.status_history],
        "modification_timestamp": listing.modification_timestamp,
        "last_synced_at": listing.last_synced_at,
    }


def _agent_values(agent: AgentRecordV1) -> dict[str, Any]:
    return agent.model_dump(exclude={"member_key"})


class SqlAlchemySyncStore:
    """
    SyncStore on the async SQLAlchemy models.

    Each write runs in its own short transaction so one failing record can
    never roll back its siblings.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    async def find_agent_by_key(self, member_key: str) -> AgentRecordV1 | None:
        try:
            async with self._sessions() as db:
                row = (await db.execute(select(Agent).where(Agent.member_key == member_key))).scalar_one_or_none()
                return _agent_out(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"find_agent_by_key({member_key!r}) failed: {e}") from e

    async def upsert_agent(self, agent: AgentRecordV1) -> bool:
        """Returns True when the agent row was created."""
        values = _agent_values(agent)
        try:
            async with self._sessions() as db, db.begin():
                row = (await db.execute(select(Agent).where(Agent.member_key == agent.member_key))).scalar_one_or_none()
                if row is None:
                    db.add(Agent(member_key=agent.member_key, **values))
                    return True
                for k, v in values.items():
                    setattr(row, k, v)
                return False
        except SQLAlchemyError as e:
            raise StorageError(f"upsert_agent({agent.member_key!r}) failed: {e}") from e

    async def find_listing_by_key(self, listing_key: str) -> ListingRecordV1 | None:
        try:
            async with self._sessions() as db:
                row = (await db.execute(select(Listing).where(Listing.listing_key == listing_key))).scalar_one_or_none()
                return _listing_out(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"find_listing_by_key({listing_key!r}) failed: {e}") from e

    async def upsert_listing(self, listing: ListingRecordV1) -> bool:
        """Full replace of every mutable column. Returns True when created."""
        values = _listing_values(listing)
        try:
            async with self._sessions() as db, db.begin():
                row = (await db.execute(select(Listing).where(Listing.listing_key == listing.listing_key))).scalar_one_or_none()
                if row is None:
                    db.add(Listing(listing_key=listing.listing_key, **values))
                    return True
                for k, v in values.items():
                    setattr(row, k, v)
                return False
        except SQLAlchemyError as e:
            raise StorageError(f"upsert_listing({listing.listing_key!r}) failed: {e}") from e

    async def count_listings(self) -> int:
        try:
            async with self._sessions() as db:
                return int((await db.execute(select(func.count()).select_from(Listing))).scalar_one())
        except SQLAlchemyError as e:
            raise StorageError(f"count_listings failed: {e}") from e

    async def most_recent_sync_timestamp(self) -> datetime | None:
        try:
            async with self._sessions() as db:
                listing_ts = (await db.execute(select(func.max(Listing.last_synced_at)))).scalar_one_or_none()
                agent_ts = (await db.execute(select(func.max(Agent.last_synced_at)))).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"most_recent_sync_timestamp failed: {e}") from e
        stamps = [_aware(t) for t in (listing_ts, agent_ts) if t is not None]
        return max(stamps) if stamps else None

    async def listings_missing_coordinates(self, limit: int) -> list[ListingRecordV1]:
        stmt = (
            select(Listing)
            .where(
                (Listing.lat.is_(None)) | (Listing.lng.is_(None)),
                Listing.street.is_not(None),
                Listing.city.is_not(None),
                Listing.state.is_not(None),
                Listing.postal_code.is_not(None),
            )
            .order_by(Listing.listing_key.asc())
            .limit(limit)
        )
        try:
            async with self._sessions() as db:
                rows = (await db.execute(stmt)).scalars().all()
                return [_listing_out(r) for r in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"listings_missing_coordinates failed: {e}") from e

    async def record_sync_run(self, run: dict[str, Any]) -> None:
        try:
            async with self._sessions() as db, db.begin():
                db.add(SyncRunRecord(
                    id=run["id"],
                    trigger=run["trigger"],
                    outcome=run["outcome"],
                    started_at=run["started_at"],
                    finished_at=run["finished_at"],
                    duration_seconds=run["duration_seconds"],
                    counts=run.get("counts", {}),
                    errors=run.get("errors", []),
                ))
        except SQLAlchemyError as e:
            raise StorageError(f"record_sync_run({run.get('id')!r}) failed: {e}") from e

    async def recent_sync_runs(self, limit: int) -> list[dict[str, Any]]:
        stmt = select(SyncRunRecord).order_by(SyncRunRecord.finished_at.desc()).limit(limit)
        try:
            async with self._sessions() as db:
                rows = (await db.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise StorageError(f"recent_sync_runs failed: {e}") from e
        return [
            {
                "id": r.id,
                "trigger": r.trigger,
                "outcome": r.outcome,
                "started_at": _aware(r.started_at),
                "finished_at": _aware(r.finished_at),
                "duration_seconds": r.duration_seconds,
                "counts": r.counts,
                "errors": r.errors,
            }
            for r in rows
        ]
