import pytest

from app.services.errors import StorageError
from app.services.geocoding import GeoEnricher
from app.services.normalizer import normalize_agent, normalize_listing
from app.services.reconciler import Reconciler
from app.services.storage import SqlAlchemySyncStore

from fixtures_seed import GEO_URL, raw_agent, raw_listing


class FlakyStore(SqlAlchemySyncStore):
    """Fails writes for chosen natural keys."""

    def __init__(self, session_factory, *, fail_keys=()):
        super().__init__(session_factory)
        self.fail_keys = set(fail_keys)

    async def upsert_listing(self, listing):
        if listing.listing_key in self.fail_keys:
            raise StorageError(f"upsert_listing({listing.listing_key!r}) failed: disk full")
        return await super().upsert_listing(listing)

    async def upsert_agent(self, agent):
        if agent.member_key in self.fail_keys:
            raise StorageError(f"upsert_agent({agent.member_key!r}) failed: disk full")
        return await super().upsert_agent(agent)


@pytest.fixture
def geo(http, clock):
    return GeoEnricher(http=http, clock=clock, endpoint=GEO_URL, api_key="geo-key", min_interval_seconds=0)


@pytest.fixture
def reconciler(store, geo, clock):
    return Reconciler(store=store, geo=geo, clock=clock)


def _listing(key="L1", **overrides):
    return normalize_listing(raw_listing(key, **overrides))


@pytest.mark.asyncio
async def test_new_listing_is_created_with_history_and_coordinates(reconciler, store, clock, upstream):
    tally = await reconciler.upsert_listings([_listing("L1")])

    assert (tally.created, tally.updated, tally.failed, tally.enriched) == (1, 0, 0, 1)
    assert len(tally.transitions) == 1
    assert tally.transitions[0].previous_status is None

    stored = await store.find_listing_by_key("L1")
    assert stored.address.lat == pytest.approx(33.5185)
    assert stored.address.lng == pytest.approx(-101.9132)
    assert [h.status for h in stored.status_history] == ["Under Contract"]
    assert stored.status_history[0].timestamp == clock.now()
    assert stored.last_synced_at == clock.now()


@pytest.mark.asyncio
async def test_reapplying_same_input_is_idempotent(reconciler, store, clock, upstream):
    await reconciler.upsert_listings([_listing("L1")])
    first = await store.find_listing_by_key("L1")

    clock.advance(900)
    tally = await reconciler.upsert_listings([_listing("L1")])
    second = await store.find_listing_by_key("L1")

    assert (tally.created, tally.updated) == (0, 1)
    assert tally.transitions == []
    assert second.last_synced_at == clock.now()
    assert second.model_dump(exclude={"last_synced_at"}) == first.model_dump(exclude={"last_synced_at"})
    # stored coordinates were carried over, not looked up again
    assert len(upstream.geocode_calls) == 1


@pytest.mark.asyncio
async def test_history_grows_only_on_status_change(reconciler, store, clock):
    for status in ("Active", "Active", "Under Contract"):
        await reconciler.upsert_listings([_listing("L1", MlsStatus=status)])
        clock.advance(60)

    stored = await store.find_listing_by_key("L1")
    assert [h.status for h in stored.status_history] == ["Active", "Under Contract"]
    assert stored.status == stored.status_history[-1].status


@pytest.mark.asyncio
async def test_status_change_is_reported_with_previous_status(reconciler):
    await reconciler.upsert_listings([_listing("L1", MlsStatus="Active")])

    tally = await reconciler.upsert_listings([_listing("L1", MlsStatus="Under Contract")])

    assert len(tally.transitions) == 1
    transition = tally.transitions[0]
    assert transition.previous_status == "Active"
    assert transition.listing.status == "Under Contract"


@pytest.mark.asyncio
async def test_duplicate_key_in_batch_is_skipped(reconciler, store):
    tally = await reconciler.upsert_listings([_listing("L1", ListPrice=100), _listing("L1", ListPrice=200)])

    assert (tally.created, tally.skipped) == (1, 1)
    assert (await store.find_listing_by_key("L1")).list_price == 100


@pytest.mark.asyncio
async def test_storage_failure_is_isolated_to_its_record(session_factory, geo, clock):
    store = FlakyStore(session_factory, fail_keys={"L2"})
    reconciler = Reconciler(store=store, geo=geo, clock=clock)

    tally = await reconciler.upsert_listings([_listing("L1"), _listing("L2"), _listing("L3")])

    assert (tally.created, tally.failed) == (2, 1)
    assert tally.errors[0]["key"] == "L2"
    assert [t.listing.listing_key for t in tally.transitions] == ["L1", "L3"]
    assert await store.find_listing_by_key("L2") is None
    assert await store.count_listings() == 2


@pytest.mark.asyncio
async def test_changed_address_is_geocoded_again(reconciler, store, upstream):
    await reconciler.upsert_listings([_listing("L1")])
    upstream.geocode_features = [{"center": [-101.8, 33.6]}]

    await reconciler.upsert_listings([_listing("L1", StreetNumberNumeric=4510)])

    stored = await store.find_listing_by_key("L1")
    assert stored.address.street == "4510 98th Street"
    assert (stored.address.lat, stored.address.lng) == (33.6, -101.8)
    assert len(upstream.geocode_calls) == 2


@pytest.mark.asyncio
async def test_failed_geocode_is_retried_next_run(reconciler, store, upstream):
    upstream.geocode_status = 500
    tally = await reconciler.upsert_listings([_listing("L1")])

    assert (tally.created, tally.enriched, tally.failed) == (1, 0, 0)
    assert (await store.find_listing_by_key("L1")).address.has_coordinates is False

    upstream.geocode_status = 200
    tally = await reconciler.upsert_listings([_listing("L1")])

    assert tally.enriched == 1
    assert (await store.find_listing_by_key("L1")).address.has_coordinates


@pytest.mark.asyncio
async def test_incomplete_address_is_stored_without_coordinates(reconciler, store, upstream):
    tally = await reconciler.upsert_listings([_listing("L2", PostalCode=None)])

    assert tally.created == 1
    stored = await store.find_listing_by_key("L2")
    assert stored.address.has_coordinates is False
    assert upstream.geocode_calls == []


@pytest.mark.asyncio
async def test_agents_are_upserted_by_member_key(reconciler, store, clock):
    tally = await reconciler.upsert_agents([normalize_agent(raw_agent("M1")), normalize_agent(raw_agent("M2"))])
    assert (tally.created, tally.updated) == (2, 0)

    clock.advance(900)
    tally = await reconciler.upsert_agents([normalize_agent(raw_agent("M1", MemberEmail="dana@caprock.example"))])
    assert (tally.created, tally.updated) == (0, 1)

    agent = await store.find_agent_by_key("M1")
    assert agent.email == "dana@caprock.example"
    assert agent.last_synced_at == clock.now()


@pytest.mark.asyncio
async def test_agent_storage_failure_is_isolated(session_factory, geo, clock):
    store = FlakyStore(session_factory, fail_keys={"M1"})
    reconciler = Reconciler(store=store, geo=geo, clock=clock)

    tally = await reconciler.upsert_agents([normalize_agent(raw_agent("M1")), normalize_agent(raw_agent("M2"))])

    assert (tally.created, tally.failed) == (1, 1)
    assert await store.find_agent_by_key("M2") is not None


@pytest.mark.asyncio
async def test_backfill_geocodes_listings_missing_coordinates(reconciler, store, upstream):
    upstream.geocode_status = 500
    await reconciler.upsert_listings([_listing("L1"), _listing("L2"), _listing("L3", City=None)])
    upstream.geocode_status = 200

    tally = await reconciler.backfill_coordinates(limit=10)

    assert tally.enriched == 2
    assert (await store.find_listing_by_key("L1")).address.has_coordinates
    assert (await store.find_listing_by_key("L2")).address.has_coordinates
    assert (await store.find_listing_by_key("L3")).address.has_coordinates is False
    # backfill never touches status history
    assert len((await store.find_listing_by_key("L1")).status_history) == 1
