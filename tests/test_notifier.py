import httpx
import pytest

from app.services.http_client import SyncHttpClient
from app.services.normalizer import normalize_agent, normalize_listing
from app.services.notifier import Notifier, build_status_change_payload

from fixtures_seed import WEBHOOK_URL, raw_agent, raw_listing


LISTING = normalize_listing(raw_listing("L1"))
AGENT = normalize_agent(raw_agent("M1"))


@pytest.mark.asyncio
async def test_status_change_is_posted(http, clock, upstream):
    notifier = Notifier(http=http, clock=clock, webhook_url=WEBHOOK_URL)

    ok = await notifier.notify_status_change(LISTING, AGENT, "Active")

    assert ok is True
    assert notifier.sent == 1
    body = upstream.webhooks[0]
    assert body["listingKey"] == "L1"
    assert body["status"] == "Under Contract"
    assert body["previousStatus"] == "Active"
    assert body["listingPrice"] == 249900
    assert body["listingAddress"] == "4502 98th Street, Lubbock, TX, 79424"
    assert body["firstName"] == "Dana"
    assert body["lastName"] == "Reyes"
    assert body["fullName"] == "Dana Reyes"
    assert body["email"] == "dana@example.com"
    assert body["phone"] == "806-555-0100"
    assert body["mlsId"] == "LUB-1001"
    assert body["officeName"] == "Caprock Realty"
    assert body["sentAt"] == clock.now().isoformat()


@pytest.mark.asyncio
async def test_missing_agent_still_notifies_without_agent_fields(http, clock, upstream):
    notifier = Notifier(http=http, clock=clock, webhook_url=WEBHOOK_URL)

    assert await notifier.notify_status_change(LISTING, None) is True
    body = upstream.webhooks[0]
    assert body["previousStatus"] is None
    assert "email" not in body


@pytest.mark.asyncio
async def test_unconfigured_webhook_is_a_noop(http, clock, upstream):
    notifier = Notifier(http=http, clock=clock, webhook_url=None)

    assert notifier.enabled is False
    assert await notifier.notify_status_change(LISTING, AGENT, "Active") is False
    assert upstream.webhooks == []
    assert (notifier.sent, notifier.failed) == (0, 0)


@pytest.mark.asyncio
async def test_webhook_error_status_is_swallowed(http, clock, upstream):
    upstream.webhook_status = 500
    notifier = Notifier(http=http, clock=clock, webhook_url=WEBHOOK_URL)

    assert await notifier.notify_status_change(LISTING, AGENT, "Active") is False
    assert notifier.failed == 1


@pytest.mark.asyncio
async def test_webhook_transport_error_is_swallowed(clock):
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    http = SyncHttpClient(transport=httpx.MockTransport(_refuse))
    try:
        notifier = Notifier(http=http, clock=clock, webhook_url=WEBHOOK_URL)
        assert await notifier.notify_status_change(LISTING, AGENT, "Active") is False
        assert notifier.failed == 1
    finally:
        await http.aclose()


def test_payload_keeps_address_parts():
    payload = build_status_change_payload(LISTING, AGENT, None, sent_at="2026-03-01T12:00:00+00:00")

    assert payload["event"] == "listing.status_changed"
    assert payload["address"]["city"] == "Lubbock"
    assert payload["address"]["lat"] is None
    assert payload["listAgentKey"] == "M1"


@pytest.mark.asyncio
async def test_malformed_webhook_url_is_swallowed(http, clock, upstream):
    notifier = Notifier(http=http, clock=clock, webhook_url="http://[::1/hook")

    assert await notifier.notify_status_change(LISTING, AGENT, "Active") is False
    assert notifier.failed == 1
    assert upstream.webhooks == []
