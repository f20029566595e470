import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

AUTH_URL = "https://auth.test/LUBB/oauth/token"
API_URL = "https://mls.test/RESO/OData"
GEO_URL = "https://geo.test/geocoding/v5/mapbox.places"
WEBHOOK_URL = "https://hooks.test/listing-status"

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock whose sleep() only advances virtual time."""

    def __init__(self, start: datetime = T0):
        self._now = start
        self._mono = 1000.0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._mono += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


def raw_listing(key: str = "L1", **overrides: Any) -> dict[str, Any]:
    row = {
        "ListingKey": key,
        "ListPrice": 249900,
        "ListAgentKey": "M1",
        "StreetNumberNumeric": 4502,
        "StreetName": "  98th   Street ",
        "City": "Lubbock",
        "StateOrProvince": "TX",
        "PostalCode": "79424",
        "MlsStatus": "Under Contract",
        "ModificationTimestamp": "2026-02-27T15:04:05Z",
    }
    row.update(overrides)
    return row


def raw_agent(key: str = "M1", **overrides: Any) -> dict[str, Any]:
    row = {
        "MemberKey": key,
        "MemberFirstName": "Dana",
        "MemberLastName": "Reyes",
        "MemberFullName": "Dana Reyes",
        "MemberEmail": "dana@example.com",
        "MemberMlsId": "LUB-1001",
        "OfficeName": "Caprock Realty",
        "PreferredPhone": "806-555-0100",
        "ModificationTimestamp": "2026-02-20T09:00:00Z",
    }
    row.update(overrides)
    return row


class FakeUpstream:
    """
    One MockTransport handler standing in for every remote the pipeline
    talks to: token endpoint, OData collections, geocoder and webhook.
    """

    def __init__(self, *, listings=None, agents=None, token_ttl: int = 3600):
        self.listings: list[dict[str, Any]] = list(listings or [])
        self.agents: list[dict[str, Any]] = list(agents or [])
        self.token_ttl = token_ttl

        self.auth_status = 200
        self.auth_payload: dict[str, Any] | None = None
        self.auth_calls = 0

        self.next_links = False
        # providers that cap $top below what was asked, and report @odata.count
        self.top_cap: int | None = None
        self.send_count = False
        self.fail_resource: str | None = None
        self.fail_skip: int | None = None
        self.reject_tokens: set[str] = set()
        self.reject_all_tokens = False
        self.page_calls: list[httpx.Request] = []
        self.gate: asyncio.Event | None = None

        self.geocode_status = 200
        self.geocode_features: list[dict[str, Any]] | None = None
        self.geocode_calls: list[httpx.Request] = []

        self.webhook_status = 200
        self.webhooks: list[dict[str, Any]] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith(AUTH_URL):
            return self._auth(request)
        if url.startswith(GEO_URL):
            return self._geocode(request)
        if url.startswith(WEBHOOK_URL):
            self.webhooks.append(json.loads(request.content))
            return httpx.Response(self.webhook_status, json={})
        if url.startswith(API_URL):
            self.page_calls.append(request)
            if self.gate is not None:
                await self.gate.wait()
            return self._page(request)
        return httpx.Response(404, json={"error": "unknown url"})

    def _auth(self, request: httpx.Request) -> httpx.Response:
        self.auth_calls += 1
        if self.auth_status != 200:
            return httpx.Response(self.auth_status, json={"error": "invalid_grant"})
        if self.auth_payload is not None:
            return httpx.Response(200, json=self.auth_payload)
        return httpx.Response(200, json={
            "access_token": f"tok-{self.auth_calls}",
            "token_type": "bearer",
            "expires_in": self.token_ttl,
        })

    def _geocode(self, request: httpx.Request) -> httpx.Response:
        self.geocode_calls.append(request)
        if self.geocode_status != 200:
            return httpx.Response(self.geocode_status, json={"message": "unavailable"})
        features = self.geocode_features
        if features is None:
            features = [{"center": [-101.9132, 33.5185], "place_name": "4502 98th Street, Lubbock, Texas 79424"}]
        return httpx.Response(200, json={"type": "FeatureCollection", "features": features})

    def _page(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        if self.reject_all_tokens or token in self.reject_tokens:
            return httpx.Response(401, json={"error": "invalid_token"})

        resource = request.url.path.rsplit("/", 1)[-1]
        skip = int(request.url.params.get("$skip", "0"))
        if resource == self.fail_resource or (self.fail_skip is not None and skip == self.fail_skip):
            return httpx.Response(503, json={"error": "service unavailable"})

        rows = {"Property": self.listings, "ActiveAgents": self.agents}.get(resource)
        if rows is None:
            return httpx.Response(404, json={"error": f"no resource {resource}"})

        top = int(request.url.params.get("$top", str(len(rows) or 1)))
        if self.top_cap is not None:
            top = min(top, self.top_cap)
        body: dict[str, Any] = {"value": rows[skip:skip + top]}
        if self.send_count:
            body["@odata.count"] = len(rows)
        if self.next_links and skip + top < len(rows):
            body["@odata.nextLink"] = str(request.url.copy_set_param("$skip", str(skip + top)))
        return httpx.Response(200, json=body)

    def pages_for(self, resource: str) -> list[httpx.Request]:
        return [r for r in self.page_calls if r.url.path.endswith("/" + resource)]


async def wait_until(predicate, *, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
