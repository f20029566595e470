from __future__ import annotations

import logging
from typing import Any

from app.canonical.v1.agent import AgentRecordV1
from app.canonical.v1.listing import ListingRecordV1
from app.core.clock import Clock
from app.services.errors import NotificationError
from app.services.http_client import SyncHttpClient
from app.services.redaction import redact_payload


log = logging.getLogger(__name__)


def build_status_change_payload(
    listing: ListingRecordV1,
    agent: AgentRecordV1 | None,
    previous_status: str | None,
    *,
    sent_at: str,
) -> dict[str, Any]:
    a = listing.address
    payload: dict[str, Any] = {
        "event": "listing.status_changed",
        "listingKey": listing.listing_key,
        "status": listing.status,
        "previousStatus": previous_status,
        "listingPrice": listing.list_price,
        "listingAddress": a.one_line() or None,
        "address": a.model_dump(mode="json"),
        "listAgentKey": listing.list_agent_key,
        "sentAt": sent_at,
    }
    if agent is not None:
        payload.update({
            "firstName": agent.first_name,
            "lastName": agent.last_name,
            "fullName": agent.full_name,
            "email": agent.email,
            "phone": agent.phone,
            "mlsId": agent.mls_id,
            "officeName": agent.office_name,
        })
    return payload


class Notifier:
    """
    Best-effort "status changed" webhook.

    notify_status_change() never raises. No configured URL means every call
    is a silent no-op.
    """

    def __init__(self, *, http: SyncHttpClient, clock: Clock, webhook_url: str | None):
        self._http = http
        self._clock = clock
        self._url = webhook_url or None
        self.sent = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        return self._url is not None

    async def notify_status_change(
        self,
        listing: ListingRecordV1,
        agent: AgentRecordV1 | None,
        previous_status: str | None = None,
    ) -> bool:
        if self._url is None:
            return False

        payload = build_status_change_payload(
            listing, agent, previous_status, sent_at=self._clock.now().isoformat(),
        )
        try:
            await self._post(payload)
        except NotificationError as e:
            self.failed += 1
            log.error("status webhook failed listing_key=%s error=%s payload=%s",
                      listing.listing_key, e, redact_payload(payload))
            return False

        self.sent += 1
        log.info("status webhook sent listing_key=%s status=%s", listing.listing_key, listing.status)
        return True

    async def _post(self, payload: dict[str, Any]) -> None:
        res = await self._http.post_json(url=self._url, json_body=payload)
        if not res.ok:
            raise NotificationError(f"{res.error_code}: {res.error_message}")
