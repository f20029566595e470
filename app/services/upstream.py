from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from app.schemas.reso import AGENT_SELECT_FIELDS, LISTING_SELECT_FIELDS
from app.services.credentials import CredentialBroker
from app.services.errors import UpstreamError
from app.services.http_client import HttpResult, SyncHttpClient
from app.services.redaction import redact_url


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpstreamQuery:
    """Provider-specific knobs for the two collections we pull."""
    pending_status: str = "Under Contract"
    property_class: str | None = "Residential"
    page_size: int = 1000
    max_pages: int = 50


def _odata_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class UpstreamClient:
    """
    Pulls full collections from the RESO OData API.

    Fail-fast: any page failure aborts the whole fetch with UpstreamError, so
    callers never see a truncated collection.
    """

    def __init__(
        self,
        *,
        http: SyncHttpClient,
        broker: CredentialBroker,
        base_url: str,
        query: UpstreamQuery | None = None,
    ):
        self._http = http
        self._broker = broker
        self._base_url = base_url.rstrip("/")
        self._query = query or UpstreamQuery()

    async def fetch_pending_listings(self) -> list[dict[str, Any]]:
        params: dict[str, Any] = {
            "$filter": f"MlsStatus eq {_odata_quote(self._query.pending_status)}",
            "$select": ",".join(LISTING_SELECT_FIELDS),
            "$orderby": "ListingKey asc",
        }
        if self._query.property_class:
            params["class"] = self._query.property_class

        rows = await self._fetch_all("Property", params)
        log.info("fetched %d listings with status=%r", len(rows), self._query.pending_status)
        return rows

    async def fetch_active_agents(self) -> list[dict[str, Any]]:
        params = {
            "$select": ",".join(AGENT_SELECT_FIELDS),
            "$orderby": "MemberKey asc",
        }
        rows = await self._fetch_all("ActiveAgents", params)
        log.info("fetched %d active agents", len(rows))
        return rows

    async def _fetch_all(self, resource: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        page_size = self._query.page_size
        params = {**params, "$count": "true"}

        url: str = f"{self._base_url}/{resource}"
        page_params: dict[str, Any] | None = {**params, "$top": str(page_size), "$skip": "0"}
        server_paged = False

        for page_no in range(1, self._query.max_pages + 1):
            res = await self._get_page(url, page_params)
            rows = self._rows(res, resource)
            out.extend(rows)
            log.debug("%s page=%d rows=%d total=%d", resource, page_no, len(rows), len(out))

            next_link = res.detail.get("@odata.nextLink")
            if isinstance(next_link, str) and next_link:
                # nextLink already carries every query option
                url, page_params = next_link, None
                server_paged = True
                continue
            # once the server drives paging, a page without nextLink is the last one
            if server_paged or not rows:
                return out
            if len(rows) < page_size:
                total = res.detail.get("@odata.count")
                if not isinstance(total, int) or len(out) >= total:
                    return out
                # provider capped $top below our page size; keep going from where it stopped
                log.warning("%s page capped at %d rows (asked %d), %d of %d fetched",
                            resource, len(rows), page_size, len(out), total)

            url = f"{self._base_url}/{resource}"
            page_params = {**params, "$top": str(page_size), "$skip": str(len(out))}

        raise UpstreamError(
            f"{resource}: more than {self._query.max_pages} pages, refusing to continue",
            body={"rows_so_far": len(out)},
        )

    async def _get_page(self, url: str, params: dict[str, Any] | None) -> HttpResult:
        res = await self._request(url, params)
        if res.status_code == 401:
            # token revoked upstream before its advertised expiry; one fresh try
            log.warning("upstream rejected credential, re-authenticating url=%s", redact_url(url))
            self._broker.invalidate()
            res = await self._request(url, params)

        if not res.ok:
            log.error("upstream page failed url=%s status=%s error=%s", redact_url(url), res.status_code, res.error_code)
            raise UpstreamError(
                f"upstream request failed: {res.error_message}",
                status_code=res.status_code,
                body=res.detail,
            )
        return res

    async def _request(self, url: str, params: dict[str, Any] | None) -> HttpResult:
        cred = await self._broker.get_valid_credential()
        return await self._http.get_json(
            url=url,
            headers={
                "Authorization": f"Bearer {cred.access_token}",
                "Accept": "application/json",
            },
            params=params,
        )

    @staticmethod
    def _rows(res: HttpResult, resource: str) -> list[dict[str, Any]]:
        value = res.detail.get("value")
        if not isinstance(value, list):
            raise UpstreamError(
                f"{resource}: response has no 'value' array",
                status_code=res.status_code,
                body=res.detail,
            )
        return value
