from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Literal

import httpx

from app.services.redaction import redact_url


log = logging.getLogger(__name__)

HttpMethod = Literal["GET", "POST"]


@dataclass(frozen=True)
class HttpResult:
    ok: bool
    # None when no response arrived (timeout, refused connection, DNS, TLS)
    status_code: int | None
    detail: dict[str, Any] = field(default_factory=dict)

    error_code: str | None = None
    error_message: str | None = None

    elapsed_ms: int | None = None

    @classmethod
    def transport_failure(cls, code: str, message: str) -> "HttpResult":
        return cls(ok=False, status_code=None, detail={"error": code.lower()}, error_code=code, error_message=message)


def _is_json_response(resp: httpx.Response) -> bool:
    ct = (resp.headers.get("content-type") or "").lower()
    return "application/json" in ct or ct.endswith("+json")


def _cap_text(s: str, *, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + f"...(truncated, {len(s)} chars)"


class SyncHttpClient:
    """
    Shared HTTP client for every outbound call of the sync pipeline
    (upstream auth, upstream pages, geocoding, webhook).

    - Uses one AsyncClient instance (connection pooling).
    - Every request is bounded by the configured timeout.
    - Never raises for transport problems: returns a structured result and
      lets each caller map it onto its own error type.
    - Does NOT retry; the next scheduled run is the retry.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        max_response_body_chars: int = 20_000,
        default_headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._max_body = max_response_body_chars
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=dict(default_headers or {}),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        *,
        method: HttpMethod,
        url: str,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        form_body: Mapping[str, str] | None = None,
    ) -> HttpResult:
        started = time.perf_counter()
        try:
            resp = await self._client.request(
                method,
                url,
                headers=dict(headers or {}),
                params=dict(params) if params is not None else None,
                json=json_body,
                data=dict(form_body) if form_body is not None else None,
            )
        except httpx.TimeoutException as e:
            log.warning("%s %s timed out", method, redact_url(url))
            return HttpResult.transport_failure("TIMEOUT", str(e) or "request timed out")
        except (httpx.RequestError, httpx.InvalidURL) as e:
            # InvalidURL: a misconfigured endpoint, raised before anything is sent
            log.warning("%s %s failed: %s", method, redact_url(url), type(e).__name__)
            return HttpResult.transport_failure("REQUEST_ERROR", str(e) or type(e).__name__)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        log.debug("%s %s -> %s in %dms", method, redact_url(str(resp.request.url)), resp.status_code, elapsed_ms)

        detail = self._parse_body(resp)
        if resp.is_success:
            return HttpResult(ok=True, status_code=resp.status_code, detail=detail, elapsed_ms=elapsed_ms)

        return HttpResult(
            ok=False,
            status_code=resp.status_code,
            detail=detail,
            error_code=f"HTTP_{resp.status_code}",
            error_message=f"HTTP {resp.status_code}",
            elapsed_ms=elapsed_ms,
        )

    def _parse_body(self, resp: httpx.Response) -> dict[str, Any]:
        if not _is_json_response(resp):
            return {
                "raw": _cap_text(resp.text, max_chars=self._max_body),
                "content_type": resp.headers.get("content-type"),
            }
        try:
            parsed = resp.json()
        except ValueError:
            return {"raw": _cap_text(resp.text, max_chars=self._max_body)}
        # OData pages and token payloads are objects; keep anything else under "data"
        return parsed if isinstance(parsed, dict) else {"data": parsed}

    # helpers
    async def get_json(self, *, url: str, headers: Mapping[str, str] | None = None, params: Mapping[str, Any] | None = None) -> HttpResult:
        return await self.request(method="GET", url=url, headers=headers, params=params)

    async def post_json(self, *, url: str, headers: Mapping[str, str] | None = None, json_body: dict[str, Any] | None = None) -> HttpResult:
        return await self.request(method="POST", url=url, headers=headers, json_body=json_body)

    async def post_form(self, *, url: str, headers: Mapping[str, str] | None = None, form_body: Mapping[str, str]) -> HttpResult:
        return await self.request(method="POST", url=url, headers=headers, form_body=form_body)
