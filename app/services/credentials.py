from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from app.core.clock import Clock
from app.services.errors import AuthError
from app.services.http_client import SyncHttpClient
from app.services.redaction import redact_payload


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    access_token: str
    expires_at: datetime

    def expires_within(self, now: datetime, margin: timedelta) -> bool:
        return now >= self.expires_at - margin


@dataclass(frozen=True)
class UpstreamLogin:
    auth_url: str
    client_id: str
    client_secret: str
    username: str
    password: str


def _parse_expiry(payload: dict[str, Any], now: datetime) -> datetime:
    """
    Token responses carry either `expires_in` (seconds, RFC 6749) or the
    provider's `.expires` HTTP-date.
    """
    expires_in = payload.get("expires_in")
    if expires_in is not None:
        try:
            seconds = float(expires_in)
        except (TypeError, ValueError):
            raise AuthError("token payload has a non-numeric expires_in", detail=redact_payload(payload))
        return now + timedelta(seconds=seconds)

    raw = payload.get(".expires")
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            raise AuthError("token payload has an unparsable .expires", detail=redact_payload(payload))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    raise AuthError("token payload has no expiry", detail=redact_payload(payload))


class CredentialBroker:
    """
    Owns the upstream access token.

    get_valid_credential() hands out a token that stays valid for at least
    `refresh_margin`; otherwise it re-authenticates first. Concurrent callers
    share one refresh.
    """

    def __init__(
        self,
        *,
        http: SyncHttpClient,
        login: UpstreamLogin,
        clock: Clock,
        refresh_margin: timedelta = timedelta(seconds=60),
    ):
        self._http = http
        self._login = login
        self._clock = clock
        self._margin = refresh_margin
        self._credential: Credential | None = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Credential | None:
        return self._credential

    def invalidate(self) -> None:
        self._credential = None

    async def get_valid_credential(self) -> Credential:
        cred = self._credential
        if cred is not None and not cred.expires_within(self._clock.now(), self._margin):
            return cred

        async with self._lock:
            # another caller may have refreshed while we waited
            cred = self._credential
            if cred is not None and not cred.expires_within(self._clock.now(), self._margin):
                return cred
            cred = await self._authenticate()
            self._credential = cred
            return cred

    async def _authenticate(self) -> Credential:
        log.info("authenticating with upstream auth_url=%s client_id=%s username=%s",
                 self._login.auth_url, self._login.client_id, self._login.username)

        res = await self._http.post_form(
            url=self._login.auth_url,
            headers={"Accept": "application/json"},
            form_body={
                "grant_type": "password",
                "client_id": self._login.client_id,
                "client_secret": self._login.client_secret,
                "username": self._login.username,
                "password": self._login.password,
            },
        )
        if not res.ok:
            log.error("upstream authentication failed status=%s error=%s detail=%s",
                      res.status_code, res.error_code, redact_payload(res.detail))
            raise AuthError(
                f"authentication failed: {res.error_message}",
                status_code=res.status_code,
                detail=redact_payload(res.detail),
            )

        token = res.detail.get("access_token")
        if not isinstance(token, str) or not token:
            raise AuthError("token payload has no access_token", status_code=res.status_code, detail=redact_payload(res.detail))

        expires_at = _parse_expiry(res.detail, self._clock.now())
        log.info("upstream credential refreshed expires_at=%s", expires_at.isoformat())
        return Credential(access_token=token, expires_at=expires_at)
