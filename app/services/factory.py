from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, SystemClock
from app.core.config import Settings
from app.services.credentials import CredentialBroker, UpstreamLogin
from app.services.geocoding import GeoEnricher
from app.services.http_client import SyncHttpClient
from app.services.notifier import Notifier
from app.services.pipeline import SyncPipeline
from app.services.reconciler import Reconciler
from app.services.scheduler import SyncScheduler
from app.services.storage import SqlAlchemySyncStore
from app.services.upstream import UpstreamClient, UpstreamQuery


@dataclass
class SyncComponents:
    http: SyncHttpClient
    pipeline: SyncPipeline
    scheduler: SyncScheduler

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.http.aclose()


def build_sync_components(
    cfg: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    clock: Clock | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SyncComponents:
    """Wire one pipeline + scheduler from settings. Every collaborator shares one HTTP client."""
    clock = clock or SystemClock()
    http = SyncHttpClient(timeout_seconds=cfg.http_timeout_seconds, transport=transport)

    broker = CredentialBroker(
        http=http,
        login=UpstreamLogin(
            auth_url=cfg.mls_auth_url,
            client_id=cfg.mls_client_id,
            client_secret=cfg.mls_client_secret.get_secret_value(),
            username=cfg.mls_username,
            password=cfg.mls_password.get_secret_value(),
        ),
        clock=clock,
        refresh_margin=timedelta(seconds=cfg.credential_refresh_margin_seconds),
    )

    upstream = UpstreamClient(
        http=http,
        broker=broker,
        base_url=cfg.mls_api_url,
        query=UpstreamQuery(
            pending_status=cfg.mls_pending_status,
            property_class=cfg.mls_property_class,
            page_size=cfg.mls_page_size,
            max_pages=cfg.mls_max_pages,
        ),
    )

    geo = GeoEnricher(
        http=http,
        clock=clock,
        endpoint=cfg.geocoding_url,
        api_key=cfg.geocoding_api_key.get_secret_value() if cfg.geocoding_api_key else None,
        min_interval_seconds=cfg.geocode_min_interval_seconds,
        country=cfg.geocoding_country,
    )

    store = SqlAlchemySyncStore(session_factory)

    pipeline = SyncPipeline(
        upstream=upstream,
        reconciler=Reconciler(store=store, geo=geo, clock=clock),
        notifier=Notifier(http=http, clock=clock, webhook_url=cfg.webhook_url),
        store=store,
        clock=clock,
        notify_on_create=cfg.notify_on_create,
    )

    scheduler = SyncScheduler(
        pipeline=pipeline,
        clock=clock,
        interval_seconds=cfg.sync_interval_minutes * 60,
        run_on_start=cfg.sync_on_startup,
        history_size=cfg.sync_run_history_size,
    )

    return SyncComponents(http=http, pipeline=pipeline, scheduler=scheduler)
