import asyncio
import logging
import signal

from app.core.config import settings
from app.core.db import SessionLocal, engine
from app.core.telemetry import setup_logging, setup_tracing
from app.services.factory import build_sync_components


log = logging.getLogger(__name__)


async def main():
    setup_logging()
    if settings.telemetry_enabled:
        setup_tracing()

    components = build_sync_components(settings, SessionLocal)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    log.info("sync worker: started interval=%smin", settings.sync_interval_minutes)
    await components.scheduler.start()
    try:
        await stop.wait()
    finally:
        log.info("sync worker: shutting down")
        await components.aclose()
        await engine.dispose()
    log.info("sync worker: stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
