from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from app.core.config import settings
from app.core.db import SessionLocal, engine
from app.core.telemetry import setup_logging
from app.services.factory import build_sync_components


async def _run_once() -> dict[str, Any]:
    components = build_sync_components(settings, SessionLocal)
    try:
        result = await components.scheduler.trigger_manual_sync()
        return result.run.as_dict() if result.run else {"status": result.status}
    finally:
        await components.aclose()
        await engine.dispose()


async def _backfill(limit: int) -> dict[str, Any]:
    components = build_sync_components(settings, SessionLocal)
    try:
        geo_enabled = components.pipeline.reconciler.geo_enabled
        if not geo_enabled:
            return {"error": {"reason": "geocoding is not configured (GEOCODING_API_KEY)"}}
        tally = await components.pipeline.reconciler.backfill_coordinates(limit=limit)
        return {"enriched": tally.enriched, "unresolved": tally.skipped, "failed": tally.failed, "errors": tally.errors}
    finally:
        await components.aclose()
        await engine.dispose()


def main() -> int:
    p = argparse.ArgumentParser(description="Run the MLS sync outside the API process.")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("run-once", help="fetch, reconcile and notify once, then exit")

    bf = sub.add_parser("backfill-geocodes", help="geocode stored listings that have no coordinates")
    bf.add_argument("--limit", type=int, default=500)

    args = p.parse_args()
    setup_logging()

    if args.command == "run-once":
        out = asyncio.run(_run_once())
        print(json.dumps(out, indent=2, default=str))
        return 0 if out.get("outcome") == "succeeded" else 1

    if args.limit < 1:
        print("--limit must be positive", file=sys.stderr)
        return 2
    out = asyncio.run(_backfill(args.limit))
    print(json.dumps(out, indent=2, default=str))
    if "error" in out:
        return 2
    return 1 if out["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
