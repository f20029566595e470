from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from app.canonical.v1.agent import AgentRecordV1
from app.canonical.v1.listing import AddressV1, ListingRecordV1
from app.schemas.reso import RawAgent, RawListing
from app.services.errors import RecordValidationError


log = logging.getLogger(__name__)


def _clean(v: str | None) -> str | None:
    if v is None:
        return None
    v = " ".join(v.split())
    return v or None


def compose_street(number: str | None, name: str | None) -> str | None:
    """House number + street name, trimmed and single-space joined."""
    return _clean(" ".join(p for p in (number, name) if p))


def _errors_summary(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(x) for x in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors()
    )


def parse_listing(raw: dict[str, Any]) -> ListingRecordV1:
    """
    Strict variant of normalize_listing: raises RecordValidationError carrying
    the record key and reason. The sync pipeline calls this one so both land
    in the run's error list.
    """
    if not isinstance(raw, dict):
        raise RecordValidationError(f"listing payload is {type(raw).__name__}, expected object")

    try:
        r = RawListing.model_validate(raw)
    except ValidationError as e:
        raise RecordValidationError(_errors_summary(e), key=str(raw.get("ListingKey") or "") or None) from e

    if not r.listing_key:
        raise RecordValidationError("missing ListingKey")

    status = _clean(r.mls_status) or _clean(r.standard_status)
    if not status:
        raise RecordValidationError("missing MlsStatus", key=r.listing_key)

    try:
        return ListingRecordV1(
            listing_key=r.listing_key.strip(),
            list_price=r.list_price,
            list_agent_key=_clean(r.list_agent_key),
            address=AddressV1(
                street=compose_street(r.street_number, r.street_name),
                city=_clean(r.city),
                state=_clean(r.state),
                postal_code=_clean(r.postal_code),
            ),
            status=status,
            modification_timestamp=r.modification_timestamp,
        )
    except ValidationError as e:
        raise RecordValidationError(_errors_summary(e), key=r.listing_key) from e


def parse_agent(raw: dict[str, Any]) -> AgentRecordV1:
    """Strict variant of normalize_agent; the pipeline's entry point for agents."""
    if not isinstance(raw, dict):
        raise RecordValidationError(f"agent payload is {type(raw).__name__}, expected object")

    try:
        r = RawAgent.model_validate(raw)
    except ValidationError as e:
        raise RecordValidationError(_errors_summary(e), key=str(raw.get("MemberKey") or "") or None) from e

    if not r.member_key:
        raise RecordValidationError("missing MemberKey")

    first, last = _clean(r.first_name), _clean(r.last_name)
    full = _clean(r.full_name) or _clean(" ".join(p for p in (first, last) if p))

    try:
        return AgentRecordV1(
            member_key=r.member_key.strip(),
            first_name=first,
            last_name=last,
            full_name=full,
            email=_clean(r.email),
            phone=_clean(r.phone),
            mls_id=_clean(r.mls_id),
            office_name=_clean(r.office_name),
            modification_timestamp=r.modification_timestamp,
        )
    except ValidationError as e:
        raise RecordValidationError(_errors_summary(e), key=r.member_key) from e


def normalize_listing(raw: dict[str, Any]) -> ListingRecordV1 | None:
    """
    Map one raw upstream listing to the canonical shape.
    Returns None (never raises) when the record is unusable.
    Same rules as parse_listing, for callers that only need the record.
    """
    try:
        return parse_listing(raw)
    except RecordValidationError as e:
        log.warning("dropping malformed listing key=%s reason=%s", e.key, e)
        return None


def normalize_agent(raw: dict[str, Any]) -> AgentRecordV1 | None:
    """
    Map one raw upstream agent to the canonical shape.
    Returns None (never raises) when the record is unusable.
    Same rules as parse_agent.
    """
    try:
        return parse_agent(raw)
    except RecordValidationError as e:
        log.warning("dropping malformed agent key=%s reason=%s", e.key, e)
        return None
