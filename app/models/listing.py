from datetime import datetime

from sqlalchemy import Float, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from app.models.base import gen_id

from app.models.base import Base, AuditMixin, JSONDocument


class Listing(AuditMixin, Base):
    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("lst"))

    # Upstream ListingKey; the natural key every sync upserts on
    listing_key: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    list_price: Mapped[float | None] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=True)

    # Agent.member_key of the listing agent (not a FK: listings may arrive before their agent)
    list_agent_key: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)

    street: Mapped[str | None] = mapped_column(String(240), nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    state: Mapped[str | None] = mapped_column(String(60), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(30), nullable=True)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)

    status: Mapped[str] = mapped_column(String(80), nullable=False)

    # Append-only [{"status": ..., "timestamp": iso8601}]; last entry mirrors `status`
    status_history: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)

    modification_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
