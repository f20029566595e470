from datetime import datetime

from app.models.base import gen_id
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from app.models.base import Base, AuditMixin


class Agent(AuditMixin, Base):
    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("agt"))

    # Upstream MemberKey; the natural key every sync upserts on
    member_key: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    first_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(240), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(60), nullable=True)
    mls_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    office_name: Mapped[str | None] = mapped_column(String(240), nullable=True)

    modification_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
