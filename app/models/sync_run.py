from datetime import datetime

from app.models.base import gen_id
from sqlalchemy import Float, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from app.models.base import Base, JSONDocument


class SyncRunRecord(Base):
    """
    Diagnostic record of one sync run (scheduled, manual or startup).

    Written once when the run finishes; the scheduler keeps its own
    in-memory copy for status reporting.
    """
    __tablename__ = "sync_runs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("run"))

    trigger: Mapped[str] = mapped_column(String(20), nullable=False)  # "scheduled" | "manual" | "startup"
    outcome: Mapped[str] = mapped_column(String(30), nullable=False)  # "succeeded" | "failed" | "partially_failed"

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # counters, see app.services.pipeline.SyncRun
    counts: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    errors: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
