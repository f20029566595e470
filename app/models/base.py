import uuid
from datetime import datetime

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime


# JSONB on Postgres, plain JSON elsewhere (SQLite test databases)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def gen_id(prefix: str) -> str:
    """Primary keys and run ids, e.g. `lst_<32 hex>`."""
    return f"{prefix}_{uuid.uuid4().hex}"


class Base(DeclarativeBase):
    pass

class AuditMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
