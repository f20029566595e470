from datetime import datetime

from pydantic import BaseModel, Field


class AgentRecordV1(BaseModel):
    """
    Canonical agent (upstream "member").
    No history is kept: every sighting overwrites contact fields.
    """
    member_key: str = Field(min_length=1, max_length=120)

    first_name: str | None = Field(default=None, max_length=120)
    last_name: str | None = Field(default=None, max_length=120)
    full_name: str | None = Field(default=None, max_length=240)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=60)
    mls_id: str | None = Field(default=None, max_length=120)
    office_name: str | None = Field(default=None, max_length=240)

    modification_timestamp: datetime | None = None
    last_synced_at: datetime | None = None
