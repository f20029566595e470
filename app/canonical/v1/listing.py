from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class AddressV1(BaseModel):
    street: str | None = Field(default=None, max_length=240)
    city: str | None = Field(default=None, max_length=120)
    state: str | None = Field(default=None, max_length=60)
    postal_code: str | None = Field(default=None, max_length=30)
    lat: float | None = None
    lng: float | None = None

    @field_validator("lat")
    @classmethod
    def validate_lat(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if v < -90.0 or v > 90.0:
            raise ValueError("lat must be between -90 and 90")
        return v

    @field_validator("lng")
    @classmethod
    def validate_lng(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if v < -180.0 or v > 180.0:
            raise ValueError("lng must be between -180 and 180")
        return v

    @property
    def is_complete(self) -> bool:
        """All four text components present, i.e. good enough to geocode."""
        return all((part or "").strip() for part in (self.street, self.city, self.state, self.postal_code))

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    def same_location(self, other: "AddressV1") -> bool:
        return (
            (self.street, self.city, self.state, self.postal_code)
            == (other.street, other.city, other.state, other.postal_code)
        )

    def one_line(self) -> str:
        return ", ".join(p.strip() for p in (self.street, self.city, self.state, self.postal_code) if p and p.strip())


class StatusChangeV1(BaseModel):
    status: str
    timestamp: datetime


class ListingRecordV1(BaseModel):
    """
    Canonical listing as the sync pipeline sees it.

    The normalizer produces it without history/sync fields; the store returns
    it fully populated.
    """
    listing_key: str = Field(min_length=1, max_length=120)
    list_price: float | None = Field(default=None, ge=0)
    list_agent_key: str | None = Field(default=None, max_length=120)
    address: AddressV1 = Field(default_factory=AddressV1)
    status: str = Field(min_length=1, max_length=80)
    modification_timestamp: datetime | None = None

    status_history: list[StatusChangeV1] = Field(default_factory=list)
    last_synced_at: datetime | None = None
