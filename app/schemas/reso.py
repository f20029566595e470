"""
Raw upstream (RESO Web API / OData) payload shapes.

Every field is optional: the upstream is not trusted to send a complete
record, the normalizer decides what is required.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


class RawListing(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    listing_key: str | None = Field(default=None, alias="ListingKey")
    list_price: float | None = Field(default=None, alias="ListPrice")
    list_agent_key: str | None = Field(default=None, alias="ListAgentKey")

    # House number arrives as a number on some feeds and a string on others
    street_number: str | None = Field(default=None, alias="StreetNumberNumeric")
    street_name: str | None = Field(default=None, alias="StreetName")
    city: str | None = Field(default=None, alias="City")
    state: str | None = Field(default=None, alias="StateOrProvince")
    postal_code: str | None = Field(default=None, alias="PostalCode")

    mls_status: str | None = Field(default=None, alias="MlsStatus")
    standard_status: str | None = Field(default=None, alias="StandardStatus")
    modification_timestamp: datetime | None = Field(default=None, alias="ModificationTimestamp")

    @field_validator("street_number", "listing_key", "list_agent_key", "postal_code", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return v
        if isinstance(v, (int, float)):
            return str(int(v)) if float(v).is_integer() else str(v)
        return _blank_to_none(v)

    @field_validator("street_name", "city", "state", "mls_status", "standard_status", "list_price",
                     "modification_timestamp", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        return _blank_to_none(v)


class RawAgent(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    member_key: str | None = Field(default=None, alias="MemberKey")
    first_name: str | None = Field(default=None, alias="MemberFirstName")
    last_name: str | None = Field(default=None, alias="MemberLastName")
    full_name: str | None = Field(default=None, alias="MemberFullName")
    email: str | None = Field(default=None, alias="MemberEmail")
    mls_id: str | None = Field(default=None, alias="MemberMlsId")
    office_name: str | None = Field(default=None, alias="OfficeName")
    phone: str | None = Field(default=None, alias="PreferredPhone")
    modification_timestamp: datetime | None = Field(default=None, alias="ModificationTimestamp")

    @field_validator("member_key", "mls_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return v
        if isinstance(v, (int, float)):
            return str(int(v)) if float(v).is_integer() else str(v)
        return _blank_to_none(v)

    @field_validator("first_name", "last_name", "full_name", "email", "office_name", "phone",
                     "modification_timestamp", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        return _blank_to_none(v)


# $select lists sent upstream; keep in sync with the aliases above
LISTING_SELECT_FIELDS = (
    "ListingKey",
    "ListPrice",
    "ListAgentKey",
    "StreetNumberNumeric",
    "StreetName",
    "City",
    "StateOrProvince",
    "PostalCode",
    "MlsStatus",
    "ModificationTimestamp",
)

AGENT_SELECT_FIELDS = (
    "MemberKey",
    "MemberFirstName",
    "MemberLastName",
    "MemberFullName",
    "MemberEmail",
    "MemberMlsId",
    "OfficeName",
    "PreferredPhone",
    "ModificationTimestamp",
)
