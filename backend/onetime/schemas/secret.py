import re
from datetime import UTC, datetime
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel


def _serialize_utc(value: datetime) -> str:
    """Stored datetimes are naive UTC; emit them as ISO-8601 with a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


UTCDateTime = Annotated[datetime, PlainSerializer(_serialize_utc, return_type=str)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SecretCreate(CamelModel):
    """Length, TTL and view bounds are checked against the configured limits."""

    secret: str
    passphrase: str | None = Field(None, max_length=1024)
    ttl: int | None = Field(None, description="Time to live in seconds")
    max_views: int | None = None
    recipient_email: str | None = Field(None, max_length=254)

    @field_validator("passphrase")
    @classmethod
    def empty_passphrase_is_none(cls, v: str | None) -> str | None:
        return v or None

    @field_validator("recipient_email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        # Basic email format validation
        if not re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", v):
            raise ValueError("Invalid email format")
        return v


class SecretCreateResponse(CamelModel):
    success: bool = True
    key: str
    url: str
    expires_at: UTCDateTime


class SecretStatusResponse(CamelModel):
    exists: bool = True
    needs_passphrase: bool
    expires_at: UTCDateTime
    views_remaining: int


class SecretRevealRequest(CamelModel):
    passphrase: str | None = Field(None, max_length=1024)

    @field_validator("passphrase")
    @classmethod
    def empty_passphrase_is_none(cls, v: str | None) -> str | None:
        return v or None


class SecretRevealResponse(CamelModel):
    success: bool = True
    secret: str
    expires_at: UTCDateTime
    views_remaining: int


class PassphraseSuggestionResponse(CamelModel):
    passphrase: str


class ErrorResponse(CamelModel):
    success: bool = False
    error: str
    needs_passphrase: bool | None = None
    details: list[dict] | None = None
