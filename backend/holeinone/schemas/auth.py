from __future__ import annotations
from typing import Any, Literal
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

FlowName = Literal["otp", "secure", "branded"]

DEFAULT_FIRST_NAME = "Golfer"
DEFAULT_AGE_YEARS = 18


class EntryIntent(BaseModel):
    """
    Who is entering and what they told us, with defaults applied once here.
    Blank or missing optional fields fall back to the defaults below; fields the
    player actually supplied are visible in `model_fields_set`.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    email: str
    first_name: str = DEFAULT_FIRST_NAME
    last_name: str = ""
    phone: str = ""
    age_years: int = DEFAULT_AGE_YEARS
    handicap: float | None = None
    competition_name: str | None = None
    club_name: str | None = None

    @model_validator(mode="before")
    @classmethod
    def drop_blank_fields(cls, data: Any):
        if isinstance(data, dict):
            return {
                k: v for k, v in data.items()
                if v is not None and not (isinstance(v, str) and not v.strip())
            }
        return data

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class MagicLinkRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    redirect_url: str = Field(min_length=1, max_length=2048)
    flow: FlowName = "branded"
    first_name: str | None = Field(default=None, max_length=80)
    last_name: str | None = Field(default=None, max_length=80)
    phone: str | None = Field(default=None, max_length=32)
    age_years: int | None = None
    handicap: float | None = None
    competition_name: str | None = Field(default=None, max_length=120)
    club_name: str | None = Field(default=None, max_length=120)

    def to_intent(self) -> EntryIntent:
        return EntryIntent.model_validate(self.model_dump(exclude={"redirect_url", "flow"}))


class ResendLinkRequest(MagicLinkRequest):
    pass


class MagicLinkIssued(BaseModel):
    success: bool
    message: str
    email_sent: bool
    expires_at: datetime
    email_id: str | None = None


class VerifyMagicLinkRequest(BaseModel):
    token: str = Field(min_length=1, max_length=256)


class UserPublic(BaseModel):
    id: UUID
    email: EmailStr
    first_name: str
    last_name: str
    role: str
    created_at: datetime


class TokenPair(BaseModel):
    access: str
    refresh: str


class SessionOut(BaseModel):
    success: bool = True
    session: TokenPair
    redirect: str
    user: UserPublic
