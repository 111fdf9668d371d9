"""Profile models: the application-owned row extending a user identity.

Mirrors the `public.profiles` table: one row per auth user, keyed by the
user's id, holding the landlord/tenant role and optional personal fields.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["landlord", "tenant"]


class Profile(BaseModel):
    """A stored profile row."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: Role
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    national_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts)


class ProfileInsert(BaseModel):
    """Values for a new profile row, created once at sign-up."""

    id: str
    role: Role = "tenant"
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    national_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
