"""Profile store: read and insert profile rows by user identity.

Two business verbs, both SQLAlchemy Core over asyncpg:

  read_profile(user_id)  → Profile | None
  insert_profile(row)    → Profile

A missing row is a normal answer (None): right after sign-up the row may not
be visible to a read yet. Anything the database or driver raises is wrapped
in ProfileStoreError so callers can tell "not there yet" from "couldn't ask".
"""

from __future__ import annotations

import logging

from pydantic import ValidationError
from rentkenya_shared.errors import ProfileStoreError
from rentkenya_shared.profile_models import Profile, ProfileInsert
from sqlalchemy import insert, select
from sqlalchemy.exc import SQLAlchemyError

from rentkenya_data_access.client import get_engine
from rentkenya_data_access.tables import profiles

logger = logging.getLogger(__name__)


class ProfileStore:
    """Profile reads and writes against the `profiles` table."""

    async def read_profile(self, user_id: str) -> Profile | None:
        """Return the profile keyed by user_id, or None when no row is visible."""
        try:
            async with get_engine().begin() as conn:
                result = await conn.execute(select(profiles).where(profiles.c.id == user_id))
                row = result.mappings().fetchone()
        except (SQLAlchemyError, OSError) as e:
            raise ProfileStoreError(f"read_profile failed for {user_id}: {e}") from e

        if row is None:
            return None
        try:
            return Profile.model_validate(dict(row))
        except ValidationError as e:
            raise ProfileStoreError(f"Profile row for {user_id} is malformed: {e}") from e

    async def insert_profile(self, row: ProfileInsert) -> Profile:
        """Insert a new profile row and return it as stored."""
        try:
            async with get_engine().begin() as conn:
                result = await conn.execute(
                    insert(profiles).values(**row.model_dump()).returning(*profiles.c)
                )
                stored = result.mappings().fetchone()
        except (SQLAlchemyError, OSError) as e:
            raise ProfileStoreError(f"insert_profile failed for {row.id}: {e}") from e

        if stored is None:
            raise ProfileStoreError(f"insert_profile returned no row for {row.id}")

        logger.info(f"Created {row.role} profile for {row.id}")
        return Profile.model_validate(dict(stored))
