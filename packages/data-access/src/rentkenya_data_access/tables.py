"""SQLAlchemy Core definition of the profiles table.

Python-side mirror of the Supabase migration for `public.profiles`. Not an
ORM: these are typed column references for the query builder, so a typo in a
column name fails at import time instead of at query execution.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, MetaData, Table, Text
from sqlalchemy.dialects.postgresql import UUID

metadata = MetaData(schema="public")

ROLES = ("landlord", "tenant")

profiles = Table(
    "profiles",
    metadata,
    # Same value as auth.users.id: one profile per account.
    Column("id", UUID(as_uuid=False), primary_key=True),
    Column("role", Text, nullable=False, server_default="tenant"),
    Column("first_name", Text),
    Column("last_name", Text),
    Column("phone", Text),
    Column("national_id", Text),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default="now()"),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default="now()"),
    CheckConstraint(f"role in {ROLES}", name="profiles_role_check"),
)
