"""Column types shared by the billing models.

Tests run on SQLite, production on PostgreSQL; each type picks the native
representation per dialect.
"""
from sqlalchemy import JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL (matches the migration), plain JSON text elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid
