"""Database-agnostic type definitions for SQLAlchemy models.

Every model in the package uses these so the same schema runs on PostgreSQL
in production and SQLite in tests.
"""
from sqlalchemy import JSON, Uuid

# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) elsewhere
UUIDType = Uuid
