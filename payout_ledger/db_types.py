"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import JSON, String

# Use JSON instead of JSONB for cross-database compatibility
# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# Prefixed string identifiers such as "pitem_<uuid>" and external payee ids
IdType = String(64)

# Status, role and type columns store enum values as VARCHAR
EnumType = String(50)
