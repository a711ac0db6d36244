"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import JSON, Numeric, Uuid

# JSON works with both SQLite and PostgreSQL (JSONB is PostgreSQL-specific)
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Monetary amounts, always two decimal places
MoneyType = Numeric(12, 2)

# Commission percentage 0.00 - 100.00
PercentType = Numeric(5, 2)
