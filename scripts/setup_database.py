#!/usr/bin/env python3
"""
Database setup script for ShopState.

Creates the profile storage table for the configured database (SQLite or
PostgreSQL) and reports what it finds.
"""

import sys

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from shopstate.core.config import settings
from shopstate.db.init_db import init_database
from shopstate.db.session import engine


def main() -> bool:
    """Initialize database based on configuration"""
    print("ShopState Database Setup")
    print("=" * 40)
    print(f"Database Type: {engine.dialect.name}")

    try:
        existing = inspect(engine).get_table_names()
    except SQLAlchemyError as e:
        print(f"Connection Error: {e}")
        return False

    print(f"Existing Tables: {len(existing)}")
    for table in sorted(existing):
        print(f"  - {table}")

    print("\nInitializing database...")
    try:
        init_database(engine)
    except SQLAlchemyError as e:
        print(f"Database initialization failed: {e}")
        return False

    tables = inspect(engine).get_table_names()
    print(f"Database initialized successfully, {len(tables)} tables")
    if settings.DATABASE_URL.startswith("sqlite"):
        print("Note: SQLite is suitable for a single instance only")
    return True


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
