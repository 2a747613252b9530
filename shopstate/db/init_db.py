#!/usr/bin/env python3
"""Initialize the database with proper schema"""

import logging

from sqlalchemy.engine import Engine

from shopstate.db.base import Base
from shopstate.db.session import engine as default_engine

# Import all models explicitly to register them with SQLAlchemy
from shopstate.db.models import storage_entry as _model_storage_entry  # noqa: F401

logger = logging.getLogger("shopstate.database")


def init_database(engine: Engine = default_engine) -> None:
    """Create all tables with proper schema"""
    try:
        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)

        table_names = [table.name for table in Base.metadata.sorted_tables]
        logger.info("Created database tables", extra={
            "table_count": len(table_names),
            "tables": table_names
        })
    except Exception as e:
        logger.error(f"Error initializing database: {e}", extra={
            "error_type": type(e).__name__,
            "database_url": "[REDACTED]"  # Don't log connection strings
        })
        raise


if __name__ == "__main__":
    init_database()
