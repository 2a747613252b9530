from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from shopstate.core.config import settings


def get_connect_args(database_url: str = settings.DATABASE_URL) -> Dict[str, Any]:
    """Get database-specific connection arguments"""
    if database_url.startswith("sqlite"):
        # Profile storage is touched from FastAPI's worker threads
        return {"check_same_thread": False}
    return {}


def build_engine(database_url: str = settings.DATABASE_URL) -> Engine:
    """Engine for profile storage; server databases get a checked pool."""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args=get_connect_args(database_url))
    return create_engine(database_url, pool_pre_ping=True, pool_size=5, max_overflow=10)


engine = build_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
