"""Database engine and request-scoped sessions"""

from typing import Any, Dict
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from ledger_import.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """Pool settings for PostgreSQL; SQLite (local runs, tests) gets a thread-shareable connection"""
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    # max 20 connections, recycled hourly
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 10,
        "pool_recycle": 3600,
    }


engine = create_engine(settings.database_url, **engine_options(settings.database_url))

# Imports flush explicitly inside their transaction
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
