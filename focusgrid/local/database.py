"""Device-local database for focusgrid.

Each device keeps its own SQLite file (task table, outbox, metadata, legacy
backups, plain logs). Nothing here is shared with the remote store schema.
"""

import os
from typing import Optional
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from dotenv import load_dotenv

load_dotenv()

LOCAL_DATABASE_URL = os.getenv("LOCAL_DATABASE_URL", "sqlite:///./focusgrid_local.db")

# Base class for device-local declarative models
LocalBase = declarative_base()


def _is_memory_url(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:")


def build_local_engine(database_url: Optional[str] = None) -> Engine:
    """Create the engine for a device database.

    In-memory URLs get a StaticPool so every session (and thread) sees the same
    database.
    """
    url = database_url or LOCAL_DATABASE_URL
    engine_kwargs: dict = {
        "echo": os.getenv("DEBUG", "False").lower() == "true",
        "connect_args": {"check_same_thread": False},
    }
    if _is_memory_url(url):
        engine_kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **engine_kwargs)
    event.listen(engine, "connect", _set_local_pragmas)
    return engine


def _set_local_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def create_local_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Create the device schema (idempotent) and return a session factory."""
    # Register models on LocalBase.metadata
    from focusgrid.local import models  # noqa: F401

    use_engine = engine or build_local_engine()
    LocalBase.metadata.create_all(bind=use_engine)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=use_engine)
