"""Engine and sessions for the server-side task and push subscription tables.

A single SQLite file serves local runs of the API. Deployments point
`DATABASE_URL` at PostgreSQL, shared by the API workers that take device
sync traffic and the scheduled due-task dispatch.
"""

import os
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./focusgrid.db")


def _is_sqlite_url(database_url: str) -> bool:
    return "sqlite" in (database_url or "")


def get_engine_kwargs(database_url: str) -> dict:
    """create_engine kwargs for `database_url`, computed without connecting."""
    engine_kwargs: dict = {
        "echo": os.getenv("DEBUG", "False").lower() == "true",
        # Device traffic arrives in bursts around syncs and the cron run; check pooled connections before reuse.
        "pool_pre_ping": True,
    }

    if _is_sqlite_url(database_url):
        # Sync endpoints run in the threadpool and share the file.
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        return engine_kwargs

    # Each API worker holds its own pool; DB_POOL_* sizes it per worker.
    engine_kwargs["pool_size"] = int(os.getenv("DB_POOL_SIZE", "5"))
    engine_kwargs["max_overflow"] = int(os.getenv("DB_MAX_OVERFLOW", "5"))
    engine_kwargs["pool_timeout"] = int(os.getenv("DB_POOL_TIMEOUT_SEC", "30"))
    return engine_kwargs


def build_engine(database_url: str) -> Engine:
    engine = create_engine(database_url, **get_engine_kwargs(database_url))
    if _is_sqlite_url(database_url):
        event.listen(engine, "connect", set_sqlite_pragmas)
    return engine


def set_sqlite_pragmas(dbapi_conn, connection_record):
    """Enforce foreign keys and use WAL so pulls can read while a push writes."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Session:
    """One session per API request, closed once the response is sent."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create or upgrade the server schema.

    With `RUN_MIGRATIONS=true` on PostgreSQL the Alembic history is applied.
    Otherwise tables are created from the models, and on PostgreSQL the
    reminder column and due-scan index are added to task tables that predate
    them.
    """
    from focusgrid.database import models  # noqa: F401

    run_migrations = os.getenv("RUN_MIGRATIONS", "False").lower() == "true"
    if run_migrations and not _is_sqlite_url(DATABASE_URL):
        from alembic import command
        from alembic.config import Config

        alembic_cfg = Config(os.getenv("ALEMBIC_INI", "alembic.ini"))
        alembic_cfg.set_main_option("sqlalchemy.url", DATABASE_URL)
        command.upgrade(alembic_cfg, "head")
        return

    Base.metadata.create_all(bind=engine)

    if not _is_sqlite_url(DATABASE_URL):
        with engine.begin() as conn:
            conn.execute(
                text(
                    "ALTER TABLE tasks "
                    "ADD COLUMN IF NOT EXISTS last_notified_at TIMESTAMP"
                )
            )
            conn.execute(
                text(
                    "CREATE INDEX IF NOT EXISTS ix_tasks_due_scan "
                    "ON tasks (status, scheduled_date, due_time, last_notified_at)"
                )
            )
