"""
Database engine, session factory and schema bootstrap
"""
import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from app.config import get_settings
from app.utils.logger import log

settings = get_settings()


def resolve_database_url(url: str) -> str:
    """Absolute path for relative SQLite URLs, so scripts run from any cwd share one file"""
    prefix = "sqlite:///"
    if url.startswith(prefix) and not url.startswith("sqlite:////") and url != "sqlite:///:memory:":
        return prefix + os.path.abspath(url[len(prefix):])
    return url


def build_engine(url: str) -> Engine:
    """
    SQLite gets a long busy timeout and no pooling (the scheduler, webhooks
    and scripts write concurrently); server databases get a small pool
    recycled before managed-host idle timeouts.
    """
    url = resolve_database_url(url)
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=300,
    )


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Iterator[Session]:
    """FastAPI dependency: one session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for jobs and scripts; rolled back if the block raises"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def add_missing_columns(bind: Engine) -> list:
    """
    ALTER TABLE ... ADD COLUMN for model columns an existing table lacks.

    create_all() only creates missing tables. Indexes and constraints are
    left to the alembic revisions.

    Returns:
        The statements executed
    """
    inspector = inspect(bind)
    statements = []
    for table_name, table in Base.metadata.tables.items():
        if not inspector.has_table(table_name):
            continue
        existing = {column["name"] for column in inspector.get_columns(table_name)}
        for column in table.columns:
            if column.name in existing:
                continue
            column_type = column.type.compile(dialect=bind.dialect)
            statements.append(f"ALTER TABLE {table_name} ADD COLUMN {column.name} {column_type}")

    if statements:
        with bind.begin() as conn:
            for statement in statements:
                log.info(f"Schema update: {statement}")
                conn.execute(text(statement))
    return statements


def init_db(bind: Engine = None):
    """Create tables and add columns introduced since the database was created"""
    import app.models  # noqa: F401  registers every table

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    add_missing_columns(bind)
