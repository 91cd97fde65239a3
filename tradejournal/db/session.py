# tradejournal/db/session.py
"""Database session factory and initialization."""

from pathlib import Path
from sqlmodel import SQLModel, create_engine

from tradejournal.config import DATABASE_URL
from tradejournal.logging_utils import init_logging

# Make sure the directory for a local SQLite file exists
if DATABASE_URL.startswith("sqlite:///") and ":memory:" not in DATABASE_URL:
    db_path = DATABASE_URL.replace("sqlite:///", "")
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in DATABASE_URL else {},
    echo=False,
)

def create_db_and_tables(bind=None):
    """Create all tables if they don't exist."""
    # Table classes must be registered on the metadata first
    from tradejournal.db import models  # noqa: F401

    SQLModel.metadata.create_all(bind if bind is not None else engine)


def init_db(bind=None):
    """Initialize logging and database on startup."""
    init_logging()
    create_db_and_tables(bind)
