"""
Database configuration and session management.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
import os

DATABASE_URL = os.getenv("DATABASE_URL")
# Dev fallback when running without an external database.
if not DATABASE_URL:
    DATABASE_URL = "sqlite:///./dev.db"

Base = declarative_base()


def make_engine(url: str):
    if url.startswith("sqlite:"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Initialize database tables."""
    # Import models so SQLAlchemy registers all tables on Base.metadata
    from ownership_pipeline import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)
