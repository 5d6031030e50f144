"""
Database models for the durable cache tier.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from ownership_pipeline.database import Base


class CacheEntry(Base):
    """
    One cached value per (kind, cache_key).

    Freshness is enforced in code against the kind's TTL; `invalidated` rows
    are treated as misses until they are overwritten.
    """

    __tablename__ = "cache_entries"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(64), nullable=False, index=True)
    cache_key = Column(String(256), nullable=False)
    fetched_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    invalidated = Column(Boolean, nullable=False, default=False)

    payload = Column(JSON, nullable=False)

    __table_args__ = (
        UniqueConstraint("kind", "cache_key", name="ux_cache_entries_kind_key"),
        Index("ix_cache_entries_kind_fetched", "kind", "fetched_at"),
    )
