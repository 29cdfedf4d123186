# taskengine/models/database.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from taskengine.config import settings

# Read database URL from environment, fallback to SQLite for local development
SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL


def build_engine(url: str = SQLALCHEMY_DATABASE_URL, **kwargs):
    """Create an engine configured for the database type"""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},  # Needed for SQLite
            **kwargs
        )
    # PostgreSQL or other databases
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        **kwargs
    )


engine = build_engine()

# Store methods hand ORM rows back to callers after the session closes
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

Base = declarative_base()
