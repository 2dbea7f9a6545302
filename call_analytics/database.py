"""
Database configuration and session management.
Uses SQLAlchemy; SQLite for development, PostgreSQL in production.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
from call_analytics.config import config


def _build_engine(url: str):
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session sees the same in-memory database.
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False}  # SQLite specific
        )
    # PostgreSQL
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,
        max_overflow=20,
        echo=config.DEBUG  # Log SQL queries in debug mode
    )


engine = _build_engine(config.DATABASE_URL)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for all models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database sessions.

    Usage in FastAPI:
        @router.get("/agents")
        def list_agents(db: Session = Depends(get_db)):
            return AgentService.list_agents(db)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Initialize database - create all tables.
    Should be called on application startup.
    """
    # Register the mapped classes on Base.metadata before creating tables.
    from call_analytics import db_models  # noqa: F401

    Base.metadata.create_all(bind=engine)
