"""
Database engine and session factory construction with SQLAlchemy async
"""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from core.config import Settings, settings as default_settings
import logging

logger = logging.getLogger(__name__)


def create_engine(
    app_settings: Optional[Settings] = None,
    database_url: Optional[str] = None,
) -> AsyncEngine:
    """
    Create an async engine sized for long-running import transactions.

    The engine is created by the caller and passed to every component that
    needs it; nothing in this module holds a shared engine.
    """
    cfg = app_settings or default_settings
    url = database_url or cfg.DATABASE_URL

    connect_args = {}
    if url.startswith("postgresql+asyncpg"):
        connect_args["command_timeout"] = cfg.DB_COMMAND_TIMEOUT

    engine = create_async_engine(
        url,
        echo=False,
        pool_size=cfg.DB_POOL_SIZE,
        max_overflow=cfg.DB_MAX_OVERFLOW,
        pool_timeout=cfg.DB_POOL_TIMEOUT,
        pool_recycle=cfg.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        connect_args=connect_args,
    )
    logger.debug(f"Created database engine for {engine.url.render_as_string(hide_password=True)}")
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create session factory bound to the given engine"""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
