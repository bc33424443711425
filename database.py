"""
Database Configuration and Session Management
============================================

This module provides the async database engine, session factory, and table
creation for the Deal Escrow Bot. PostgreSQL (asyncpg) in production,
SQLite (aiosqlite) for local development and tests.
"""

import logging
from contextlib import asynccontextmanager
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from config import Config
from models import Base

logger = logging.getLogger(__name__)


def normalize_async_url(database_url: str) -> str:
    """Convert a sync database URL to its async driver form"""
    url = database_url
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    if url.startswith('postgresql://'):
        url = url.replace('postgresql://', 'postgresql+asyncpg://', 1)
        # asyncpg uses 'ssl' instead of 'sslmode'
        url = url.replace('sslmode=require', 'ssl=require')
        url = url.replace('sslmode=prefer', 'ssl=prefer')
        url = url.replace('sslmode=disable', 'ssl=disable')
    elif url.startswith('sqlite://'):
        url = url.replace('sqlite://', 'sqlite+aiosqlite://', 1)
    return url


def build_async_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pool sizing only applies to PostgreSQL"""
    url = normalize_async_url(database_url)
    if url.startswith('postgresql+asyncpg://'):
        return create_async_engine(
            url,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,    # Validate connections before use
            pool_recycle=3600,     # Recycle connections every hour
            pool_timeout=30,
            echo=echo,
            connect_args={
                "server_settings": {"application_name": "deal_escrow_bot"},
                "timeout": 10,
                "command_timeout": 30,
            },
        )
    return create_async_engine(url, echo=echo)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,  # Deals are read after commit by pollers and handlers
    )


async_engine = build_async_engine(Config.DATABASE_URL)
AsyncSessionLocal = build_session_factory(async_engine)


@asynccontextmanager
async def async_managed_session(session_factory: async_sessionmaker = None):
    """Async context manager for database sessions"""
    session = (session_factory or AsyncSessionLocal)()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.error(f"Database session error: {e}")
        await session.rollback()
        raise
    finally:
        await session.close()


async def create_tables(engine: AsyncEngine = None) -> bool:
    """Create all database tables if they don't exist"""
    engine = engine or async_engine
    try:
        logger.info("🏗️ Creating database tables (if they don't exist)...")
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all, checkfirst=True)
        logger.info(f"✅ Database schema verified: {', '.join(sorted(Base.metadata.tables))}")
        return True
    except Exception as e:
        logger.error(f"❌ Failed to create database tables: {e}")
        return False


async def test_connection(engine: AsyncEngine = None) -> bool:
    """Test database connection"""
    engine = engine or async_engine
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
        logger.info("✅ Database connection test successful")
        return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False
