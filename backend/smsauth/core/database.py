"""Async database engine and session management.

Configures the SQLAlchemy async engine with connection pooling and provides
the session factory used by ``SqlIdentityStore``.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from smsauth.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.environment == "development",
    pool_pre_ping=True,
    # asyncpg per-statement deadline; the only timeout on store calls
    connect_args={"command_timeout": settings.database_command_timeout},
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
