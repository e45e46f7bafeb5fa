"""Async database engine and session factory.

Configures the SQLAlchemy async engine with connection pooling. The linking
service opens its own sessions from ``async_session_factory`` because the
poll loop and expiry timers run outside any request.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from chatlink.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.environment == "development",
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
