"""
=============================================================================
SPAMSCAN - Conexión a Base de Datos
=============================================================================
Motor async de SQLAlchemy y fábrica de sesiones.
=============================================================================
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import Base


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Crea el motor async (postgresql+asyncpg en producción)."""
    return create_async_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Crea las tablas si no existen (arranque de la aplicación)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
