"""Conexión a la base de datos"""
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
from typing import AsyncGenerator, Optional
import logging
import asyncio

from shared.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base para modelos SQLAlchemy"""


# Engine y session factory
engine = None
async_session_maker = None


def build_async_url(database_url: str) -> str:
    """Convertir la URL configurada a su driver async (asyncpg / aiosqlite)"""
    # Limpiar parámetros de la URL (SSL y similares van en connect_args)
    if "?" in database_url:
        database_url = database_url.split("?")[0]

    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql+psycopg://"):
        return database_url.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


async def init_db(database_url: Optional[str] = None):
    """Inicializar conexión a la base de datos"""
    global engine, async_session_maker

    if engine is not None:
        logger.warning("Database engine already initialized, skipping...")
        return

    database_url = build_async_url(database_url or settings.DATABASE_URL)
    logger.info(f"Initializing database connection to: {database_url.split('@')[1] if '@' in database_url else database_url}")

    engine_kwargs = {"echo": settings.APP_DEBUG}
    if database_url.startswith("sqlite"):
        # SQLite no usa pool de conexiones configurable
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        engine_kwargs.update({
            "pool_pre_ping": True,  # Verificar conexiones antes de usar
            "pool_recycle": 300,
            "pool_timeout": 30,
            "pool_use_lifo": True,
            "pool_size": settings.DATABASE_POOL_SIZE,
            "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        })
        logger.info(f"Pool config: size={settings.DATABASE_POOL_SIZE}, overflow={settings.DATABASE_MAX_OVERFLOW}")

    engine = create_async_engine(database_url, **engine_kwargs)

    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    logger.info("Database engine initialized successfully")


async def create_tables():
    """Crear el schema completo (solo desarrollo, en producción usar migraciones)"""
    # Registrar los modelos en Base.metadata
    import shared.database.models  # noqa: F401

    if engine is None:
        raise RuntimeError("Database not initialized. Please check application startup.")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency para obtener sesión de base de datos con retry para errores transitorios.

    Maneja errores de DNS y conexión transitorios con retry exponencial.
    """
    if async_session_maker is None:
        logger.error("Database not initialized! Call init_db() first.")
        raise RuntimeError("Database not initialized. Please check application startup.")

    max_retries = 3
    retry_delay = 0.5  # Segundos iniciales
    last_exception = None
    yielded = False

    for attempt in range(max_retries):
        try:
            async with async_session_maker() as session:
                yielded = True
                yield session
                return  # Exit después de yield exitoso
        except OSError as e:
            # Captura errores de DNS y socket (socket.gaierror es subclase de OSError)
            if yielded:
                # El error viene del request, no de abrir la sesión
                raise
            last_exception = e
            if attempt < max_retries - 1:
                delay = retry_delay * (2 ** attempt)
                logger.warning(
                    f"Database connection error (attempt {attempt + 1}/{max_retries}): {type(e).__name__}: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"Database connection failed after {max_retries} attempts: {e}")

    raise last_exception or RuntimeError("Database connection failed")


async def close_db():
    """Cerrar conexiones a la base de datos"""
    global engine, async_session_maker
    if engine:
        logger.info("Closing database connections...")
        await engine.dispose()
        engine = None
        async_session_maker = None
        logger.info("Database connections closed")
