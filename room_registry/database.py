"""
Connexion a la base de donnees / Database connection.
Supporte SQLite (dev) et PostgreSQL (prod) via SQLAlchemy 2.0 async.
"""

import logging

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from room_registry.config import settings

logger = logging.getLogger("room_registry.database")

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# Configuration moteur / Engine configuration
_engine_kwargs: dict = {
    "echo": False,
}

# PostgreSQL : pool modeste, quelques dizaines de tablettes qui pollent /
# PostgreSQL: modest pool, a few dozen polling tablets
if not _is_sqlite:
    _engine_kwargs.update({
        "pool_size": 10,
        "max_overflow": 10,
        "pool_timeout": settings.STORE_TIMEOUT_SECONDS,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    })


class Base(DeclarativeBase):
    pass


def configure_sqlite(engine: AsyncEngine) -> None:
    """Savepoints et cles etrangeres SQLite / SQLite savepoints and foreign keys.

    The sqlite3 driver manages transactions on its own and breaks SAVEPOINT;
    hand transaction control back to SQLAlchemy and emit BEGIN ourselves.
    BEGIN IMMEDIATE takes the write lock up front: a second writer waits on
    the busy timeout instead of failing with "database is locked".
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(settings.STORE_TIMEOUT_SECONDS * 1000)}")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, **kwargs) -> AsyncEngine:
    """Creer un moteur configure / Create a configured engine."""
    new_engine = create_async_engine(url, **kwargs)
    if url.startswith("sqlite"):
        configure_sqlite(new_engine)
    return new_engine


engine = build_engine(settings.DATABASE_URL, **_engine_kwargs)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncSession:
    """Dependance FastAPI pour obtenir une session DB / FastAPI dependency for DB session."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(target: AsyncEngine | None = None):
    """Creer les tables au demarrage / Create tables on startup."""
    # Enregistrer tous les modeles / Register every model on the metadata
    import room_registry.models  # noqa: F401

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema ready (%d tables)", len(Base.metadata.sorted_tables))
