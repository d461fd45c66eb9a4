"""
Migration SQLite -> PostgreSQL / SQLite to PostgreSQL data migration.

Usage:
    SQLITE_URL=sqlite+aiosqlite:///./room_registry.db \
    DATABASE_URL=postgresql+asyncpg://registry:password@db:5432/registry \
    python -m scripts.migrate_sqlite_to_pg
"""

import asyncio
import logging
import os
import sys
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, text
from sqlalchemy.ext.asyncio import create_async_engine

from room_registry.database import Base
import room_registry.models  # noqa: F401 — enregistrer tous les modeles

logger = logging.getLogger("room_registry.migrate")


def _convert(row: dict, datetime_cols: set[str], bool_cols: set[str]) -> dict:
    """Convertir les types pour asyncpg / Convert types for asyncpg."""
    for col_name, value in row.items():
        if value is None:
            continue
        if col_name in datetime_cols and isinstance(value, str):
            row[col_name] = datetime.fromisoformat(value)
        elif col_name in bool_cols and isinstance(value, int):
            row[col_name] = bool(value)
    return row


async def migrate() -> int:
    sqlite_url = os.getenv("SQLITE_URL", "sqlite+aiosqlite:///./room_registry.db")
    pg_url = os.getenv("DATABASE_URL")

    if not pg_url or "postgresql" not in pg_url:
        logger.error("DATABASE_URL doit etre une URL PostgreSQL / must be a PostgreSQL URL")
        sys.exit(1)

    # Masquer le mot de passe dans les logs / Mask password in logs
    pg_display = pg_url.split("@")[-1] if "@" in pg_url else pg_url
    logger.info("Source SQLite: %s", sqlite_url)
    logger.info("Target PostgreSQL: ...@%s", pg_display)

    sqlite_engine = create_async_engine(sqlite_url)
    pg_engine = create_async_engine(pg_url, pool_size=5)

    async with pg_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    total_rows = 0
    async with sqlite_engine.connect() as sqlite_conn:
        existing = {
            row[0] for row in (await sqlite_conn.execute(
                text("SELECT name FROM sqlite_master WHERE type='table'")
            )).fetchall()
        }

        async with pg_engine.begin() as pg_conn:
            # Ordre d'insertion respectant les FK / FK-safe insertion order
            for table in Base.metadata.sorted_tables:
                if table.name not in existing:
                    logger.info("  [skip] %s: absent from SQLite", table.name)
                    continue

                cols = [c.name for c in table.columns]
                datetime_cols = {c.name for c in table.columns if isinstance(c.type, DateTime)}
                bool_cols = {c.name for c in table.columns if isinstance(c.type, Boolean)}
                col_list = ", ".join(f'"{c}"' for c in cols)
                rows = (await sqlite_conn.execute(text(f'SELECT {col_list} FROM "{table.name}"'))).fetchall()
                if not rows:
                    continue

                insert_sql = text(
                    f'INSERT INTO "{table.name}" ({col_list}) VALUES ({", ".join(f":{c}" for c in cols)})'
                )
                await pg_conn.execute(
                    insert_sql,
                    [_convert(dict(zip(cols, row)), datetime_cols, bool_cols) for row in rows],
                )
                total_rows += len(rows)
                logger.info("  [OK] %s: %d rows", table.name, len(rows))

        # Remettre a zero les sequences / Reset autoincrement sequences
        async with pg_engine.begin() as pg_conn:
            for table in Base.metadata.sorted_tables:
                # Seules les PK entieres ont une sequence / Only integer PKs own a sequence
                pk = list(table.primary_key.columns)
                if len(pk) != 1 or pk[0].name != "id" or not isinstance(pk[0].type, Integer):
                    continue
                await pg_conn.execute(text(
                    f"SELECT setval(pg_get_serial_sequence('{table.name}', 'id'), "
                    f"COALESCE((SELECT MAX(id) FROM \"{table.name}\"), 0) + 1, false)"
                ))

    await sqlite_engine.dispose()
    await pg_engine.dispose()
    logger.info("Migration done: %d rows", total_rows)
    return total_rows


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    asyncio.run(migrate())
