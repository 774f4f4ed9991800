#!/usr/bin/env python3
"""
Create the PostgreSQL database used when tests run with TEST_DATABASE_URL.

SQLite covers the default test run; PostgreSQL is needed to exercise the
appointment exclusion constraint. Usage:

    python scripts/setup_test_db.py            # create and verify
    python scripts/setup_test_db.py cleanup    # drop
"""

import asyncio
import os
import sys

import asyncpg
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import app.models  # noqa: E402,F401
from app.core.database import Base  # noqa: E402
from app.models.appointment import EXCLUSION_CONSTRAINT_NAME  # noqa: E402

DB_HOST = os.getenv("POSTGRES_HOST", "localhost")
DB_PORT = int(os.getenv("POSTGRES_PORT", "5432"))
DB_USER = os.getenv("POSTGRES_USER", "salon_user")
DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "salon_password")
MASTER_DB_NAME = os.getenv("POSTGRES_DB", "salon")
TEST_DB_NAME = "test_salon"

TEST_DB_URL = (
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:"
    f"{DB_PORT}/{TEST_DB_NAME}"
)


async def _master_connection() -> asyncpg.Connection:
    return await asyncpg.connect(
        host=DB_HOST,
        port=DB_PORT,
        user=DB_USER,
        password=DB_PASSWORD,
        database=MASTER_DB_NAME,
    )


async def setup_test_database() -> bool:
    print(f"Setting up test database: {TEST_DB_NAME}")

    try:
        master_conn = await _master_connection()
        await master_conn.execute(f"DROP DATABASE IF EXISTS {TEST_DB_NAME}")
        await master_conn.execute(f"CREATE DATABASE {TEST_DB_NAME}")
        await master_conn.close()

        engine = create_async_engine(TEST_DB_URL, echo=False)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            result = await conn.execute(
                text("SELECT 1 FROM pg_constraint WHERE conname = :name"),
                {"name": EXCLUSION_CONSTRAINT_NAME},
            )
            has_constraint = result.scalar() is not None
        await engine.dispose()
    except (OSError, asyncpg.PostgresError) as e:
        print(f"Could not set up {TEST_DB_NAME} on {DB_HOST}:{DB_PORT}: {e}")
        return False

    if not has_constraint:
        print(f"Tables created but {EXCLUSION_CONSTRAINT_NAME} is missing")
        return False

    print("Test database ready, run the suite with:")
    print(f"  TEST_DATABASE_URL={TEST_DB_URL} pytest")
    return True


async def cleanup_test_database() -> bool:
    try:
        master_conn = await _master_connection()
        await master_conn.execute(f"DROP DATABASE IF EXISTS {TEST_DB_NAME}")
        await master_conn.close()
    except (OSError, asyncpg.PostgresError) as e:
        print(f"Could not drop {TEST_DB_NAME}: {e}")
        return False

    print(f"Dropped test database: {TEST_DB_NAME}")
    return True


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "cleanup":
        ok = asyncio.run(cleanup_test_database())
    else:
        ok = asyncio.run(setup_test_database())
    sys.exit(0 if ok else 1)
