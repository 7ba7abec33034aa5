"""Script to create all tables directly, without migrations.

Intended for local development and throwaway databases; use
``scripts/migrate.py`` against anything long-lived.
"""

import asyncio

from app.database import engine
from app.models import metadata


async def init_db(drop: bool = False) -> None:
    """Create every table registered on the shared metadata."""
    async with engine.begin() as conn:
        if drop:
            await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    print(f"✓ Database initialized ({len(metadata.tables)} tables)")


if __name__ == "__main__":
    import sys

    asyncio.run(init_db(drop="--drop" in sys.argv[1:]))
