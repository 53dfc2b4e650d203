import asyncio
import random

import asyncpg
from loguru import logger


def asyncpg_dsn(url: str) -> str:
    """Strip the SQLAlchemy driver suffix so asyncpg accepts the URL."""
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql://", 1)
    return url


async def wait_for_db(dsn: str, retries: int = 5, base_delay: float = 2.0) -> None:
    """Poll the database until it accepts connections, with exponential backoff and jitter."""
    dsn = asyncpg_dsn(dsn)
    for attempt in range(retries):
        try:
            conn = await asyncpg.connect(dsn=dsn)
            await conn.close()
            logger.info("✅ Database connection successful.")
            return
        except (OSError, asyncpg.PostgresError) as e:
            total_wait = base_delay * (2 ** attempt) + random.uniform(0, 0.5)
            logger.warning(f"Database not ready (attempt {attempt + 1}/{retries}): {e}. Retrying in {total_wait:.2f}s...")
            await asyncio.sleep(total_wait)
    raise RuntimeError("❌ Database not ready after multiple attempts.")
