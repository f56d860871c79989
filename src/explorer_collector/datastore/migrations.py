"""Schema creation for the collector's collections."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import inspect

from explorer_collector.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


async def run_auto_migrate(engine: AsyncEngine) -> list[str]:
    """Create the tables and indexes that do not exist yet.

    Existing tables are left as they are, so a restart keeps the stored
    watermark and gap list.

    Returns:
        Names of the tables created by this call, in dependency order.
    """
    async with engine.begin() as conn:
        existing = set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))
        await conn.run_sync(Base.metadata.create_all)

    created = [table.name for table in Base.metadata.sorted_tables if table.name not in existing]
    if created:
        logger.info("Created collections: %s", ", ".join(created))
    return created
