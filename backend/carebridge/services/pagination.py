"""
CareBridge Backend — Offset Pagination Helper

Runs a filtered SELECT twice: once for the page, once for the total count.
"""

from typing import Any, List, Tuple

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

MAX_PAGE_SIZE = 100


async def paginate(
    db: AsyncSession,
    query: Select,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Any], int]:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total_count = (await db.execute(count_query)).scalar() or 0

    result = await db.execute(query.offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total_count
