"""Page/limit pagination for caller-scoped history queries."""

from __future__ import annotations

import math
from typing import Any, Callable, Dict

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings


def clamp_page(page: int, limit: int) -> tuple[int, int]:
    max_limit = max(int(settings.CONSUMPTION_PAGE_MAX_LIMIT), 1)
    return max(int(page), 1), max(1, min(int(limit), max_limit))


async def paginate(
    db: AsyncSession,
    query,
    *,
    page: int,
    limit: int,
    serializer: Callable[[Any], Dict[str, Any]],
) -> Dict[str, Any]:
    page, limit = clamp_page(page, limit)
    total_result = await db.execute(select(func.count()).select_from(query.order_by(None).subquery()))
    total = int(total_result.scalar() or 0)

    result = await db.execute(query.offset((page - 1) * limit).limit(limit))
    rows = result.scalars().all()
    return {
        "data": [serializer(row) for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }
