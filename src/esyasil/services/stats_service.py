from __future__ import annotations

import asyncio

from ..db.base import BaseDBManager
from ..models.api_models import AdminStatsResponse


class StatsService:
    """Aggregate counts for the admin dashboard."""

    def __init__(self, db: BaseDBManager) -> None:
        self._db = db

    async def get_stats(self) -> AdminStatsResponse:
        users, batches, images = await asyncio.gather(
            self._db.count_users(),
            self._db.count_usage_logs(),
            self._db.sum_usage_images(),
        )
        return AdminStatsResponse(
            total_users=users,
            total_processed_batches=batches,
            total_processed_images=images,
        )
