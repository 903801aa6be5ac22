"""
Site maintenance flag.

Reads are cached; writes are optimistic (visible immediately, persisted by
the background worker). A read that cannot reach the store falls back to
"online" so the storefront never locks itself out.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.models import MaintenanceStatus
from storefront.schemas import MaintenanceOut
from storefront.services.background import PersistJob
from storefront.services.cache import Cache

logger = logging.getLogger(__name__)

_KEY = "status"


class MaintenanceService:
    def __init__(self, cache: Cache, session_factory: async_sessionmaker[AsyncSession]):
        self._cache = cache
        self._session_factory = session_factory
        self.last_job: Optional[PersistJob] = None

    async def _fetch(self) -> MaintenanceOut:
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(MaintenanceStatus)
                    .order_by(MaintenanceStatus.updated_at.desc(), MaintenanceStatus.id.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
        if row is None:
            return MaintenanceOut()
        return MaintenanceOut.model_validate(row)

    async def get_status(self) -> MaintenanceOut:
        try:
            return await self._cache.read(_KEY, self._fetch)
        except SQLAlchemyError as exc:
            logger.warning("Maintenance status unavailable, assuming online: %s", exc)
            return MaintenanceOut()

    def set_status(
        self, is_maintenance: bool, drop_date: Optional[datetime] = None
    ) -> MaintenanceOut:
        status = MaintenanceOut(
            is_maintenance=is_maintenance,
            drop_date=drop_date,
            updated_at=datetime.now(timezone.utc),
        )

        async def _persist() -> None:
            async with self._session_factory() as session:
                session.add(
                    MaintenanceStatus(
                        is_maintenance=status.is_maintenance,
                        drop_date=status.drop_date,
                        updated_at=status.updated_at,
                    )
                )
                await session.commit()

        self.last_job = self._cache.optimistic_write(_KEY, status, _persist)
        logger.info(
            "Maintenance mode %s (drop_date=%s)",
            "enabled" if is_maintenance else "disabled", drop_date,
        )
        return status

    async def toggle(self) -> MaintenanceOut:
        current = await self.get_status()
        return self.set_status(not current.is_maintenance, current.drop_date)

    def clear(self) -> MaintenanceOut:
        """Back online, no scheduled drop."""
        return self.set_status(False, None)
