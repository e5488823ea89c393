import logging
from datetime import datetime
from typing import List, Optional, Set, Tuple

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from infrapulse.core.database import as_utc, store_errors, utc_now
from infrapulse.core.exceptions import NotFoundError, ValidationError
from infrapulse.models.maintenance import MaintenanceWindow
from infrapulse.models.server import Server
from infrapulse.schemas.auth import Actor
from infrapulse.schemas.maintenance import MaintenanceWindowCreate

logger = logging.getLogger(__name__)

def active_window_clause(now: datetime):
    return and_(
        MaintenanceWindow.starts_at <= now,
        MaintenanceWindow.ends_at > now,
        MaintenanceWindow.cancelled_at.is_(None),
    )

class MaintenanceService:
    """
    Maintenance windows. Only records them; the health sampler reads them
    and is the one that moves servers in and out of ``maintenance``.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_window(self, data: MaintenanceWindowCreate, actor: Actor) -> MaintenanceWindow:
        with store_errors("maintenance window creation"):
            server_id = await self.db.scalar(select(Server.id).where(Server.id == data.server_id))
            if server_id is None:
                raise NotFoundError(f"Server {data.server_id} not found")

            now = utc_now()
            starts_at = data.starts_at or now
            if data.ends_at <= starts_at:
                raise ValidationError("Maintenance window must end after it starts")
            if data.ends_at <= now:
                raise ValidationError("Maintenance window is already over")

            window = MaintenanceWindow(
                server_id=data.server_id,
                title=data.title,
                description=data.description,
                starts_at=starts_at,
                ends_at=data.ends_at,
                created_by=actor.id,
            )
            self.db.add(window)
            await self.db.commit()
            await self.db.refresh(window)

        logger.info(
            f"Maintenance window {window.id} for server {window.server_id} "
            f"({starts_at.isoformat()} -> {data.ends_at.isoformat()}) created by {actor.username}"
        )
        return window

    async def get_window(self, window_id: int) -> MaintenanceWindow:
        with store_errors("maintenance window lookup"):
            window = await self.db.scalar(select(MaintenanceWindow).where(MaintenanceWindow.id == window_id))
        if window is None:
            raise NotFoundError(f"Maintenance window {window_id} not found")
        return window

    async def list_windows(
        self, server_id: Optional[int] = None, active_only: bool = False, limit: int = 100
    ) -> List[MaintenanceWindow]:
        stmt = select(MaintenanceWindow)
        if server_id is not None:
            stmt = stmt.where(MaintenanceWindow.server_id == server_id)
        if active_only:
            stmt = stmt.where(active_window_clause(utc_now()))
        stmt = stmt.order_by(MaintenanceWindow.starts_at.desc(), MaintenanceWindow.id.desc()).limit(limit)

        with store_errors("maintenance window listing"):
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

    async def cancel_window(self, window_id: int, actor: Actor) -> Tuple[MaintenanceWindow, bool]:
        """
        Cancel a scheduled or active window. Returns ``(window, changed)``;
        cancelling a cancelled or completed window changes nothing.
        """
        with store_errors("maintenance window cancellation"):
            result = await self.db.execute(
                select(MaintenanceWindow).where(MaintenanceWindow.id == window_id).with_for_update()
            )
            window = result.scalar_one_or_none()
            if window is None:
                raise NotFoundError(f"Maintenance window {window_id} not found")

            now = utc_now()
            if window.cancelled_at is not None or as_utc(window.ends_at) <= now:
                await self.db.commit()
                return window, False

            window.cancelled_at = now
            window.cancelled_by = actor.id
            await self.db.commit()
            await self.db.refresh(window)

        logger.info(f"Maintenance window {window_id} for server {window.server_id} cancelled by {actor.username}")
        return window, True

    async def active_server_ids(self, now: Optional[datetime] = None) -> Set[int]:
        stmt = select(MaintenanceWindow.server_id).where(active_window_clause(now or utc_now())).distinct()
        with store_errors("maintenance window lookup"):
            result = await self.db.execute(stmt)
            return set(result.scalars().all())

    async def is_under_maintenance(self, server_id: int, now: Optional[datetime] = None) -> bool:
        stmt = (
            select(MaintenanceWindow.id)
            .where(MaintenanceWindow.server_id == server_id, active_window_clause(now or utc_now()))
            .limit(1)
        )
        with store_errors("maintenance window lookup"):
            return await self.db.scalar(stmt) is not None
