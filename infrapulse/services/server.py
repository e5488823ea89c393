import logging
from datetime import timezone
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from infrapulse.core.database import store_errors, utc_now
from infrapulse.core.exceptions import NotFoundError, ValidationError
from infrapulse.models.monitoring import ServerMetric
from infrapulse.models.server import Container, Server
from infrapulse.schemas.auth import Actor
from infrapulse.schemas.server import MetricSampleCreate, ServerCreate

logger = logging.getLogger(__name__)

class ServerService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_server(self, server_data: ServerCreate) -> Server:
        if await self.get_server_by_hostname(server_data.hostname):
            raise ValidationError("Hostname already exists")

        db_server = Server(**server_data.model_dump())
        self.db.add(db_server)
        await self.db.commit()
        await self.db.refresh(db_server)
        logger.info(f"Server {db_server.id} ({db_server.hostname}) created")
        return db_server

    async def get_server(self, server_id: int) -> Server:
        with store_errors("server lookup"):
            result = await self.db.execute(select(Server).where(Server.id == server_id))
            server = result.scalar_one_or_none()
        if server is None:
            raise NotFoundError(f"Server {server_id} not found")
        return server

    async def get_server_by_hostname(self, hostname: str) -> Optional[Server]:
        result = await self.db.execute(select(Server).where(Server.hostname == hostname))
        return result.scalar_one_or_none()

    async def get_servers_with_latest_metric(
        self, skip: int = 0, limit: int = 100
    ) -> List[Tuple[Server, Optional[ServerMetric]]]:
        """Servers joined with their most recent metric sample (if any)"""
        ranked = select(
            ServerMetric,
            func.row_number()
            .over(
                partition_by=ServerMetric.server_id,
                order_by=(ServerMetric.timestamp.desc(), ServerMetric.id.desc()),
            )
            .label("rn"),
        ).subquery()
        latest = aliased(ServerMetric, ranked)

        stmt = (
            select(Server, latest)
            .outerjoin(latest, and_(latest.server_id == Server.id, ranked.c.rn == 1))
            .order_by(Server.id)
            .offset(skip)
            .limit(limit)
        )
        with store_errors("server listing"):
            result = await self.db.execute(stmt)
            return [(server, metric) for server, metric in result.all()]

    async def request_restart(self, server_id: int, actor: Actor) -> Server:
        """
        Record the intent to restart a server.

        Nothing is executed remotely, an external operations tool picks the
        request up from last_restart / restart_requested_by.
        """
        with store_errors("restart request"):
            result = await self.db.execute(select(Server).where(Server.id == server_id).with_for_update())
            server = result.scalar_one_or_none()
            if server is None:
                raise NotFoundError(f"Server {server_id} not found")

            server.last_restart = utc_now()
            server.restart_requested_by = actor.id
            await self.db.commit()
            await self.db.refresh(server)

        logger.info(f"Restart of server {server_id} ({server.hostname}) requested by {actor.username}")
        return server

    async def record_metric(self, server_id: int, sample: MetricSampleCreate) -> ServerMetric:
        await self.get_server(server_id)

        data = sample.model_dump(exclude_none=True)
        metric = ServerMetric(server_id=server_id, **data)
        if metric.timestamp is None:
            metric.timestamp = utc_now()
        elif metric.timestamp.tzinfo is not None:
            metric.timestamp = metric.timestamp.astimezone(timezone.utc)

        with store_errors("metric ingestion"):
            self.db.add(metric)
            await self.db.commit()
            await self.db.refresh(metric)
        return metric

    async def get_containers(self, server_id: Optional[int] = None, skip: int = 0, limit: int = 100) -> List[Container]:
        stmt = select(Container)
        if server_id is not None:
            stmt = stmt.where(Container.server_id == server_id)
        stmt = stmt.order_by(Container.id).offset(skip).limit(limit)
        with store_errors("container listing"):
            result = await self.db.execute(stmt)
            return list(result.scalars().all())
