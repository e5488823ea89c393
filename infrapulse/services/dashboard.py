import logging
from datetime import timedelta

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from infrapulse.core.cache import SummaryCache
from infrapulse.core.config import Settings
from infrapulse.core.database import store_errors, utc_now
from infrapulse.core.timing_decorator import timing_debug
from infrapulse.models.monitoring import ServerMetric
from infrapulse.models.server import Container, Server, ServerStatus
from infrapulse.schemas.alert import AlertCounts
from infrapulse.schemas.dashboard import ContainerCounts, DashboardSummary, ResourceAverages, ServerCounts
from infrapulse.services.alert_engine import AlertService

logger = logging.getLogger(__name__)

SUMMARY_CACHE_KEY = "dashboard:summary"

class DashboardService:
    """
    Cache-aside dashboard summary.

    A cached summary may be up to SUMMARY_CACHE_TTL seconds stale, writes
    never invalidate it.
    """

    def __init__(self, db: AsyncSession, cache: SummaryCache, settings: Settings):
        self.db = db
        self.cache = cache
        self.settings = settings

    async def get_summary(self) -> DashboardSummary:
        cached = await self.cache.get_json(SUMMARY_CACHE_KEY)
        if cached is not None:
            try:
                summary = DashboardSummary.model_validate(cached)
                summary.cached = True
                return summary
            except ValueError as e:
                logger.warning(f"Ignoring malformed cached summary: {e}")

        summary = await self.compute_summary()
        await self.cache.set_json(
            SUMMARY_CACHE_KEY,
            summary.model_dump(mode="json"),
            self.settings.SUMMARY_CACHE_TTL,
        )
        return summary

    @timing_debug
    async def compute_summary(self) -> DashboardSummary:
        with store_errors("dashboard summary"):
            servers = await self._server_counts()
            containers = await self._container_counts()
            resources = await self._resource_averages()
        alerts = await AlertService(self.db).active_counts_by_severity()

        return DashboardSummary(
            servers=servers,
            containers=containers,
            alerts=AlertCounts(**alerts),
            resources=resources,
            generated_at=utc_now(),
            cached=False,
        )

    async def _server_counts(self) -> ServerCounts:
        result = await self.db.execute(select(Server.status, func.count(Server.id)).group_by(Server.status))
        counts = ServerCounts()
        for status, count in result.all():
            setattr(counts, ServerStatus(status).value, int(count))
            counts.total += int(count)
        return counts

    async def _container_counts(self) -> ContainerCounts:
        stmt = select(
            func.count(Container.id),
            func.coalesce(func.sum(case((Container.status == "running", 1), else_=0)), 0),
        )
        total, running = (await self.db.execute(stmt)).one()
        return ContainerCounts(total=int(total or 0), running=int(running or 0))

    async def _resource_averages(self) -> ResourceAverages:
        window = self.settings.SUMMARY_METRICS_WINDOW_MINUTES
        since = utc_now() - timedelta(minutes=window)
        stmt = select(
            func.count(ServerMetric.id),
            func.avg(ServerMetric.cpu_usage),
            func.avg(ServerMetric.memory_usage),
            func.avg(ServerMetric.disk_usage),
        ).where(ServerMetric.timestamp >= since)
        sample_count, cpu, memory, disk = (await self.db.execute(stmt)).one()

        def _round(value):
            return round(float(value), 2) if value is not None else None

        return ResourceAverages(
            window_minutes=window,
            sample_count=int(sample_count or 0),
            avg_cpu_usage=_round(cpu),
            avg_memory_usage=_round(memory),
            avg_disk_usage=_round(disk),
        )
