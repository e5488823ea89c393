from datetime import timedelta

import redis.asyncio as aioredis

from infrapulse.core.cache import SummaryCache
from infrapulse.core.database import utc_now
from infrapulse.models.monitoring import ServerMetric
from infrapulse.models.server import Container, ServerStatus
from infrapulse.services.alert_engine import AlertService
from infrapulse.services.dashboard import SUMMARY_CACHE_KEY, DashboardService

async def _summary(database, cache, settings):
    async with database.session() as s:
        return await DashboardService(s, cache, settings).get_summary()

async def test_summary_counts_servers_containers_and_alerts(database, cache, settings, make_server, users):
    web = await make_server("web-01", "10.0.0.1")
    db = await make_server("db-01", "10.0.0.2", status=ServerStatus.OFFLINE)
    await make_server("spare-01", "10.0.0.3", status=ServerStatus.MAINTENANCE)

    async with database.session() as s:
        s.add_all([
            Container(name="nginx", image="nginx:1.25", status="running", server_id=web.id),
            Container(name="worker", image="app:2", status="exited", server_id=web.id),
        ])
        await s.commit()

    async with database.session() as s:
        engine = AlertService(s)
        down, _ = await engine.raise_alert("critical", "health_check", "down", server_id=db.id)
        await engine.raise_alert("warning", "disk", "80%", server_id=web.id)
        await engine.raise_alert("info", "deploy", "v2", server_id=web.id)
        await engine.acknowledge(down.id, users["operator"].id)

    summary = await _summary(database, cache, settings)

    assert summary.cached is False
    assert summary.servers.total == 3
    assert summary.servers.online == 1
    assert summary.servers.offline == 1
    assert summary.servers.maintenance == 1
    assert summary.containers.total == 2
    assert summary.containers.running == 1
    assert summary.alerts.model_dump() == {"critical": 0, "warning": 1, "info": 1, "total": 2}

async def test_summary_is_served_from_cache_until_expiry(database, cache, redis_client, settings, make_server):
    server = await make_server()
    first = await _summary(database, cache, settings)
    assert first.alerts.total == 0
    assert 0 < await redis_client.ttl(SUMMARY_CACHE_KEY) <= settings.SUMMARY_CACHE_TTL

    async with database.session() as s:
        await AlertService(s).raise_alert("critical", "health_check", "down", server_id=server.id)

    # writes do not invalidate the cached summary
    second = await _summary(database, cache, settings)
    assert second.cached is True
    assert second.alerts.total == 0
    assert second.generated_at == first.generated_at

    await redis_client.delete(SUMMARY_CACHE_KEY)
    third = await _summary(database, cache, settings)
    assert third.cached is False
    assert third.alerts.critical == 1

async def test_resource_averages_use_trailing_window(database, cache, settings, make_server):
    server = await make_server()
    now = utc_now()
    async with database.session() as s:
        s.add_all([
            ServerMetric(server_id=server.id, cpu_usage=20, memory_usage=40, disk_usage=60, timestamp=now - timedelta(minutes=5)),
            ServerMetric(server_id=server.id, cpu_usage=40, memory_usage=60, disk_usage=80, timestamp=now - timedelta(minutes=10)),
            ServerMetric(server_id=server.id, cpu_usage=100, memory_usage=100, disk_usage=100, timestamp=now - timedelta(hours=3)),
        ])
        await s.commit()

    summary = await _summary(database, cache, settings)

    assert summary.resources.window_minutes == settings.SUMMARY_METRICS_WINDOW_MINUTES
    assert summary.resources.sample_count == 2
    assert summary.resources.avg_cpu_usage == 30.0
    assert summary.resources.avg_memory_usage == 50.0
    assert summary.resources.avg_disk_usage == 70.0

async def test_empty_window_has_no_averages(database, cache, settings):
    summary = await _summary(database, cache, settings)

    assert summary.resources.sample_count == 0
    assert summary.resources.avg_cpu_usage is None
    assert summary.servers.total == 0

async def test_unreachable_cache_falls_back_to_store(database, settings, make_server):
    await make_server()
    broken = SummaryCache(aioredis.Redis(host="127.0.0.1", port=1, socket_connect_timeout=0.2))

    summary = await _summary(database, broken, settings)

    assert summary.cached is False
    assert summary.servers.total == 1
    assert await broken.ping() is False
    await broken.close()
