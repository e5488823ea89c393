import asyncio
import logging
import time
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from infrapulse.core.database import utc_now
from infrapulse.core.exceptions import DependencyError
from infrapulse.models.alert import Alert, AlertSeverity
from infrapulse.models.maintenance import MaintenanceWindow
from infrapulse.models.server import Server, ServerStatus
from infrapulse.services.alert_engine import AlertService
from infrapulse.services.health_sampler import HEALTH_CHECK_SOURCE, HealthSamplerService

@pytest.fixture
def sampler(database, settings, probe):
    return HealthSamplerService(database, settings, probe=probe)

async def _load(database, server_id):
    async with database.session() as s:
        server = await s.get(Server, server_id)
        alerts = (await s.execute(select(Alert).where(Alert.server_id == server_id).order_by(Alert.id))).scalars().all()
        return server, list(alerts)

async def test_repeated_failures_raise_one_critical_alert(database, sampler, probe, make_server):
    server = await make_server("db-01", "10.0.0.10")
    probe.set(server.id, False)

    first = await sampler.run_pass()
    assert first["checked"] == 1
    assert first["unhealthy"] == 1
    assert first["transitions"] == 1

    for _ in range(4):
        result = await sampler.run_pass()
        assert result["transitions"] == 0

    stored, alerts = await _load(database, server.id)
    assert stored.status == ServerStatus.OFFLINE
    assert stored.last_checked is not None
    assert len(alerts) == 1
    assert alerts[0].severity == AlertSeverity.CRITICAL
    assert alerts[0].source == HEALTH_CHECK_SOURCE
    assert alerts[0].acknowledged is False
    assert alerts[0].details["consecutive_failures"] == 5
    assert "10.0.0.10" in alerts[0].message

async def test_recovery_sets_online_without_new_alert(database, sampler, probe, make_server):
    server = await make_server()
    probe.set(server.id, False)
    await sampler.run_pass()

    probe.set(server.id, True)
    result = await sampler.run_pass()

    assert result["healthy"] == 1
    assert result["transitions"] == 1
    stored, alerts = await _load(database, server.id)
    assert stored.status == ServerStatus.ONLINE
    # the outage alert stays until someone acknowledges it
    assert len(alerts) == 1
    assert alerts[0].acknowledged is False

async def test_no_new_alert_after_acknowledgment_while_still_offline(database, sampler, probe, make_server, users):
    server = await make_server()
    probe.set(server.id, False)
    await sampler.run_pass()

    _, alerts = await _load(database, server.id)
    async with database.session() as s:
        await AlertService(s).acknowledge(alerts[0].id, users["operator"].id)

    await sampler.run_pass()
    await sampler.run_pass()

    _, alerts = await _load(database, server.id)
    assert len(alerts) == 1
    assert alerts[0].acknowledged is True

async def test_outage_after_recovery_raises_again_once_acknowledged(database, sampler, probe, make_server, users):
    server = await make_server()
    probe.set(server.id, False)
    await sampler.run_pass()
    _, alerts = await _load(database, server.id)
    async with database.session() as s:
        await AlertService(s).acknowledge(alerts[0].id, users["operator"].id)

    probe.set(server.id, True)
    await sampler.run_pass()
    probe.set(server.id, False)
    await sampler.run_pass()

    _, alerts = await _load(database, server.id)
    assert len(alerts) == 2
    assert [a.acknowledged for a in alerts] == [True, False]

async def test_degraded_server_keeps_status_when_healthy(database, sampler, probe, make_server):
    server = await make_server(status=ServerStatus.DEGRADED)

    result = await sampler.run_pass()

    assert result["transitions"] == 0
    stored, alerts = await _load(database, server.id)
    assert stored.status == ServerStatus.DEGRADED
    assert stored.last_checked is not None
    assert alerts == []

async def _add_window(database, server_id, starts_in=timedelta(hours=-1), ends_in=timedelta(hours=1)):
    now = utc_now()
    async with database.session() as s:
        window = MaintenanceWindow(
            server_id=server_id, title="disk swap", starts_at=now + starts_in, ends_at=now + ends_in
        )
        s.add(window)
        await s.commit()
        await s.refresh(window)
        return window

async def test_active_window_puts_server_into_maintenance_without_sampling(database, sampler, probe, make_server):
    server = await make_server()
    other = await make_server("web-02", "10.0.0.2")
    probe.set(server.id, False)
    await _add_window(database, server.id)

    result = await sampler.run_pass()

    assert result["maintenance"] == 1
    assert result["checked"] == 1
    assert result["transitions"] == 1
    # only the other server was probed
    assert probe.calls == 1
    stored, alerts = await _load(database, server.id)
    assert stored.status == ServerStatus.MAINTENANCE
    assert stored.last_checked is None
    assert alerts == []

    again = await sampler.run_pass()
    assert again["maintenance"] == 1
    assert again["transitions"] == 0
    stored_other, _ = await _load(database, other.id)
    assert stored_other.status == ServerStatus.ONLINE

async def test_future_window_does_not_hold_the_server(database, sampler, probe, make_server):
    server = await make_server()
    await _add_window(database, server.id, starts_in=timedelta(hours=1), ends_in=timedelta(hours=2))

    result = await sampler.run_pass()

    assert result["maintenance"] == 0
    assert result["checked"] == 1
    stored, _ = await _load(database, server.id)
    assert stored.status == ServerStatus.ONLINE

async def test_cancelled_window_releases_server_on_next_pass(database, sampler, probe, make_server, users):
    server = await make_server()
    window = await _add_window(database, server.id)
    await sampler.run_pass()

    async with database.session() as s:
        stored_window = await s.get(MaintenanceWindow, window.id)
        stored_window.cancelled_at = utc_now()
        stored_window.cancelled_by = users["operator"].id
        await s.commit()

    result = await sampler.run_pass()

    assert result["maintenance"] == 0
    assert result["healthy"] == 1
    assert result["transitions"] == 1
    stored, alerts = await _load(database, server.id)
    assert stored.status == ServerStatus.ONLINE
    assert stored.last_checked is not None
    assert alerts == []

async def test_server_down_after_maintenance_goes_offline_with_alert(database, sampler, probe, make_server):
    # left in maintenance with only an expired window on record
    server = await make_server(status=ServerStatus.MAINTENANCE)
    await _add_window(database, server.id, starts_in=timedelta(hours=-3), ends_in=timedelta(hours=-1))
    probe.set(server.id, False)

    result = await sampler.run_pass()

    assert result["maintenance"] == 0
    assert result["unhealthy"] == 1
    assert result["transitions"] == 1
    stored, alerts = await _load(database, server.id)
    assert stored.status == ServerStatus.OFFLINE
    assert len(alerts) == 1
    assert alerts[0].severity == AlertSeverity.CRITICAL
    assert alerts[0].source == HEALTH_CHECK_SOURCE

async def test_window_opened_while_sampling_wins(database, settings, make_server):
    server = await make_server()

    async def check_then_schedule(target):
        await _add_window(database, target.id)
        return False

    sampler = HealthSamplerService(database, settings, probe=check_then_schedule)
    result = await sampler.run_pass()

    assert result["maintenance"] == 1
    assert result["checked"] == 0
    stored, alerts = await _load(database, server.id)
    assert stored.status == ServerStatus.MAINTENANCE
    assert alerts == []

async def test_probe_errors_count_as_unhealthy(database, settings, make_server):
    async def exploding_probe(server):
        raise RuntimeError("network stack on fire")

    server = await make_server()
    sampler = HealthSamplerService(database, settings, probe=exploding_probe)

    result = await sampler.run_pass()

    assert result["unhealthy"] == 1
    stored, _ = await _load(database, server.id)
    assert stored.status == ServerStatus.OFFLINE

async def test_many_servers_are_sampled_with_bounded_workers(database, sampler, probe, make_server):
    servers = [await make_server(f"node-{i:02d}", f"10.0.1.{i}") for i in range(1, 11)]
    for server in servers[::2]:
        probe.set(server.id, False)

    result = await sampler.run_pass()

    assert result["checked"] == 10
    assert result["unhealthy"] == 5
    assert result["errors"] == 0
    async with database.session() as s:
        counts = await AlertService(s).active_counts_by_severity()
    assert counts["critical"] == 5

async def test_overlapping_pass_is_skipped(sampler):
    sampler._is_checking = True
    assert await sampler.run_pass() == {"skipped": True}

async def test_start_runs_initial_pass_and_stop_shuts_down(database, sampler, probe, make_server):
    server = await make_server()
    probe.set(server.id, False)

    await sampler.start()
    try:
        status = sampler.get_status()
        assert status["running"] is True
        assert status["next_run"] is not None
        await asyncio.wait_for(sampler._initial_task, timeout=10)
    finally:
        await sampler.stop()

    assert sampler.get_status()["running"] is False
    assert sampler.last_result["unhealthy"] == 1
    stored, _ = await _load(database, server.id)
    assert stored.status == ServerStatus.OFFLINE

async def test_tcp_probe_reports_reachability(database, settings):
    async def _handle(reader, writer):
        writer.close()

    listener = await asyncio.start_server(_handle, "127.0.0.1", 0)
    port = listener.sockets[0].getsockname()[1]
    target = Server(id=1, name="local", hostname="local", ip_address="127.0.0.1")

    reachable = HealthSamplerService(database, settings.model_copy(update={"HEALTH_PROBE_PORT": port}))
    async with listener:
        assert await reachable._tcp_probe(target) is True

    # nothing listens on the port any more
    assert await reachable._tcp_probe(target) is False

async def test_unresponsive_host_times_out_as_unhealthy(database, settings, make_server, monkeypatch):
    server = await make_server("black-hole", "10.255.0.1")

    async def never_answers(host, port):
        await asyncio.Event().wait()

    monkeypatch.setattr(asyncio, "open_connection", never_answers)
    sampler = HealthSamplerService(database, settings.model_copy(update={"HEALTH_PROBE_TIMEOUT": 0.2}))

    started = time.perf_counter()
    result = await sampler.run_pass()

    assert time.perf_counter() - started < 5
    assert result["unhealthy"] == 1
    stored, alerts = await _load(database, server.id)
    assert stored.status == ServerStatus.OFFLINE
    assert len(alerts) == 1

async def test_failed_alert_write_rolls_back_status_change(database, sampler, probe, make_server, monkeypatch):
    server = await make_server()
    probe.set(server.id, False)

    async def failing_raise(self, *args, **kwargs):
        raise RuntimeError("alert insert failed")

    monkeypatch.setattr(AlertService, "raise_alert", failing_raise)

    result = await sampler.run_pass()

    assert result["errors"] == 1
    assert result["checked"] == 0
    stored, alerts = await _load(database, server.id)
    assert stored.status == ServerStatus.ONLINE
    assert stored.last_checked is None
    assert alerts == []

async def test_write_error_on_one_server_leaves_the_others_sampled(database, sampler, probe, make_server, monkeypatch):
    broken = await make_server("db-01", "10.0.0.1")
    fine = await make_server("web-01", "10.0.0.2")
    probe.set(broken.id, False)
    original = AlertService.raise_alert

    async def raise_alert(self, *args, server_id=None, **kwargs):
        if server_id == broken.id:
            raise IntegrityError("INSERT INTO alerts", {}, Exception("constraint failed"))
        return await original(self, *args, server_id=server_id, **kwargs)

    monkeypatch.setattr(AlertService, "raise_alert", raise_alert)

    result = await sampler.run_pass()

    assert result["errors"] == 1
    assert result["checked"] == 1
    assert result["healthy"] == 1
    stored_broken, _ = await _load(database, broken.id)
    stored_fine, _ = await _load(database, fine.id)
    assert stored_broken.status == ServerStatus.ONLINE
    assert stored_broken.last_checked is None
    assert stored_fine.last_checked is not None

async def test_pass_is_abandoned_once_when_store_goes_away(database, settings, probe, make_server, monkeypatch, caplog):
    servers = [await make_server(f"node-{i}", f"10.0.2.{i}") for i in range(1, 5)]
    for server in servers:
        probe.set(server.id, False)

    async def store_gone(self, *args, **kwargs):
        raise DependencyError("Store unavailable during alert creation")

    monkeypatch.setattr(AlertService, "raise_alert", store_gone)
    sampler = HealthSamplerService(
        database, settings.model_copy(update={"HEALTH_CHECK_WORKER_COUNT": 1}), probe=probe
    )

    with caplog.at_level(logging.ERROR, logger="infrapulse.services.health_sampler"):
        result = await sampler.run_pass()

    assert result["errors"] == 1
    assert result["abandoned"] == 3
    assert probe.calls == 1
    store_errors = [r for r in caplog.records if "Store unavailable" in r.getMessage()]
    assert len(store_errors) == 1
    assert sampler.last_result["abandoned"] == 3
