import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from infrapulse.core.exceptions import NotFoundError, ValidationError
from infrapulse.models.alert import Alert, AlertSeverity
from infrapulse.services.alert_engine import AlertService, parse_severity

async def _count_alerts(session, **filters) -> int:
    stmt = select(func.count(Alert.id)).filter_by(**filters)
    return (await session.execute(stmt)).scalar_one()

async def test_repeated_raise_keeps_one_open_alert(session, make_server):
    server = await make_server()
    engine = AlertService(session)

    first, created = await engine.raise_alert("critical", "health_check", "down 1", server_id=server.id)
    assert created is True

    for i in range(2, 6):
        alert, created = await engine.raise_alert("critical", "health_check", f"down {i}", server_id=server.id)
        assert created is False
        assert alert.id == first.id

    assert await _count_alerts(session, server_id=server.id) == 1
    stored = await engine.get_alert(first.id)
    assert stored.message == "down 5"
    assert stored.updated_at >= stored.created_at

async def test_dedup_key_includes_severity_and_source(session, make_server):
    server = await make_server()
    engine = AlertService(session)

    a, _ = await engine.raise_alert("critical", "health_check", "down", server_id=server.id)
    b, created_b = await engine.raise_alert("warning", "health_check", "slow", server_id=server.id)
    c, created_c = await engine.raise_alert("critical", "prometheus", "cpu", server_id=server.id)

    assert created_b and created_c
    assert len({a.id, b.id, c.id}) == 3

async def test_concurrent_raises_create_a_single_alert(database, make_server):
    server = await make_server()

    async def _raise(i):
        async with database.session() as s:
            _, created = await AlertService(s).raise_alert(
                AlertSeverity.CRITICAL, "health_check", f"attempt {i}", server_id=server.id
            )
            return created

    results = await asyncio.gather(*(_raise(i) for i in range(8)))

    assert results.count(True) == 1
    async with database.session() as s:
        assert await _count_alerts(s, server_id=server.id, acknowledged=False) == 1

async def test_acknowledge_is_idempotent(session, make_server, users):
    server = await make_server()
    engine = AlertService(session)
    alert, _ = await engine.raise_alert("critical", "health_check", "down", server_id=server.id)

    acked, changed = await engine.acknowledge(alert.id, users["operator"].id)
    assert changed is True
    assert acked.acknowledged is True
    assert acked.acknowledged_by == users["operator"].id
    first_ack_at = acked.acknowledged_at
    assert first_ack_at is not None

    again, changed = await engine.acknowledge(alert.id, users["admin"].id)
    assert changed is False
    assert again.acknowledged_at == first_ack_at
    assert again.acknowledged_by == users["operator"].id

async def test_raise_after_acknowledge_opens_new_alert(session, make_server, users):
    server = await make_server()
    engine = AlertService(session)
    alert, _ = await engine.raise_alert("critical", "health_check", "down", server_id=server.id)
    await engine.acknowledge(alert.id, users["operator"].id)

    fresh, created = await engine.raise_alert("critical", "health_check", "down again", server_id=server.id)
    assert created is True
    assert fresh.id != alert.id

async def test_resolve_implies_acknowledgment(session, make_server, users):
    server = await make_server()
    engine = AlertService(session)
    alert, _ = await engine.raise_alert("warning", "disk", "90% full", server_id=server.id)

    resolved, changed = await engine.resolve(alert.id, users["operator"].id)
    assert changed is True
    assert resolved.state == "resolved"
    assert resolved.acknowledged is True
    assert resolved.acknowledged_at is not None
    assert resolved.resolved_at is not None

    _, changed = await engine.resolve(alert.id, users["admin"].id)
    assert changed is False

async def test_unknown_alert_is_not_found(session):
    engine = AlertService(session)
    with pytest.raises(NotFoundError):
        await engine.acknowledge(9999, 1)
    with pytest.raises(NotFoundError):
        await engine.resolve(9999, 1)
    with pytest.raises(NotFoundError):
        await engine.get_alert(9999)

async def test_refresh_open_alert_never_inserts(session, make_server):
    server = await make_server()
    engine = AlertService(session)

    assert await engine.refresh_open_alert(server.id, "health_check", "critical", "still down") is None
    assert await _count_alerts(session) == 0

async def test_list_alerts_filters_and_order(session, make_server, users):
    server = await make_server()
    engine = AlertService(session)
    first, _ = await engine.raise_alert("critical", "a", "one", server_id=server.id)
    second, _ = await engine.raise_alert("warning", "b", "two", server_id=server.id)
    third, _ = await engine.raise_alert("critical", "c", "three", server_id=server.id)
    await engine.acknowledge(first.id, users["operator"].id)

    open_alerts = await engine.list_alerts()
    assert [a.id for a in open_alerts] == [third.id, second.id]

    everything = await engine.list_alerts(include_acknowledged=True)
    assert [a.id for a in everything] == [third.id, second.id, first.id]

    critical = await engine.list_alerts(severity="CRITICAL")
    assert [a.id for a in critical] == [third.id]

    assert len(await engine.list_alerts(limit=0, include_acknowledged=True)) == 1

async def test_unknown_severity_is_rejected(session):
    with pytest.raises(ValidationError):
        await AlertService(session).list_alerts(severity="fatal")
    with pytest.raises(ValidationError):
        parse_severity("emergency")

async def test_active_counts_match_unacknowledged_alerts(session, make_server, users):
    server = await make_server()
    engine = AlertService(session)
    a, _ = await engine.raise_alert("critical", "x", "m", server_id=server.id)
    await engine.raise_alert("critical", "y", "m", server_id=server.id)
    await engine.raise_alert("info", "z", "m", server_id=server.id)
    await engine.acknowledge(a.id, users["operator"].id)

    counts = await engine.active_counts_by_severity()

    assert counts == {"critical": 1, "warning": 0, "info": 1, "total": 2}
    assert counts["total"] == await _count_alerts(session, acknowledged=False)

async def test_acknowledged_flag_requires_timestamp(session, make_server):
    server = await make_server()
    session.add(
        Alert(
            server_id=server.id,
            severity=AlertSeverity.INFO,
            source="manual",
            message="inconsistent",
            acknowledged=True,
            acknowledged_at=None,
        )
    )
    with pytest.raises(IntegrityError):
        await session.commit()
    await session.rollback()

async def test_raise_for_unknown_server_or_container_is_not_found(session):
    engine = AlertService(session)

    with pytest.raises(NotFoundError):
        await engine.raise_alert("critical", "prometheus", "cpu above 95%", server_id=9999)
    with pytest.raises(NotFoundError):
        await engine.raise_alert("critical", "prometheus", "cpu above 95%", container_id=4242)

    assert await _count_alerts(session) == 0

async def test_store_rejects_alert_for_missing_server(session):
    session.add(Alert(server_id=9999, severity=AlertSeverity.INFO, source="manual", message="orphan"))
    with pytest.raises(IntegrityError):
        await session.commit()
    await session.rollback()
