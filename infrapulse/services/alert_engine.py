"""
Alert lifecycle engine.

Single place where an alert's state machine lives:

    open -> acknowledged -> resolved
    open -> resolved

An alert is *open* while ``acknowledged`` is false. Resolving an alert also
acknowledges it, so resolved alerts never count as active.

Deduplication: at most one open alert exists per (server, source, severity).
Raising an alert for a key that already has an open one refreshes that row
instead of inserting a new one. The partial unique index on ``alerts``
guards the same rule against concurrent writers.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from infrapulse.core.database import store_errors, utc_now
from infrapulse.core.exceptions import NotFoundError, ValidationError
from infrapulse.core.metrics import ACTIVE_ALERTS
from infrapulse.models.alert import Alert, AlertSeverity
from infrapulse.models.server import Container, Server

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 500

def parse_severity(value: Union[str, AlertSeverity, None]) -> Optional[AlertSeverity]:
    """Validate a severity filter, None passes through"""
    if value is None or isinstance(value, AlertSeverity):
        return value
    try:
        return AlertSeverity(value.strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in AlertSeverity)
        raise ValidationError(f"Unknown severity '{value}', expected one of: {allowed}")

class AlertService:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _open_alert_stmt(self, server_id: Optional[int], source: str, severity: AlertSeverity):
        stmt = select(Alert).where(
            Alert.source == source,
            Alert.severity == severity,
            Alert.acknowledged.is_(False),
            Alert.resolved.is_(False),
        )
        if server_id is None:
            stmt = stmt.where(Alert.server_id.is_(None))
        else:
            stmt = stmt.where(Alert.server_id == server_id)
        return stmt.order_by(Alert.created_at.desc(), Alert.id.desc()).limit(1).with_for_update()

    async def find_open_alert(self, server_id: Optional[int], source: str, severity: AlertSeverity) -> Optional[Alert]:
        result = await self.db.execute(self._open_alert_stmt(server_id, source, severity))
        return result.scalars().first()

    async def _ensure_targets_exist(self, server_id: Optional[int], container_id: Optional[int]):
        if server_id is not None:
            found = await self.db.scalar(select(Server.id).where(Server.id == server_id))
            if found is None:
                raise NotFoundError(f"Server {server_id} not found")
        if container_id is not None:
            found = await self.db.scalar(select(Container.id).where(Container.id == container_id))
            if found is None:
                raise NotFoundError(f"Container {container_id} not found")

    @staticmethod
    def _refresh(alert: Alert, message: str, details: Optional[Dict[str, Any]]):
        alert.message = message
        if details is not None:
            alert.details = details
        alert.updated_at = utc_now()

    async def _finish(self, alert: Alert, commit: bool):
        if commit:
            await self.db.commit()
            await self.db.refresh(alert)
        else:
            await self.db.flush()

    async def raise_alert(
        self,
        severity: Union[str, AlertSeverity],
        source: str,
        message: str,
        server_id: Optional[int] = None,
        container_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> Tuple[Alert, bool]:
        """
        Create an alert, or refresh the open one with the same dedup key.

        Returns ``(alert, created)``. With ``commit=False`` the change is only
        flushed so the caller can commit it together with its own writes.
        Unknown server or container ids raise NotFoundError.
        """
        severity = parse_severity(severity)

        with store_errors("alert creation"):
            try:
                await self._ensure_targets_exist(server_id, container_id)

                existing = await self.find_open_alert(server_id, source, severity)
                if existing is not None:
                    self._refresh(existing, message, details)
                    await self._finish(existing, commit)
                    logger.debug(f"Refreshed open alert {existing.id} ({severity.value}/{source}, server={server_id})")
                    return existing, False

                now = utc_now()
                alert = Alert(
                    severity=severity,
                    source=source,
                    message=message,
                    server_id=server_id,
                    container_id=container_id,
                    details=details,
                    acknowledged=False,
                    resolved=False,
                    created_at=now,
                    updated_at=now,
                )
                try:
                    async with self.db.begin_nested():
                        self.db.add(alert)
                except IntegrityError:
                    # a concurrent writer inserted the open alert first
                    winner = await self.find_open_alert(server_id, source, severity)
                    if winner is None:
                        raise
                    self._refresh(winner, message, details)
                    await self._finish(winner, commit)
                    logger.info(f"Alert {winner.id} was created concurrently, refreshed it instead")
                    return winner, False

                await self._finish(alert, commit)
                logger.info(
                    f"Alert {alert.id} raised: severity={severity.value} source={source} server={server_id} message={message!r}"
                )
                return alert, True
            except Exception:
                if commit:
                    await self.db.rollback()
                raise

    async def refresh_open_alert(
        self,
        server_id: Optional[int],
        source: str,
        severity: Union[str, AlertSeverity],
        message: str,
        details: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> Optional[Alert]:
        """Update the open alert for a key if there is one, never insert"""
        severity = parse_severity(severity)
        with store_errors("alert refresh"):
            existing = await self.find_open_alert(server_id, source, severity)
            if existing is None:
                return None
            self._refresh(existing, message, details)
            await self._finish(existing, commit)
            return existing

    async def get_alert(self, alert_id: int) -> Alert:
        with store_errors("alert lookup"):
            result = await self.db.execute(select(Alert).where(Alert.id == alert_id))
            alert = result.scalar_one_or_none()
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        return alert

    async def _get_for_update(self, alert_id: int) -> Alert:
        result = await self.db.execute(select(Alert).where(Alert.id == alert_id).with_for_update())
        alert = result.scalar_one_or_none()
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        return alert

    async def acknowledge(self, alert_id: int, actor_id: int) -> Tuple[Alert, bool]:
        """
        open -> acknowledged.

        Idempotent: acknowledging an acknowledged alert changes nothing and
        still succeeds. Returns ``(alert, changed)``.
        """
        with store_errors("alert acknowledgment"):
            alert = await self._get_for_update(alert_id)
            if alert.acknowledged:
                await self.db.commit()
                return alert, False

            now = utc_now()
            alert.acknowledged = True
            alert.acknowledged_by = actor_id
            alert.acknowledged_at = now
            alert.updated_at = now
            await self.db.commit()
            await self.db.refresh(alert)

        logger.info(f"Alert {alert_id} acknowledged by user {actor_id}")
        return alert, True

    async def resolve(self, alert_id: int, actor_id: int) -> Tuple[Alert, bool]:
        """open|acknowledged -> resolved. Resolution implies acknowledgment."""
        with store_errors("alert resolution"):
            alert = await self._get_for_update(alert_id)
            if alert.resolved:
                await self.db.commit()
                return alert, False

            now = utc_now()
            if not alert.acknowledged:
                alert.acknowledged = True
                alert.acknowledged_by = actor_id
                alert.acknowledged_at = now
            alert.resolved = True
            alert.resolved_by = actor_id
            alert.resolved_at = now
            alert.updated_at = now
            await self.db.commit()
            await self.db.refresh(alert)

        logger.info(f"Alert {alert_id} resolved by user {actor_id}")
        return alert, True

    async def list_alerts(
        self,
        severity: Union[str, AlertSeverity, None] = None,
        limit: int = 50,
        include_acknowledged: bool = False,
        server_id: Optional[int] = None,
    ) -> List[Alert]:
        """Alerts newest first, open ones only unless asked otherwise"""
        severity = parse_severity(severity)
        limit = max(1, min(MAX_LIST_LIMIT, int(limit)))

        stmt = select(Alert)
        if not include_acknowledged:
            stmt = stmt.where(Alert.acknowledged.is_(False))
        if severity is not None:
            stmt = stmt.where(Alert.severity == severity)
        if server_id is not None:
            stmt = stmt.where(Alert.server_id == server_id)
        stmt = stmt.order_by(Alert.created_at.desc(), Alert.id.desc()).limit(limit)

        with store_errors("alert listing"):
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

    async def active_counts_by_severity(self) -> Dict[str, int]:
        """Unacknowledged alerts per severity, also pushed to the Prometheus gauge"""
        stmt = (
            select(Alert.severity, func.count(Alert.id))
            .where(Alert.acknowledged.is_(False))
            .group_by(Alert.severity)
        )
        with store_errors("alert counting"):
            result = await self.db.execute(stmt)
            rows = result.all()

        counts = {severity.value: 0 for severity in AlertSeverity}
        for severity, count in rows:
            counts[AlertSeverity(severity).value] = int(count)

        for name, count in counts.items():
            ACTIVE_ALERTS.labels(severity=name).set(count)

        counts["total"] = sum(counts.values())
        return counts
