import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError

from infrapulse.core.config import Settings
from infrapulse.core.database import Database, utc_now
from infrapulse.core.exceptions import DependencyError
from infrapulse.core.metrics import HEALTH_CHECK_PASSES
from infrapulse.core.timing_decorator import timing_debug
from infrapulse.models.alert import AlertSeverity
from infrapulse.models.server import Server, ServerStatus
from infrapulse.services.alert_engine import AlertService
from infrapulse.services.maintenance import MaintenanceService

logger = logging.getLogger(__name__)

HEALTH_CHECK_SOURCE = "health_check"
MAINTENANCE_STATE = "maintenance"

# the store itself is gone, not just one server's write
STORE_UNAVAILABLE_ERRORS = (DependencyError, OperationalError, InterfaceError)

Probe = Callable[[Server], Awaitable[bool]]

class HealthSamplerService:
    """
    Periodic health sampling of every managed server.

    - APScheduler interval job, one pass at a time
    - fixed pool of worker coroutines fed from an asyncio queue
    - one transaction per server: status transition and alert commit together
    """

    def __init__(self, database: Database, settings: Settings, probe: Optional[Probe] = None):
        self.database = database
        self.settings = settings
        # created in start(), the scheduler binds to the running loop
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False
        self._check_job_id = "health_sampling_pass"
        self._is_checking = False

        # keep a reference to background tasks so they are not garbage collected
        self._initial_task: Optional[asyncio.Task] = None
        self._current_pass: Optional[asyncio.Task] = None
        self._shutdown = asyncio.Event()

        self._max_workers = max(1, settings.HEALTH_CHECK_WORKER_COUNT)
        self._probe_timeout = settings.HEALTH_PROBE_TIMEOUT
        self._probe_port = settings.HEALTH_PROBE_PORT
        self._probe = probe or self._tcp_probe

        self.last_run: Optional[datetime] = None
        self.last_result: Optional[Dict] = None

    async def start(self):
        """Start the interval job and fire an initial pass"""
        if self.is_running:
            logger.warning("Health sampler already running")
            return

        try:
            loop = asyncio.get_running_loop()
            self._shutdown.clear()
            self.scheduler = AsyncIOScheduler(event_loop=loop)

            self.scheduler.add_job(
                self._scheduled_pass,
                "interval",
                minutes=self.settings.HEALTH_CHECK_INTERVAL,
                jitter=self.settings.HEALTH_CHECK_JITTER or None,
                id=self._check_job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

            self.scheduler.start()
            self.is_running = True

            logger.info(
                f"Health sampler started | interval: {self.settings.HEALTH_CHECK_INTERVAL}min | "
                f"workers: {self._max_workers} | probe: tcp/{self._probe_port} timeout {self._probe_timeout}s"
            )

            self._initial_task = loop.create_task(self._scheduled_pass())

            def _handle_start_exception(task):
                try:
                    task.result()
                except asyncio.CancelledError:
                    pass
                except Exception as ex:
                    logger.error(f"Initial sampling pass failed: {ex}")

            self._initial_task.add_done_callback(_handle_start_exception)

        except Exception as e:
            logger.error(f"Failed to start health sampler: {e}")
            await self.stop()
            raise

    async def stop(self):
        """Stop the job and cancel a pass in flight"""
        self._shutdown.set()

        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        was_running = self.is_running
        self.is_running = False

        for task in (self._initial_task, self._current_pass):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning(f"Sampling pass ended with error during shutdown: {e}")

        if was_running:
            logger.info("Health sampler stopped")

    async def _scheduled_pass(self):
        self._current_pass = asyncio.current_task()
        try:
            await self.run_pass()
        finally:
            self._current_pass = None

    @timing_debug
    async def run_pass(self) -> Dict:
        """
        Sample every server once.

        Servers covered by an active maintenance window are put into (or
        kept in) ``maintenance`` without being probed. Servers left in
        ``maintenance`` after their window ended are probed again.

        Returns counters for the pass: checked, healthy, unhealthy,
        maintenance, transitions, errors, elapsed (seconds). When the store
        goes away mid-pass the remaining servers are left for the next tick
        and ``abandoned`` counts them.
        """
        if self._is_checking:
            logger.warning("Previous sampling pass still running, skipping this one")
            HEALTH_CHECK_PASSES.labels(outcome="skipped").inc()
            return {"skipped": True}

        self._is_checking = True
        start = time.perf_counter()
        summary = {"checked": 0, "healthy": 0, "unhealthy": 0, "maintenance": 0, "transitions": 0, "errors": 0}

        try:
            try:
                async with self.database.session() as session:
                    result = await session.execute(select(Server).order_by(Server.id))
                    servers = list(result.scalars().all())
                    in_maintenance = await MaintenanceService(session).active_server_ids()
            except Exception as e:
                # store unreachable: nothing to do until the next tick
                logger.error(f"Sampling pass aborted, cannot load servers: {e}")
                HEALTH_CHECK_PASSES.labels(outcome="failed").inc()
                summary["errors"] += 1
                return self._finish(summary, start)

            if not servers:
                logger.info("No servers to sample")
            else:
                logger.info(
                    f"Sampling {len(servers)} servers, {len(in_maintenance)} under maintenance "
                    f"(workers: {self._max_workers})"
                )

                server_queue: asyncio.Queue = asyncio.Queue()
                for server in servers:
                    server_queue.put_nowait(server)

                store_down = asyncio.Event()
                workers = [
                    asyncio.create_task(self._worker(server_queue, i, summary, store_down, in_maintenance))
                    for i in range(min(self._max_workers, len(servers)))
                ]
                try:
                    await asyncio.gather(*workers)
                except asyncio.CancelledError:
                    for worker in workers:
                        worker.cancel()
                    raise

                if store_down.is_set():
                    summary["abandoned"] = server_queue.qsize()
                    HEALTH_CHECK_PASSES.labels(outcome="failed").inc()
                    return self._finish(summary, start)

            await self._refresh_alert_gauge()
            HEALTH_CHECK_PASSES.labels(outcome="completed").inc()
            return self._finish(summary, start)
        finally:
            self._is_checking = False

    def _finish(self, summary: Dict, start: float) -> Dict:
        summary["elapsed"] = round(time.perf_counter() - start, 3)
        self.last_run = utc_now()
        self.last_result = dict(summary)
        logger.info(
            f"Sampling pass done in {summary['elapsed']:.2f}s: checked={summary['checked']} "
            f"healthy={summary['healthy']} unhealthy={summary['unhealthy']} "
            f"maintenance={summary['maintenance']} transitions={summary['transitions']} "
            f"errors={summary['errors']}"
        )
        return summary

    async def _worker(
        self,
        server_queue: asyncio.Queue,
        worker_id: int,
        summary: Dict,
        store_down: asyncio.Event,
        in_maintenance: Set[int],
    ):
        while not self._shutdown.is_set() and not store_down.is_set():
            try:
                server = server_queue.get_nowait()
            except asyncio.QueueEmpty:
                break

            try:
                if server.id in in_maintenance:
                    outcome = await self._hold_in_maintenance(server)
                else:
                    outcome = await self._sample_server(server)
            except STORE_UNAVAILABLE_ERRORS as e:
                summary["errors"] += 1
                if not store_down.is_set():
                    store_down.set()
                    logger.error(f"Store unavailable while sampling server {server.id}, abandoning this pass: {e}")
                break
            except Exception as e:
                summary["errors"] += 1
                logger.error(f"Worker-{worker_id} failed sampling server {server.id}: {e}")
                continue

            if outcome is None:
                continue
            state, transitioned = outcome
            if state == MAINTENANCE_STATE:
                summary["maintenance"] += 1
            else:
                summary["checked"] += 1
                summary[state] += 1
            if transitioned:
                summary["transitions"] += 1

    async def _hold_in_maintenance(self, target: Server):
        """Put a server under an active window into maintenance. Returns ``(state, transitioned)``."""
        async with self.database.session() as session:
            try:
                result = await session.execute(select(Server).where(Server.id == target.id).with_for_update())
                server = result.scalar_one_or_none()
                if server is None:
                    await session.rollback()
                    return None

                transitioned = self._enter_maintenance(server)
                await session.commit()
                return MAINTENANCE_STATE, transitioned
            except Exception:
                await session.rollback()
                raise

    def _enter_maintenance(self, server: Server) -> bool:
        if server.status == ServerStatus.MAINTENANCE:
            return False
        logger.info(f"Server {server.id} ({server.ip_address}) entered maintenance, was {server.status}")
        server.status = ServerStatus.MAINTENANCE
        return True

    async def _sample_server(self, target: Server):
        """
        Probe one server and apply the result.

        The probe runs outside the transaction. Returns ``(state, transitioned)``
        with state ``healthy``, ``unhealthy`` or ``maintenance`` (a window
        opened while probing), or None when the server vanished meanwhile.
        """
        healthy = await self._probe_safely(target)

        async with self.database.session() as session:
            try:
                result = await session.execute(select(Server).where(Server.id == target.id).with_for_update())
                server = result.scalar_one_or_none()
                if server is None:
                    await session.rollback()
                    return None

                if await MaintenanceService(session).is_under_maintenance(server.id):
                    transitioned = self._enter_maintenance(server)
                    await session.commit()
                    return MAINTENANCE_STATE, transitioned

                previous = ServerStatus(server.status)
                server.last_checked = utc_now()
                transitioned = False

                if previous == ServerStatus.MAINTENANCE:
                    # window is over: the server comes back as if it had been online
                    logger.info(f"Server {server.id} ({server.ip_address}) left maintenance")
                    server.status = ServerStatus.ONLINE
                    previous = ServerStatus.ONLINE
                    transitioned = True

                if not healthy:
                    transitioned = await self._apply_failure(session, server, previous) or transitioned
                elif previous == ServerStatus.OFFLINE:
                    server.status = ServerStatus.ONLINE
                    transitioned = True
                    logger.info(f"Server {server.id} ({server.ip_address}) is back online")

                await session.commit()
                return ("healthy" if healthy else "unhealthy"), transitioned
            except Exception:
                await session.rollback()
                raise

    async def _apply_failure(self, session, server: Server, previous: ServerStatus) -> bool:
        alerts = AlertService(session)
        details = {
            "hostname": server.hostname,
            "ip_address": server.ip_address,
            "port": self._probe_port,
        }
        message = (
            f"Server {server.name} ({server.ip_address}) failed health check: "
            f"no response on port {self._probe_port}"
        )

        if previous == ServerStatus.OFFLINE:
            open_alert = await alerts.find_open_alert(server.id, HEALTH_CHECK_SOURCE, AlertSeverity.CRITICAL)
            if open_alert is not None:
                failures = int((open_alert.details or {}).get("consecutive_failures", 1)) + 1
                await alerts.refresh_open_alert(
                    server.id,
                    HEALTH_CHECK_SOURCE,
                    AlertSeverity.CRITICAL,
                    message,
                    details={**details, "consecutive_failures": failures},
                    commit=False,
                )
            return False

        server.status = ServerStatus.OFFLINE
        alert, created = await alerts.raise_alert(
            AlertSeverity.CRITICAL,
            HEALTH_CHECK_SOURCE,
            message,
            server_id=server.id,
            details={**details, "consecutive_failures": 1},
            commit=False,
        )
        logger.warning(
            f"Server {server.id} ({server.ip_address}) went offline, alert {alert.id} "
            f"{'raised' if created else 'refreshed'}"
        )
        return True

    async def _probe_safely(self, server: Server) -> bool:
        try:
            return bool(await self._probe(server))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Probe of server {server.id} ({server.ip_address}) raised: {e}")
            return False

    async def _tcp_probe(self, server: Server) -> bool:
        """Reachability check: a TCP connect to the probe port"""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(server.ip_address, self._probe_port),
                timeout=self._probe_timeout,
            )
        except (asyncio.TimeoutError, OSError):
            return False

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def _refresh_alert_gauge(self):
        try:
            async with self.database.session() as session:
                await AlertService(session).active_counts_by_severity()
        except Exception as e:
            logger.warning(f"Could not refresh active alert gauge: {e}")

    def get_status(self) -> dict:
        """Scheduler state for the status endpoint"""
        try:
            check_job = self.scheduler.get_job(self._check_job_id) if self.scheduler is not None else None
            return {
                "running": self.is_running,
                "checking": self._is_checking,
                "interval_minutes": self.settings.HEALTH_CHECK_INTERVAL,
                "concurrency": self._max_workers,
                "timeout_setting": self._probe_timeout,
                "next_run": check_job.next_run_time.isoformat() if check_job and check_job.next_run_time else None,
                "last_run": self.last_run.isoformat() if self.last_run else None,
                "last_result": self.last_result,
            }
        except Exception as e:
            return {"error": str(e)}
