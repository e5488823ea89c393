from contextlib import asynccontextmanager
from typing import Optional
import logging
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import SQLAlchemyError
from starlette.routing import Match

from infrapulse.api.v1.api import api_router
from infrapulse.core.cache import SummaryCache
from infrapulse.core.config import Settings, settings as default_settings
from infrapulse.core.database import Database
from infrapulse.core.exceptions import (
    InfraPulseException,
    infrapulse_exception_handler,
    sqlalchemy_exception_handler,
)
from infrapulse.core.logging import setup_logging
from infrapulse.core.metrics import REQUEST_COUNT, REQUEST_DURATION
from infrapulse.services.alert_engine import AlertService
from infrapulse.services.health_sampler import HealthSamplerService, Probe

logger = logging.getLogger(__name__)

def route_template(routes, scope, prefix: str = "") -> Optional[str]:
    """
    Full path template of the route serving ``scope``, e.g. ``/api/v1/alerts/{alert_id}``.

    Included routers may be nested (mounts) rather than flattened into the
    app, so prefixes are accumulated while walking down.
    """
    for route in routes:
        match, child_scope = route.matches(scope)
        if match != Match.FULL:
            continue
        path = prefix + (getattr(route, "path_format", None) or getattr(route, "path", None) or "")
        nested = getattr(route, "routes", None)
        if nested:
            return route_template(nested, {**scope, **child_scope}, path) or path
        return path
    return None

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    database: Database = app.state.database
    sampler: HealthSamplerService = app.state.sampler

    await database.create_all()
    logger.info(f"{settings.PROJECT_NAME} {settings.VERSION} starting ({settings.ENVIRONMENT})")

    if settings.HEALTH_CHECK_ENABLED:
        try:
            await sampler.start()
        except Exception as e:
            logger.error(f"Failed to start health sampler: {e}")
    else:
        logger.info("Health sampler disabled by configuration")

    yield

    try:
        await sampler.stop()
    except Exception as e:
        logger.error(f"Failed to stop health sampler: {e}")

    await app.state.cache.close()
    await database.dispose()
    logger.info("Shutdown complete")

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Flatten pydantic errors into readable messages"""
    logger.warning(f"Request validation failed {request.url}: {exc.errors()}")

    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"][1:])
        errors.append(f"{field}: {error['msg']}")

    return JSONResponse(
        status_code=422,
        content={
            "code": "REQUEST_VALIDATION_ERROR",
            "detail": "Request validation failed",
            "errors": errors,
            "message": "; ".join(errors),
        },
    )

def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    cache: Optional[SummaryCache] = None,
    probe: Optional[Probe] = None,
) -> FastAPI:
    """
    Build the application.

    Every long-lived resource (engine, redis client, sampler) is created here
    and kept on ``app.state``; tests pass their own instances in.
    """
    settings = settings or default_settings
    setup_logging(settings)

    database = database or Database(settings)
    cache = cache or SummaryCache.from_url(settings.REDIS_URL)

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.state.cache = cache
    app.state.sampler = HealthSamplerService(database, settings, probe=probe)
    app.state.started_at = time.monotonic()

    @app.middleware("http")
    async def prometheus_middleware(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        # label by route template so path parameters do not explode the series
        endpoint = route_template(request.app.router.routes, request.scope) or "unmatched"

        REQUEST_COUNT.labels(method=request.method, endpoint=endpoint, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=request.method, endpoint=endpoint, status=response.status_code).observe(
            process_time
        )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(InfraPulseException, infrapulse_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/health")
    async def health_check(request: Request):
        """Liveness plus dependency status. 503 only when the store is down."""
        database_ok = await request.app.state.database.ping()
        cache_ok = await request.app.state.cache.ping()

        if not database_ok:
            status = "unhealthy"
        elif not cache_ok:
            status = "degraded"
        else:
            status = "healthy"

        body = {
            "status": status,
            "database": "ok" if database_ok else "unavailable",
            "cache": "ok" if cache_ok else "unavailable",
            "uptime": round(time.monotonic() - request.app.state.started_at, 3),
            "version": settings.VERSION,
            "sampler_running": request.app.state.sampler.is_running,
        }
        return JSONResponse(status_code=200 if database_ok else 503, content=body)

    @app.get("/metrics")
    async def metrics(request: Request):
        """Prometheus exposition, with the active alert gauge recounted from the store"""
        try:
            async with request.app.state.database.session() as session:
                await AlertService(session).active_counts_by_severity()
        except Exception as e:
            logger.warning(f"Could not refresh active alert gauge before scrape: {e}")
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/")
    async def root():
        return {"message": f"{settings.PROJECT_NAME} API Server"}

    return app

if __name__ == "__main__":
    import uvicorn

    # the app is built by the factory, nothing is wired at import time
    uvicorn.run("infrapulse.main:create_app", factory=True, host="0.0.0.0", port=8000)
