from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from infrapulse.core.cache import SummaryCache, get_summary_cache
from infrapulse.core.config import Settings
from infrapulse.core.database import get_async_db
from infrapulse.schemas.auth import Actor
from infrapulse.schemas.dashboard import DashboardSummary
from infrapulse.services.auth import get_current_actor, get_settings
from infrapulse.services.dashboard import DashboardService

router = APIRouter()

@router.get("/summary", response_model=DashboardSummary)
async def get_dashboard_summary(
    db: AsyncSession = Depends(get_async_db),
    cache: SummaryCache = Depends(get_summary_cache),
    settings: Settings = Depends(get_settings),
    actor: Actor = Depends(get_current_actor),
):
    """Fleet overview, served from cache for up to SUMMARY_CACHE_TTL seconds"""
    return await DashboardService(db, cache, settings).get_summary()
