from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from infrapulse.core.database import get_async_db
from infrapulse.schemas.auth import Actor
from infrapulse.schemas.server import ContainerResponse
from infrapulse.services.auth import get_current_actor
from infrapulse.services.server import ServerService

router = APIRouter()

@router.get("", response_model=List[ContainerResponse])
async def list_containers(
    server_id: Optional[int] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_async_db),
    actor: Actor = Depends(get_current_actor),
):
    return await ServerService(db).get_containers(server_id=server_id, skip=skip, limit=limit)
