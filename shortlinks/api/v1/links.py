from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from ...database import get_db
from ...schemas import LinkCreate, LinkResponse, LinkStats, LinkSummary
from ...services.links import create_link
from ...services.rate_limiter import client_key, enforce_create_rate_limit
from ...services.stats import get_stats, list_link_summaries

router = APIRouter()

@router.post("/links", response_model=LinkResponse, status_code=status.HTTP_201_CREATED, dependencies=[Depends(enforce_create_rate_limit)])
async def shorten_link(
    link_in: LinkCreate,
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    created = await create_link(
        db,
        target_url=link_in.url,
        custom_code=link_in.custom_code,
        expires_at=link_in.expires_at,
        creator_ip=client_key(request),
        creator_user_agent=request.headers.get("user-agent"),
    )
    link = created.link

    return LinkResponse(
        code=link.code,
        short_url=created.short_url,
        target_url=link.target_url,
        created_at=link.created_at,
        expires_at=link.expires_at,
    )

@router.get("/links", response_model=List[LinkSummary])
async def list_links(db: AsyncSession = Depends(get_db)):
    return await list_link_summaries(db)

@router.get("/links/{code}/stats", response_model=LinkStats)
async def link_stats(
    code: str,
    db: AsyncSession = Depends(get_db)
):
    return await get_stats(db, code)
