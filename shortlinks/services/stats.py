import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..errors import NotFound, store_failure
from ..models import Click, Link
from ..schemas import CountryStats, DayStats, LinkStats, LinkSummary, RecentClick
from .expiration import is_expired

DAYS_LIMIT = 30
TOP_COUNTRIES_LIMIT = 10
RECENT_CLICKS_LIMIT = 25

logger = logging.getLogger(__name__)


async def get_totals(db: AsyncSession, code: str) -> tuple:
    """(total clicks, distinct non-null IPs) for a code"""
    result = await db.execute(
        select(
            func.count(Click.id),
            func.count(distinct(Click.ip)),
        ).where(Click.code == code)
    )
    total, unique = result.one()
    return total or 0, unique or 0


async def get_clicks_by_day(db: AsyncSession, code: str, limit: int = DAYS_LIMIT) -> List[DayStats]:
    """Clicks per calendar day, newest day first"""
    day = func.substr(Click.at, 1, 10).label("day")
    result = await db.execute(
        select(
            day,
            func.count(Click.id).label("clicks"),
            func.count(distinct(Click.ip)).label("unique_visitors"),
        )
        .where(Click.code == code)
        .group_by(day)
        .order_by(day.desc())
        .limit(limit)
    )
    return [
        DayStats(day=row.day, clicks=row.clicks, unique_visitors=row.unique_visitors)
        for row in result
    ]


async def get_top_countries(db: AsyncSession, code: str, limit: int = TOP_COUNTRIES_LIMIT) -> List[CountryStats]:
    clicks = func.count(Click.id).label("clicks")
    result = await db.execute(
        select(Click.country, clicks)
        .where(Click.code == code, Click.country.isnot(None))
        .group_by(Click.country)
        .order_by(clicks.desc(), Click.country)
        .limit(limit)
    )
    return [CountryStats(country=row.country, clicks=row.clicks) for row in result]


async def get_recent_clicks(db: AsyncSession, code: str, limit: int = RECENT_CLICKS_LIMIT) -> List[RecentClick]:
    result = await db.execute(
        select(Click)
        .where(Click.code == code)
        .order_by(Click.at.desc(), Click.id.desc())
        .limit(limit)
    )
    return [
        RecentClick(
            at=click.at,
            ip=click.ip,
            country=click.country,
            user_agent=click.user_agent,
            referer=click.referer,
        )
        for click in result.scalars()
    ]


async def get_stats(db: AsyncSession, code: str) -> LinkStats:
    """Complete analytics for a link"""
    link = await crud.get_link_by_code(db, code)
    if link is None:
        raise NotFound("link not found")

    total_clicks, unique_visitors = await get_totals(db, code)

    return LinkStats(
        code=link.code,
        target_url=link.target_url,
        total_clicks=total_clicks,
        unique_visitors=unique_visitors,
        clicks_by_day=await get_clicks_by_day(db, code),
        top_countries=await get_top_countries(db, code),
        recent_clicks=await get_recent_clicks(db, code),
    )


async def list_link_summaries(db: AsyncSession, now: Optional[datetime] = None) -> List[LinkSummary]:
    """Every link with its click totals, newest first"""
    total = func.count(Click.id).label("total_clicks")
    unique = func.count(distinct(Click.ip)).label("unique_visitors")
    stmt = (
        select(Link, total, unique)
        .outerjoin(Click, Click.code == Link.code)
        .group_by(Link.code)
        .order_by(Link.created_at.desc(), Link.code)
    )

    try:
        result = await db.execute(stmt)
        rows = result.all()
    except SQLAlchemyError as e:
        logger.error(f"Listing link summaries failed: {e}")
        raise store_failure(e) from e

    return [
        LinkSummary(
            code=link.code,
            target_url=link.target_url,
            created_at=link.created_at,
            expires_at=link.expires_at,
            expired=is_expired(link.expires_at, now),
            total_clicks=total_clicks,
            unique_visitors=unique_visitors,
        )
        for link, total_clicks, unique_visitors in rows
    ]
