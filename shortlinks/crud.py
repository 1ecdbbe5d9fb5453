from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from .models import Link, Click
from typing import Optional

# Link CRUD
async def create_link(db: AsyncSession, link: Link) -> Link:
    db.add(link)
    await db.commit()
    await db.refresh(link)
    return link

async def get_link_by_code(db: AsyncSession, code: str) -> Optional[Link]:
    result = await db.execute(select(Link).where(Link.code == code))
    return result.scalar_one_or_none()

# Click CRUD
async def create_click(db: AsyncSession, click: Click) -> Click:
    db.add(click)
    await db.commit()
    return click
