import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud
from ..config import settings
from ..errors import Conflict, Gone, InvalidInput, Internal, NotFound, store_failure
from ..models import Link
from ..observability import CACHE_HITS, CACHE_MISSES, CODE_COLLISIONS_TOTAL, LINKS_CREATED_TOTAL
from ..redis import redis_client
from ..utils import generate_random_code, utc_now_rfc3339
from .expiration import is_expired, parse_rfc3339

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 8
CUSTOM_CODE_RE = re.compile(r"[A-Za-z0-9_-]{3,32}")
CACHE_TTL_SECONDS = 86400

# Single-segment paths routed before /{code}; such a code could never resolve
RESERVED_CODES = frozenset({"health", "metrics", "docs", "redoc"})


@dataclass
class CreatedLink:
    link: Link
    short_url: str


@dataclass
class ResolvedLink:
    code: str
    target_url: str
    expires_at: Optional[str] = None


def short_url_for(code: str, base_url: Optional[str] = None) -> str:
    return f"{(base_url or settings.BASE_URL).rstrip('/')}/{code}"


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "sqlstate", None) == "23505" or getattr(orig, "pgcode", None) == "23505":
        return True
    message = str(orig if orig is not None else exc).lower()
    # sqlite: "UNIQUE constraint failed", postgres: "duplicate key value violates unique constraint"
    return "unique constraint" in message or "duplicate key" in message


async def _try_insert(db: AsyncSession, link: Link) -> Optional[Link]:
    """Insert ``link``. Returns None when its code is already taken."""
    try:
        return await crud.create_link(db, link)
    except IntegrityError as e:
        await db.rollback()
        if is_unique_violation(e):
            return None
        logger.error(f"Insert of link {link.code} failed: {e.orig}")
        raise store_failure(e) from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Insert of link {link.code} failed: {e}")
        raise store_failure(e) from e


async def create_link(
    db: AsyncSession,
    target_url: str,
    custom_code: Optional[str] = None,
    expires_at: Optional[str] = None,
    creator_ip: Optional[str] = None,
    creator_user_agent: Optional[str] = None,
    base_url: Optional[str] = None,
) -> CreatedLink:
    target_url = (target_url or "").strip()
    if not (target_url.startswith("http://") or target_url.startswith("https://")):
        raise InvalidInput("url must start with http:// or https://")

    if expires_at is not None:
        expires_at = expires_at.strip()
        if parse_rfc3339(expires_at) is None:
            raise InvalidInput("expires_at must be an RFC3339 timestamp")

    def build(code: str) -> Link:
        return Link(
            code=code,
            target_url=target_url,
            created_at=utc_now_rfc3339(),
            expires_at=expires_at,
            created_ip=creator_ip,
            created_user_agent=creator_user_agent,
        )

    if custom_code is not None:
        if not CUSTOM_CODE_RE.fullmatch(custom_code):
            raise InvalidInput("custom_code must be 3-32 characters of [A-Za-z0-9_-]")
        if custom_code in RESERVED_CODES:
            raise InvalidInput(f"custom_code {custom_code!r} is reserved")

        link = await _try_insert(db, build(custom_code))
        if link is None:
            raise Conflict("custom code already in use")
        LINKS_CREATED_TOTAL.labels(kind="custom").inc()
    else:
        link = None
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            candidate = generate_random_code()
            if candidate in RESERVED_CODES:
                continue
            link = await _try_insert(db, build(candidate))
            if link is not None:
                break
            CODE_COLLISIONS_TOTAL.inc()
            logger.warning(f"Generated code {candidate} collided (attempt {attempt}/{MAX_CODE_ATTEMPTS})")
        else:
            raise Internal("failed to generate code")
        LINKS_CREATED_TOTAL.labels(kind="generated").inc()

    logger.info(f"Created link {link.code} -> {link.target_url}", extra={"short_code": link.code})
    return CreatedLink(link=link, short_url=short_url_for(link.code, base_url))


def _cache_ttl(expires_at: Optional[str]) -> int:
    if expires_at is None:
        return CACHE_TTL_SECONDS
    deadline = parse_rfc3339(expires_at)
    if deadline is None:
        return 0
    remaining = int((deadline - datetime.now(timezone.utc)).total_seconds())
    return min(remaining, CACHE_TTL_SECONDS)


async def _cached_link(code: str) -> Optional[ResolvedLink]:
    cached = await redis_client.get(f"link:{code}")
    if not cached:
        return None
    try:
        data = json.loads(cached)
        return ResolvedLink(code=code, target_url=data["target_url"], expires_at=data.get("expires_at"))
    except (json.JSONDecodeError, KeyError, TypeError):
        logger.warning(f"Discarding malformed cache entry for {code}")
        return None


async def resolve_link(db: AsyncSession, code: str, now: Optional[datetime] = None) -> ResolvedLink:
    """Find the target of ``code``, raising NotFound or Gone."""
    resolved = await _cached_link(code)
    if resolved is not None:
        CACHE_HITS.inc()
    else:
        CACHE_MISSES.inc()
        link = await crud.get_link_by_code(db, code)
        if link is None:
            raise NotFound("link not found")
        resolved = ResolvedLink(code=link.code, target_url=link.target_url, expires_at=link.expires_at)

        # Links are immutable, so a cached entry never goes stale before its TTL.
        ttl = _cache_ttl(resolved.expires_at)
        if ttl > 0:
            await redis_client.set(
                f"link:{code}",
                json.dumps({"target_url": resolved.target_url, "expires_at": resolved.expires_at}),
                ex=ttl,
            )

    if is_expired(resolved.expires_at, now):
        raise Gone("link expired")
    return resolved
