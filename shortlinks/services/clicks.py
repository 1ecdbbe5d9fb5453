import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from .. import crud
from ..models import Click
from ..observability import CLICKS_RECORDED_TOTAL, CLICK_RECORD_FAILURES_TOTAL
from ..utils import UNKNOWN_IP, first_forwarded_ip, utc_now_rfc3339
from .geo import CountryResolver, resolve_city

logger = logging.getLogger(__name__)


@dataclass
class RequestContext:
    """Request metadata captured for a click, verbatim and unvalidated."""

    ip: str = UNKNOWN_IP
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "RequestContext":
        lowered = {k.lower(): v for k, v in headers.items()}
        return cls(
            ip=first_forwarded_ip(lowered.get("x-forwarded-for")) or UNKNOWN_IP,
            user_agent=lowered.get("user-agent"),
            referer=lowered.get("referer"),
            headers=lowered,
        )


class ClickRecorder:
    """Appends one Click per successful resolution.

    ``record`` never raises: analytics must not take redirects down with it.
    It opens its own session because it runs after the request's session is
    gone.
    """

    def __init__(self, session_factory: async_sessionmaker, country_resolver: CountryResolver):
        self.session_factory = session_factory
        self.country_resolver = country_resolver

    async def record(self, code: str, context: RequestContext) -> Optional[Click]:
        try:
            country = await self.country_resolver.resolve(context.ip, context.headers)
            click = Click(
                code=code,
                at=utc_now_rfc3339(),
                ip=context.ip,
                user_agent=context.user_agent,
                referer=context.referer,
                country=country,
                city=resolve_city(context.headers),
            )
            async with self.session_factory() as db:
                await crud.create_click(db, click)
        except Exception:
            CLICK_RECORD_FAILURES_TOTAL.inc()
            logger.exception(f"Failed to record click for {code}", extra={"short_code": code})
            return None

        CLICKS_RECORDED_TOTAL.inc()
        return click
