"""Best-effort country and city resolution for click events.

Country comes from the first strategy in a chain that produces a value:
trusted proxy headers first, then an HTTP lookup by client IP. Nothing in
here raises; every failure degrades to "unknown" (None).
"""

import asyncio
import ipaddress
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Mapping, Optional, Sequence

import httpx

from ..observability import GEO_LOOKUPS_TOTAL
from ..utils import UNKNOWN_IP

logger = logging.getLogger(__name__)

# Checked in order; set by the CDN / edge proxy in front of the service
COUNTRY_HEADERS = (
    "cf-ipcountry",
    "x-vercel-ip-country",
    "cloudfront-viewer-country",
    "x-country-code",
)

CITY_HEADERS = (
    "cf-ipcity",
    "x-vercel-ip-city",
)

CountryStrategy = Callable[[str, Mapping[str, str]], Awaitable[Optional[str]]]


def first_header(headers: Mapping[str, str], names: Sequence[str]) -> Optional[str]:
    for name in names:
        value = headers.get(name)
        if value and value.strip():
            return value.strip()
    return None


def is_lookup_candidate(ip: Optional[str]) -> bool:
    """Only public, well-formed addresses are worth a network lookup."""
    if not ip or ip == UNKNOWN_IP:
        return False
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return not (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_unspecified
        or addr.is_multicast
    )


def parse_country_code(body: str) -> Optional[str]:
    code = body.strip()
    if len(code) == 2 and code.isascii() and code.isalpha():
        return code.upper()
    return None


class HeaderCountryStrategy:
    def __init__(self, header_names: Sequence[str] = COUNTRY_HEADERS):
        self.header_names = tuple(header_names)

    async def __call__(self, ip: str, headers: Mapping[str, str]) -> Optional[str]:
        return first_header(headers, self.header_names)


class IpLookupStrategy:
    """Country by IP from a plain-text lookup service such as ipapi.co.

    ``url_template`` receives the address as ``{ip}``. Successful answers are
    kept in a bounded LRU; failures are not cached so they can be retried.
    """

    def __init__(
        self,
        url_template: str,
        timeout: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
        cache_size: int = 10000,
    ):
        self.url_template = url_template
        self.timeout = timeout
        self.client = client
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, str]" = OrderedDict()

    async def _fetch(self, url: str) -> httpx.Response:
        if self.client is not None:
            return await self.client.get(url, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url)

    def _remember(self, ip: str, country: str) -> None:
        self._cache[ip] = country
        self._cache.move_to_end(ip)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    async def __call__(self, ip: str, headers: Mapping[str, str]) -> Optional[str]:
        if not is_lookup_candidate(ip):
            return None

        cached = self._cache.get(ip)
        if cached is not None:
            self._cache.move_to_end(ip)
            return cached

        url = self.url_template.format(ip=ip)
        try:
            response = await asyncio.wait_for(self._fetch(url), timeout=self.timeout)
        except asyncio.TimeoutError:
            GEO_LOOKUPS_TOTAL.labels(outcome="timeout").inc()
            logger.warning(f"Country lookup for {ip} timed out after {self.timeout}s")
            return None
        except httpx.HTTPError as e:
            GEO_LOOKUPS_TOTAL.labels(outcome="error").inc()
            logger.warning(f"Country lookup for {ip} failed: {e}")
            return None

        if not response.is_success:
            GEO_LOOKUPS_TOTAL.labels(outcome="error").inc()
            logger.debug(f"Country lookup for {ip} returned {response.status_code}")
            return None

        country = parse_country_code(response.text)
        if country is None:
            GEO_LOOKUPS_TOTAL.labels(outcome="malformed").inc()
            logger.debug(f"Discarding country lookup answer for {ip}: {response.text[:32]!r}")
            return None

        GEO_LOOKUPS_TOTAL.labels(outcome="success").inc()
        self._remember(ip, country)
        return country


class CountryResolver:
    def __init__(self, strategies: Sequence[CountryStrategy]):
        self.strategies = list(strategies)

    async def resolve(self, ip: str, headers: Mapping[str, str]) -> Optional[str]:
        for strategy in self.strategies:
            try:
                country = await strategy(ip, headers)
            except Exception:
                logger.exception(f"Country strategy {type(strategy).__name__} failed")
                continue
            if country:
                return country
        return None


def resolve_city(headers: Mapping[str, str]) -> Optional[str]:
    return first_header(headers, CITY_HEADERS)


def build_country_resolver(settings, client: Optional[httpx.AsyncClient] = None) -> CountryResolver:
    strategies: list = [HeaderCountryStrategy()]
    if settings.GEO_LOOKUP_ENABLED:
        strategies.append(
            IpLookupStrategy(
                settings.GEO_LOOKUP_URL,
                timeout=settings.GEO_LOOKUP_TIMEOUT,
                client=client,
                cache_size=settings.GEO_CACHE_SIZE,
            )
        )
    return CountryResolver(strategies)
