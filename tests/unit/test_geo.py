import asyncio
import time
import httpx
import pytest
from prometheus_client import REGISTRY
from shortlinks.services.geo import (
    CountryResolver,
    HeaderCountryStrategy,
    IpLookupStrategy,
    is_lookup_candidate,
    parse_country_code,
    resolve_city,
)

LOOKUP_URL = "https://geo.test/{ip}/country/"

def lookup_with(handler) -> IpLookupStrategy:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return IpLookupStrategy(LOOKUP_URL, timeout=2.0, client=client)

@pytest.mark.asyncio
async def test_header_priority():
    strategy = HeaderCountryStrategy()
    headers = {"cf-ipcountry": "  ", "x-vercel-ip-country": " DE ", "x-country-code": "FR"}
    assert await strategy("1.2.3.4", headers) == "DE"
    assert await strategy("1.2.3.4", {}) is None

@pytest.mark.parametrize("ip,expected", [
    ("8.8.8.8", True),
    ("2001:4860:4860::8888", True),
    ("127.0.0.1", False),
    ("10.1.2.3", False),
    ("192.168.0.10", False),
    ("172.16.5.4", False),
    ("169.254.1.1", False),
    ("::1", False),
    ("fe80::1", False),
    ("unknown", False),
    ("not-an-ip", False),
    ("", False),
])
def test_is_lookup_candidate(ip, expected):
    assert is_lookup_candidate(ip) is expected

@pytest.mark.parametrize("body,expected", [
    ("RO\n", "RO"),
    ("us", "US"),
    ("Undefined", None),
    ("", None),
    ("R1", None),
    ('{"error": true}', None),
])
def test_parse_country_code(body, expected):
    assert parse_country_code(body) == expected

@pytest.mark.asyncio
async def test_lookup_success_is_cached():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(200, text="RO")

    strategy = lookup_with(handler)
    assert await strategy("8.8.8.8", {}) == "RO"
    assert await strategy("8.8.8.8", {}) == "RO"
    assert calls == ["https://geo.test/8.8.8.8/country/"]

@pytest.mark.asyncio
async def test_private_addresses_are_never_looked_up():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("lookup should have been skipped")

    strategy = lookup_with(handler)
    assert await strategy("192.168.1.1", {}) is None
    assert await strategy("unknown", {}) is None

@pytest.mark.asyncio
async def test_malformed_and_failed_answers_degrade_to_unknown():
    responses = iter([
        httpx.Response(200, text="Undefined"),
        httpx.Response(429, text="RO"),
    ])
    strategy = lookup_with(lambda request: next(responses))
    assert await strategy("8.8.8.8", {}) is None
    assert await strategy("8.8.8.8", {}) is None

@pytest.mark.asyncio
async def test_network_errors_degrade_to_unknown():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    strategy = lookup_with(handler)
    assert await strategy("8.8.8.8", {}) is None

@pytest.mark.asyncio
async def test_cache_is_bounded():
    strategy = lookup_with(lambda request: httpx.Response(200, text="NL"))
    strategy.cache_size = 2
    for ip in ("8.8.8.8", "8.8.4.4", "1.1.1.1"):
        await strategy(ip, {})
    assert list(strategy._cache) == ["8.8.4.4", "1.1.1.1"]

@pytest.mark.asyncio
async def test_resolver_chain_prefers_headers():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="US")

    resolver = CountryResolver([HeaderCountryStrategy(), lookup_with(handler)])
    assert await resolver.resolve("8.8.8.8", {"cf-ipcountry": "RO"}) == "RO"
    assert await resolver.resolve("8.8.8.8", {}) == "US"
    assert await resolver.resolve("10.0.0.1", {}) is None

@pytest.mark.asyncio
async def test_resolver_survives_a_broken_strategy():
    async def broken(ip, headers):
        raise RuntimeError("boom")

    resolver = CountryResolver([broken, HeaderCountryStrategy()])
    assert await resolver.resolve("8.8.8.8", {"cf-ipcountry": "RO"}) == "RO"

def test_city_from_headers():
    assert resolve_city({"x-vercel-ip-city": "Cluj"}) == "Cluj"
    assert resolve_city({}) is None

@pytest.mark.asyncio
async def test_slow_lookup_gives_up_at_timeout():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, text="RO")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    strategy = IpLookupStrategy(LOOKUP_URL, timeout=0.05, client=client)
    timeouts_before = REGISTRY.get_sample_value("geo_lookups_total", {"outcome": "timeout"}) or 0.0

    started = time.perf_counter()
    assert await strategy("8.8.8.8", {}) is None
    assert time.perf_counter() - started < 1.0

    timeouts_after = REGISTRY.get_sample_value("geo_lookups_total", {"outcome": "timeout"})
    assert timeouts_after == timeouts_before + 1
    assert "8.8.8.8" not in strategy._cache
