from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
import time

# Metrics definitions
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"]
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0]
)

CACHE_HITS = Counter("cache_hits_total", "Total resolution cache hits")
CACHE_MISSES = Counter("cache_misses_total", "Total resolution cache misses")
REDIRECT_TOTAL = Counter("redirect_total", "Total redirects")
REDIRECT_404_TOTAL = Counter("redirect_404_total", "Total failed redirects (unknown code)")
REDIRECT_410_TOTAL = Counter("redirect_410_total", "Total failed redirects (expired link)")
RATE_LIMITED_TOTAL = Counter("rate_limited_total", "Total rate limited requests")
LINKS_CREATED_TOTAL = Counter("links_created_total", "Total links created", ["kind"])
CODE_COLLISIONS_TOTAL = Counter("code_collisions_total", "Generated codes rejected by the unique constraint")
CLICKS_RECORDED_TOTAL = Counter("clicks_recorded_total", "Total clicks persisted")
CLICK_RECORD_FAILURES_TOTAL = Counter("click_record_failures_total", "Clicks dropped because recording failed")
GEO_LOOKUPS_TOTAL = Counter("geo_lookups_total", "Country lookups by IP", ["outcome"])


def metric_path_for(path: str) -> str:
    # Short codes and stats paths would explode label cardinality
    if path.startswith("/v1/links/") and path.endswith("/stats"):
        return "/v1/links/{code}/stats"
    if path in ("/v1/links", "/metrics", "/health"):
        return path
    if len(path) > 1 and "/" not in path[1:]:
        return "/{code}"
    return path


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        process_time = time.perf_counter() - start_time

        metric_path = metric_path_for(request.url.path)
        HTTP_REQUESTS_TOTAL.labels(method=request.method, path=metric_path, status=str(response.status_code)).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=request.method, path=metric_path).observe(process_time)

        return response

def metrics_endpoint(request: Request):
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
