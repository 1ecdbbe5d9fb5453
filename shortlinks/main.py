import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Depends, BackgroundTasks, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .api.v1 import links
from .config import settings
from .database import AsyncSessionLocal, get_db, init_models
from .errors import Gone, LinkError, NotFound
from .logging_config import setup_logging
from .observability import PrometheusMiddleware, metrics_endpoint, REDIRECT_TOTAL, REDIRECT_404_TOTAL, REDIRECT_410_TOTAL
from .redis import redis_client
from .services.clicks import ClickRecorder, RequestContext
from .services.geo import build_country_resolver
from .services.links import resolve_link
from .services.rate_limiter import SlidingWindowRateLimiter

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

def configure_state(app: FastAPI, http_client: Optional[httpx.AsyncClient] = None):
    app.state.rate_limiter = SlidingWindowRateLimiter(
        settings.RATE_LIMIT_REQUESTS, settings.RATE_LIMIT_WINDOW_SECONDS
    )
    app.state.click_recorder = ClickRecorder(
        AsyncSessionLocal, build_country_resolver(settings, client=http_client)
    )

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    await init_models()
    await redis_client.connect()
    http_client = httpx.AsyncClient(timeout=settings.GEO_LOOKUP_TIMEOUT)
    configure_state(app, http_client)
    yield
    # Shutdown logic
    await http_client.aclose()
    await redis_client.close()

app = FastAPI(
    title="URL Shortener",
    description="Short link resolution with click analytics",
    version="1.0.0",
    lifespan=lifespan,
)
configure_state(app)

app.add_middleware(PrometheusMiddleware)

app.add_route("/metrics", metrics_endpoint)

app.include_router(links.router, prefix="/v1")

@app.exception_handler(LinkError)
async def link_error_handler(request: Request, exc: LinkError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

@app.get("/health")
async def health():
    return {"status": "ok"}

@app.get("/{code}")
async def redirect_to_url(
    code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db)
):
    try:
        resolved = await resolve_link(db, code)
    except NotFound:
        REDIRECT_404_TOTAL.inc()
        raise
    except Gone:
        REDIRECT_410_TOTAL.inc()
        raise

    # Recorded after the response is produced; failures stay inside the recorder
    recorder: ClickRecorder = request.app.state.click_recorder
    background_tasks.add_task(recorder.record, resolved.code, RequestContext.from_headers(request.headers))

    REDIRECT_TOTAL.inc()
    return RedirectResponse(url=resolved.target_url)
