import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from scrapegate.api.v1.health import router as health_router
from scrapegate.api.v1.router import api_router
from scrapegate.config import settings
from scrapegate.core.exceptions import ProxyNotFoundError, ScrapeError
from scrapegate.core.logging_config import configure_logging
from scrapegate.engine import ScrapeEngine
from scrapegate.middleware.request_context import RequestContextMiddleware

# Configure structured logging (must happen before any logger is created)
configure_logging(log_format=settings.LOG_FORMAT, log_level=settings.LOG_LEVEL)

# Initialize Sentry error tracking
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.SENTRY_ENVIRONMENT,
        release=f"scrapegate@{settings.APP_VERSION}",
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    owned = getattr(app.state, "engine", None) is None
    if owned:
        app.state.engine = ScrapeEngine()
    await app.state.engine.open()

    yield

    logger.info("Shutting down...")
    await app.state.engine.close()
    if owned:
        app.state.engine = None


async def _proxy_not_found_handler(request: Request, exc: ProxyNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _scrape_error_handler(request: Request, exc: ScrapeError):
    return JSONResponse(
        status_code=502, content={"detail": exc.message, "error_code": exc.code}
    )


def create_app(engine: ScrapeEngine | None = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Web content acquisition engine: engine routing, scored proxy "
        "rotation, retrying fetch and CSS selector extraction.",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.engine = engine

    # Request context middleware (must be added before other middleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ProxyNotFoundError, _proxy_not_found_handler)
    app.add_exception_handler(ScrapeError, _scrape_error_handler)

    app.include_router(api_router)
    # Health & metrics routes (no /v1 prefix)
    app.include_router(health_router)

    @app.get("/")
    async def root():
        return {
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "status": "running",
        }

    return app


app = create_app()
