"""FastAPI application wiring for the autoreply pipeline.

- Configures logging, Prometheus metrics and rate limiting.
- Builds the runtime container (repositories, lock store, queue, breakers,
  deduplication gate, worker pipeline) in the app lifespan and starts the
  worker pool when ``RUN_WORKERS`` is enabled.
- Exposes the gateway webhook, liveness, version and pipeline health
  endpoints.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .config import Settings
from .routers import health, webhooks
from .runtime import Runtime

load_dotenv()

logger = logging.getLogger(__name__)


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Create the API application.

    A prebuilt ``runtime`` (used by tests) is started and stopped by the
    lifespan like one built from the environment.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = runtime or Runtime.build(Settings.from_env())
        app.state.runtime = active
        await active.start()
        logger.info(
            "autoreply %s started (workers=%s)", __version__, active.settings.run_workers
        )
        try:
            yield
        finally:
            await active.stop()

    app = FastAPI(title="autoreply", version=__version__, lifespan=lifespan)
    init_logging(app)
    app.state.limiter = webhooks.limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    app.include_router(webhooks.router)
    app.include_router(health.router)

    @app.get("/api/health")
    async def liveness():
        """Liveness check with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )
    return app


app = create_app()
