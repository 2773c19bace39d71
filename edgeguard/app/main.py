from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request

from edgeguard.app.core.config import Settings, settings
from edgeguard.app.core.logging import get_logger, setup_logging
from edgeguard.app.middleware.edge_filter import EdgeFilterMiddleware
from edgeguard.app.services.models import FilterMode
from edgeguard.app.services.pipeline import EdgeFilterPipeline, build_pipeline


def create_app(
    config: Optional[Settings] = None,
    pipeline: Optional[EdgeFilterPipeline] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Settings to use (defaults to the environment settings)
        pipeline: Prebuilt pipeline; built from ``config`` when omitted

    Returns:
        Configured FastAPI application instance
    """
    config = config or settings
    setup_logging(config)
    logger = get_logger(__name__)

    if pipeline is None:
        pipeline = build_pipeline(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Verify the store on startup and release connections on shutdown."""
        await pipeline.startup()
        logger.info("Application startup complete", extra={"mode": pipeline.mode.value})
        yield
        await pipeline.aclose()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="EdgeGuard",
        description="Edge admission filter with geo, user-agent and rate limit checks and attack alerts",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.edge_pipeline = pipeline

    app.add_middleware(
        EdgeFilterMiddleware,
        pipeline=pipeline,
        country_headers=config.country_headers,
        excluded_prefixes=config.excluded_path_prefixes,
        key_prefix=config.rate_limit_prefix,
        trust_forwarded_for=config.trust_forwarded_for,
    )

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Health check reporting whether the filter is enforcing."""
        current: EdgeFilterPipeline = request.app.state.edge_pipeline
        return {
            "status": "ok" if current.mode is FilterMode.ENFORCED else "degraded",
            "mode": current.mode.value,
            "stages": list(current.stage_names),
        }

    return app


# Create the application instance
app = create_app()
