"""Starlette application exposing health and stats endpoints while the ingestion pipeline runs"""

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from . import __version__
from .config import Settings
from .pipeline import IngestPipeline

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

PipelineFactory = Callable[[Settings], Awaitable[IngestPipeline]]


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


async def ping(request: Request):
    """Liveness probe. Answers the same whether or not the feed is connected."""
    return JSONResponse({"message": "pong"})


async def health_check(request: Request):
    """Health check endpoint to verify the server is running"""
    return JSONResponse({
        "status": "healthy",
        "service": "polyingest",
        "version": __version__,
    })


async def get_stats(request: Request):
    """Runtime counters for the pipeline, the feed connection and each sink"""
    pipeline: Optional[IngestPipeline] = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        return JSONResponse({"status": "not_initialized"}, status_code=503)
    return JSONResponse(pipeline.get_stats())


async def _run_feed(pipeline: IngestPipeline) -> None:
    try:
        await pipeline.run()
        logger.info("WebSocket feed stopped")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")


def create_app(
    settings: Optional[Settings] = None,
    pipeline_factory: PipelineFactory = IngestPipeline.from_settings,
) -> Starlette:
    """
    Build the application.

    Args:
        settings: Configuration; loaded from the environment at startup when omitted
        pipeline_factory: Coroutine building the pipeline from settings
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        app_settings = settings or Settings.from_env()
        logger.info("Starting Polymarket ingestion services...")

        pipeline = await pipeline_factory(app_settings)
        try:
            await pipeline.start()
        except Exception:
            await pipeline.close()
            raise

        app.state.pipeline = pipeline
        feed_task = asyncio.create_task(_run_feed(pipeline))
        logger.info("All services started successfully")

        try:
            yield
        finally:
            logger.info("Shutting down Polymarket ingestion services...")
            await pipeline.close()
            try:
                await asyncio.wait_for(feed_task, timeout=app_settings.ping_interval * 3)
            except asyncio.TimeoutError:
                logger.warning("WebSocket feed did not stop in time, cancelling")
                feed_task.cancel()
                await asyncio.gather(feed_task, return_exceptions=True)
            app.state.pipeline = None
            logger.info("All services shut down successfully")

    routes = [
        Route("/ping", ping, methods=["GET"]),
        Route("/health", health_check, methods=["GET"]),
        Route("/api/stats", get_stats, methods=["GET"]),
    ]

    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.pipeline = None
    return app


app = create_app()
