"""
Tests for the HTTP surface and service lifespan.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.testclient import TestClient

from polyingest import __version__
from polyingest.app import create_app
from polyingest.config import Settings
from polyingest.errors import FeedConnectionError


def fake_pipeline(run_side_effect=None):
    pipeline = MagicMock()
    pipeline.start = AsyncMock()
    pipeline.run = AsyncMock(side_effect=run_side_effect)
    pipeline.close = AsyncMock()
    pipeline.get_stats.return_value = {"trades_processed": 7}
    return pipeline


def factory_for(pipeline):
    async def factory(settings):
        return pipeline
    return factory


@pytest.fixture
def settings():
    return Settings(kafka_enabled=False, ping_interval=0.1)


class TestRoutes:
    """Test endpoints without running the lifespan."""

    def test_ping(self, settings):
        client = TestClient(create_app(settings))
        response = client.get("/ping")
        assert response.status_code == 200
        assert response.json() == {"message": "pong"}

    def test_health(self, settings):
        client = TestClient(create_app(settings))
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "polyingest", "version": __version__}

    def test_stats_before_startup(self, settings):
        client = TestClient(create_app(settings))
        response = client.get("/api/stats")
        assert response.status_code == 503
        assert response.json() == {"status": "not_initialized"}


class TestLifespan:
    """Test pipeline startup and shutdown through the application lifespan."""

    def test_pipeline_started_and_closed(self, settings):
        pipeline = fake_pipeline()
        app = create_app(settings, pipeline_factory=factory_for(pipeline))

        with TestClient(app) as client:
            response = client.get("/api/stats")
            assert response.status_code == 200
            assert response.json() == {"trades_processed": 7}

        pipeline.start.assert_awaited_once()
        pipeline.run.assert_awaited_once()
        pipeline.close.assert_awaited_once()
        assert app.state.pipeline is None

    def test_ping_unaffected_by_feed_failure(self, settings):
        pipeline = fake_pipeline(run_side_effect=FeedConnectionError("Connection lost"))
        app = create_app(settings, pipeline_factory=factory_for(pipeline))

        with TestClient(app) as client:
            assert client.get("/ping").json() == {"message": "pong"}

        pipeline.close.assert_awaited_once()

    def test_start_failure_closes_pipeline(self, settings):
        pipeline = fake_pipeline()
        pipeline.start.side_effect = FeedConnectionError("Failed to create Kafka producer")
        app = create_app(settings, pipeline_factory=factory_for(pipeline))

        with pytest.raises(FeedConnectionError):
            with TestClient(app):
                pass

        pipeline.close.assert_awaited_once()
        pipeline.run.assert_not_awaited()

    def test_stuck_feed_cancelled_on_shutdown(self, settings):
        async def hang():
            await asyncio.sleep(60)

        pipeline = fake_pipeline(run_side_effect=hang)
        app = create_app(settings, pipeline_factory=factory_for(pipeline))

        with TestClient(app) as client:
            assert client.get("/api/stats").status_code == 200

        pipeline.close.assert_awaited_once()
