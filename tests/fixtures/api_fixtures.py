"""Fixtures for HTTP and WebSocket tests against the room routers."""

import pytest
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from slowapi.errors import RateLimitExceeded

from caption_room.api.errors import (
    app_error_handler,
    app_validation_exception_handler,
    rate_limit_exceeded_handler,
)
from caption_room.api.v1.routers import audio, rooms
from caption_room.api.ws import room_ws
from caption_room.domain.room.room_domain import RoomService, get_room_service
from caption_room.services.api_rate_limiter import limiter
from caption_room.services.integrations.transcriber_service import DemoTranscriber
from caption_room.shared.api import health
from caption_room.utils.app_errors import AppError


def build_test_app(service: RoomService) -> FastAPI:
    """FastAPI app with every room router and the real error handlers."""
    app = FastAPI()
    app.state.limiter = limiter

    app.dependency_overrides[get_room_service] = lambda: service

    app.add_exception_handler(RequestValidationError, app_validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]

    app.include_router(health.router)
    app.include_router(room_ws.router)
    app.include_router(audio.legacy_router)
    app.include_router(rooms.router, prefix="/api/v1")
    app.include_router(audio.router, prefix="/api/v1")
    return app


@pytest.fixture
def room_service(test_config) -> RoomService:
    """Real RoomService whose transcriber always hears "hello"."""
    return RoomService(test_config, transcriber=DemoTranscriber(text="hello"))


@pytest.fixture
def client(room_service: RoomService):
    """Test client sharing one event loop across HTTP and WebSocket calls."""
    with TestClient(build_test_app(room_service)) as test_client:
        yield test_client
        test_client.portal.call(room_service.aclose)
