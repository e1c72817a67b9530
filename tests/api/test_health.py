"""Tests for the HTTP probes."""

import httpx
import pytest
from fastapi import FastAPI

from app.api.errors import app_error_handler
from app.api.health import router
from app.domain.live.room.room_domain import Room
from app.utils.app_errors import AppError
from tests.fixtures.media_fixtures import join_and_produce


def _build_app(room: Room | None) -> FastAPI:
    app = FastAPI()
    if room is not None:
        app.state.room = room
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.include_router(router)
    return app


@pytest.fixture
async def client(room: Room):
    transport = httpx.ASGITransport(app=_build_app(room))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def test_health(client: httpx.AsyncClient):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["results"] == "OK"


async def test_broadcast_status_idle(client: httpx.AsyncClient):
    """Test the status of a fresh room."""
    response = await client.get("/broadcast/status")

    results = response.json()["results"]
    assert response.status_code == 200
    assert results["ready"] is True
    assert results["peer_count"] == 0
    assert results["broadcast"]["state"] == "idle"


async def test_broadcast_status_active(client: httpx.AsyncClient, room: Room, fake_launcher):
    """Test the status reports the bridged producers and the transcoder pid."""
    _, producer_ids = await join_and_produce(room, "peer-a")
    await room.wait_background()

    response = await client.get("/broadcast/status")

    broadcast = response.json()["results"]["broadcast"]
    assert broadcast["state"] == "active"
    assert broadcast["transcoder_pid"] == fake_launcher.processes[0].pid
    assert set(producer_ids.values()) == {broadcast["audio_producer_id"], broadcast["video_producer_id"]}
    assert response.json()["results"]["producer_count"] == 2


async def test_broadcast_status_without_room():
    """Test the status probe reports E_NOT_READY before the room exists."""
    transport = httpx.ASGITransport(app=_build_app(None))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/broadcast/status")

    assert response.status_code == 503
    assert response.json()["errcode"] == "E_NOT_READY"
