"""Tests for the Socket.IO signaling dispatcher."""

from unittest.mock import AsyncMock, Mock

import pytest

from app.api.signaling.dispatcher import SignalingDispatcher, create_socketio_server
from app.domain.live.room.room_domain import Room
from app.schemas import BroadcastState, MediaKind
from tests.fixtures.media_fixtures import PEER_DTLS, rtp_parameters_for


@pytest.fixture
def dispatcher(room: Room) -> SignalingDispatcher:
    return SignalingDispatcher(room)


def _produce_payload(transport_id: str, kind: MediaKind) -> dict:
    return {
        "transportId": transport_id,
        "kind": kind.value,
        "rtpParameters": rtp_parameters_for(kind).to_wire(),
    }


class TestRequests:
    async def test_get_router_rtp_capabilities(self, dispatcher: SignalingDispatcher):
        """Test capabilities are returned in wire format."""
        ack = await dispatcher.get_router_rtp_capabilities("sid-1")

        assert [codec["mimeType"] for codec in ack["codecs"]] == ["audio/opus", "video/VP8"]
        assert ack["codecs"][0]["preferredPayloadType"] == 100

    async def test_full_publish_flow(self, dispatcher: SignalingDispatcher, room: Room):
        """Test create, connect and produce acknowledgements for one peer."""
        descriptor = await dispatcher.create_webrtc_transport("sid-1")
        assert set(descriptor) >= {"id", "iceParameters", "iceCandidates", "dtlsParameters"}

        connected = await dispatcher.connect_transport(
            "sid-1",
            {"transportId": descriptor["id"], "dtlsParameters": PEER_DTLS.to_wire()},
        )
        assert connected == "connected"

        audio = await dispatcher.produce("sid-1", _produce_payload(descriptor["id"], MediaKind.AUDIO))
        video = await dispatcher.produce("sid-1", _produce_payload(descriptor["id"], MediaKind.VIDEO))
        await room.wait_background()

        assert set(audio) == {"id"} and set(video) == {"id"}
        assert room.pipeline.state == BroadcastState.ACTIVE
        assert room.pipeline.selection.audio_producer_id == audio["id"]

    async def test_connect_unknown_transport(self, dispatcher: SignalingDispatcher):
        """Test an unknown transport is acknowledged with a failure payload."""
        ack = await dispatcher.connect_transport(
            "sid-1", {"transportId": "missing", "dtlsParameters": PEER_DTLS.to_wire()}
        )

        assert ack["errcode"] == "E_NOT_FOUND"
        assert "missing" in ack["error"]
        assert len(ack["erresid"]) == 10

    async def test_produce_invalid_payload(self, dispatcher: SignalingDispatcher, room: Room):
        """Test malformed payloads are rejected without touching the room."""
        ack = await dispatcher.produce("sid-1", {"transportId": "t1", "kind": "screen"})

        assert ack["errcode"] == "E_INVALID_PARAMS"
        assert room.producer_count() == 0

    async def test_missing_payload(self, dispatcher: SignalingDispatcher):
        """Test a request without payload is rejected."""
        ack = await dispatcher.connect_transport("sid-1")

        assert ack["errcode"] == "E_INVALID_PARAMS"

    async def test_unexpected_error_is_internal(self):
        """Test unexpected exceptions never reach the Socket.IO server."""
        room = Mock(spec=Room)
        room.create_ingress_transport = AsyncMock(side_effect=RuntimeError("boom"))

        ack = await SignalingDispatcher(room).create_webrtc_transport("sid-1")

        assert ack["errcode"] == "E_INTERNAL_ERROR"
        assert "boom" not in ack["error"]


class TestConnection:
    async def test_disconnect_removes_peer(self, dispatcher: SignalingDispatcher, room: Room):
        """Test a Socket.IO disconnect stops the broadcast fed by that peer."""
        descriptor = await dispatcher.create_webrtc_transport("sid-1")
        await dispatcher.produce("sid-1", _produce_payload(descriptor["id"], MediaKind.AUDIO))
        await dispatcher.produce("sid-1", _produce_payload(descriptor["id"], MediaKind.VIDEO))
        await room.wait_background()

        await dispatcher.on_disconnect("sid-1", "transport close")

        assert "sid-1" not in room.peers
        assert room.pipeline.state == BroadcastState.IDLE

    async def test_disconnect_errors_are_logged(self):
        """Test cleanup failures are swallowed after logging."""
        room = Mock(spec=Room)
        room.disconnect_peer = AsyncMock(side_effect=RuntimeError("boom"))

        await SignalingDispatcher(room).on_disconnect("sid-1")

        room.disconnect_peer.assert_awaited_once_with("sid-1")


async def test_register_handlers(room: Room):
    """Test every signaling event is bound on the Socket.IO server."""
    sio = create_socketio_server()
    SignalingDispatcher(room).register(sio)

    handlers = sio.handlers["/"]
    for event in ("connect", "disconnect", *SignalingDispatcher.EVENTS):
        assert event in handlers
