"""Tests for PeerRegistry."""

from unittest.mock import Mock

import pytest

from app.app_config import MEDIA_CODECS
from app.domain.live.room.peer_registry import PeerRegistry, first_registered
from app.schemas import MediaKind, ProducerState, TransportState
from app.services.media_engine import WebRtcTransportOptions
from app.utils.app_errors import AppError, AppErrorCode
from tests.fixtures.media_fixtures import rtp_parameters_for


@pytest.fixture
async def router(demo_engine):
    return await demo_engine.create_router(MEDIA_CODECS)


async def _transport(router):
    return await router.create_webrtc_transport(WebRtcTransportOptions())


class TestTransports:
    async def test_add_transport_creates_peer(self, router):
        """Test the first transport creates the peer."""
        registry = PeerRegistry()
        transport = await _transport(router)

        peer = registry.add_transport("peer-a", transport)

        assert peer.peer_id == "peer-a"
        assert registry.get_transport("peer-a", transport.id) is transport
        assert len(registry) == 1

    async def test_get_transport_unknown_peer(self):
        """Test unknown peers raise E_NOT_FOUND."""
        with pytest.raises(AppError) as exc_info:
            PeerRegistry().get_transport("ghost", "t1")
        assert exc_info.value.errcode == AppErrorCode.E_NOT_FOUND
        assert "t1" in exc_info.value.errmesg

    async def test_closed_transport_pruned(self, router):
        """Test a closed transport is dropped from its peer and no longer found."""
        registry = PeerRegistry()
        transport = await _transport(router)
        registry.add_transport("peer-a", transport)

        transport.close()

        assert registry.get_peer("peer-a").transports == {}
        with pytest.raises(AppError) as exc_info:
            registry.get_transport("peer-a", transport.id)
        assert exc_info.value.errcode == AppErrorCode.E_NOT_FOUND

    async def test_transport_close_reported_to_callback(self, router):
        """Test transport closure is reported to the owner callback."""
        on_closed = Mock()
        registry = PeerRegistry(on_transport_closed=on_closed)
        transport = await _transport(router)
        registry.add_transport("peer-a", transport)

        transport.close()

        on_closed.assert_called_once_with("peer-a", transport.id)

    async def test_closed_transport_still_listed_not_returned(self, router):
        """Test get_transport rejects a closed transport even while it is still recorded."""
        registry = PeerRegistry(on_transport_closed=Mock())
        transport = await _transport(router)
        registry.add_transport("peer-a", transport)

        transport.close()

        assert transport.id in registry.get_peer("peer-a").transports
        with pytest.raises(AppError) as exc_info:
            registry.get_transport("peer-a", transport.id)
        assert exc_info.value.errcode == AppErrorCode.E_NOT_FOUND

    async def test_get_transport_unknown_transport(self, router):
        """Test unknown transports raise E_NOT_FOUND."""
        registry = PeerRegistry()
        registry.add_transport("peer-a", await _transport(router))

        with pytest.raises(AppError) as exc_info:
            registry.get_transport("peer-a", "missing")
        assert exc_info.value.errcode == AppErrorCode.E_NOT_FOUND


class TestProducers:
    async def test_add_producer_records_in_order(self, router):
        """Test producers are indexed in registration order across peers."""
        registry = PeerRegistry()
        first = await _transport(router)
        second = await _transport(router)
        registry.add_transport("peer-a", first)
        registry.add_transport("peer-b", second)

        video_b = await registry.add_producer("peer-b", second.id, MediaKind.VIDEO, rtp_parameters_for(MediaKind.VIDEO))
        video_a = await registry.add_producer("peer-a", first.id, MediaKind.VIDEO, rtp_parameters_for(MediaKind.VIDEO))

        assert registry.producers() == [video_b, video_a]
        assert registry.count_producers() == 2
        assert registry.find_producer_by_kind(MediaKind.VIDEO) is video_b
        assert registry.find_producer_by_kind(MediaKind.AUDIO) is None
        assert registry.owner_of(video_a.id) == "peer-a"
        assert video_b.transport_id == second.id

    async def test_add_producer_engine_rejection(self, router):
        """Test engine rejections become E_ENGINE_ERROR and nothing is recorded."""
        registry = PeerRegistry()
        transport = await _transport(router)
        registry.add_transport("peer-a", transport)
        rtp_parameters = rtp_parameters_for(MediaKind.AUDIO)
        rtp_parameters.codecs = []

        with pytest.raises(AppError) as exc_info:
            await registry.add_producer("peer-a", transport.id, MediaKind.AUDIO, rtp_parameters)

        assert exc_info.value.errcode == AppErrorCode.E_ENGINE_ERROR
        assert registry.count_producers() == 0

    async def test_transport_close_routes_to_callback(self, router):
        """Test a producer closed by its transport is reported to the owner callback."""
        on_closed = Mock()
        registry = PeerRegistry(on_producer_closed=on_closed)
        transport = await _transport(router)
        registry.add_transport("peer-a", transport)
        producer = await registry.add_producer("peer-a", transport.id, MediaKind.AUDIO, rtp_parameters_for(MediaKind.AUDIO))

        transport.close()

        on_closed.assert_called_once_with("peer-a", producer.id)
        assert producer.state == ProducerState.CLOSED

    async def test_transport_close_without_callback_discards(self, router):
        """Test without a callback the registry drops the producer itself."""
        registry = PeerRegistry()
        transport = await _transport(router)
        registry.add_transport("peer-a", transport)
        await registry.add_producer("peer-a", transport.id, MediaKind.AUDIO, rtp_parameters_for(MediaKind.AUDIO))

        transport.close()

        assert registry.count_producers() == 0
        assert registry.get_peer("peer-a").producers == {}

    async def test_first_registered_skips_closed(self, router):
        """Test closed producers are never selected."""
        registry = PeerRegistry()
        transport = await _transport(router)
        registry.add_transport("peer-a", transport)
        first = await registry.add_producer("peer-a", transport.id, MediaKind.AUDIO, rtp_parameters_for(MediaKind.AUDIO))
        second = await registry.add_producer("peer-a", transport.id, MediaKind.AUDIO, rtp_parameters_for(MediaKind.AUDIO))

        first.close()

        assert first_registered(registry.producers(), MediaKind.AUDIO) is second


class TestRemovePeer:
    async def test_remove_peer_closes_everything(self, router):
        """Test removing a peer closes its transports and forgets its producers."""
        on_closed = Mock()
        registry = PeerRegistry(on_producer_closed=on_closed)
        transport = await _transport(router)
        registry.add_transport("peer-a", transport)
        producer = await registry.add_producer("peer-a", transport.id, MediaKind.VIDEO, rtp_parameters_for(MediaKind.VIDEO))

        peer = registry.remove_peer("peer-a")

        assert peer is not None and producer.id in peer.producers
        assert transport.state == TransportState.CLOSED
        assert producer.closed is True
        assert registry.count_producers() == 0
        assert "peer-a" not in registry
        # Removal is not reported as an out-of-band closure
        on_closed.assert_not_called()

    async def test_remove_unknown_peer(self):
        """Test removing an unknown peer is a no-op."""
        assert PeerRegistry().remove_peer("ghost") is None
