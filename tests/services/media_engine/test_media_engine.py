"""Tests for the media engine loader and the demo engine."""

import pytest

from app.app_config import MEDIA_CODECS
from app.schemas import MediaKind, TransportState
from app.services.media_engine import (
    EngineCallError,
    PlainTransportOptions,
    WebRtcTransportOptions,
    WorkerSettings,
    load_media_engine,
)
from app.services.media_engine.demo_engine import DemoMediaEngine
from app.utils.app_errors import AppError, AppErrorCode
from tests.fixtures.media_fixtures import PEER_DTLS, rtp_parameters_for


class TestLoadMediaEngine:
    def test_load_demo_engine(self):
        """Test the configured class path is imported and instantiated."""
        engine = load_media_engine(
            "app.services.media_engine.demo_engine:DemoMediaEngine",
            WorkerSettings(rtc_min_port=41000, rtc_max_port=41010),
        )

        assert isinstance(engine, DemoMediaEngine)
        assert engine.settings.rtc_min_port == 41000

    @pytest.mark.parametrize(
        "class_path",
        [
            "app.services.media_engine.demo_engine",
            "app.services.no_such_module:Engine",
            "app.services.media_engine.demo_engine:NoSuchEngine",
            "app.services.media_engine.demo_engine:DemoRouter",
        ],
    )
    def test_invalid_class_path(self, class_path: str):
        """Test bad class paths are reported as E_NOT_READY."""
        with pytest.raises(AppError) as exc_info:
            load_media_engine(class_path, WorkerSettings())
        assert exc_info.value.errcode == AppErrorCode.E_NOT_READY


class TestDemoEngine:
    async def test_router_assigns_payload_types(self, demo_engine):
        """Test router codecs receive dynamic payload types."""
        router = await demo_engine.create_router(MEDIA_CODECS)

        payload_types = [codec.preferred_payload_type for codec in router.rtp_capabilities.codecs]
        assert payload_types == [100, 101]

    async def test_webrtc_transport_connect(self, demo_engine):
        """Test connect moves the transport to CONNECTED."""
        router = await demo_engine.create_router(MEDIA_CODECS)
        transport = await router.create_webrtc_transport(WebRtcTransportOptions(announced_ip="203.0.113.5"))

        await transport.connect(dtls_parameters=PEER_DTLS)

        assert transport.state == TransportState.CONNECTED
        assert transport.descriptor.ice_candidates[0].ip == "203.0.113.5"

    async def test_consume_paused_with_router_codec(self, demo_engine):
        """Test a bridge consumer gets the router's payload type and starts paused."""
        router = await demo_engine.create_router(MEDIA_CODECS)
        ingress = await router.create_webrtc_transport(WebRtcTransportOptions())
        producer = await ingress.produce(kind=MediaKind.AUDIO, rtp_parameters=rtp_parameters_for(MediaKind.AUDIO))
        bridge = await router.create_plain_transport(PlainTransportOptions())
        await bridge.connect(ip="127.0.0.1")

        consumer = await bridge.consume(
            producer_id=producer.id, rtp_capabilities=router.rtp_capabilities, paused=True
        )

        assert consumer.paused is True
        assert consumer.rtp_parameters.codecs[0].payload_type == 100
        assert bridge.tuple.remote_ip == "127.0.0.1"

        producer.close()
        assert consumer.closed is True

    async def test_plain_connect_requires_port_without_comedia(self, demo_engine):
        """Test a port is mandatory when comedia is disabled."""
        router = await demo_engine.create_router(MEDIA_CODECS)
        bridge = await router.create_plain_transport(PlainTransportOptions(comedia=False))

        with pytest.raises(EngineCallError):
            await bridge.connect(ip="127.0.0.1")

    async def test_port_range_exhausted(self):
        """Test transports cannot be created once the port range is used up."""
        engine = DemoMediaEngine(WorkerSettings(rtc_min_port=42000, rtc_max_port=42000))
        await engine.start()
        router = await engine.create_router(MEDIA_CODECS)
        first = await router.create_plain_transport(PlainTransportOptions())

        with pytest.raises(EngineCallError):
            await router.create_plain_transport(PlainTransportOptions())

        first.close()
        second = await router.create_plain_transport(PlainTransportOptions())
        assert second.tuple.local_port == 42000
        await engine.close()

    async def test_crash_emits_died(self, demo_engine):
        """Test the worker death notification reaches listeners."""
        died = []
        demo_engine.on("died", lambda: died.append(True))

        demo_engine.crash()

        assert died == [True]
