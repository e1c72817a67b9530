"""In-process media engine used for local runs and tests.

No RTP flows through it. It keeps the same object model and bookkeeping as a
real engine: transports get ports from the configured RTC range, producers
are validated against the router codecs, consumers receive negotiated RTP
parameters with the router's payload types, and closure cascades through
``transportclose``/``producerclose`` notifications.
"""

from __future__ import annotations

import asyncio
import secrets

from loguru import logger

from app.schemas.media import (
    DtlsFingerprint,
    DtlsParameters,
    IceCandidate,
    IceParameters,
    MediaKind,
    RouterCapabilities,
    RtpCodecCapability,
    RtpCodecParameters,
    RtpParameters,
    TransportDescriptor,
    TransportState,
)

from .base import (
    Consumer,
    EngineCallError,
    MediaEngine,
    PlainTransport,
    PlainTransportOptions,
    Producer,
    Router,
    TransportTuple,
    WebRtcTransport,
    WebRtcTransportOptions,
    WorkerSettings,
)

# First dynamic RTP payload type handed out to router codecs
_FIRST_DYNAMIC_PAYLOAD_TYPE = 100


class _PortAllocator:
    def __init__(self, min_port: int, max_port: int) -> None:
        if min_port > max_port:
            raise ValueError(f"Invalid RTC port range {min_port}-{max_port}")
        self._min = min_port
        self._max = max_port
        self._next = min_port
        self._in_use: set[int] = set()

    def allocate(self) -> int:
        span = self._max - self._min + 1
        for _ in range(span):
            port = self._next
            self._next = self._min if port >= self._max else port + 1
            if port not in self._in_use:
                self._in_use.add(port)
                return port
        raise EngineCallError("No free port left in RTC port range")

    def release(self, port: int) -> None:
        self._in_use.discard(port)


class DemoConsumer(Consumer):
    async def resume(self) -> None:
        if self.closed:
            raise EngineCallError(f"Consumer {self.id} is closed")
        self.paused = False

    async def pause(self) -> None:
        if self.closed:
            raise EngineCallError(f"Consumer {self.id} is closed")
        self.paused = True


class _DemoTransportMixin:
    """Produce/consume bookkeeping shared by both transport flavours."""

    _router: DemoRouter

    async def produce(self, *, kind: MediaKind, rtp_parameters: RtpParameters) -> Producer:
        self._ensure_open()  # type: ignore[attr-defined]
        if not rtp_parameters.codecs:
            raise EngineCallError("rtpParameters must contain at least one codec")
        codec = self._router.rtp_capabilities.codec_for(kind)
        offered = rtp_parameters.codecs[0].mime_type.lower()
        if codec is None or codec.mime_type.lower() != offered:
            raise EngineCallError(f"Unsupported {kind} codec {rtp_parameters.codecs[0].mime_type}")

        producer = Producer(kind=kind, rtp_parameters=rtp_parameters, transport_id=self.id)  # type: ignore[attr-defined]
        self.producers[producer.id] = producer  # type: ignore[attr-defined]
        self._router.register_producer(producer)
        await asyncio.sleep(0)
        return producer

    async def consume(
        self,
        *,
        producer_id: str,
        rtp_capabilities: RouterCapabilities,
        paused: bool = False,
    ) -> Consumer:
        self._ensure_open()  # type: ignore[attr-defined]
        producer = self._router.get_producer(producer_id)
        if producer is None or producer.closed:
            raise EngineCallError(f"Producer {producer_id} not found")
        codec = rtp_capabilities.codec_for(producer.kind)
        if codec is None or codec.preferred_payload_type is None:
            raise EngineCallError(f"Cannot consume {producer.kind} producer with given capabilities")

        consumer = DemoConsumer(
            producer_id=producer.id,
            kind=producer.kind,
            rtp_parameters=RtpParameters(
                codecs=[
                    RtpCodecParameters(
                        mime_type=codec.mime_type,
                        payload_type=codec.preferred_payload_type,
                        clock_rate=codec.clock_rate,
                        channels=codec.channels,
                        parameters=dict(codec.parameters),
                    )
                ]
            ),
            paused=paused,
        )
        self.consumers[consumer.id] = consumer  # type: ignore[attr-defined]
        producer.on("close", consumer.producer_closed)
        producer.on("transportclose", consumer.producer_closed)
        await asyncio.sleep(0)
        return consumer


class DemoWebRtcTransport(_DemoTransportMixin, WebRtcTransport):
    def __init__(self, router: DemoRouter, options: WebRtcTransportOptions, port: int) -> None:
        super().__init__()
        self._router = router
        self._options = options
        self._port = port
        self._descriptor = TransportDescriptor(
            id=self.id,
            ice_parameters=IceParameters(
                username_fragment=secrets.token_hex(8),
                password=secrets.token_hex(16),
            ),
            ice_candidates=[
                IceCandidate(
                    foundation="udpcandidate",
                    priority=1076302079,
                    ip=options.announced_ip or options.listen_ip,
                    port=port,
                    protocol="udp" if options.enable_udp else "tcp",
                )
            ],
            dtls_parameters=DtlsParameters(
                role="auto",
                fingerprints=[
                    DtlsFingerprint(
                        algorithm="sha-256",
                        value=":".join(secrets.token_hex(1).upper() for _ in range(32)),
                    )
                ],
            ),
        )

    @property
    def descriptor(self) -> TransportDescriptor:
        return self._descriptor

    def _ensure_open(self) -> None:
        if self.closed:
            raise EngineCallError(f"Transport {self.id} is closed")

    async def connect(self, *, dtls_parameters: DtlsParameters) -> None:  # type: ignore[override]
        self._ensure_open()
        if self.state != TransportState.CREATED:
            raise EngineCallError(f"connect() already called on transport {self.id}")
        if not dtls_parameters.fingerprints:
            raise EngineCallError("dtlsParameters must contain at least one fingerprint")
        self.state = TransportState.CONNECTING
        await asyncio.sleep(0)
        # The transport may have been closed while the handshake was pending
        self._ensure_open()
        self.state = TransportState.CONNECTED

    def close(self) -> None:
        if not self.closed:
            self._router.release_port(self._port)
        super().close()


class DemoPlainTransport(_DemoTransportMixin, PlainTransport):
    def __init__(self, router: DemoRouter, options: PlainTransportOptions, port: int) -> None:
        super().__init__()
        self._router = router
        self._options = options
        self._tuple = TransportTuple(local_ip=options.listen_ip, local_port=port)

    @property
    def tuple(self) -> TransportTuple:
        return self._tuple

    def _ensure_open(self) -> None:
        if self.closed:
            raise EngineCallError(f"Transport {self.id} is closed")

    async def connect(self, *, ip: str, port: int | None = None) -> None:  # type: ignore[override]
        self._ensure_open()
        if port is None and not self._options.comedia:
            raise EngineCallError("port is required when comedia is disabled")
        self._tuple = TransportTuple(
            local_ip=self._tuple.local_ip,
            local_port=self._tuple.local_port,
            remote_ip=ip,
            remote_port=port,
        )
        self.state = TransportState.CONNECTED
        await asyncio.sleep(0)

    def close(self) -> None:
        if not self.closed:
            self._router.release_port(self._tuple.local_port)
        super().close()


class DemoRouter(Router):
    def __init__(self, media_codecs: list[RtpCodecCapability], ports: _PortAllocator) -> None:
        self._ports = ports
        self._producers: dict[str, Producer] = {}
        self._transports: dict[str, WebRtcTransport | PlainTransport] = {}
        self._closed = False
        self._capabilities = RouterCapabilities(
            codecs=[
                codec.model_copy(
                    update={"preferred_payload_type": _FIRST_DYNAMIC_PAYLOAD_TYPE + index}
                )
                for index, codec in enumerate(media_codecs)
            ]
        )

    @property
    def rtp_capabilities(self) -> RouterCapabilities:
        return self._capabilities

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise EngineCallError("Router is closed")

    async def create_webrtc_transport(self, options: WebRtcTransportOptions) -> WebRtcTransport:
        self._ensure_open()
        transport = DemoWebRtcTransport(self, options, self._ports.allocate())
        self._transports[transport.id] = transport
        transport.on("close", lambda: self._transports.pop(transport.id, None))
        await asyncio.sleep(0)
        return transport

    async def create_plain_transport(self, options: PlainTransportOptions) -> PlainTransport:
        self._ensure_open()
        transport = DemoPlainTransport(self, options, self._ports.allocate())
        self._transports[transport.id] = transport
        transport.on("close", lambda: self._transports.pop(transport.id, None))
        await asyncio.sleep(0)
        return transport

    def register_producer(self, producer: Producer) -> None:
        self._producers[producer.id] = producer
        producer.on("close", lambda: self._producers.pop(producer.id, None))
        producer.on("transportclose", lambda: self._producers.pop(producer.id, None))

    def get_producer(self, producer_id: str) -> Producer | None:
        return self._producers.get(producer_id)

    def release_port(self, port: int) -> None:
        self._ports.release(port)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for transport in list(self._transports.values()):
            transport.close()
        self._transports.clear()


class DemoMediaEngine(MediaEngine):
    def __init__(self, settings: WorkerSettings) -> None:
        super().__init__(settings)
        self._ports = _PortAllocator(settings.rtc_min_port, settings.rtc_max_port)
        self._routers: list[DemoRouter] = []
        self.pid: int | None = None

    async def start(self) -> None:
        self.pid = secrets.randbelow(30000) + 1000
        logger.info(
            f"Demo media engine started (pid={self.pid}, ports={self.settings.rtc_min_port}-"
            f"{self.settings.rtc_max_port}, log_level={self.settings.log_level})"
        )

    async def create_router(self, media_codecs: list[RtpCodecCapability]) -> Router:
        if self.closed:
            raise EngineCallError("Media engine is closed")
        router = DemoRouter(media_codecs, self._ports)
        self._routers.append(router)
        return router

    def crash(self) -> None:
        """Simulate the worker dying."""
        logger.error(f"Demo media engine worker {self.pid} died")
        self._closed = True
        self.emit("died")

    async def close(self) -> None:
        if self.closed:
            return
        self._closed = True
        for router in self._routers:
            router.close()
        self._routers.clear()
        logger.info("Demo media engine closed")


__all__ = ["DemoMediaEngine", "DemoRouter"]
