"""Media engine capability consumed by the room and the broadcast pipeline.

The engine owns everything below the signaling layer: ICE/DTLS/SRTP, RTP
routing and codec negotiation. This module only describes the surface the
application relies on. Concrete engines subclass these types; the one used at
runtime is picked by ``MEDIA_ENGINE_CLASS``.

Entity events mirror the engine's own notifications:

- ``close``: the entity was closed explicitly
- ``transportclose``: a producer/consumer was closed because its transport closed
- ``producerclose``: a consumer was closed because its producer closed
- ``died``: the engine worker exited (fatal)
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from app.schemas.media import (
    DtlsParameters,
    MediaKind,
    ProducerState,
    RouterCapabilities,
    RtpCodecCapability,
    RtpParameters,
    TransportDescriptor,
    TransportDirection,
    TransportState,
)

Listener = Callable[[], None]


class EngineEntity:
    """Base for engine objects: identity, closed flag and event listeners."""

    def __init__(self, entity_id: str | None = None) -> None:
        self.id = entity_id or str(uuid.uuid4())
        self._closed = False
        self._listeners: dict[str, list[Listener]] = {}

    @property
    def closed(self) -> bool:
        return self._closed

    def on(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def emit(self, event: str) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener()
            except Exception:
                logger.exception(f"Listener for '{event}' on {type(self).__name__} {self.id} failed")


class Producer(EngineEntity):
    """Inbound media of one kind received on an ingress transport."""

    def __init__(
        self,
        *,
        kind: MediaKind,
        rtp_parameters: RtpParameters,
        transport_id: str,
        entity_id: str | None = None,
    ) -> None:
        super().__init__(entity_id)
        self.kind = kind
        self.rtp_parameters = rtp_parameters
        self.transport_id = transport_id

    @property
    def state(self) -> ProducerState:
        return ProducerState.CLOSED if self.closed else ProducerState.ACTIVE

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.emit("close")

    def transport_closed(self) -> None:
        """Called by the owning transport when it closes."""
        if self._closed:
            return
        self._closed = True
        self.emit("transportclose")


class Consumer(EngineEntity, ABC):
    """Redirection of a producer's media towards another transport."""

    def __init__(
        self,
        *,
        producer_id: str,
        kind: MediaKind,
        rtp_parameters: RtpParameters,
        paused: bool,
        entity_id: str | None = None,
    ) -> None:
        super().__init__(entity_id)
        self.producer_id = producer_id
        self.kind = kind
        self.rtp_parameters = rtp_parameters
        self.paused = paused

    @abstractmethod
    async def resume(self) -> None: ...

    @abstractmethod
    async def pause(self) -> None: ...

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.emit("close")

    def transport_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.emit("transportclose")

    def producer_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.emit("producerclose")


class Transport(EngineEntity, ABC):
    """A network path carrying media, either from a peer or towards the transcoder."""

    direction: TransportDirection

    def __init__(self, entity_id: str | None = None) -> None:
        super().__init__(entity_id)
        self.state = TransportState.CREATED
        self.producers: dict[str, Producer] = {}
        self.consumers: dict[str, Consumer] = {}

    @abstractmethod
    async def connect(self, **params: Any) -> None: ...

    @abstractmethod
    async def produce(self, *, kind: MediaKind, rtp_parameters: RtpParameters) -> Producer: ...

    @abstractmethod
    async def consume(
        self,
        *,
        producer_id: str,
        rtp_capabilities: RouterCapabilities,
        paused: bool = False,
    ) -> Consumer: ...

    def close(self) -> None:
        """Close the transport and cascade closure to its producers and consumers."""
        if self._closed:
            return
        self._closed = True
        self.state = TransportState.CLOSED
        for producer in list(self.producers.values()):
            producer.transport_closed()
        for consumer in list(self.consumers.values()):
            consumer.transport_closed()
        self.producers.clear()
        self.consumers.clear()
        self.emit("close")


class WebRtcTransport(Transport, ABC):
    direction = TransportDirection.INGRESS_SEND

    @property
    @abstractmethod
    def descriptor(self) -> TransportDescriptor:
        """ICE/DTLS parameters the peer needs to connect."""

    @abstractmethod
    async def connect(self, *, dtls_parameters: DtlsParameters) -> None: ...  # type: ignore[override]


@dataclass(frozen=True)
class TransportTuple:
    local_ip: str
    local_port: int
    remote_ip: str | None = None
    remote_port: int | None = None


class PlainTransport(Transport, ABC):
    """Unencrypted RTP transport used to hand media to a local process."""

    direction = TransportDirection.EGRESS_BRIDGE

    @property
    @abstractmethod
    def tuple(self) -> TransportTuple: ...

    @abstractmethod
    async def connect(self, *, ip: str, port: int | None = None) -> None: ...  # type: ignore[override]


@dataclass(frozen=True)
class WebRtcTransportOptions:
    listen_ip: str = "0.0.0.0"
    announced_ip: str | None = None
    enable_udp: bool = True
    enable_tcp: bool = True
    prefer_udp: bool = True
    max_incoming_bitrate: int | None = None
    initial_available_outgoing_bitrate: int = 1000000


@dataclass(frozen=True)
class PlainTransportOptions:
    listen_ip: str = "127.0.0.1"
    rtcp_mux: bool = True
    comedia: bool = True


class Router(ABC):
    """Routes media between transports using a fixed codec set."""

    @property
    @abstractmethod
    def rtp_capabilities(self) -> RouterCapabilities: ...

    @abstractmethod
    async def create_webrtc_transport(self, options: WebRtcTransportOptions) -> WebRtcTransport: ...

    @abstractmethod
    async def create_plain_transport(self, options: PlainTransportOptions) -> PlainTransport: ...

    @abstractmethod
    def close(self) -> None: ...


@dataclass(frozen=True)
class WorkerSettings:
    rtc_min_port: int = 40000
    rtc_max_port: int = 49999
    log_level: str = "warn"
    log_tags: list[str] = field(default_factory=list)


class MediaEngine(EngineEntity, ABC):
    """Entry point of an engine binding: starts the worker and creates routers.

    Emits ``died`` when the worker exits unexpectedly.
    """

    def __init__(self, settings: WorkerSettings) -> None:
        super().__init__()
        self.settings = settings

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def create_router(self, media_codecs: list[RtpCodecCapability]) -> Router: ...

    @abstractmethod
    async def close(self) -> None: ...


class EngineCallError(Exception):
    """Raised by engine bindings when the engine rejects a request."""


__all__ = [
    "Consumer",
    "EngineCallError",
    "EngineEntity",
    "MediaEngine",
    "PlainTransport",
    "PlainTransportOptions",
    "Producer",
    "Router",
    "Transport",
    "TransportTuple",
    "WebRtcTransport",
    "WebRtcTransportOptions",
    "WorkerSettings",
]
