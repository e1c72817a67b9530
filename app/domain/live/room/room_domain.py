"""Room domain service - peers, their media and the broadcast pipeline of the single room."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from loguru import logger

from app.app_config import MEDIA_CODECS
from app.domain.live.broadcast.broadcast_models import BroadcastSettings, BroadcastStatus
from app.domain.live.broadcast.broadcast_pipeline import BroadcastPipeline
from app.schemas.broadcast_state import BroadcastState
from app.schemas.media import (
    DtlsParameters,
    MediaKind,
    RouterCapabilities,
    RtpCodecCapability,
    RtpParameters,
    TransportDescriptor,
)
from app.services.media_engine import MediaEngine, Router, WebRtcTransport, WebRtcTransportOptions
from app.services.transcoder import TranscoderLauncher
from app.utils.app_errors import AppError, AppErrorCode

from .peer_registry import PeerRegistry, ProducerSelector, first_registered
from .room_models import RoomStatus


class Room:
    """Session orchestrator.

    Owns the router, the peer registry and the broadcast pipeline. Every
    mutation of the registry or the pipeline goes through this class.
    """

    def __init__(
        self,
        engine: MediaEngine,
        launcher: TranscoderLauncher,
        *,
        media_codecs: list[RtpCodecCapability] | None = None,
        webrtc_options: WebRtcTransportOptions | None = None,
        broadcast_settings: BroadcastSettings | None = None,
        selector: ProducerSelector = first_registered,
    ) -> None:
        self._engine = engine
        self._launcher = launcher
        self._media_codecs = media_codecs if media_codecs is not None else MEDIA_CODECS
        self._webrtc_options = webrtc_options or WebRtcTransportOptions()
        self._broadcast_settings = broadcast_settings or BroadcastSettings()
        self._selector = selector

        self._router: Router | None = None
        self._pipeline: BroadcastPipeline | None = None
        self._peers = PeerRegistry(
            on_producer_closed=self._handle_producer_closed,
            on_transport_closed=self._handle_transport_closed,
        )
        self._evaluations: set[asyncio.Task] = set()
        self._stops: set[asyncio.Task] = set()
        self._closed = False

    # ==================== LIFECYCLE ====================

    async def init(self) -> None:
        """Create the router and the broadcast pipeline."""
        if self._router is not None:
            return
        try:
            router = await self._engine.create_router(self._media_codecs)
        except AppError:
            raise
        except Exception as e:
            raise AppError(
                errcode=AppErrorCode.E_ENGINE_ERROR,
                errmesg=f"Failed to create router: {e}",
            ) from e
        self._router = router
        self._pipeline = BroadcastPipeline(router, self._launcher, self._broadcast_settings)
        logger.info(f"Room ready with {len(self._media_codecs)} codecs")

    async def close(self) -> None:
        """Stop the broadcast, cancel background work and close every transport."""
        if self._closed:
            return
        self._closed = True
        logger.info("Closing room")

        for task in list(self._evaluations):
            task.cancel()
        await asyncio.gather(*self._evaluations, *self._stops, return_exceptions=True)

        if self._pipeline is not None:
            await self._pipeline.stop(reason="shutdown")
            await self._pipeline.wait_idle()

        for peer_id in self._peers.peer_ids():
            self._peers.remove_peer(peer_id)

        if self._router is not None:
            self._router.close()

    @property
    def ready(self) -> bool:
        return self._router is not None and not self._closed

    @property
    def peers(self) -> PeerRegistry:
        return self._peers

    @property
    def pipeline(self) -> BroadcastPipeline:
        if self._pipeline is None:
            raise AppError(errcode=AppErrorCode.E_NOT_READY, errmesg="Room is not initialised")
        return self._pipeline

    def _require_router(self) -> Router:
        if self._router is None or self._closed:
            raise AppError(errcode=AppErrorCode.E_NOT_READY, errmesg="Media router is not ready")
        return self._router

    # ==================== SIGNALING OPERATIONS ====================

    def get_capabilities(self) -> RouterCapabilities:
        return self._require_router().rtp_capabilities

    async def create_ingress_transport(self, peer_id: str) -> TransportDescriptor:
        router = self._require_router()
        try:
            transport = await router.create_webrtc_transport(self._webrtc_options)
        except AppError:
            raise
        except Exception as e:
            raise AppError(
                errcode=AppErrorCode.E_ENGINE_ERROR,
                errmesg=f"Failed to create transport: {e}",
            ) from e

        if self._closed:
            transport.close()
            raise AppError(errcode=AppErrorCode.E_NOT_READY, errmesg="Room is closing")

        self._peers.add_transport(peer_id, transport)
        logger.info(f"Peer {peer_id} created transport {transport.id}")
        return transport.descriptor

    async def connect_transport(
        self,
        peer_id: str,
        transport_id: str,
        dtls_parameters: DtlsParameters,
    ) -> None:
        transport = self._peers.get_transport(peer_id, transport_id)
        if not isinstance(transport, WebRtcTransport):
            raise AppError(
                errcode=AppErrorCode.E_INVALID_PARAMS,
                errmesg=f"Transport {transport_id} does not accept DTLS parameters",
            )
        try:
            await transport.connect(dtls_parameters=dtls_parameters)
        except AppError:
            raise
        except Exception as e:
            raise AppError(
                errcode=AppErrorCode.E_ENGINE_ERROR,
                errmesg=f"Failed to connect transport {transport_id}: {e}",
            ) from e
        logger.info(f"Peer {peer_id} connected transport {transport_id}")

    async def produce(
        self,
        peer_id: str,
        transport_id: str,
        kind: MediaKind,
        rtp_parameters: RtpParameters,
    ) -> str:
        """Register a new producer and schedule one readiness evaluation.

        Returns the producer id. A failure of the broadcast started afterwards
        does not affect this result.
        """
        producer = await self._peers.add_producer(peer_id, transport_id, kind, rtp_parameters)
        self._spawn_evaluation()
        return producer.id

    async def disconnect_peer(self, peer_id: str) -> None:
        peer = self._peers.remove_peer(peer_id)
        if peer is None:
            logger.debug(f"Disconnect of unknown peer {peer_id}")
            return

        if self._pipeline is not None and any(
            self._pipeline.uses_producer(producer_id) for producer_id in peer.producers
        ):
            await self._pipeline.stop(reason=f"peer {peer_id} disconnected")

    def _handle_producer_closed(self, peer_id: str, producer_id: str) -> None:
        """Engine closed a producer without a disconnect (its transport went away)."""
        self._peers.discard_producer(peer_id, producer_id)
        logger.info(f"Producer {producer_id} of peer {peer_id} closed by its transport")
        if self._pipeline is not None and self._pipeline.uses_producer(producer_id):
            self._spawn_stop(self._pipeline.stop(reason=f"producer {producer_id} closed"))

    def _handle_transport_closed(self, peer_id: str, transport_id: str) -> None:
        # Producers on it were already routed through _handle_producer_closed
        self._peers.discard_transport(peer_id, transport_id)
        logger.info(f"Transport {transport_id} of peer {peer_id} closed")

    # ==================== BROADCAST ====================

    async def evaluate_broadcast(self) -> bool:
        """Start the broadcast if idle and an audio and a video producer exist.

        Returns True when this call brought the pipeline to ACTIVE. Failures are
        logged and leave the pipeline IDLE.
        """
        if self._closed or self._pipeline is None:
            return False
        if self._pipeline.state in BroadcastState.busy_states():
            logger.debug(f"Broadcast already {self._pipeline.state}, skipping evaluation")
            return False

        audio = self._peers.find_producer_by_kind(MediaKind.AUDIO, self._selector)
        video = self._peers.find_producer_by_kind(MediaKind.VIDEO, self._selector)
        if audio is None or video is None:
            logger.debug(
                f"Broadcast not ready (audio={audio is not None}, video={video is not None})"
            )
            return False

        try:
            return await self._pipeline.start(audio, video)
        except AppError as e:
            logger.warning(f"Broadcast did not start: {e.errcode} {e.erresid}")
            return False

    def _spawn_evaluation(self) -> None:
        if self._closed:
            return
        task = asyncio.create_task(self.evaluate_broadcast(), name="room-evaluate-broadcast")
        self._evaluations.add(task)
        task.add_done_callback(self._evaluations.discard)

    def _spawn_stop(self, coro: Coroutine[Any, Any, bool]) -> None:
        task = asyncio.create_task(coro, name="room-stop-broadcast")
        self._stops.add(task)
        task.add_done_callback(self._stops.discard)

    async def wait_background(self) -> None:
        """Wait for scheduled readiness evaluations and stops to finish."""
        while self._evaluations or self._stops:
            await asyncio.gather(*self._evaluations, *self._stops, return_exceptions=True)

    # ==================== QUERIES ====================

    def producer_count(self) -> int:
        return self._peers.count_producers()

    def has_audio_and_video(self) -> bool:
        return (
            self._peers.find_producer_by_kind(MediaKind.AUDIO, self._selector) is not None
            and self._peers.find_producer_by_kind(MediaKind.VIDEO, self._selector) is not None
        )

    def status(self) -> RoomStatus:
        if self._pipeline is None:
            broadcast = BroadcastStatus(state=BroadcastState.IDLE)
        else:
            broadcast = self._pipeline.status()
        return RoomStatus(
            ready=self.ready,
            peer_count=len(self._peers),
            producer_count=self.producer_count(),
            has_audio_and_video=self.has_audio_and_video(),
            broadcast=broadcast,
        )
