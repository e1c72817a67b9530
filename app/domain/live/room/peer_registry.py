"""Peer registry - connected peers with their transports and producers."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from loguru import logger

from app.schemas.media import MediaKind, RtpParameters
from app.services.media_engine import Producer, Transport
from app.utils.app_errors import AppError, AppErrorCode

ProducerClosedCallback = Callable[[str, str], None]
TransportClosedCallback = Callable[[str, str], None]
ProducerSelector = Callable[[Iterable[Producer], MediaKind], "Producer | None"]


def first_registered(producers: Iterable[Producer], kind: MediaKind) -> Producer | None:
    """Pick the earliest-registered open producer of the given kind.

    Arbitrary but stable: with several senders of the same kind, the one that
    produced first is bridged.
    """
    for producer in producers:
        if producer.kind == kind and not producer.closed:
            return producer
    return None


@dataclass
class Peer:
    peer_id: str
    transports: dict[str, Transport] = field(default_factory=dict)
    producers: dict[str, Producer] = field(default_factory=dict)


class PeerRegistry:
    """In-memory registry of peers, keyed by signaling session id.

    Producers are additionally indexed in registration order across all
    peers so that the broadcast selection is deterministic.
    """

    def __init__(
        self,
        on_producer_closed: ProducerClosedCallback | None = None,
        on_transport_closed: TransportClosedCallback | None = None,
    ) -> None:
        self._peers: dict[str, Peer] = {}
        self._producer_index: dict[str, Producer] = {}
        self._producer_owner: dict[str, str] = {}
        self._on_producer_closed = on_producer_closed
        self._on_transport_closed = on_transport_closed

    def __contains__(self, peer_id: str) -> bool:
        return peer_id in self._peers

    def __len__(self) -> int:
        return len(self._peers)

    def get_peer(self, peer_id: str) -> Peer | None:
        return self._peers.get(peer_id)

    def peer_ids(self) -> list[str]:
        return list(self._peers)

    def add_transport(self, peer_id: str, transport: Transport) -> Peer:
        peer = self._peers.get(peer_id)
        if peer is None:
            peer = Peer(peer_id=peer_id)
            self._peers[peer_id] = peer
            logger.debug(f"Peer {peer_id} registered")
        peer.transports[transport.id] = transport
        transport.on("close", lambda: self._transport_closed(peer_id, transport.id))
        return peer

    def _transport_closed(self, peer_id: str, transport_id: str) -> None:
        peer = self._peers.get(peer_id)
        if peer is None or transport_id not in peer.transports:
            return
        if self._on_transport_closed is not None:
            self._on_transport_closed(peer_id, transport_id)
        else:
            self.discard_transport(peer_id, transport_id)

    def discard_transport(self, peer_id: str, transport_id: str) -> Transport | None:
        peer = self._peers.get(peer_id)
        if peer is None:
            return None
        return peer.transports.pop(transport_id, None)

    def get_transport(self, peer_id: str, transport_id: str) -> Transport:
        """Look up an open transport owned by the peer.

        Raises:
            AppError: E_NOT_FOUND for an unknown peer, an unknown transport or
                a transport that has already closed.
        """
        peer = self._peers.get(peer_id)
        if peer is None:
            raise AppError(
                errcode=AppErrorCode.E_NOT_FOUND,
                errmesg=f"Transport {transport_id} not found (peer {peer_id} has no transports)",
            )
        transport = peer.transports.get(transport_id)
        if transport is None or transport.closed:
            raise AppError(
                errcode=AppErrorCode.E_NOT_FOUND,
                errmesg=f"Transport {transport_id} not found",
            )
        return transport

    async def add_producer(
        self,
        peer_id: str,
        transport_id: str,
        kind: MediaKind,
        rtp_parameters: RtpParameters,
    ) -> Producer:
        """Create a producer on one of the peer's transports and record it.

        Raises:
            AppError: E_NOT_FOUND for an unknown peer/transport, E_ENGINE_ERROR
                when the engine rejects the request.
        """
        transport = self.get_transport(peer_id, transport_id)
        try:
            producer = await transport.produce(kind=kind, rtp_parameters=rtp_parameters)
        except AppError:
            raise
        except Exception as e:
            raise AppError(
                errcode=AppErrorCode.E_ENGINE_ERROR,
                errmesg=f"Failed to produce {kind} on transport {transport_id}: {e}",
            ) from e

        peer = self._peers.get(peer_id)
        if peer is None or transport.closed:
            # Peer went away while the engine call was pending
            producer.close()
            raise AppError(
                errcode=AppErrorCode.E_NOT_FOUND,
                errmesg=f"Transport {transport_id} closed while producing",
            )

        peer.producers[producer.id] = producer
        self._producer_index[producer.id] = producer
        self._producer_owner[producer.id] = peer_id
        producer.on("transportclose", lambda: self._producer_transport_closed(peer_id, producer.id))
        logger.info(f"Peer {peer_id} produced {kind} (producer={producer.id})")
        return producer

    def _producer_transport_closed(self, peer_id: str, producer_id: str) -> None:
        if producer_id not in self._producer_index:
            return
        if self._on_producer_closed is not None:
            self._on_producer_closed(peer_id, producer_id)
        else:
            self.discard_producer(peer_id, producer_id)

    def discard_producer(self, peer_id: str, producer_id: str) -> Producer | None:
        peer = self._peers.get(peer_id)
        if peer is not None:
            peer.producers.pop(producer_id, None)
        self._producer_owner.pop(producer_id, None)
        return self._producer_index.pop(producer_id, None)

    def remove_peer(self, peer_id: str) -> Peer | None:
        """Close every transport of the peer and forget it.

        Runs without awaiting so that no readiness evaluation can observe a
        half-removed peer.
        """
        peer = self._peers.pop(peer_id, None)
        if peer is None:
            return None

        for producer_id in peer.producers:
            self._producer_index.pop(producer_id, None)
            self._producer_owner.pop(producer_id, None)
        for transport in peer.transports.values():
            transport.close()

        logger.info(
            f"Peer {peer_id} removed ({len(peer.transports)} transports, "
            f"{len(peer.producers)} producers)"
        )
        return peer

    def producers(self) -> list[Producer]:
        """All registered producers in registration order."""
        return list(self._producer_index.values())

    def owner_of(self, producer_id: str) -> str | None:
        return self._producer_owner.get(producer_id)

    def count_producers(self) -> int:
        return len(self._producer_index)

    def find_producer_by_kind(
        self,
        kind: MediaKind,
        selector: ProducerSelector = first_registered,
    ) -> Producer | None:
        return selector(self._producer_index.values(), kind)


__all__ = [
    "Peer",
    "PeerRegistry",
    "ProducerSelector",
    "first_registered",
]
