"""Broadcast pipeline: bridges one audio and one video producer into the transcoder.

A run goes through IDLE -> PREPARING -> ACTIVE -> STOPPING -> IDLE:

1. PREPARING: one plain transport per media kind is created on the bridge
   address, a paused consumer redirects the selected producer into it, and the
   session description describing both ports is written for the transcoder.
2. After a short settling delay the transcoder is launched and both consumers
   are resumed; the pipeline is then ACTIVE and a supervisor task waits for
   the transcoder to exit.
3. Transcoder exit or an explicit stop moves the pipeline to STOPPING; the
   transcoder is killed if still running, consumers and transports are closed
   and the pipeline returns to IDLE.

A run is never restarted automatically. The caller decides when to evaluate
readiness again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

from loguru import logger

from app.schemas.broadcast_state import BroadcastState
from app.schemas.media import MediaKind
from app.services.media_engine import Producer, Router
from app.services.transcoder import TranscoderLauncher, TranscoderProcess
from app.utils.app_errors import AppError, AppErrorCode

from .broadcast_models import BridgeResources, BroadcastSelection, BroadcastSettings, BroadcastStatus
from .broadcast_state_machine import BroadcastStateMachine
from .sdp import MediaLine, build_session_description


class _StopRequested(Exception):
    """Raised inside a start attempt once a stop was requested."""


class BroadcastPipeline:
    """Single broadcast pipeline of a room."""

    def __init__(
        self,
        router: Router,
        launcher: TranscoderLauncher,
        settings: BroadcastSettings | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._router = router
        self._launcher = launcher
        self._settings = settings or BroadcastSettings()
        self._sleep = sleep

        self._state = BroadcastState.IDLE
        self._selection: BroadcastSelection | None = None
        self._resources = BridgeResources()
        self._supervisor: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()

        self._runs = 0
        self._last_exit_code: int | None = None
        self._last_error: str | None = None
        self._session_description: str | None = None

    # ==================== STATE ====================

    @property
    def state(self) -> BroadcastState:
        return self._state

    @property
    def selection(self) -> BroadcastSelection | None:
        return self._selection

    @property
    def process(self) -> TranscoderProcess | None:
        return self._resources.process

    @property
    def resources(self) -> BridgeResources:
        return self._resources

    @property
    def session_description(self) -> str | None:
        """Last session description written for the transcoder."""
        return self._session_description

    def uses_producer(self, producer_id: str) -> bool:
        return self._selection is not None and self._selection.includes(producer_id)

    def status(self) -> BroadcastStatus:
        process = self._resources.process
        return BroadcastStatus(
            state=self._state,
            audio_producer_id=self._selection.audio_producer_id if self._selection else None,
            video_producer_id=self._selection.video_producer_id if self._selection else None,
            transcoder_pid=process.pid if process is not None and process.running else None,
            runs=self._runs,
            last_exit_code=self._last_exit_code,
            last_error=self._last_error,
        )

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def _transition(self, new: BroadcastState) -> None:
        if not BroadcastStateMachine.can_transition(self._state, new):
            raise RuntimeError(f"Invalid broadcast transition {self._state} -> {new}")
        logger.info(f"Broadcast pipeline {self._state.value.upper()} -> {new.value.upper()}")
        self._state = new
        if new == BroadcastState.IDLE:
            self._idle.set()
        else:
            self._idle.clear()

    def _try_begin(self, selection: BroadcastSelection) -> bool:
        """Compare-and-transition IDLE -> PREPARING.

        Runs without awaiting, so two concurrent readiness evaluations can never
        both observe IDLE.
        """
        if self._state != BroadcastState.IDLE:
            return False
        self._selection = selection
        self._resources = BridgeResources()
        self._last_error = None
        self._transition(BroadcastState.PREPARING)
        return True

    def _checkpoint(self) -> None:
        if self._state == BroadcastState.STOPPING:
            raise _StopRequested()

    # ==================== START ====================

    async def start(self, audio: Producer, video: Producer) -> bool:
        """Bridge the given producers and launch the transcoder.

        Returns:
            True if the pipeline became ACTIVE, False if another run was already
            in progress or a stop was requested while preparing.

        Raises:
            AppError: E_ENGINE_ERROR or E_PIPELINE_START_FAILED. The pipeline is
                back to IDLE with every resource of the attempt closed.
        """
        selection = BroadcastSelection(audio_producer_id=audio.id, video_producer_id=video.id)
        if not self._try_begin(selection):
            logger.debug(f"Broadcast pipeline is {self._state}, not starting another run")
            return False

        logger.info(f"Starting broadcast: audio={audio.id} video={video.id}")
        try:
            await self._bridge(MediaKind.AUDIO, audio.id)
            await self._bridge(MediaKind.VIDEO, video.id)
            await self._write_session_description()
            self._checkpoint()

            await self._sleep(self._settings.settle_delay)
            self._checkpoint()

            process = await self._launcher.launch(self._settings.sdp_path)
            self._resources.process = process
            self._checkpoint()

            for consumer in self._resources.consumers.values():
                await consumer.resume()
            self._checkpoint()
        except asyncio.CancelledError:
            logger.warning("Broadcast start cancelled, tearing down")
            await self._teardown()
            raise
        except Exception as e:
            stop_requested = isinstance(e, _StopRequested) or self._state == BroadcastState.STOPPING
            await self._teardown()
            if stop_requested:
                logger.info("Broadcast stopped while preparing")
                return False
            error = (
                e
                if isinstance(e, AppError)
                else AppError(
                    errcode=AppErrorCode.E_PIPELINE_START_FAILED,
                    errmesg=f"Broadcast start failed: {type(e).__name__}: {e}",
                )
            )
            self._last_error = f"{error.errcode}: {error.errmesg}"
            logger.error(f"{error.errcode} {error.erresid} {error.errmesg}")
            if error is e:
                raise
            raise error from e

        self._transition(BroadcastState.ACTIVE)
        self._runs += 1
        self._supervisor = asyncio.create_task(
            self._supervise(process), name="broadcast-transcoder-supervisor"
        )
        logger.info(f"Broadcast active (transcoder pid={process.pid})")
        return True

    async def _bridge(self, kind: MediaKind, producer_id: str) -> None:
        try:
            transport = await self._router.create_plain_transport(self._settings.bridge_options)
            self._resources.transports[kind] = transport
            self._checkpoint()

            await transport.connect(ip=self._settings.bridge_options.listen_ip)
            self._checkpoint()

            consumer = await transport.consume(
                producer_id=producer_id,
                rtp_capabilities=self._router.rtp_capabilities,
                paused=True,
            )
            self._resources.consumers[kind] = consumer
        except (AppError, _StopRequested):
            raise
        except Exception as e:
            raise AppError(
                errcode=AppErrorCode.E_ENGINE_ERROR,
                errmesg=f"Failed to bridge {kind} producer {producer_id}: {e}",
            ) from e
        logger.debug(
            f"Bridged {kind} producer {producer_id} -> "
            f"{transport.tuple.local_ip}:{transport.tuple.local_port} (consumer={consumer.id})"
        )
        self._checkpoint()

    async def _write_session_description(self) -> None:
        audio_transport = self._resources.transports[MediaKind.AUDIO]
        video_transport = self._resources.transports[MediaKind.VIDEO]
        audio_line = MediaLine.from_rtp_parameters(
            MediaKind.AUDIO,
            audio_transport.tuple.local_port,
            self._resources.consumers[MediaKind.AUDIO].rtp_parameters,
        )
        video_line = MediaLine.from_rtp_parameters(
            MediaKind.VIDEO,
            video_transport.tuple.local_port,
            self._resources.consumers[MediaKind.VIDEO].rtp_parameters,
        )
        document = build_session_description(audio_transport.tuple.local_ip, audio_line, video_line)

        path = self._settings.sdp_path
        try:
            await asyncio.to_thread(_write_text, path, document)
        except OSError as e:
            raise AppError(
                errcode=AppErrorCode.E_PIPELINE_START_FAILED,
                errmesg=f"Failed to write session description {path}: {e}",
            ) from e
        self._session_description = document
        logger.info(f"Wrote session description to {path}")

    # ==================== SUPERVISION ====================

    async def _supervise(self, process: TranscoderProcess) -> None:
        returncode = await process.wait()
        self._last_exit_code = returncode

        if self._resources.process is not process or self._state != BroadcastState.ACTIVE:
            # Exit caused by our own stop
            logger.debug(f"Transcoder (pid={process.pid}) exited with {returncode} during stop")
            return

        if returncode == 0:
            logger.info(f"Transcoder (pid={process.pid}) exited with 0")
        else:
            logger.error(
                f"{AppErrorCode.E_PROCESS_FAILURE} transcoder (pid={process.pid}) exited with "
                f"{returncode}\n{process.diagnostics()}"
            )
        self._transition(BroadcastState.STOPPING)
        await self._teardown()

    # ==================== STOP ====================

    async def stop(self, reason: str = "requested") -> bool:
        """Stop the current run.

        A no-op returning False when IDLE or already STOPPING. Otherwise
        returns True once the pipeline is back to IDLE.
        """
        if self._state in (BroadcastState.IDLE, BroadcastState.STOPPING):
            logger.debug(f"Broadcast stop ({reason}) ignored in state {self._state}")
            return False

        logger.info(f"Stopping broadcast: {reason}")
        if self._state == BroadcastState.PREPARING:
            # The start attempt notices at its next checkpoint and tears down
            self._transition(BroadcastState.STOPPING)
            await self._idle.wait()
            return True

        self._transition(BroadcastState.STOPPING)
        supervisor = self._supervisor
        await self._teardown()
        if supervisor is not None and supervisor is not asyncio.current_task():
            await asyncio.gather(supervisor, return_exceptions=True)
        return True

    async def _teardown(self) -> None:
        resources = self._resources
        process = resources.process
        if process is not None and process.running:
            process.kill()
            try:
                await asyncio.wait_for(process.wait(), timeout=self._settings.kill_timeout)
            except asyncio.TimeoutError:
                logger.error(f"Transcoder (pid={process.pid}) still running after SIGKILL")

        for consumer in resources.consumers.values():
            consumer.close()
        for transport in resources.transports.values():
            transport.close()

        self._resources = BridgeResources()
        self._selection = None
        self._supervisor = None
        self._transition(BroadcastState.IDLE)


def _write_text(path: Path, document: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(document, encoding="utf-8")


__all__ = ["BroadcastPipeline"]
