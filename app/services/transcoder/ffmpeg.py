"""FFmpeg transcoder process: argument template, launcher and process handle.

FFmpeg reads the bridged RTP streams described by the session description
file and writes an HLS playlist plus a rolling window of MPEG-TS segments.
Its exit, whatever the code, is the only liveness signal the broadcast
pipeline consumes.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from app.utils.app_errors import AppError, AppErrorCode

# Number of stderr lines kept for diagnostics after the process exits
STDERR_TAIL_LINES = 50


@dataclass(frozen=True)
class HlsOutputSettings:
    output_dir: Path
    segment_seconds: int = 2
    list_size: int = 5
    playlist_name: str = "playlist.m3u8"
    segment_pattern: str = "segment_%03d.ts"

    @property
    def playlist_path(self) -> Path:
        return self.output_dir / self.playlist_name

    @property
    def segment_path_pattern(self) -> Path:
        return self.output_dir / self.segment_pattern


def build_ffmpeg_args(sdp_path: Path, output: HlsOutputSettings) -> list[str]:
    """Arguments for reading the SDP-described RTP input and writing live HLS."""
    return [
        "-protocol_whitelist", "file,udp,rtp",
        "-re",
        "-i", str(sdp_path),
        "-map", "0:v:0",
        "-map", "0:a:0",
        "-c:v", "libx264", "-preset", "veryfast", "-tune", "zerolatency", "-pix_fmt", "yuv420p",
        "-c:a", "aac", "-ar", "48000", "-b:a", "128k",
        "-f", "hls",
        "-hls_time", str(output.segment_seconds),
        "-hls_list_size", str(output.list_size),
        "-hls_flags", "delete_segments+program_date_time",
        "-hls_segment_filename", str(output.segment_path_pattern),
        str(output.playlist_path),
    ]  # fmt: skip


class TranscoderProcess(ABC):
    """Handle on a running transcoder."""

    @property
    @abstractmethod
    def pid(self) -> int | None: ...

    @property
    @abstractmethod
    def returncode(self) -> int | None: ...

    @property
    def running(self) -> bool:
        return self.returncode is None

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""

    @abstractmethod
    def kill(self) -> None:
        """Forcefully terminate the process if it is still running."""

    def diagnostics(self) -> str:
        return ""


class TranscoderLauncher(ABC):
    @abstractmethod
    async def launch(self, sdp_path: Path) -> TranscoderProcess: ...


class FFmpegProcess(TranscoderProcess):
    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._readers = [
            asyncio.create_task(self._drain(process.stdout, "stdout")),
            asyncio.create_task(self._drain(process.stderr, "stderr")),
        ]

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def _drain(self, stream: asyncio.StreamReader | None, name: str) -> None:
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if not text:
                continue
            if name == "stderr":
                self._stderr_tail.append(text)
            logger.debug(f"ffmpeg[{self.pid}] {name}: {text}")

    async def wait(self) -> int:
        returncode = await self._process.wait()
        # Let the readers flush what is left in the pipes
        await asyncio.gather(*self._readers, return_exceptions=True)
        return returncode

    def kill(self) -> None:
        if self._process.returncode is not None:
            return
        try:
            logger.info(f"Sending SIGKILL to ffmpeg (pid={self.pid})")
            self._process.kill()
        except ProcessLookupError:
            logger.debug(f"ffmpeg (pid={self.pid}) already exited")

    def diagnostics(self) -> str:
        return "\n".join(self._stderr_tail)


class FFmpegLauncher(TranscoderLauncher):
    def __init__(self, output: HlsOutputSettings, *, binary: str = "ffmpeg") -> None:
        self._output = output
        self._binary = binary

    @property
    def output(self) -> HlsOutputSettings:
        return self._output

    async def launch(self, sdp_path: Path) -> TranscoderProcess:
        args = build_ffmpeg_args(sdp_path, self._output)
        try:
            await asyncio.to_thread(self._output.output_dir.mkdir, parents=True, exist_ok=True)
            process = await asyncio.create_subprocess_exec(
                self._binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise AppError(
                errcode=AppErrorCode.E_PIPELINE_START_FAILED,
                errmesg=f"Failed to launch {self._binary}: {e}",
            ) from e

        logger.info(
            f"Started ffmpeg (pid={process.pid}) input={sdp_path} "
            f"playlist={self._output.playlist_path}"
        )
        return FFmpegProcess(process)


__all__ = [
    "FFmpegLauncher",
    "FFmpegProcess",
    "HlsOutputSettings",
    "TranscoderLauncher",
    "TranscoderProcess",
    "build_ffmpeg_args",
]
