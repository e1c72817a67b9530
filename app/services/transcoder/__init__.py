from .ffmpeg import (
    FFmpegLauncher,
    FFmpegProcess,
    HlsOutputSettings,
    TranscoderLauncher,
    TranscoderProcess,
    build_ffmpeg_args,
)

__all__ = [
    "FFmpegLauncher",
    "FFmpegProcess",
    "HlsOutputSettings",
    "TranscoderLauncher",
    "TranscoderProcess",
    "build_ffmpeg_args",
]
