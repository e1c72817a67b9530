from pathlib import Path

from pydantic import BaseModel

from app.schemas.media import MediaKind, RtpCodecCapability
from app.shared.config import config

# Router codec set. One audio and one video codec; browsers negotiate against this.
MEDIA_CODECS: list[RtpCodecCapability] = [
    RtpCodecCapability(
        kind=MediaKind.AUDIO,
        mime_type="audio/opus",
        clock_rate=48000,
        channels=2,
    ),
    RtpCodecCapability(
        kind=MediaKind.VIDEO,
        mime_type="video/VP8",
        clock_rate=90000,
        parameters={"x-google-start-bitrate": 1000},
    ),
]


class AppEnvironConfig(BaseModel):
    DEBUG: bool = config.get_bool("DEBUG", False)

    # HTTP / signaling server
    API_HOST: str = config.get("API_HOST", "0.0.0.0").strip()  # type: ignore
    API_PORT: int = config.get_int("API_PORT", 8000)
    API_CORS_ORIGINS: list[str] = config.get_list("API_CORS_ORIGINS", ["*"])

    LOGFIRE_ENABLE: bool = config.get_bool("LOGFIRE_ENABLE", False)
    LOGFIRE_TOKEN: str | None = (config.get("LOGFIRE_TOKEN") or "").strip() or None

    # Media engine binding, as "package.module:ClassName"
    MEDIA_ENGINE_CLASS: str = config.get(
        "MEDIA_ENGINE_CLASS", "app.services.media_engine.demo_engine:DemoMediaEngine"
    ).strip()  # type: ignore

    # Media engine worker
    RTC_MIN_PORT: int = config.get_int("RTC_MIN_PORT", 40000)
    RTC_MAX_PORT: int = config.get_int("RTC_MAX_PORT", 49999)
    ENGINE_LOG_LEVEL: str = config.get("ENGINE_LOG_LEVEL", "warn").strip()  # type: ignore
    ENGINE_LOG_TAGS: list[str] = config.get_list(
        "ENGINE_LOG_TAGS", ["info", "ice", "dtls", "rtp", "srtp", "rtcp"]
    )
    # Seconds to wait before exiting after the engine worker died
    ENGINE_DEATH_EXIT_DELAY_SECONDS: int = config.get_int("ENGINE_DEATH_EXIT_DELAY_SECONDS", 2)

    # Ingress (WebRTC) transports
    WEBRTC_LISTEN_IP: str = config.get("WEBRTC_LISTEN_IP", "0.0.0.0").strip()  # type: ignore
    WEBRTC_ANNOUNCED_IP: str | None = (config.get("WEBRTC_ANNOUNCED_IP") or "").strip() or None
    WEBRTC_ENABLE_UDP: bool = config.get_bool("WEBRTC_ENABLE_UDP", True)
    WEBRTC_ENABLE_TCP: bool = config.get_bool("WEBRTC_ENABLE_TCP", True)
    WEBRTC_PREFER_UDP: bool = config.get_bool("WEBRTC_PREFER_UDP", True)
    WEBRTC_MAX_INCOMING_BITRATE: int = config.get_int("WEBRTC_MAX_INCOMING_BITRATE", 1500000)
    WEBRTC_INITIAL_OUTGOING_BITRATE: int = config.get_int(
        "WEBRTC_INITIAL_OUTGOING_BITRATE", 1000000
    )

    # Bridging (plain RTP) transports towards the transcoder
    BRIDGE_LISTEN_IP: str = config.get("BRIDGE_LISTEN_IP", "127.0.0.1").strip()  # type: ignore
    BRIDGE_RTCP_MUX: bool = config.get_bool("BRIDGE_RTCP_MUX", True)
    BRIDGE_COMEDIA: bool = config.get_bool("BRIDGE_COMEDIA", True)

    # Transcoder / HLS output
    FFMPEG_BINARY: str = config.get("FFMPEG_BINARY", "ffmpeg").strip()  # type: ignore
    HLS_OUTPUT_DIR: Path = Path(config.get("HLS_OUTPUT_DIR", "public/live").strip())  # type: ignore
    SDP_FILE_PATH: Path = Path(config.get("SDP_FILE_PATH", "ffmpeg-sdp.sdp").strip())  # type: ignore
    HLS_SEGMENT_SECONDS: int = config.get_int("HLS_SEGMENT_SECONDS", 2)
    HLS_LIST_SIZE: int = config.get_int("HLS_LIST_SIZE", 5)
    SDP_SETTLE_DELAY_MS: int = config.get_int("SDP_SETTLE_DELAY_MS", 100)


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config
