"""Tests for application wiring."""

import asyncio
from unittest.mock import Mock

from app.app_config import AppEnvironConfig
from app.main import build_room, watch_engine_death, webrtc_options_from_config, worker_settings_from_config
from app.schemas import BroadcastState
from app.services.media_engine.demo_engine import DemoMediaEngine


def test_worker_settings_from_config():
    cfg = AppEnvironConfig(RTC_MIN_PORT=10000, RTC_MAX_PORT=10100, ENGINE_LOG_TAGS=["ice"])

    settings = worker_settings_from_config(cfg)

    assert (settings.rtc_min_port, settings.rtc_max_port) == (10000, 10100)
    assert settings.log_tags == ["ice"]


def test_webrtc_options_from_config():
    cfg = AppEnvironConfig(WEBRTC_ANNOUNCED_IP="198.51.100.7", WEBRTC_ENABLE_TCP=False)

    options = webrtc_options_from_config(cfg)

    assert options.announced_ip == "198.51.100.7"
    assert options.enable_tcp is False


async def test_build_room_uses_config(demo_engine: DemoMediaEngine, tmp_path):
    """Test the room is wired with the configured bridge and output settings."""
    cfg = AppEnvironConfig(
        HLS_OUTPUT_DIR=tmp_path / "live",
        SDP_FILE_PATH=tmp_path / "ffmpeg-sdp.sdp",
        SDP_SETTLE_DELAY_MS=250,
    )

    room = build_room(demo_engine, cfg)
    await room.init()

    assert room.ready is True
    assert room.pipeline.state == BroadcastState.IDLE
    assert room.status().broadcast.runs == 0
    await room.close()


async def test_engine_death_exits_after_delay(demo_engine: DemoMediaEngine):
    """Test the process exits with status 1 once the engine worker dies."""
    exit_process = Mock()
    watch_engine_death(demo_engine, 0.01, exit_process)

    demo_engine.crash()
    exit_process.assert_not_called()
    await asyncio.sleep(0.05)

    exit_process.assert_called_once_with(1)
