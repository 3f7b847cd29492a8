"""Tests for the application wiring."""

import asyncio

import pytest

from visualcortex.app import VisualCortexApp
from visualcortex.config import Config
from visualcortex.errors import ConfigError, VoiceAuthError
from visualcortex.frames.source import CameraFrameSource, StaticFrameSource
from visualcortex.models import ConnectionStatus, LogCategory
from visualcortex.vision.analyzer import GeminiVisionAnalyzer, MockVisionAnalyzer
from visualcortex.voice.backends import ElevenLabsVoiceBackend, MockVoiceBackend, VoiceEventKind


def messages(app: VisualCortexApp, category: LogCategory) -> list[str]:
    return [e.message for e in app.log.by_category(category)]


@pytest.fixture
async def app(mock_config: Config):
    cortex = VisualCortexApp(
        mock_config,
        analyzer=MockVisionAnalyzer(script=["They wave."]),
        interval_ms=60_000,
    )
    await cortex.start()
    yield cortex
    await cortex.stop()


class TestConstruction:
    """Tests for component selection."""

    def test_mock_mode_components(self, mock_config: Config):
        cortex = VisualCortexApp(mock_config)

        assert isinstance(cortex.frame_source, StaticFrameSource)
        assert isinstance(cortex.analyzer, MockVisionAnalyzer)
        assert isinstance(cortex.voice.backend, MockVoiceBackend)
        assert cortex.bridge.interval_ms == 4000

    def test_real_components(self):
        config = Config()
        config.vision.api_key = "test-key"

        cortex = VisualCortexApp(config)

        assert isinstance(cortex.frame_source, CameraFrameSource)
        assert isinstance(cortex.analyzer, GeminiVisionAnalyzer)
        assert isinstance(cortex.voice.backend, ElevenLabsVoiceBackend)

    def test_missing_api_key(self):
        """Test the real analyzer requires a key."""
        with pytest.raises(ConfigError):
            VisualCortexApp(Config())


class TestVision:
    """Tests for the vision toggle."""

    @pytest.mark.asyncio
    async def test_start_vision_runs_first_tick(self, app: VisualCortexApp):
        await app.start_vision()
        await asyncio.sleep(0)
        await app.bridge.wait_idle()

        assert app.bridge.active
        assert messages(app, LogCategory.VISUAL) == ["They wave."]
        assert messages(app, LogCategory.SUCCESS) == ["Vision Loop active. Interval: 60000ms"]

    @pytest.mark.asyncio
    async def test_toggle_vision(self, app: VisualCortexApp):
        assert await app.toggle_vision() is True
        assert await app.toggle_vision() is False
        assert not app.frame_source.ready
        assert app.log.entries[-1].message == "Visual Cortex Deactivated."

    @pytest.mark.asyncio
    async def test_camera_unavailable(self, mock_config: Config):
        """Test a camera that cannot be opened is logged, not raised."""

        class BrokenSource(StaticFrameSource):
            async def open(self) -> bool:
                return False

        cortex = VisualCortexApp(mock_config, frame_source=BrokenSource())
        async with cortex:
            await cortex.start_vision()

            assert cortex.bridge.active
            assert not cortex.bridge.ticking
            assert messages(cortex, LogCategory.ERROR) == ["Camera unavailable. Waiting for video stream."]

    @pytest.mark.asyncio
    async def test_restart_app_resumes_ticking(self, mock_config: Config):
        """Test vision ticks again after the app is stopped and started."""
        analyzer = MockVisionAnalyzer(script=["They wave.", "They sit down."])
        cortex = VisualCortexApp(mock_config, analyzer=analyzer, interval_ms=60_000)

        async with cortex:
            await cortex.start_vision()
            await asyncio.sleep(0)
            await cortex.bridge.wait_idle()

        async with cortex:
            await cortex.start_vision()
            await asyncio.sleep(0)
            await cortex.bridge.wait_idle()

            assert cortex.bridge.ticking
            assert len(analyzer.calls) == 2
            assert messages(cortex, LogCategory.VISUAL) == ["They wave.", "They sit down."]

    @pytest.mark.asyncio
    async def test_stop_vision_ends_voice(self, app: VisualCortexApp):
        await app.start_vision()
        await app.connect_voice("agent-123")
        await app.voice.backend.settle()
        assert app.voice.connected

        await app.stop_vision()

        assert app.voice.status is ConnectionStatus.IDLE


class TestVoice:
    """Tests for the voice actions."""

    @pytest.mark.asyncio
    async def test_missing_agent_id(self, app: VisualCortexApp):
        """Test connecting without an agent id is logged."""
        assert await app.connect_voice() is False

        assert messages(app, LogCategory.ERROR) == ["Connection Failed: Missing Agent ID"]
        assert app.voice.status is ConnectionStatus.IDLE

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, app: VisualCortexApp):
        """Test voice state changes are logged."""
        assert await app.connect_voice("agent-1234567890") is True
        await app.voice.backend.settle()

        await app.disconnect_voice()

        assert messages(app, LogCategory.INFO)[-2:] == [
            "Attempting handshake with Agent: agent-12...",
            "Voice Uplink Terminated",
        ]
        assert messages(app, LogCategory.SUCCESS) == ["Voice Uplink Established"]

    @pytest.mark.asyncio
    async def test_configured_agent_id(self, mock_config: Config):
        mock_config.voice.agent_id = "configured-agent"
        async with VisualCortexApp(mock_config) as cortex:
            assert await cortex.connect_voice() is True
            assert cortex.voice.backend.agent_id == "configured-agent"

    @pytest.mark.asyncio
    async def test_connect_failure_is_logged(self, mock_config: Config):
        backend = MockVoiceBackend(connect_error=VoiceAuthError("agent rejected"))
        async with VisualCortexApp(mock_config, voice_backend=backend) as cortex:
            assert await cortex.connect_voice("agent-123") is False

            assert messages(cortex, LogCategory.ERROR) == ["Connection Failed: agent rejected"]

    @pytest.mark.asyncio
    async def test_voice_error_is_logged(self, app: VisualCortexApp):
        await app.connect_voice("agent-123")
        await app.voice.backend.settle()

        await app.voice.backend.emit(VoiceEventKind.ERROR, {"message": "socket dropped"})

        assert messages(app, LogCategory.ERROR) == ["Voice Error: socket dropped"]
        assert app.voice.status is ConnectionStatus.IDLE

    @pytest.mark.asyncio
    async def test_toggle_voice(self, app: VisualCortexApp):
        app.config.voice.agent_id = "agent-123"

        assert await app.toggle_voice() is ConnectionStatus.CONNECTING
        await app.voice.backend.settle()
        assert await app.toggle_voice() is ConnectionStatus.IDLE


class TestStatus:
    """Tests for combined status."""

    @pytest.mark.asyncio
    async def test_get_status(self, app: VisualCortexApp):
        status = app.get_status()

        assert status["mock_mode"] is True
        assert status["bridge"]["vision"] == "idle"
        assert status["voice"]["status"] == "disconnected"
        assert status["analyzer"]["provider"] == "mock"
        assert status["events"] == len(app.log)
