"""Visual Cortex application - composes the camera, analyzer, voice and bridge."""

from __future__ import annotations

from typing import Any, Callable

from visualcortex.bridge.loop import BridgeLoop
from visualcortex.common.events import (
    VOICE_AGENT_RESPONSE,
    VOICE_CONNECTED,
    VOICE_DISCONNECTED,
    VOICE_ERROR,
    Event,
    EventBus,
)
from visualcortex.common.logging import get_logger, setup_logging
from visualcortex.config import Config, load_config
from visualcortex.errors import ConfigError, VoiceError
from visualcortex.frames.source import CameraFrameSource, FrameSource, StaticFrameSource
from visualcortex.logsink import LogSink
from visualcortex.models import ConnectionStatus, LogCategory
from visualcortex.vision.analyzer import GeminiVisionAnalyzer, MockVisionAnalyzer, VisionAnalyzer
from visualcortex.voice.backends import ElevenLabsVoiceBackend, MockVoiceBackend, VoiceBackend
from visualcortex.voice.session import VoiceSession


class VisualCortexApp:
    """Main application.

    Owns one instance of every component and the two user actions: toggling
    vision and connecting the voice agent. Voice never outlives vision:
    stopping vision also ends the voice conversation.

    Example:
        async with VisualCortexApp(mock_mode=True) as app:
            await app.start_vision()
            await app.connect_voice("agent-id")
    """

    def __init__(
        self,
        config: Config | None = None,
        mock_mode: bool | None = None,
        frame_source: FrameSource | None = None,
        analyzer: VisionAnalyzer | None = None,
        voice_backend: VoiceBackend | None = None,
        interval_ms: int | None = None,
    ) -> None:
        """Initialize the app.

        Args:
            config: Configuration (loaded from env/file if None).
            mock_mode: Use mock camera, analyzer and voice backends.
            frame_source: Override the frame source.
            analyzer: Override the vision analyzer.
            voice_backend: Override the voice backend.
            interval_ms: Override the tick interval (tests).
        """
        self.config = config or load_config()
        self.mock_mode = self.config.mock_mode if mock_mode is None else mock_mode

        setup_logging(
            level=self.config.app.log_level,
            json_output=self.config.app.mode == "production",
            component=self.config.app.name,
        )
        self.logger = get_logger("app")

        self.events = EventBus()
        self.log = LogSink()
        self.frame_source = frame_source or self._create_frame_source()
        self.analyzer = analyzer or self._create_analyzer()
        self.voice = VoiceSession(voice_backend or self._create_voice_backend(), self.events)

        bridge_kwargs: dict[str, Any] = {}
        if interval_ms is not None:
            bridge_kwargs["interval_ms"] = interval_ms
        self.bridge = BridgeLoop(self.frame_source, self.analyzer, self.voice, self.log, **bridge_kwargs)

        self._started = False
        self._unsubscribers: list[Callable[[], None]] = []

    def _create_frame_source(self) -> FrameSource:
        if self.mock_mode:
            return StaticFrameSource()
        return CameraFrameSource(self.config.camera)

    def _create_analyzer(self) -> VisionAnalyzer:
        if self.mock_mode or self.config.vision.provider == "mock":
            return MockVisionAnalyzer()
        if not self.config.vision.api_key:
            raise ConfigError("Missing vision API key (set GEMINI_API_KEY or run 'visualcortex keys set')")
        return GeminiVisionAnalyzer(self.config.vision.api_key)

    def _create_voice_backend(self) -> VoiceBackend:
        if self.mock_mode or self.config.voice.provider == "mock":
            return MockVoiceBackend()
        return ElevenLabsVoiceBackend(self.config.voice)

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the app. Vision and voice stay off until requested."""
        if self._started:
            return
        self._unsubscribers.append(self.events.subscribe("voice.*", self._on_voice_event))
        self._started = True
        self.logger.info("app_started", mock_mode=self.mock_mode)

    async def stop(self) -> None:
        """Stop vision and voice and release the camera.

        The bridge stays attached to the frame source, so the app can be
        started again.
        """
        if not self._started:
            return
        await self.stop_vision()
        await self.disconnect_voice()
        await self.bridge.wait_idle()

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        self._started = False
        self.logger.info("app_stopped")

    async def __aenter__(self) -> VisualCortexApp:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    # Vision

    async def start_vision(self) -> None:
        """Activate the bridge loop and open the camera."""
        if self.bridge.active:
            return
        self.bridge.start()
        if not await self.frame_source.open():
            self.log.append("Camera unavailable. Waiting for video stream.", LogCategory.ERROR)

    async def stop_vision(self) -> None:
        """Deactivate the bridge loop, release the camera and end voice."""
        if not self.bridge.active:
            return
        self.bridge.stop()
        await self.frame_source.close()
        await self.disconnect_voice()

    async def toggle_vision(self) -> bool:
        """Toggle vision. Returns the new active state."""
        if self.bridge.active:
            await self.stop_vision()
        else:
            await self.start_vision()
        return self.bridge.active

    # Voice

    async def connect_voice(self, agent_id: str | None = None) -> bool:
        """Connect the voice agent. Failures are logged, not raised.

        Returns:
            True if the connection attempt was accepted by the service.
        """
        agent_id = (agent_id or self.config.voice.agent_id or "").strip()
        if not agent_id:
            self.log.append("Connection Failed: Missing Agent ID", LogCategory.ERROR)
            return False

        self.log.append(f"Attempting handshake with Agent: {agent_id[:8]}...", LogCategory.INFO)
        try:
            await self.voice.connect(agent_id)
        except VoiceError as e:
            self.logger.warning("voice_connect_failed", error=str(e), kind=type(e).__name__)
            self.log.append(f"Connection Failed: {e}", LogCategory.ERROR)
            return False
        return True

    async def disconnect_voice(self) -> None:
        await self.voice.disconnect()

    async def toggle_voice(self) -> ConnectionStatus:
        """Connect when idle, disconnect otherwise. Returns the new status."""
        if self.voice.status is ConnectionStatus.IDLE:
            await self.connect_voice()
        else:
            await self.disconnect_voice()
        return self.voice.status

    async def _on_voice_event(self, event: Event) -> None:
        if event.topic == VOICE_CONNECTED:
            self.log.append("Voice Uplink Established", LogCategory.SUCCESS)
        elif event.topic == VOICE_DISCONNECTED:
            self.log.append("Voice Uplink Terminated", LogCategory.INFO)
        elif event.topic == VOICE_ERROR:
            self.log.append(f"Voice Error: {event.data.get('message', 'unknown')}", LogCategory.ERROR)
        elif event.topic == VOICE_AGENT_RESPONSE:
            self.logger.debug("agent_response", text=event.data.get("text", ""))

    def get_status(self) -> dict:
        """Get combined status for the status bar."""
        return {
            "mock_mode": self.mock_mode,
            "bridge": self.bridge.get_status(),
            "voice": self.voice.get_status(),
            "analyzer": self.analyzer.get_status(),
            "events": len(self.log),
        }
