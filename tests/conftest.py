"""Pytest configuration and fixtures for Visual Cortex tests."""

from __future__ import annotations

import logging

import pytest
import structlog
from PIL import Image

from visualcortex.bridge.loop import BridgeLoop
from visualcortex.common.events import EventBus
from visualcortex.config import Config
from visualcortex.frames.source import StaticFrameSource
from visualcortex.logsink import LogSink
from visualcortex.vision.analyzer import MockVisionAnalyzer
from visualcortex.voice.backends import MockVoiceBackend
from visualcortex.voice.session import VoiceSession

# Long enough that only the immediate first tick fires during a test
TEST_INTERVAL_MS = 60_000


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command line options."""
    parser.addoption(
        "--hil",
        action="store_true",
        default=False,
        help="Run hardware-in-the-loop tests (real camera and services)",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Configure test markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "hil: Hardware-in-the-loop tests")


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip HIL tests unless --hil is given."""
    if config.getoption("--hil"):
        return
    skip_hil = pytest.mark.skip(reason="Need --hil option to run")
    for item in items:
        if "hil" in item.keywords:
            item.add_marker(skip_hil)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep real credentials and config files out of tests."""
    for name in ("GEMINI_API_KEY", "API_KEY", "AGENT_ID", "ELEVENLABS_AGENT_ID", "ELEVENLABS_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("VISUALCORTEX_CREDENTIALS_PATH", str(tmp_path / "credentials.yaml"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo global logging setup so no test logs into another test's closed capture stream."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def mock_config(tmp_path) -> Config:
    """Get mock configuration."""
    cfg = Config()
    cfg.mock_mode = True
    cfg.app.mode = "development"
    cfg.app.log_level = "DEBUG"
    cfg.credentials_path = tmp_path / "credentials.yaml"
    return cfg


@pytest.fixture
def mock_image() -> Image.Image:
    """Create a 640x480 test image."""
    return Image.new("RGB", (640, 480), color=(73, 109, 137))


# Component fixtures


@pytest.fixture
def log_sink() -> LogSink:
    return LogSink()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def frame_source() -> StaticFrameSource:
    return StaticFrameSource()


@pytest.fixture
def analyzer() -> MockVisionAnalyzer:
    return MockVisionAnalyzer(script=[])


@pytest.fixture
def voice_backend() -> MockVoiceBackend:
    return MockVoiceBackend()


@pytest.fixture
def voice(voice_backend: MockVoiceBackend, event_bus: EventBus) -> VoiceSession:
    return VoiceSession(voice_backend, event_bus)


@pytest.fixture
async def bridge(frame_source, analyzer, voice, log_sink):
    """Bridge loop wired to mock components. The frame source starts closed."""
    loop = BridgeLoop(frame_source, analyzer, voice, log_sink, interval_ms=TEST_INTERVAL_MS)
    yield loop
    loop.close()
    await loop.wait_idle()
