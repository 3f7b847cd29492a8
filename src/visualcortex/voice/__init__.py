"""Voice agent session and backends."""

from visualcortex.voice.backends import (
    ElevenLabsVoiceBackend,
    MockVoiceBackend,
    VoiceBackend,
    VoiceEventKind,
)
from visualcortex.voice.session import VoiceSession

__all__ = [
    "ElevenLabsVoiceBackend",
    "MockVoiceBackend",
    "VoiceBackend",
    "VoiceEventKind",
    "VoiceSession",
]
