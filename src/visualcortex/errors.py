"""Exception hierarchy for Visual Cortex."""

from __future__ import annotations


class VisualCortexError(Exception):
    """Base class for all Visual Cortex errors."""


class ConfigError(VisualCortexError):
    """Invalid or unreadable configuration."""


class VoiceError(VisualCortexError):
    """Voice session failure."""


class VoiceAuthError(VoiceError):
    """The voice service rejected the agent id or credentials."""


class VoiceNetworkError(VoiceError):
    """The voice service could not be reached or dropped the connection."""


class VoicePushError(VoiceError):
    """Contextual text could not be delivered to the voice session."""
