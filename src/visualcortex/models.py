"""Shared data model."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# Analyzer response meaning "scene unchanged since the previous frame"
NO_CHANGE = "NO_CHANGE"


class LogCategory(str, Enum):
    """Log entry category."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    VISUAL = "visual"
    BRIDGE = "bridge"


@dataclass(frozen=True)
class LogEntry:
    """Immutable log sink record."""

    id: str
    timestamp: datetime
    category: LogCategory
    message: str


class ConnectionStatus(str, Enum):
    """Voice link state."""

    IDLE = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class VisionState(str, Enum):
    """Vision loop activation state."""

    IDLE = "idle"
    ACTIVE = "active"


class ProcessingState(str, Enum):
    """Per-tick processing state."""

    IDLE = "idle"
    CAPTURING = "capturing"
    ANALYZING = "analyzing"


@dataclass(frozen=True, eq=False)
class Snapshot:
    """Encoded camera frame.

    Compared by identity: two captures of an unchanged scene are still
    distinct snapshots.
    """

    data: bytes
    width: int
    height: int
    mime_type: str = "image/jpeg"
    frame_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)


class FailureKind(str, Enum):
    """Classified analyzer failure."""

    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    NETWORK = "network"
    SAFETY = "safety"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AnalysisFailure:
    """Analyzer failure reported as a value."""

    kind: FailureKind
    message: str


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of one analyzer call.

    Exactly one of ``observation`` and ``failure`` is set.
    """

    observation: str | None = None
    failure: AnalysisFailure | None = None
    latency_ms: int = 0

    @classmethod
    def unchanged(cls, latency_ms: int = 0) -> AnalysisResult:
        return cls(observation=NO_CHANGE, latency_ms=latency_ms)

    @classmethod
    def failed(cls, kind: FailureKind, message: str, latency_ms: int = 0) -> AnalysisResult:
        return cls(failure=AnalysisFailure(kind, message), latency_ms=latency_ms)

    @property
    def is_failure(self) -> bool:
        return self.failure is not None

    @property
    def is_change(self) -> bool:
        """True for a new, non-empty description."""
        if self.failure is not None or not self.observation:
            return False
        text = self.observation.strip()
        return bool(text) and NO_CHANGE not in text
