"""Frame sources."""

from visualcortex.frames.source import (
    CameraFrameSource,
    FrameSource,
    StaticFrameSource,
    encode_snapshot,
)

__all__ = ["CameraFrameSource", "FrameSource", "StaticFrameSource", "encode_snapshot"]
