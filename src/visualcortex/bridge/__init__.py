"""Vision-to-voice bridge."""

from visualcortex.bridge.loop import CAPTURE_INTERVAL_MS, BridgeLoop, describe_failure

__all__ = ["CAPTURE_INTERVAL_MS", "BridgeLoop", "describe_failure"]
