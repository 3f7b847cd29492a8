"""Vision analyzers."""

from visualcortex.vision.analyzer import (
    GeminiVisionAnalyzer,
    MockVisionAnalyzer,
    VisionAnalyzer,
    classify_failure,
    clean_observation,
)

__all__ = [
    "GeminiVisionAnalyzer",
    "MockVisionAnalyzer",
    "VisionAnalyzer",
    "classify_failure",
    "clean_observation",
]
