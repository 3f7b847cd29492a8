"""Visual Cortex - webcam change detection bridged into a real-time voice agent."""

__version__ = "0.1.0"

from visualcortex.config import Config, load_config

__all__ = ["Config", "load_config", "__version__"]
