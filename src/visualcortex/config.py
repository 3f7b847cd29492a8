"""Configuration management for Visual Cortex."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CREDENTIALS_PATH = Path.home() / ".config" / "visualcortex" / "credentials.yaml"


class AppConfig(BaseModel):
    """Application configuration."""

    name: str = "visualcortex"
    mode: Literal["production", "development"] = "development"
    log_level: str = "INFO"


class CameraConfig(BaseModel):
    """Camera configuration.

    The capture size is only a hint to the device; snapshots are always
    rescaled to a fixed width before encoding.
    """

    device_index: int = 0
    capture_width: int = 640
    capture_height: int = 480


class VisionConfig(BaseModel):
    """Vision analyzer configuration."""

    provider: Literal["gemini", "mock"] = "gemini"
    api_key: str | None = None


class VoiceConfig(BaseModel):
    """Voice agent configuration."""

    provider: Literal["elevenlabs", "mock"] = "elevenlabs"
    agent_id: str | None = None
    # Only needed for private agents (signed URL)
    api_key: str | None = None
    websocket_url: str = "wss://api.elevenlabs.io/v1/convai/conversation"
    api_base_url: str = "https://api.elevenlabs.io/v1"


class Config(BaseSettings):
    """Main configuration for Visual Cortex."""

    model_config = SettingsConfigDict(
        env_prefix="VISUALCORTEX_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app: AppConfig = Field(default_factory=AppConfig)
    camera: CameraConfig = Field(default_factory=CameraConfig)
    vision: VisionConfig = Field(default_factory=VisionConfig)
    voice: VoiceConfig = Field(default_factory=VoiceConfig)

    credentials_path: Path = DEFAULT_CREDENTIALS_PATH

    # Mock mode for development
    mock_mode: bool = False

    @classmethod
    def from_yaml(cls, path: Path | str) -> Config:
        """Load configuration from YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)


def _first_env(*names: str) -> str | None:
    for name in names:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return None


def load_config(
    config_path: Path | str | None = None,
    env_override: bool = True,
    use_credential_store: bool = True,
) -> Config:
    """Load configuration from file, environment and the credential store.

    Credentials resolve in order: config file, environment
    (``GEMINI_API_KEY``/``API_KEY`` and ``AGENT_ID``/``ELEVENLABS_AGENT_ID``),
    then values cached by an earlier interactive entry.

    Args:
        config_path: Path to config file. If None, searches standard locations.
        env_override: Whether to allow environment variables to override config.
        use_credential_store: Fill missing credentials from the local store.

    Returns:
        Loaded configuration.
    """
    search_paths = [
        Path.home() / ".config" / "visualcortex" / "config.yaml",
        Path("visualcortex.yaml"),
        Path("configs/visualcortex.yaml"),
    ]

    if config_path:
        search_paths.insert(0, Path(config_path))

    config_file: Path | None = None
    for path in search_paths:
        if path.exists():
            config_file = path
            break

    if config_file:
        config = Config.from_yaml(config_file)
    else:
        config = Config()

    if env_override:
        api_key = _first_env("GEMINI_API_KEY", "API_KEY")
        if api_key:
            config.vision.api_key = api_key

        agent_id = _first_env("AGENT_ID", "ELEVENLABS_AGENT_ID")
        if agent_id:
            config.voice.agent_id = agent_id

        elevenlabs_key = _first_env("ELEVENLABS_API_KEY")
        if elevenlabs_key:
            config.voice.api_key = elevenlabs_key

        if os.environ.get("VISUALCORTEX_MOCK_MODE", "").lower() in ("1", "true", "yes"):
            config.mock_mode = True

    if use_credential_store and not (config.vision.api_key and config.voice.agent_id):
        from visualcortex.common.credentials import CredentialStore

        stored = CredentialStore(config.credentials_path).load()
        if not config.vision.api_key and stored.api_key:
            config.vision.api_key = stored.api_key
        if not config.voice.agent_id and stored.agent_id:
            config.voice.agent_id = stored.agent_id

    return config


def get_default_config() -> dict[str, Any]:
    """Get default configuration as dictionary."""
    return Config().model_dump(mode="json")
