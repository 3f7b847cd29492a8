"""Local credential cache for the vision API key and voice agent id."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from visualcortex.common.logging import get_logger
from visualcortex.errors import ConfigError

API_KEY_FIELD = "GEMINI_API_KEY"
AGENT_ID_FIELD = "AGENT_ID"


@dataclass(frozen=True)
class Credentials:
    """Cached credential values."""

    api_key: str | None = None
    agent_id: str | None = None


class CredentialStore:
    """YAML-backed credential store, readable only by the current user."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.logger = get_logger("credentials")

    def load(self) -> Credentials:
        """Load cached credentials. A missing file yields empty credentials."""
        if not self.path.exists():
            return Credentials()

        try:
            with open(self.path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Credential file {self.path} is not valid YAML") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Credential file {self.path} must contain a mapping")

        return Credentials(
            api_key=(data.get(API_KEY_FIELD) or "").strip() or None,
            agent_id=(data.get(AGENT_ID_FIELD) or "").strip() or None,
        )

    def save(self, api_key: str, agent_id: str = "") -> Credentials:
        """Store credentials, trimming whitespace.

        Args:
            api_key: Vision API key. Required.
            agent_id: Voice agent id. May be empty.

        Returns:
            The stored credentials.
        """
        api_key = api_key.strip()
        agent_id = agent_id.strip()
        if not api_key:
            raise ConfigError("API key must not be empty")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Owner-only from the moment the file exists
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        # os.open leaves the mode of an existing file unchanged
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w") as f:
            yaml.safe_dump({API_KEY_FIELD: api_key, AGENT_ID_FIELD: agent_id}, f)

        self.logger.info("credentials_saved", path=str(self.path), has_agent_id=bool(agent_id))
        return Credentials(api_key=api_key, agent_id=agent_id or None)

    def clear(self) -> bool:
        """Delete the credential file. Returns True if a file was removed."""
        if not self.path.exists():
            return False
        self.path.unlink()
        self.logger.info("credentials_cleared", path=str(self.path))
        return True
