"""Voice session: connection state and contextual pushes."""

from __future__ import annotations

from typing import Any

from visualcortex.common.events import (
    VOICE_AGENT_RESPONSE,
    VOICE_CONNECTED,
    VOICE_CONNECTING,
    VOICE_DISCONNECTED,
    VOICE_ERROR,
    Event,
    EventBus,
)
from visualcortex.common.logging import get_logger
from visualcortex.errors import VoiceAuthError, VoiceError, VoiceNetworkError, VoicePushError
from visualcortex.models import ConnectionStatus
from visualcortex.voice.backends import VoiceBackend, VoiceEventKind


class VoiceSession:
    """Wraps one real-time voice conversation.

    ``connect()`` only moves the session to CONNECTING. CONNECTED and the
    return to IDLE are driven by events the backend relays from the service,
    and every transition is published on the event bus under ``voice.*``.
    """

    def __init__(self, backend: VoiceBackend, event_bus: EventBus | None = None) -> None:
        self.backend = backend
        self.event_bus = event_bus or EventBus()
        self._status = ConnectionStatus.IDLE
        self.agent_id: str | None = None
        self.conversation_id: str | None = None
        self.pushed_count = 0
        self.logger = get_logger("voice_session")

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    async def connect(self, agent_id: str | None) -> None:
        """Start a conversation with an agent.

        Raises:
            VoiceAuthError: Missing or rejected agent id.
            VoiceNetworkError: Service unreachable.
        """
        if not agent_id or not agent_id.strip():
            raise VoiceAuthError("Missing Agent ID")
        if self._status is not ConnectionStatus.IDLE:
            self.logger.debug("connect_ignored", status=self._status.value)
            return

        self.agent_id = agent_id.strip()
        await self._transition(ConnectionStatus.CONNECTING, VOICE_CONNECTING, {"agent_id": self.agent_id})

        try:
            await self.backend.connect(self.agent_id, self._on_backend_event)
        except VoiceError:
            self._status = ConnectionStatus.IDLE
            raise
        except Exception as e:
            self._status = ConnectionStatus.IDLE
            raise VoiceNetworkError(str(e)) from e

    async def disconnect(self) -> None:
        """End the conversation. The session is IDLE afterwards.

        The backend is always closed: after the service ends a conversation
        the session is already IDLE but the transport may still hold its
        socket and HTTP session.
        """
        await self.backend.close()
        if self._status is not ConnectionStatus.IDLE:
            # Backend closed without reporting it
            await self._transition(ConnectionStatus.IDLE, VOICE_DISCONNECTED, {"reason": "closed"})

    async def push_context(self, text: str) -> None:
        """Send contextual text to the agent.

        Raises:
            VoicePushError: Not connected, or the backend failed to send.
        """
        if not self.connected:
            raise VoicePushError(f"Voice session is {self._status.value}")
        try:
            await self.backend.send_contextual_update(text)
        except VoicePushError:
            raise
        except Exception as e:
            raise VoicePushError(str(e)) from e
        self.pushed_count += 1
        self.logger.debug("context_pushed", length=len(text))

    async def _on_backend_event(self, kind: VoiceEventKind, data: dict[str, Any]) -> None:
        if kind is VoiceEventKind.CONNECTED:
            self.conversation_id = data.get("conversation_id")
            await self._transition(ConnectionStatus.CONNECTED, VOICE_CONNECTED, data)
        elif kind is VoiceEventKind.DISCONNECTED:
            if self._status is not ConnectionStatus.IDLE:
                await self._transition(ConnectionStatus.IDLE, VOICE_DISCONNECTED, data)
        elif kind is VoiceEventKind.ERROR:
            self.logger.warning("voice_backend_error", **data)
            await self._transition(ConnectionStatus.IDLE, VOICE_ERROR, data)
        elif kind is VoiceEventKind.AGENT_RESPONSE:
            await self.event_bus.publish(Event(topic=VOICE_AGENT_RESPONSE, data=data, source="voice"))

    async def _transition(self, status: ConnectionStatus, topic: str, data: dict[str, Any]) -> None:
        previous, self._status = self._status, status
        if status is ConnectionStatus.IDLE:
            self.conversation_id = None
        self.logger.info("voice_status_changed", old=previous.value, new=status.value)
        await self.event_bus.publish(Event(topic=topic, data=dict(data), source="voice"))

    def get_status(self) -> dict:
        return {
            "status": self._status.value,
            "agent_id": self.agent_id,
            "conversation_id": self.conversation_id,
            "pushed_count": self.pushed_count,
        }
