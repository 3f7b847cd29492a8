"""Voice agent backends.

A backend owns the transport to the voice service and reports what the
service tells it (connected, disconnected, errors, agent text) through an
async event callback. It never decides session state itself.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable

import aiohttp
import httpx

from visualcortex.common.logging import get_logger
from visualcortex.config import VoiceConfig
from visualcortex.errors import VoiceAuthError, VoiceNetworkError, VoicePushError


class VoiceEventKind(str, Enum):
    """Events reported by a voice backend."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    AGENT_RESPONSE = "agent_response"


BackendEventHandler = Callable[[VoiceEventKind, dict[str, Any]], Awaitable[None]]


class VoiceBackend:
    """Abstract voice backend."""

    async def connect(self, agent_id: str, on_event: BackendEventHandler) -> None:
        """Open the transport.

        Returns once the transport is open; the CONNECTED event follows when
        the service confirms the conversation.

        Raises:
            VoiceAuthError: The service rejected the agent id or key.
            VoiceNetworkError: The service could not be reached.
        """
        raise NotImplementedError

    async def send_contextual_update(self, text: str) -> None:
        """Send background context the agent can use without replying to it."""
        raise NotImplementedError

    async def close(self) -> None:
        """Close the transport. Emits DISCONNECTED if it was open."""
        raise NotImplementedError


class ElevenLabsVoiceBackend(VoiceBackend):
    """ElevenLabs Conversational AI over its WebSocket API.

    Public agents connect with ``?agent_id=``; when an ElevenLabs API key is
    configured a signed URL is requested first, which private agents require.
    Agent audio is not played back; only text events are surfaced.
    """

    def __init__(self, config: VoiceConfig) -> None:
        self.config = config
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task | None = None
        self.logger = get_logger("elevenlabs_backend")

    async def resolve_url(self, agent_id: str) -> str:
        """Get the WebSocket URL for an agent."""
        if not self.config.api_key:
            return str(httpx.URL(self.config.websocket_url, params={"agent_id": agent_id}))

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(
                    f"{self.config.api_base_url.rstrip('/')}/convai/conversation/get_signed_url",
                    params={"agent_id": agent_id},
                    headers={"xi-api-key": self.config.api_key},
                )
        except httpx.TransportError as e:
            raise VoiceNetworkError(f"Could not reach voice service: {e}") from e

        if response.status_code in (401, 403, 404):
            raise VoiceAuthError(
                f"Voice service rejected agent {agent_id[:8]}... (HTTP {response.status_code})"
            )
        if response.status_code >= 400:
            raise VoiceNetworkError(f"Signed URL request failed (HTTP {response.status_code})")

        return response.json()["signed_url"]

    async def connect(self, agent_id: str, on_event: BackendEventHandler) -> None:
        if self._ws is not None:
            if not self._ws.closed:
                return
            # Server closed the previous conversation; release it first
            await self.close()

        url = await self.resolve_url(agent_id)
        session = aiohttp.ClientSession()

        try:
            ws = await session.ws_connect(url, autoping=True)
        except aiohttp.WSServerHandshakeError as e:
            await session.close()
            if e.status in (401, 403):
                raise VoiceAuthError(f"Voice handshake rejected (HTTP {e.status})") from e
            raise VoiceNetworkError(f"Voice handshake failed (HTTP {e.status})") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await session.close()
            raise VoiceNetworkError(f"Could not reach voice service: {e}") from e

        self._session = session
        self._ws = ws
        await ws.send_json({"type": "conversation_initiation_client_data"})
        self._reader = asyncio.create_task(self._read_loop(ws, on_event), name="voice-reader")
        self.logger.info("voice_socket_open", agent=agent_id[:8])

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse, on_event: BackendEventHandler) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        message = json.loads(msg.data)
                    except json.JSONDecodeError:
                        self.logger.warning("voice_message_not_json")
                        continue
                    await self._handle_message(ws, message, on_event)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    await on_event(VoiceEventKind.ERROR, {"message": str(ws.exception())})
                    break
        except (aiohttp.ClientError, ConnectionError) as e:
            await on_event(VoiceEventKind.ERROR, {"message": str(e)})

        await on_event(VoiceEventKind.DISCONNECTED, {"close_code": ws.close_code})

    async def _handle_message(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        message: dict[str, Any],
        on_event: BackendEventHandler,
    ) -> None:
        kind = message.get("type")

        if kind == "conversation_initiation_metadata":
            metadata = message.get("conversation_initiation_metadata_event", {})
            await on_event(
                VoiceEventKind.CONNECTED,
                {"conversation_id": metadata.get("conversation_id")},
            )
        elif kind == "ping":
            ping = message.get("ping_event", {})
            await ws.send_json({"type": "pong", "event_id": ping.get("event_id")})
        elif kind == "agent_response":
            text = message.get("agent_response_event", {}).get("agent_response", "")
            await on_event(VoiceEventKind.AGENT_RESPONSE, {"text": text})
        elif kind == "user_transcript":
            transcript = message.get("user_transcription_event", {}).get("user_transcript", "")
            self.logger.debug("user_transcript", text=transcript)
        else:
            self.logger.debug("voice_message_ignored", type=kind)

    async def send_contextual_update(self, text: str) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise VoicePushError("Voice socket is not open")
        try:
            await ws.send_json({"type": "contextual_update", "text": text})
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise VoicePushError(f"Contextual update failed: {e}") from e

    async def close(self) -> None:
        """Close the socket and HTTP session. Safe to call when already closed."""
        ws, self._ws = self._ws, None
        reader, self._reader = self._reader, None
        session, self._session = self._session, None

        if ws is not None:
            await ws.close()
        if reader is not None:
            await reader
        if session is not None:
            await session.close()
            self.logger.info("voice_socket_closed")


class MockVoiceBackend(VoiceBackend):
    """In-memory backend for mock mode and tests.

    With ``auto_connect`` the CONNECTED event is delivered from a separate
    task, like a real service confirming the conversation. Tests can drive
    further events with ``emit()``.
    """

    def __init__(
        self,
        auto_connect: bool = True,
        connect_error: Exception | None = None,
        push_error: Exception | None = None,
    ) -> None:
        self.auto_connect = auto_connect
        self.connect_error = connect_error
        self.push_error = push_error
        self.agent_id: str | None = None
        self.pushed: list[str] = []
        self._on_event: BackendEventHandler | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def is_open(self) -> bool:
        return self._on_event is not None

    async def connect(self, agent_id: str, on_event: BackendEventHandler) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.agent_id = agent_id
        self._on_event = on_event
        if self.auto_connect:
            self._schedule(VoiceEventKind.CONNECTED, {"conversation_id": f"mock-{uuid.uuid4().hex[:8]}"})

    def _schedule(self, kind: VoiceEventKind, data: dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self.emit(kind, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def emit(self, kind: VoiceEventKind, data: dict[str, Any] | None = None) -> None:
        """Deliver a service event to the session."""
        if self._on_event is not None:
            await self._on_event(kind, data or {})

    async def settle(self) -> None:
        """Wait until scheduled events have been delivered."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def send_contextual_update(self, text: str) -> None:
        if self.push_error is not None:
            raise self.push_error
        if not self.is_open:
            raise VoicePushError("Voice socket is not open")
        self.pushed.append(text)

    async def close(self) -> None:
        await self.settle()
        if self._on_event is not None:
            on_event, self._on_event = self._on_event, None
            await on_event(VoiceEventKind.DISCONNECTED, {"reason": "closed"})
