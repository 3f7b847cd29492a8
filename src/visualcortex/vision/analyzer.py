"""Vision analyzer: frame-to-frame change detection with a hosted VLM."""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Iterable
from typing import Union

import httpx

from visualcortex.common.logging import get_logger
from visualcortex.models import (
    NO_CHANGE,
    AnalysisFailure,
    AnalysisResult,
    FailureKind,
    Snapshot,
)

# Fixed decoding parameters: short, deterministic change reports
MODEL_ID = "gemini-3-flash-preview"
MAX_OUTPUT_TOKENS = 60
TEMPERATURE = 0.2
THINKING_BUDGET = 0

SYSTEM_INSTRUCTION = f"""You are a background visual observer watching a webcam.
Output ONE short, dry, factual sentence about what the user is doing or holding.
You may be given the previous frame and your previous observation as context.
If nothing significant has changed since the previous frame, output exactly {NO_CHANGE}.
Describe only what changed. Refer back to people and objects you already
described with pronouns ("they", "it") instead of describing them again, and do
not repeat static details of the scene."""

_UPDATE_TAG = re.compile(r"^\s*\[VISUAL_UPDATE\]\s*:?\s*", re.IGNORECASE)


def clean_observation(text: str | None) -> str:
    """Strip whitespace and a leading ``[VISUAL_UPDATE]:`` tag."""
    if not text:
        return ""
    return _UPDATE_TAG.sub("", text.strip()).strip()


def classify_failure(error: BaseException) -> AnalysisFailure:
    """Map a backend exception to a failure class.

    Uses the HTTP status code when the exception carries one and falls back
    to matching the message text.
    """
    message = str(error) or type(error).__name__
    text = message.lower()
    code = getattr(error, "code", None)
    if not isinstance(code, int):
        code = getattr(error, "status_code", None)

    if code == 429 or "429" in text or "quota" in text or "resource_exhausted" in text:
        return AnalysisFailure(FailureKind.RATE_LIMIT, message)

    if code in (401, 403) or any(
        word in text for word in ("permission", "api key", "api_key", "unauthenticated")
    ):
        return AnalysisFailure(FailureKind.AUTH, message)

    if isinstance(error, (httpx.TransportError, ConnectionError, asyncio.TimeoutError)) or any(
        word in text for word in ("network", "fetch", "connection", "timed out", "timeout")
    ):
        return AnalysisFailure(FailureKind.NETWORK, message)

    if "safety" in text or "blocked" in text:
        return AnalysisFailure(FailureKind.SAFETY, message)

    return AnalysisFailure(FailureKind.UNKNOWN, message)


class VisionAnalyzer:
    """Abstract vision analyzer.

    ``analyze()`` never raises for backend failures; they come back as an
    ``AnalysisResult`` carrying an ``AnalysisFailure``.
    """

    def __init__(self) -> None:
        self._total_requests = 0
        self._last_latency_ms = 0
        self._last_error: str | None = None

    async def analyze(
        self,
        current: Snapshot,
        previous: Snapshot | None = None,
        last_observation: str | None = None,
    ) -> AnalysisResult:
        """Compare ``current`` against the previous frame and observation."""
        raise NotImplementedError

    def _record(self, result: AnalysisResult) -> AnalysisResult:
        self._total_requests += 1
        self._last_latency_ms = result.latency_ms
        self._last_error = result.failure.message if result.failure else None
        return result

    def get_status(self) -> dict:
        """Get analyzer status."""
        return {
            "provider": self.provider_id,
            "total_requests": self._total_requests,
            "latency_ms": self._last_latency_ms,
            "error": self._last_error,
        }

    @property
    def provider_id(self) -> str:
        raise NotImplementedError


class GeminiVisionAnalyzer(VisionAnalyzer):
    """Gemini analyzer using the google-genai SDK."""

    def __init__(self, api_key: str | None, client=None) -> None:
        super().__init__()
        self.api_key = api_key
        self._client = client
        self.logger = get_logger("gemini_analyzer", model=MODEL_ID)

    @property
    def provider_id(self) -> str:
        return "gemini"

    def _get_client(self):
        """Get or create the Gemini client."""
        if self._client is None:
            from google import genai

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def build_contents(
        self,
        current: Snapshot,
        previous: Snapshot | None,
        last_observation: str | None,
    ) -> list:
        """Build request parts: prior text, prior image, then current image."""
        from google.genai import types

        parts: list[types.Part] = []

        if last_observation:
            parts.append(types.Part(text=f"Previous Observation (Context): {last_observation}"))

        if previous is not None:
            parts.append(types.Part(text="Previous Frame (Context):"))
            parts.append(
                types.Part(inline_data=types.Blob(data=previous.data, mime_type=previous.mime_type))
            )

        parts.append(types.Part(text="Current Frame (Analyze this):"))
        parts.append(types.Part(inline_data=types.Blob(data=current.data, mime_type=current.mime_type)))

        return [types.Content(role="user", parts=parts)]

    def build_config(self):
        from google.genai import types

        return types.GenerateContentConfig(
            system_instruction=SYSTEM_INSTRUCTION,
            max_output_tokens=MAX_OUTPUT_TOKENS,
            temperature=TEMPERATURE,
            thinking_config=types.ThinkingConfig(thinking_budget=THINKING_BUDGET),
        )

    async def analyze(
        self,
        current: Snapshot,
        previous: Snapshot | None = None,
        last_observation: str | None = None,
    ) -> AnalysisResult:
        start_time = time.time()

        try:
            client = self._get_client()
            response = await client.aio.models.generate_content(
                model=MODEL_ID,
                contents=self.build_contents(current, previous, last_observation),
                config=self.build_config(),
            )
        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)
            failure = classify_failure(e)
            self.logger.warning("gemini_request_failed", kind=failure.kind.value, error=failure.message)
            return self._record(AnalysisResult(failure=failure, latency_ms=latency_ms))

        latency_ms = int((time.time() - start_time) * 1000)

        blocked = _block_reason(response)
        if blocked:
            return self._record(
                AnalysisResult.failed(FailureKind.SAFETY, f"Blocked: {blocked}", latency_ms)
            )

        text = clean_observation(response.text)
        if NO_CHANGE in text:
            return self._record(AnalysisResult.unchanged(latency_ms))

        self.logger.debug("gemini_observation", latency_ms=latency_ms, length=len(text))
        return self._record(AnalysisResult(observation=text, latency_ms=latency_ms))


def _block_reason(response) -> str | None:
    """Return the safety block reason of a response, if any."""
    feedback = getattr(response, "prompt_feedback", None)
    reason = getattr(feedback, "block_reason", None)
    if reason:
        return str(getattr(reason, "value", reason))

    for candidate in getattr(response, "candidates", None) or []:
        finish_reason = getattr(candidate, "finish_reason", None)
        name = str(getattr(finish_reason, "value", finish_reason) or "")
        if name in ("SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "IMAGE_SAFETY"):
            return name
    return None


ScriptItem = Union[str, AnalysisResult, BaseException]

DEFAULT_SCRIPT: tuple[str, ...] = (
    "A person sits down at the desk.",
    NO_CHANGE,
    NO_CHANGE,
    "They pick up a coffee mug.",
    NO_CHANGE,
    "They put the mug down and wave at the camera.",
)


class MockVisionAnalyzer(VisionAnalyzer):
    """Scripted analyzer for mock mode and tests.

    Each call consumes the next script item, cycling when ``cycle`` is set.
    Strings become observations, exceptions are classified like real backend
    errors, and ``AnalysisResult`` items are returned as-is. Every call is
    recorded in ``calls`` as ``(current, previous, last_observation)``.
    """

    def __init__(
        self,
        script: Iterable[ScriptItem] | None = None,
        delay: float = 0.0,
        cycle: bool = True,
    ) -> None:
        super().__init__()
        self.script: list[ScriptItem] = list(script) if script is not None else list(DEFAULT_SCRIPT)
        self.delay = delay
        self.cycle = cycle
        self.calls: list[tuple[Snapshot, Snapshot | None, str | None]] = []
        self.inflight = 0
        self.max_inflight = 0
        self._index = 0

    @property
    def provider_id(self) -> str:
        return "mock"

    async def analyze(
        self,
        current: Snapshot,
        previous: Snapshot | None = None,
        last_observation: str | None = None,
    ) -> AnalysisResult:
        self.calls.append((current, previous, last_observation))
        self.inflight += 1
        self.max_inflight = max(self.max_inflight, self.inflight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            item = self._next_item()
        finally:
            self.inflight -= 1

        if isinstance(item, AnalysisResult):
            return self._record(item)
        if isinstance(item, BaseException):
            return self._record(AnalysisResult(failure=classify_failure(item)))

        text = clean_observation(item)
        if NO_CHANGE in text:
            return self._record(AnalysisResult.unchanged())
        return self._record(AnalysisResult(observation=text))

    def _next_item(self) -> ScriptItem:
        if not self.script:
            return NO_CHANGE
        if self._index >= len(self.script):
            if not self.cycle:
                return NO_CHANGE
            self._index = 0
        item = self.script[self._index]
        self._index += 1
        return item
