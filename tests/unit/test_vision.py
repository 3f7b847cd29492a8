"""Tests for vision analyzers."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from visualcortex.models import NO_CHANGE, AnalysisResult, FailureKind, Snapshot
from visualcortex.vision.analyzer import (
    MAX_OUTPUT_TOKENS,
    MODEL_ID,
    GeminiVisionAnalyzer,
    MockVisionAnalyzer,
    classify_failure,
    clean_observation,
)


def make_snapshot(data: bytes = b"\xff\xd8current") -> Snapshot:
    return Snapshot(data=data, width=512, height=384)


def make_client(response=None, error: Exception | None = None) -> MagicMock:
    """Fake google-genai client exposing ``client.aio.models.generate_content``."""
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock(return_value=response, side_effect=error)
    return client


def make_response(text: str | None, block_reason=None, finish_reason=None):
    return SimpleNamespace(
        text=text,
        prompt_feedback=SimpleNamespace(block_reason=block_reason) if block_reason else None,
        candidates=[SimpleNamespace(finish_reason=finish_reason)] if finish_reason else [],
    )


class TestClassifyFailure:
    """Tests for failure classification."""

    @pytest.mark.parametrize(
        "error,kind",
        [
            (Exception("429 RESOURCE_EXHAUSTED"), FailureKind.RATE_LIMIT),
            (Exception("Quota exceeded for project"), FailureKind.RATE_LIMIT),
            (Exception("API key not valid. Please pass a valid API key."), FailureKind.AUTH),
            (Exception("403 PERMISSION_DENIED"), FailureKind.AUTH),
            (Exception("Failed to fetch"), FailureKind.NETWORK),
            (httpx.ConnectError("refused"), FailureKind.NETWORK),
            (TimeoutError(), FailureKind.NETWORK),
            (Exception("Candidate was blocked due to SAFETY"), FailureKind.SAFETY),
            (ValueError("unexpected"), FailureKind.UNKNOWN),
        ],
    )
    def test_classification(self, error, kind):
        """Test message and type based classification."""
        assert classify_failure(error).kind is kind

    def test_status_code_takes_precedence(self):
        """Test an HTTP status code attribute is used when present."""
        error = Exception("request failed")
        error.code = 429

        assert classify_failure(error).kind is FailureKind.RATE_LIMIT

    def test_message_is_kept(self):
        """Test the failure keeps the raw message."""
        assert classify_failure(ValueError("bad")).message == "bad"
        assert classify_failure(ValueError()).message == "ValueError"


class TestCleanObservation:
    """Tests for response cleanup."""

    def test_strips_update_tag(self):
        assert clean_observation("[VISUAL_UPDATE]: They wave.") == "They wave."

    def test_strips_whitespace(self):
        assert clean_observation("  They wave.\n") == "They wave."

    def test_empty(self):
        assert clean_observation(None) == ""
        assert clean_observation("") == ""


class TestGeminiVisionAnalyzer:
    """Tests for the Gemini analyzer with a fake client."""

    @pytest.mark.asyncio
    async def test_request_parameters(self):
        """Test the model and fixed decoding parameters."""
        client = make_client(make_response("They wave."))
        analyzer = GeminiVisionAnalyzer("test-key", client=client)

        await analyzer.analyze(make_snapshot())

        kwargs = client.aio.models.generate_content.await_args.kwargs
        assert kwargs["model"] == MODEL_ID
        config = kwargs["config"]
        assert config.max_output_tokens == MAX_OUTPUT_TOKENS
        assert config.temperature == 0.2
        assert config.thinking_config.thinking_budget == 0
        assert NO_CHANGE in config.system_instruction

    @pytest.mark.asyncio
    async def test_first_frame_has_no_context(self):
        """Test a first call sends only the current frame."""
        client = make_client(make_response("A person sits down."))
        analyzer = GeminiVisionAnalyzer("test-key", client=client)
        current = make_snapshot()

        await analyzer.analyze(current)

        contents = client.aio.models.generate_content.await_args.kwargs["contents"]
        parts = contents[0].parts
        assert len(parts) == 2
        assert parts[0].text == "Current Frame (Analyze this):"
        assert parts[1].inline_data.data == current.data
        assert parts[1].inline_data.mime_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_context_part_order(self):
        """Test prior observation, prior frame, then current frame."""
        client = make_client(make_response("They stand up."))
        analyzer = GeminiVisionAnalyzer("test-key", client=client)
        previous = make_snapshot(b"\xff\xd8previous")
        current = make_snapshot()

        await analyzer.analyze(current, previous, "A person sits down.")

        parts = client.aio.models.generate_content.await_args.kwargs["contents"][0].parts
        assert parts[0].text == "Previous Observation (Context): A person sits down."
        assert parts[1].text == "Previous Frame (Context):"
        assert parts[2].inline_data.data == previous.data
        assert parts[3].text == "Current Frame (Analyze this):"
        assert parts[4].inline_data.data == current.data

    @pytest.mark.asyncio
    async def test_observation(self):
        """Test a description is returned cleaned."""
        analyzer = GeminiVisionAnalyzer("test-key", client=make_client(make_response("[VISUAL_UPDATE]: They wave.")))

        result = await analyzer.analyze(make_snapshot())

        assert result.observation == "They wave."
        assert result.is_change
        assert analyzer.get_status()["total_requests"] == 1

    @pytest.mark.asyncio
    async def test_no_change(self):
        """Test the sentinel is reported as unchanged."""
        analyzer = GeminiVisionAnalyzer("test-key", client=make_client(make_response("NO_CHANGE.")))

        result = await analyzer.analyze(make_snapshot())

        assert not result.is_change
        assert not result.is_failure

    @pytest.mark.asyncio
    async def test_empty_response(self):
        """Test an empty response is neither a change nor a failure."""
        analyzer = GeminiVisionAnalyzer("test-key", client=make_client(make_response(None)))

        result = await analyzer.analyze(make_snapshot())

        assert result.observation == ""
        assert not result.is_change
        assert not result.is_failure

    @pytest.mark.asyncio
    async def test_blocked_prompt(self):
        """Test a blocked prompt is a safety failure."""
        analyzer = GeminiVisionAnalyzer(
            "test-key", client=make_client(make_response(None, block_reason="SAFETY"))
        )

        result = await analyzer.analyze(make_snapshot())

        assert result.failure.kind is FailureKind.SAFETY

    @pytest.mark.asyncio
    async def test_safety_finish_reason(self):
        """Test a candidate stopped for safety is a safety failure."""
        analyzer = GeminiVisionAnalyzer(
            "test-key", client=make_client(make_response(None, finish_reason="SAFETY"))
        )

        result = await analyzer.analyze(make_snapshot())

        assert result.failure.kind is FailureKind.SAFETY

    @pytest.mark.asyncio
    async def test_request_error_is_returned(self):
        """Test client errors come back as classified failures."""
        analyzer = GeminiVisionAnalyzer(
            "test-key", client=make_client(error=Exception("429 RESOURCE_EXHAUSTED"))
        )

        result = await analyzer.analyze(make_snapshot())

        assert result.failure.kind is FailureKind.RATE_LIMIT
        assert analyzer.get_status()["error"] == "429 RESOURCE_EXHAUSTED"


class TestMockVisionAnalyzer:
    """Tests for the scripted analyzer."""

    @pytest.mark.asyncio
    async def test_script_items(self):
        """Test strings, results and exceptions in a script."""
        analyzer = MockVisionAnalyzer(
            script=["They wave.", NO_CHANGE, AnalysisResult.failed(FailureKind.SAFETY, "x"), Exception("429")],
            cycle=False,
        )

        results = [await analyzer.analyze(make_snapshot()) for _ in range(5)]

        assert results[0].observation == "They wave."
        assert not results[1].is_change
        assert results[2].failure.kind is FailureKind.SAFETY
        assert results[3].failure.kind is FailureKind.RATE_LIMIT
        assert not results[4].is_change

    @pytest.mark.asyncio
    async def test_cycles(self):
        """Test the script repeats when cycling."""
        analyzer = MockVisionAnalyzer(script=["A", "B"])

        results = [await analyzer.analyze(make_snapshot()) for _ in range(3)]

        assert [r.observation for r in results] == ["A", "B", "A"]

    @pytest.mark.asyncio
    async def test_records_calls(self):
        """Test arguments are recorded per call."""
        analyzer = MockVisionAnalyzer()
        current, previous = make_snapshot(), make_snapshot()

        await analyzer.analyze(current, previous, "context")

        assert analyzer.calls == [(current, previous, "context")]
        assert analyzer.get_status()["provider"] == "mock"
