"""Vision-to-voice bridge loop.

Every tick captures a frame, asks the analyzer what changed since the
previous frame, and forwards new observations to the voice agent as
background context. Unchanged frames are silent: nothing is logged and
nothing is pushed.
"""

from __future__ import annotations

from visualcortex.common.logging import get_logger
from visualcortex.common.scheduler import PeriodicTask
from visualcortex.frames.source import FrameSource
from visualcortex.logsink import LogSink
from visualcortex.models import (
    AnalysisFailure,
    AnalysisResult,
    FailureKind,
    LogCategory,
    ProcessingState,
    Snapshot,
    VisionState,
)
from visualcortex.vision.analyzer import VisionAnalyzer, classify_failure
from visualcortex.voice.session import VoiceSession

CAPTURE_INTERVAL_MS = 4000

FAILURE_MESSAGES = {
    FailureKind.RATE_LIMIT: "Rate limit hit (429).",
    FailureKind.AUTH: "API key invalid or permissions denied.",
    FailureKind.NETWORK: "Network instability detected.",
    FailureKind.SAFETY: "Visual input blocked by Safety Filters.",
}


def describe_failure(failure: AnalysisFailure) -> str:
    """User-facing log message for an analyzer failure."""
    return FAILURE_MESSAGES.get(failure.kind) or f"Observer Malfunction: {failure.message}"


class BridgeLoop:
    """Timer-driven capture, analyze and bridge controller.

    At most one analyzer call is in flight: a tick that fires while another
    is analyzing is dropped, not queued. Stopping cancels future ticks but
    does not abort a call in flight; when it completes its observation is
    still logged and, if the voice session is connected, pushed.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        analyzer: VisionAnalyzer,
        voice: VoiceSession,
        log: LogSink,
        interval_ms: int = CAPTURE_INTERVAL_MS,
    ) -> None:
        self.frame_source = frame_source
        self.analyzer = analyzer
        self.voice = voice
        self.log = log
        self.interval_ms = interval_ms

        self.vision_state = VisionState.IDLE
        self.processing_state = ProcessingState.IDLE
        self.previous_snapshot: Snapshot | None = None
        self.previous_observation: str | None = None

        # Bumped on stop; results from an older activation may not write context
        self._epoch = 0
        self.ticks_accepted = 0
        self.ticks_dropped = 0

        self._timer = PeriodicTask(self.tick, interval_ms / 1000, immediate=True, name="vision-loop")
        self._remove_listener = frame_source.add_ready_listener(self._on_ready_changed)
        self.logger = get_logger("bridge_loop")

    @property
    def active(self) -> bool:
        return self.vision_state is VisionState.ACTIVE

    @property
    def ticking(self) -> bool:
        """Whether the periodic timer is scheduled."""
        return self._timer.running

    def start(self) -> None:
        """Activate the loop. Ticking begins once the frame source is ready."""
        if self.active:
            return
        self.vision_state = VisionState.ACTIVE
        self.log.append("Initializing Visual Cortex...", LogCategory.INFO)
        if self.frame_source.ready:
            self._begin_ticking()

    def stop(self) -> None:
        """Deactivate the loop and drop all visual context."""
        if not self.active:
            return
        self.vision_state = VisionState.IDLE
        self._timer.stop()
        self.previous_snapshot = None
        self.previous_observation = None
        self._epoch += 1
        self.log.append("Visual Cortex Deactivated.", LogCategory.INFO)

    def close(self) -> None:
        """Stop and detach from the frame source."""
        self.stop()
        self._remove_listener()

    async def wait_idle(self) -> None:
        """Wait for ticks still in flight."""
        await self._timer.wait_idle()

    def _on_ready_changed(self, ready: bool) -> None:
        if not self.active:
            return
        if ready:
            self._begin_ticking()
        else:
            self._timer.stop()
            self.logger.info("vision_loop_paused", reason="frame_source_not_ready")

    def _begin_ticking(self) -> None:
        if self._timer.running:
            return
        self.log.append(f"Vision Loop active. Interval: {self.interval_ms}ms", LogCategory.SUCCESS)
        self._timer.start()

    async def tick(self) -> None:
        """Run one capture, analyze and bridge cycle."""
        if not self.active:
            return
        if self.processing_state is ProcessingState.ANALYZING:
            self.ticks_dropped += 1
            self.logger.debug("tick_dropped", dropped=self.ticks_dropped)
            return

        self.processing_state = ProcessingState.CAPTURING
        snapshot = self.frame_source.capture()
        if snapshot is None:
            # Stream warming up; try again next tick
            self.processing_state = ProcessingState.IDLE
            return

        self.ticks_accepted += 1
        epoch = self._epoch
        self.processing_state = ProcessingState.ANALYZING

        try:
            try:
                result = await self.analyzer.analyze(
                    snapshot, self.previous_snapshot, self.previous_observation
                )
            except Exception as e:
                self.logger.exception("analyzer_raised", error=str(e))
                result = AnalysisResult(failure=classify_failure(e))

            if epoch == self._epoch:
                self.previous_snapshot = snapshot

            await self._handle_result(result, epoch)
        finally:
            self.processing_state = ProcessingState.IDLE

    async def _handle_result(self, result: AnalysisResult, epoch: int) -> None:
        if result.failure is not None:
            self.logger.warning(
                "analysis_failed",
                kind=result.failure.kind.value,
                error=result.failure.message,
            )
            self.log.append(describe_failure(result.failure), LogCategory.ERROR)
            return

        if not result.is_change:
            return

        observation = result.observation.strip()
        if epoch == self._epoch:
            self.previous_observation = observation
        self.log.append(observation, LogCategory.VISUAL)

        if not self.voice.connected:
            return

        try:
            await self.voice.push_context(observation)
        except Exception as e:
            self.logger.warning("bridge_push_failed", error=str(e))
            self.log.append("Bridge failed to send context", LogCategory.ERROR)
            return

        self.log.append(">> Bridge: Context injected to Agent", LogCategory.BRIDGE)

    def get_status(self) -> dict:
        return {
            "vision": self.vision_state.value,
            "processing": self.processing_state.value,
            "ticking": self.ticking,
            "interval_ms": self.interval_ms,
            "ticks_accepted": self.ticks_accepted,
            "ticks_dropped": self.ticks_dropped,
            "has_context": self.previous_snapshot is not None,
        }
