"""Frame sources: live camera sampling and synthetic frames."""

from __future__ import annotations

import asyncio
import io
import math
from typing import Callable, Sequence

from PIL import Image

from visualcortex.common.logging import get_logger
from visualcortex.config import CameraConfig
from visualcortex.models import Snapshot

# Snapshots are rescaled to this width before encoding
TARGET_WIDTH = 512
JPEG_QUALITY = 80

# Seconds between reads while waiting for a camera to deliver its first frame
WARMUP_POLL_INTERVAL = 0.1

ReadyListener = Callable[[bool], None]


def encode_snapshot(
    image: Image.Image,
    target_width: int = TARGET_WIDTH,
    quality: int = JPEG_QUALITY,
) -> Snapshot | None:
    """Rescale an image to ``target_width`` and encode it as JPEG.

    Returns None when the image has no usable dimensions, which is how a
    stream without a decoded frame looks.
    """
    width, height = image.size
    if width <= 0 or height <= 0:
        return None

    aspect_ratio = height / width
    if not math.isfinite(aspect_ratio):
        return None

    target_height = max(1, round(target_width * aspect_ratio))

    if image.mode != "RGB":
        image = image.convert("RGB")
    if image.size != (target_width, target_height):
        image = image.resize((target_width, target_height), Image.Resampling.BILINEAR)

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)

    return Snapshot(data=buffer.getvalue(), width=target_width, height=target_height)


class FrameSource:
    """Abstract frame source.

    ``capture()`` is synchronous and never raises for an unavailable frame;
    it returns None and the caller tries again on its next tick.
    """

    def __init__(self) -> None:
        self._ready = False
        self._ready_listeners: list[ReadyListener] = []

    @property
    def ready(self) -> bool:
        """Whether a decoded frame is available."""
        return self._ready

    def add_ready_listener(self, listener: ReadyListener) -> Callable[[], None]:
        """Register a readiness callback. Returns an unsubscribe function."""
        self._ready_listeners.append(listener)

        def remove() -> None:
            if listener in self._ready_listeners:
                self._ready_listeners.remove(listener)

        return remove

    def _set_ready(self, ready: bool) -> None:
        if ready == self._ready:
            return
        self._ready = ready
        for listener in list(self._ready_listeners):
            listener(ready)

    async def open(self) -> bool:
        """Start the underlying stream. Returns readiness."""
        raise NotImplementedError

    async def close(self) -> None:
        """Stop the underlying stream."""
        raise NotImplementedError

    def capture(self) -> Snapshot | None:
        """Encode the current frame, or None if no frame is available."""
        raise NotImplementedError


class StaticFrameSource(FrameSource):
    """Synthetic frames for mock mode and tests.

    Cycles through the given images; with none, produces a flat 640x480
    test card.
    """

    def __init__(self, images: Sequence[Image.Image] | None = None) -> None:
        super().__init__()
        self._images = list(images) if images else [Image.new("RGB", (640, 480), color=(73, 109, 137))]
        self._index = 0
        self.capture_count = 0

    async def open(self) -> bool:
        self._set_ready(True)
        return True

    async def close(self) -> None:
        self._set_ready(False)

    def capture(self) -> Snapshot | None:
        if not self._ready:
            return None
        image = self._images[self._index % len(self._images)]
        self._index += 1
        self.capture_count += 1
        return encode_snapshot(image)


class CameraFrameSource(FrameSource):
    """Live webcam frames via OpenCV.

    Many webcams deliver nothing on the first read after opening. When that
    happens the source stays not ready and a background task keeps reading
    until a frame decodes, so readiness listeners fire without anyone
    having to call ``capture()`` first.
    """

    def __init__(self, config: CameraConfig | None = None) -> None:
        super().__init__()
        self.config = config or CameraConfig()
        self._capture = None
        self._warmup: asyncio.Task | None = None
        self.logger = get_logger("camera_frame_source", device=self.config.device_index)

    async def open(self) -> bool:
        """Open the camera off the event loop and wait for the first frame."""
        if self._capture is not None:
            return self._ready

        try:
            self._capture, first_frame_ok = await asyncio.to_thread(self._open_device)
        except Exception as e:
            self.logger.exception("camera_open_failed", error=str(e))
            self._set_ready(False)
            return False

        self.logger.info(
            "camera_opened",
            width=self.config.capture_width,
            height=self.config.capture_height,
            first_frame=first_frame_ok,
        )
        self._set_ready(first_frame_ok)
        if not first_frame_ok:
            self._warmup = asyncio.create_task(self._wait_for_frame(self._capture))
        return first_frame_ok

    def _open_device(self):
        import cv2

        capture = cv2.VideoCapture(self.config.device_index)
        if not capture.isOpened():
            capture.release()
            raise RuntimeError(f"Camera {self.config.device_index} could not be opened")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.capture_width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.capture_height)
        # Keep the driver queue short so reads return a current frame
        capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        ok, _ = capture.read()
        return capture, bool(ok)

    async def _wait_for_frame(self, capture) -> None:
        attempts = 0
        while self._capture is capture and not self._ready:
            ok, frame = await asyncio.to_thread(capture.read)
            attempts += 1
            if self._capture is not capture:
                return
            if ok and frame is not None and frame.size > 0:
                self.logger.info("camera_warmed_up", attempts=attempts)
                self._set_ready(True)
                return
            await asyncio.sleep(WARMUP_POLL_INTERVAL)

    async def close(self) -> None:
        warmup, self._warmup = self._warmup, None
        if warmup is not None and not warmup.done():
            warmup.cancel()
            try:
                await warmup
            except asyncio.CancelledError:
                pass

        capture, self._capture = self._capture, None
        if capture is not None:
            await asyncio.to_thread(capture.release)
            self.logger.info("camera_closed")
        self._set_ready(False)

    def capture(self) -> Snapshot | None:
        if self._capture is None:
            return None

        import cv2

        ok, frame = self._capture.read()
        if not ok or frame is None or frame.size == 0:
            return None

        if not self._ready:
            self._set_ready(True)

        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return encode_snapshot(Image.fromarray(rgb))
