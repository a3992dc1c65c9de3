"""Capture sources that hand the detection loop one still frame per tick."""
from __future__ import annotations

import base64
import threading
import time
from abc import ABC, abstractmethod
from io import BytesIO
from pathlib import Path
from typing import Callable, Optional

import cv2
import numpy as np
from PIL import Image

from access_vision.core.exceptions import CameraUnavailableError
from access_vision.core.logger import get_logger
from access_vision.core.validation import validate_frame

logger = get_logger("capture")

JPEG_QUALITY = 85


def encode_data_url(image: Image.Image, quality: int = JPEG_QUALITY) -> str:
    """Encode a PIL image as a JPEG data URL.

    Args:
        image: Image in any mode; converted to RGB first.
        quality: JPEG quality (1-95).

    Returns:
        ``data:image/jpeg;base64,...`` string.
    """
    buffer = BytesIO()
    image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/jpeg;base64,{encoded}"


def decode_data_url(data_url: str) -> Image.Image:
    """Decode a base64 image data URL into an RGB PIL image."""
    _, _, payload = data_url.partition(",")
    return Image.open(BytesIO(base64.b64decode(payload))).convert("RGB")


def load_image_data_url(path: Path) -> str:
    """Read an image file from disk and return it as a JPEG data URL."""
    with Image.open(path) as image:
        return encode_data_url(image)


class CaptureSource(ABC):
    """On-demand still frames from a live feed.

    ``capture_frame`` returns None while the feed is not ready; callers treat
    that as "skip this tick", never as an error.
    """

    @property
    def device_id(self) -> Optional[str]:
        """Identifier of the currently selected device, if any."""
        return None

    def open(self) -> None:
        """Prepare the source.

        Raises:
            CameraUnavailableError: If the device cannot be used at all.
        """

    @abstractmethod
    def capture_frame(self) -> Optional[str]:
        """Return the current frame as a JPEG data URL, or None."""

    def latest_image(self) -> Optional[Image.Image]:
        """Return the most recently captured frame as an RGB image, if any."""
        return None

    def close(self) -> None:
        """Release any underlying device."""


class CameraCapture(CaptureSource):
    """OpenCV camera capture.

    Switching devices with :meth:`select_device` is a configuration change:
    the current device is released and the next :meth:`capture_frame` reads
    from the new one, without interrupting a running detection loop.

    Attributes:
        camera_index: Index of the camera device (0 for default).
        width: Desired frame width.
        height: Desired frame height.
    """

    def __init__(
        self,
        camera_index: int = 0,
        width: int = 640,
        height: int = 480,
        opener: Callable[[int], cv2.VideoCapture] = cv2.VideoCapture,
    ) -> None:
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self._opener = opener
        self._cap: Optional[cv2.VideoCapture] = None
        self._last_frame: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    @property
    def device_id(self) -> Optional[str]:
        return str(self.camera_index)

    def open(self) -> None:
        """Open the selected camera.

        Raises:
            CameraUnavailableError: If the camera cannot be opened.
        """
        with self._lock:
            self._open_locked()

    def _open_locked(self) -> None:
        if self._cap is not None and self._cap.isOpened():
            return

        cap = self._opener(self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise CameraUnavailableError(
                f"Camera {self.camera_index} could not be opened. "
                "Check that it is connected and that access is permitted."
            )

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._cap = cap
        logger.info(f"Opened camera {self.camera_index}")

    def select_device(self, camera_index: int) -> None:
        """Switch to another camera; takes effect on the next capture."""
        with self._lock:
            if camera_index == self.camera_index:
                return
            logger.info(f"Switching camera {self.camera_index} -> {camera_index}")
            self._release_locked()
            self.camera_index = camera_index

    def capture_frame(self) -> Optional[str]:
        with self._lock:
            if self._cap is None:
                try:
                    self._open_locked()
                except CameraUnavailableError as e:
                    logger.debug(f"Camera not ready: {e}")
                    return None

            ret, frame = self._cap.read()
            if not ret or frame is None:
                return None

            self._last_frame = frame

        frame_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return encode_data_url(Image.fromarray(frame_rgb))

    def latest_image(self) -> Optional[Image.Image]:
        with self._lock:
            frame = self._last_frame
        if frame is None:
            return None
        return Image.fromarray(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))

    def _release_locked(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def close(self) -> None:
        """Release the camera device."""
        with self._lock:
            self._release_locked()

    def __enter__(self) -> "CameraCapture":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class PushedFrameSource(CaptureSource):
    """Frames pushed by a remote client, e.g. a browser over Socket.IO.

    The latest frame is served until it is older than ``max_age_s``; after
    that the feed counts as not ready and :meth:`capture_frame` returns None.
    """

    def __init__(
        self,
        max_age_s: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_age_s = max_age_s
        self._clock = clock
        self._frame: Optional[str] = None
        self._received_at = 0.0
        self._device_id: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def device_id(self) -> Optional[str]:
        with self._lock:
            return self._device_id

    def push(self, frame: str, device_id: Optional[str] = None) -> None:
        """Store a new frame.

        Raises:
            ValidationError: If the frame is not a base64 image data URL.
        """
        validate_frame(frame)
        with self._lock:
            if device_id is not None and device_id != self._device_id:
                if self._device_id is not None:
                    logger.info(f"Frame source switched device to {device_id}")
                self._device_id = device_id
            self._frame = frame
            self._received_at = self._clock()

    def capture_frame(self) -> Optional[str]:
        with self._lock:
            if self._frame is None:
                return None
            if self._clock() - self._received_at > self.max_age_s:
                return None
            return self._frame

    def latest_image(self) -> Optional[Image.Image]:
        with self._lock:
            frame = self._frame
        if frame is None:
            return None
        return decode_data_url(frame)

    def close(self) -> None:
        with self._lock:
            self._frame = None
