"""Camera access using OpenCV.

The camera is an exclusive resource: a single :class:`CameraManager` owns the
underlying :class:`FrameSource` and lends it to at most one workflow session
at a time.
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Any

from .errors import CameraBusyError, CameraError, CameraErrorKind, SessionBusyError, StreamError
from .models import CapturedImage

logger = logging.getLogger(__name__)


def _import_cv2():
    try:
        import cv2
    except ImportError:
        raise ImportError(
            "opencv-python is required: pip install opencv-python"
        ) from None
    return cv2


class FrameSource(ABC):
    """Capability interface over a live video stream."""

    @abstractmethod
    def acquire(self) -> None:
        """Open the stream.

        Raises:
            CameraError: permission denied or device unavailable.
            CameraBusyError: the stream is already open.
        """
        ...

    @abstractmethod
    def current_frame(self) -> Any | None:
        """Return the latest frame as a pixel buffer, or None if not ready yet.

        Raises:
            StreamError: the stream is closed or has failed.
        """
        ...

    @abstractmethod
    def release(self) -> None:
        """Close the stream. Safe to call when nothing is open."""
        ...

    @property
    @abstractmethod
    def is_active(self) -> bool: ...


class OpenCVFrameSource(FrameSource):
    """Reads frames from a local camera through ``cv2.VideoCapture``.

    Frames are read on a worker thread while the stream is released from the
    event loop, so reads and release are serialized on one lock.
    """

    def __init__(self, camera_index: int = 0, width: int = 1280, height: int = 720) -> None:
        self._camera_index = camera_index
        self._width = width
        self._height = height
        self._cap = None
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self._cap is not None

    def acquire(self) -> None:
        with self._lock:
            if self._cap is not None:
                raise CameraBusyError(f"camera {self._camera_index} is already open")
            cv2 = _import_cv2()

            cap = cv2.VideoCapture(self._camera_index)
            if not cap.isOpened():
                cap.release()
                raise CameraError(
                    self._classify_failure(),
                    f"could not open camera {self._camera_index}",
                )
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._height)
            self._cap = cap
        logger.debug("camera %d opened", self._camera_index)

    def current_frame(self) -> Any | None:
        with self._lock:
            cap = self._cap
            if cap is None:
                raise StreamError("no active stream")
            try:
                ret, frame = cap.read()
                if ret and frame is not None:
                    return frame
                opened = cap.isOpened()
            except Exception as e:
                raise StreamError(f"camera {self._camera_index} read failed: {e}") from e
        if not opened:
            raise StreamError(f"camera {self._camera_index} stream closed")
        # still warming up
        return None

    def release(self) -> None:
        with self._lock:
            cap, self._cap = self._cap, None
            if cap is None:
                return
            try:
                cap.release()
            finally:
                logger.debug("camera %d released", self._camera_index)

    def _classify_failure(self) -> CameraErrorKind:
        device = f"/dev/video{self._camera_index}"
        if os.path.exists(device) and not os.access(device, os.R_OK):
            return CameraErrorKind.PERMISSION_DENIED
        return CameraErrorKind.DEVICE_UNAVAILABLE

    @staticmethod
    def list_cameras(max_check: int = 10) -> list[int]:
        """List available camera indices by probing."""
        cv2 = _import_cv2()

        available: list[int] = []
        for i in range(max_check):
            cap = cv2.VideoCapture(i)
            if cap.isOpened():
                available.append(i)
            cap.release()
        return available


class CameraManager:
    """Sole owner of the camera stream.

    Sessions ``claim`` the manager before using it; ``acquire`` and
    ``release`` are then issued only by the owning workflow.
    """

    def __init__(self, source: FrameSource, jpeg_quality: int = 90) -> None:
        self._source = source
        self._jpeg_quality = jpeg_quality
        self._owner: object | None = None
        self.acquisitions = 0
        self.releases = 0

    @property
    def source(self) -> FrameSource:
        return self._source

    @property
    def active(self) -> bool:
        return self._source.is_active

    def claim(self, owner: object) -> None:
        if self._owner is not None and self._owner is not owner:
            raise SessionBusyError("another scan session is already open")
        self._owner = owner

    def unclaim(self, owner: object) -> None:
        if self._owner is owner:
            self._owner = None

    def acquire(self) -> None:
        if self._source.is_active:
            return
        self._source.acquire()
        self.acquisitions += 1
        logger.info("camera acquired")

    def release(self) -> None:
        if not self._source.is_active:
            return
        self._source.release()
        self.releases += 1
        logger.info("camera released")

    def current_frame(self) -> Any | None:
        return self._source.current_frame()

    def capture_still(self) -> CapturedImage:
        """Encode the current frame as a JPEG still.

        Raises:
            StreamError: no frame is available or encoding failed.
        """
        frame = self._source.current_frame()
        if frame is None:
            raise StreamError("camera is not ready yet")
        cv2 = _import_cv2()
        ok, buf = cv2.imencode(
            ".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), self._jpeg_quality]
        )
        if not ok:
            raise StreamError("failed to encode frame")
        return CapturedImage(data=buf.tobytes(), mime_type="image/jpeg")
