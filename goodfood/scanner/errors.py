"""Exception types raised by the scanner pipeline."""

from __future__ import annotations

from enum import Enum


class ScannerError(Exception):
    """Base class for scanner pipeline errors."""


class CameraErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    DEVICE_UNAVAILABLE = "device_unavailable"


class CameraError(ScannerError):
    """The camera could not be acquired."""

    def __init__(self, kind: CameraErrorKind, message: str = "") -> None:
        self.kind = kind
        super().__init__(message or kind.value)


class CameraBusyError(ScannerError):
    """acquire() was called while a stream is already open."""


class StreamError(ScannerError):
    """The active stream failed while frames were being sampled."""


class ServiceError(ScannerError):
    """A remote product-data or recognition service returned an unusable response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class InvalidTransition(ScannerError):
    """An event is not allowed in the current workflow state."""

    def __init__(self, state, event) -> None:
        self.state = state
        self.event = event
        super().__init__(f"event {event.value!r} is not allowed in state {state.value!r}")


class SessionBusyError(ScannerError):
    """A second session was opened while another still owns the camera."""
