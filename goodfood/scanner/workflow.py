"""Scan session workflow: camera, decoding, lookup, label fallback, confirmation.

One :class:`ScanWorkflow` drives one session at a time through an explicit
state machine. The camera is held only while the session is ``scanning``;
every transition to another state stops the decoder loop and releases it.

Remote calls (lookup, analysis) record the transition counter when they
start. A response is applied only if the session is still in the state that
issued it and no transition has happened since, so a late response after a
cancel or rescan is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from .camera import CameraManager
from .decoder import DecoderLoop
from .editor import ConfirmationEditor
from .errors import CameraError, InvalidTransition, ScannerError, SessionBusyError, StreamError
from .models import (
    AnalysisFailed,
    AnalysisSuccess,
    CapturedImage,
    LimitReached,
    LookupHit,
    LookupMiss,
    MealEntry,
    ResolvedProduct,
    default_estimate,
    normalize_code,
)
from .resolution import CodeResolutionClient
from .sinks import MealLogSink, WorkflowObserver
from .vision import LOW_CONFIDENCE_THRESHOLD, LabelAnalysisClient

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    SCANNING = "scanning"
    RESOLVING = "resolving"
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"
    PHOTO_CAPTURE = "photo_capture"
    ANALYZING = "analyzing"
    CONFIRMING = "confirming"
    CLOSED = "closed"


class WorkflowEvent(str, Enum):
    CODE_SUBMITTED = "code_submitted"
    LOOKUP_HIT = "lookup_hit"
    LOOKUP_MISS = "lookup_miss"
    LIMIT_REACHED = "limit_reached"
    REQUEST_PHOTO = "request_photo"
    PHOTO_CAPTURED = "photo_captured"
    RETAKE = "retake"
    REQUEST_ANALYSIS = "request_analysis"
    ANALYSIS_SUCCEEDED = "analysis_succeeded"
    ANALYSIS_FAILED = "analysis_failed"
    EDIT_MANUALLY = "edit_manually"
    RESCAN = "rescan"
    CONFIRM = "confirm"
    CANCEL = "cancel"


S = WorkflowState
E = WorkflowEvent

_TRANSITIONS: dict[tuple[WorkflowState, WorkflowEvent], WorkflowState] = {
    (S.SCANNING, E.CODE_SUBMITTED): S.RESOLVING,
    (S.SCANNING, E.PHOTO_CAPTURED): S.PHOTO_CAPTURE,
    (S.RESOLVING, E.LOOKUP_HIT): S.RESOLVED,
    (S.RESOLVING, E.LOOKUP_MISS): S.UNRESOLVED,
    (S.RESOLVING, E.LIMIT_REACHED): S.SCANNING,
    (S.UNRESOLVED, E.REQUEST_PHOTO): S.SCANNING,
    (S.PHOTO_CAPTURE, E.RETAKE): S.SCANNING,
    (S.PHOTO_CAPTURE, E.REQUEST_ANALYSIS): S.ANALYZING,
    (S.PHOTO_CAPTURE, E.EDIT_MANUALLY): S.CONFIRMING,
    (S.ANALYZING, E.ANALYSIS_SUCCEEDED): S.CONFIRMING,
    (S.ANALYZING, E.ANALYSIS_FAILED): S.PHOTO_CAPTURE,
    (S.ANALYZING, E.LIMIT_REACHED): S.PHOTO_CAPTURE,
    (S.RESOLVED, E.CONFIRM): S.CLOSED,
    (S.CONFIRMING, E.CONFIRM): S.CLOSED,
    (S.RESOLVED, E.RESCAN): S.SCANNING,
    (S.UNRESOLVED, E.RESCAN): S.SCANNING,
    (S.PHOTO_CAPTURE, E.RESCAN): S.SCANNING,
    (S.CONFIRMING, E.RESCAN): S.SCANNING,
}


def next_state(state: WorkflowState, event: WorkflowEvent) -> WorkflowState:
    """Pure transition function.

    ``cancel`` leads from every open state to ``closed``; ``closed`` accepts
    no events.

    Raises:
        InvalidTransition: the event is not allowed in ``state``.
    """
    if state is S.CLOSED:
        raise InvalidTransition(state, event)
    if event is E.CANCEL:
        return S.CLOSED
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(state, event) from None


CODE_MODE = "code"
LABEL_MODE = "label"


@dataclass
class WorkflowSession:
    state: WorkflowState = WorkflowState.SCANNING
    capture_mode: str = CODE_MODE
    current_code: str | None = None
    product: ResolvedProduct | None = None
    captured_image: CapturedImage | None = None
    multiplier: float = 1.0
    error: str | None = None
    warning: str | None = None

    def reset(self, state: WorkflowState = WorkflowState.SCANNING) -> None:
        self.state = state
        self.capture_mode = CODE_MODE
        self.current_code = None
        self.product = None
        self.captured_image = None
        self.multiplier = 1.0
        self.error = None
        self.warning = None


class ScanWorkflow:
    """Orchestrates one scan session per activation of the capture surface."""

    def __init__(
        self,
        camera: CameraManager,
        resolver: CodeResolutionClient,
        analyzer: LabelAnalysisClient,
        meal_log: MealLogSink,
        *,
        decoder: Callable[[Any], str | None],
        observer: WorkflowObserver | None = None,
        user_id: str | None = None,
        interval: float = 0.15,
        low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD,
    ) -> None:
        self._camera = camera
        self._resolver = resolver
        self._analyzer = analyzer
        self._meal_log = meal_log
        self._decoder = decoder
        self._observer = observer or WorkflowObserver()
        self._user_id = user_id or None
        self._interval = interval
        self._threshold = low_confidence_threshold

        self.session = WorkflowSession(state=WorkflowState.CLOSED)
        self._editor: ConfirmationEditor | None = None
        self._loop: DecoderLoop | None = None
        self._decoder_task: asyncio.Task | None = None
        self._transitions = 0
        self._confirming = False

    @property
    def state(self) -> WorkflowState:
        return self.session.state

    @property
    def editor(self) -> ConfirmationEditor | None:
        return self._editor

    @property
    def decoder_task(self) -> asyncio.Task | None:
        return self._decoder_task

    # -- lifecycle ---------------------------------------------------------

    async def open(self) -> None:
        """Start a new session: acquire the camera and begin sampling.

        Raises:
            SessionBusyError: a session is already open on this camera.
        """
        if self.session.state is not WorkflowState.CLOSED:
            raise SessionBusyError("this workflow already has an open session")
        self._camera.claim(self)
        self.session.reset(WorkflowState.SCANNING)
        self._transitions += 1
        logger.info("scan session opened")
        self._observer.on_state_change(WorkflowState.CLOSED, WorkflowState.SCANNING)
        self._start_capture()

    async def cancel(self) -> None:
        """Close the session from any state, releasing the camera."""
        if self.session.state is WorkflowState.CLOSED:
            self._stop_capture()
            return
        self._apply(E.CANCEL)
        self._close()
        logger.info("scan session cancelled")

    # -- scanning ----------------------------------------------------------

    async def submit_code(self, raw: str) -> bool:
        """Resolve a manually entered code.

        Returns:
            False without any lookup when the code is shorter than 8
            characters, True once the lookup has been handled.

        Raises:
            InvalidTransition: the session is not scanning.
        """
        if self.session.state is not WorkflowState.SCANNING:
            raise InvalidTransition(self.session.state, E.CODE_SUBMITTED)
        code = normalize_code(raw)
        if code is None:
            logger.debug("ignoring short code %r", raw)
            return False
        await self._resolve(code)
        return True

    async def capture_photo(self) -> bool:
        """Grab a still of the nutrition label from the live camera."""
        if self.session.state is not WorkflowState.SCANNING:
            raise InvalidTransition(self.session.state, E.PHOTO_CAPTURED)
        if not self._camera.active:
            self._report_error("The camera is not available.")
            return False
        try:
            image = self._camera.capture_still()
        except StreamError as e:
            self._report_error(f"Could not capture a photo: {e}")
            return False
        self.session.captured_image = image
        self.session.error = None
        self._apply(E.PHOTO_CAPTURED)
        return True

    # -- fallback path -----------------------------------------------------

    async def request_photo(self) -> None:
        """After a miss, reopen the camera to photograph the label."""
        self._enter_scanning(E.REQUEST_PHOTO, LABEL_MODE)

    async def retake(self) -> None:
        if self.session.state is not WorkflowState.PHOTO_CAPTURE:
            raise InvalidTransition(self.session.state, E.RETAKE)
        self.session.captured_image = None
        self._enter_scanning(E.RETAKE, LABEL_MODE)

    async def analyze(self) -> None:
        """Send the captured label photo for nutrition estimation."""
        s = self.session
        if s.state is not WorkflowState.PHOTO_CAPTURE:
            raise InvalidTransition(s.state, E.REQUEST_ANALYSIS)
        if s.captured_image is None:
            raise ScannerError("no photo has been captured")

        s.error = None
        self._apply(E.REQUEST_ANALYSIS)
        token = self._transitions
        outcome = await self._analyzer.analyze(s.captured_image, s.current_code, self._user_id)
        if not self._is_current(token, WorkflowState.ANALYZING):
            logger.info("discarding stale analysis result")
            return

        match outcome:
            case AnalysisSuccess(product=product):
                self._load_product(product)
                self._apply(E.ANALYSIS_SUCCEEDED)
                if self._editor.low_confidence:
                    s.warning = self._editor.warning
                    self._observer.on_low_confidence(product.confidence)
            case LimitReached() as event:
                self._apply(E.LIMIT_REACHED)
                self._observer.on_limit_reached(event)
            case AnalysisFailed(message=message):
                s.product = default_estimate(s.current_code)
                self._apply(E.ANALYSIS_FAILED)
                self._report_error(f"Could not analyze the label, please retake or enter values: {message}")

    async def enter_manually(self) -> None:
        """Skip analysis and edit values by hand, seeded with defaults."""
        s = self.session
        if s.state is not WorkflowState.PHOTO_CAPTURE:
            raise InvalidTransition(s.state, E.EDIT_MANUALLY)
        self._load_product(s.product or default_estimate(s.current_code))
        self._apply(E.EDIT_MANUALLY)

    async def rescan(self) -> None:
        """Discard the current result and scan another code."""
        s = self.session
        next_state(s.state, E.RESCAN)
        s.current_code = None
        s.product = None
        s.captured_image = None
        s.multiplier = 1.0
        s.error = None
        s.warning = None
        self._editor = None
        self._enter_scanning(E.RESCAN, CODE_MODE)

    # -- confirmation ------------------------------------------------------

    def edit(self, **fields: Any) -> ResolvedProduct:
        editor = self._require_editor()
        product = editor.update(**fields)
        self.session.product = product
        self.session.warning = editor.warning
        return product

    def set_multiplier(self, value: float) -> float:
        editor = self._require_editor()
        self.session.multiplier = editor.set_multiplier(value)
        return self.session.multiplier

    def increment(self) -> float:
        self.session.multiplier = self._require_editor().increment()
        return self.session.multiplier

    def decrement(self) -> float:
        self.session.multiplier = self._require_editor().decrement()
        return self.session.multiplier

    async def confirm(self) -> MealEntry | None:
        """Persist new products, hand the entry to the meal log, and close.

        Returns:
            The emitted entry, or None if the session was closed meanwhile or
            the meal log rejected the entry.
        """
        s = self.session
        state = s.state
        if state not in (WorkflowState.RESOLVED, WorkflowState.CONFIRMING):
            raise InvalidTransition(state, E.CONFIRM)
        if self._confirming:
            raise ScannerError("confirmation already in progress")
        editor = self._require_editor()

        image_url = s.captured_image.to_data_url() if s.captured_image else None
        entry = editor.finalize(image_url=image_url)
        token = self._transitions
        self._confirming = True
        try:
            if editor.needs_persist:
                await self._resolver.persist(editor.product, self._user_id)
            if not self._is_current(token, state):
                logger.info("session closed before confirmation finished")
                return None
            try:
                await self._meal_log.save(entry)
            except Exception as e:
                logger.exception("meal log rejected entry %s", entry.name)
                self._report_error(f"Could not save the meal: {e}")
                return None
        finally:
            self._confirming = False

        if not self._is_current(token, state):
            return None
        self._apply(E.CONFIRM)
        self._observer.on_emit(entry)
        self._close()
        logger.info("meal confirmed: %s x%g", entry.name, entry.multiplier)
        return entry

    # -- internals ---------------------------------------------------------

    async def _resolve(self, code: str) -> None:
        s = self.session
        s.current_code = code
        s.error = None
        self._apply(E.CODE_SUBMITTED)
        token = self._transitions
        outcome = await self._resolver.resolve(code, self._user_id)
        if not self._is_current(token, WorkflowState.RESOLVING):
            logger.info("discarding stale lookup result for %s", code)
            return

        match outcome:
            case LookupHit(product=product):
                self._load_product(product)
                self._apply(E.LOOKUP_HIT)
            case LimitReached() as event:
                s.current_code = None
                self._enter_scanning(E.LIMIT_REACHED, CODE_MODE)
                self._observer.on_limit_reached(event)
            case LookupMiss(reason=reason, message=message):
                self._apply(E.LOOKUP_MISS)
                if reason == "error":
                    self._report_error(f"Lookup failed, please photograph the label: {message}")

    def _apply(self, event: WorkflowEvent) -> WorkflowState:
        old = self.session.state
        new = next_state(old, event)
        self.session.state = new
        self._transitions += 1
        if new is not WorkflowState.SCANNING:
            self._stop_capture()
        logger.debug("%s --%s--> %s", old.value, event.value, new.value)
        self._observer.on_state_change(old, new)
        return new

    def _enter_scanning(self, event: WorkflowEvent, mode: str) -> None:
        self._apply(event)
        self.session.capture_mode = mode
        self._start_capture()

    def _start_capture(self) -> None:
        try:
            self._camera.acquire()
        except CameraError as e:
            self._report_error(f"Camera unavailable ({e.kind.value}): {e}")
            return
        if self.session.capture_mode == CODE_MODE:
            self._start_decoder()

    def _start_decoder(self) -> None:
        loop = DecoderLoop(self._camera, self._decoder, self._interval)
        self._loop = loop
        self._decoder_task = asyncio.create_task(
            self._run_decoder(loop, self._transitions)
        )
        self._decoder_task.add_done_callback(self._decoder_done)

    async def _run_decoder(self, loop: DecoderLoop, token: int) -> None:
        try:
            code = await loop.run()
        except Exception as e:
            if not self._is_current(token, WorkflowState.SCANNING):
                logger.debug("decoder stopped after session moved on: %r", e)
                return
            if not isinstance(e, StreamError):
                raise
            self._camera.release()
            self._report_error(f"Camera stream failed: {e}")
            return
        if code is None or not self._is_current(token, WorkflowState.SCANNING):
            return
        code = normalize_code(code)
        if code is None:
            # too short to be a product code, keep sampling
            self._start_decoder()
            return
        await self._resolve(code)

    @staticmethod
    def _decoder_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("decoder task failed", exc_info=exc)

    def _stop_capture(self) -> None:
        if self._loop is not None:
            self._loop.stop()
            self._loop = None
        self._camera.release()

    def _close(self) -> None:
        self._stop_capture()
        self._editor = None
        self._confirming = False
        self.session.reset(WorkflowState.CLOSED)
        self._camera.unclaim(self)

    def _load_product(self, product: ResolvedProduct) -> None:
        self._editor = ConfirmationEditor(product, low_confidence_threshold=self._threshold)
        self.session.product = self._editor.product
        self.session.multiplier = self._editor.multiplier

    def _require_editor(self) -> ConfirmationEditor:
        if self._editor is None or self.session.state not in (
            WorkflowState.RESOLVED,
            WorkflowState.CONFIRMING,
        ):
            raise ScannerError("there is no product to edit")
        return self._editor

    def _is_current(self, token: int, state: WorkflowState) -> bool:
        return self._transitions == token and self.session.state is state

    def _report_error(self, message: str) -> None:
        self.session.error = message
        logger.warning(message)
        self._observer.on_error(message)
