from __future__ import annotations

import asyncio
import time
import uuid
from enum import Enum
from typing import Callable, Optional

from .dataset import DatasetStore
from .errors import InvalidTransition, recovered
from .frames import FrameSource
from .guidance import GuidanceScanner
from .inference import FALLBACK_ANALYSIS, InferenceClient
from .models import STATUS_APPROVED, STATUS_PENDING, AnalysisResult, CapturedItem, ItemMetadata


class CaptureState(str, Enum):
    LIVE = "live"
    CAPTURED = "captured"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    SAVED = "saved"
    DISCARDED = "discarded"


TERMINAL_STATES = (CaptureState.SAVED, CaptureState.DISCARDED)


def component_for_context(context: str) -> str:
    component = "Fuselage"
    for part in ("Wing", "Engine", "Tail"):
        if part in context:
            component = part
    return component


class CaptureSession:
    """Lifecycle of a single capture: live → captured → analyzed → saved/discarded.

    Analysis failures never abort the session; they yield ``FALLBACK_ANALYSIS``.
    When the analysis reports a defect on a usable image, one overlay request is
    scheduled after the session reaches ``ANALYZED``. Saving commits the item to
    the dataset; saving or discarding disposes the session and stops any
    guidance scanner attached to it.
    """

    def __init__(
        self,
        client: InferenceClient,
        store: DatasetStore,
        frames: FrameSource,
        log,
        *,
        context: str = "Fuselage - Section 4A",
        location: str = "Hangar 1",
        machine_id: str = "B787-X",
        scanner: Optional[GuidanceScanner] = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._client = client
        self._store = store
        self._frames = frames
        self._logger = log
        self.context = context
        self._location = location
        self._machine_id = machine_id
        self._scanner = scanner
        self._clock = clock
        self._new_id = id_factory

        self._state = CaptureState.LIVE
        self._image: Optional[bytes] = None
        self._analysis: Optional[AnalysisResult] = None
        self._overlay: Optional[bytes] = None
        self._augment_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def image(self) -> Optional[bytes]:
        return self._image

    @property
    def analysis(self) -> Optional[AnalysisResult]:
        return self._analysis

    @property
    def overlay(self) -> Optional[bytes]:
        return self._overlay

    @property
    def augmenting(self) -> bool:
        return self._augment_task is not None and not self._augment_task.done()

    @property
    def guidance_active(self) -> bool:
        return self._scanner is not None and self._scanner.active

    def start_guidance(self) -> None:
        self._require("start guidance", CaptureState.LIVE)
        if self._scanner is None:
            raise InvalidTransition("start guidance", "without a scanner")
        self._scanner.start()

    def stop_guidance(self) -> None:
        if self._scanner is not None:
            self._scanner.stop()

    async def capture(self) -> bytes:
        self._require("capture", CaptureState.LIVE)
        self.stop_guidance()
        image = await self._frames.capture_still()
        self._require("capture", CaptureState.LIVE)
        self._image = image
        self._state = CaptureState.CAPTURED
        self._logger.info("Frame captured for '%s' (%s bytes)", self.context, len(image))
        return image

    async def analyze(self) -> AnalysisResult:
        self._require("analyze", CaptureState.CAPTURED)
        self._state = CaptureState.ANALYZING
        image = self._image
        self._logger.info("Analyzing capture (context=%s)", self.context)

        try:
            result = await recovered(
                lambda: self._client.analyze(image, self.context),
                FALLBACK_ANALYSIS,
                self._logger,
                "Analysis",
            )
        except asyncio.CancelledError:
            self._state = CaptureState.CAPTURED
            self._logger.info("Analysis cancelled; capture kept")
            raise
        if result is None:
            result = FALLBACK_ANALYSIS

        self._analysis = result
        self._state = CaptureState.ANALYZED
        self._logger.info(
            "Analysis: %s (%s, %.0f%%, quality=%s)",
            result.defect_type,
            result.severity,
            result.confidence,
            "PASS" if result.is_quality_sufficient else "FAIL",
        )

        if result.has_defect and result.is_quality_sufficient:
            self._augment_task = asyncio.ensure_future(self._augment(image, result.defect_type))
        return result

    async def wait_for_overlay(self) -> Optional[bytes]:
        if self._augment_task is not None:
            try:
                await asyncio.shield(self._augment_task)
            except asyncio.CancelledError:
                if not self._augment_task.cancelled():
                    raise
        return self._overlay

    def save(self) -> CapturedItem:
        self._require("save", CaptureState.ANALYZED)
        analysis = self._analysis
        if analysis is None:
            raise InvalidTransition("save", "without an analysis")

        item = CapturedItem(
            id=self._new_id(),
            timestamp=self._clock(),
            image_bytes=self._image,
            overlay_bytes=self._overlay,
            analysis=analysis,
            status=STATUS_APPROVED if analysis.is_quality_sufficient else STATUS_PENDING,
            metadata=ItemMetadata(
                component_class=component_for_context(self.context),
                location=self._location,
                machine_id=self._machine_id,
            ),
        )
        self._store.commit(item)
        self._dispose(CaptureState.SAVED)
        return item

    def discard(self) -> None:
        self._require("discard", CaptureState.LIVE, CaptureState.CAPTURED, CaptureState.ANALYZED)
        self._dispose(CaptureState.DISCARDED)

    async def _augment(self, image: bytes, defect_type: str) -> None:
        self._logger.info("Requesting overlay for '%s'", defect_type)
        overlay = await recovered(
            lambda: self._client.augment(image, f"defect: {defect_type}"),
            None,
            self._logger,
            "Augmentation",
        )
        if self._state != CaptureState.ANALYZED:
            return
        self._overlay = overlay
        if overlay is None:
            self._logger.warning("No overlay produced; keeping the original capture")
        else:
            self._logger.info("Overlay ready (%s bytes)", len(overlay))

    def _dispose(self, final_state: CaptureState) -> None:
        self.stop_guidance()
        if self.augmenting:
            self._augment_task.cancel()
        self._state = final_state
        self._logger.info("Capture session %s", final_state.value)

    def _require(self, operation: str, *allowed: CaptureState) -> None:
        if self._state not in allowed:
            raise InvalidTransition(operation, self._state.value)
