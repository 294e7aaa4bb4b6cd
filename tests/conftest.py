from __future__ import annotations

import asyncio
import itertools
import logging
from typing import List, Optional

import pytest
from PIL import Image

from factorybridge.dataset import DatasetStore
from factorybridge.frames import FrameSource
from factorybridge.inference import InferenceClient
from factorybridge.models import (
    STATUS_APPROVED,
    STATUS_PENDING,
    AnalysisResult,
    CapturedItem,
    ItemMetadata,
    JobHandle,
)


def make_analysis(defect_type="Crack", severity="High", sufficient=True, confidence=88.0) -> AnalysisResult:
    return AnalysisResult(
        defect_type=defect_type,
        severity=severity,
        confidence=confidence,
        instructions="Capture the side view.",
        is_quality_sufficient=sufficient,
        missing_angles=["Side"],
    )


_ids = itertools.count(1)


def make_item(defect_type="Crack", sufficient=True, severity="High", component="Fuselage") -> CapturedItem:
    analysis = make_analysis(defect_type, severity=severity, sufficient=sufficient)
    return CapturedItem(
        id=f"item-{next(_ids)}",
        timestamp=1_700_000_000.0,
        image_bytes=b"jpeg-" + component.encode(),
        analysis=analysis,
        status=STATUS_APPROVED if sufficient else STATUS_PENDING,
        metadata=ItemMetadata(component_class=component, location="Hangar 1", machine_id="B787-X"),
    )


class FakeInferenceClient(InferenceClient):
    """Scripted client that records every call in order."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.hints: List[str] = ["Move Closer"]
        self.guidance_error: Optional[Exception] = None
        self.analysis: Optional[AnalysisResult] = make_analysis()
        self.analysis_error: Optional[Exception] = None
        self.overlay: Optional[bytes] = b"overlay-png"
        self.augment_error: Optional[Exception] = None
        self.submit_handle = JobHandle(token="op-1", done=False)
        self.poll_script: List[JobHandle] = []
        self.poll_error: Optional[Exception] = None
        self.submit_error: Optional[Exception] = None
        self.report_text = "Dataset looks balanced."
        self.report_error: Optional[Exception] = None
        self.chat_reply = "Copy that."
        self.chat_error: Optional[Exception] = None
        self.chat_gate: Optional[asyncio.Event] = None

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def guidance(self, image):
        self.calls.append(("guidance", image))
        if self.guidance_error:
            raise self.guidance_error
        return list(self.hints)

    async def analyze(self, image, context):
        self.calls.append(("analyze", image, context))
        if self.analysis_error:
            raise self.analysis_error
        return self.analysis

    async def augment(self, image, prompt):
        self.calls.append(("augment", image, prompt))
        if self.augment_error:
            raise self.augment_error
        return self.overlay

    async def submit_video_job(self, image, prompt):
        self.calls.append(("submit", image, prompt))
        if self.submit_error:
            raise self.submit_error
        return self.submit_handle

    async def poll_video_job(self, handle):
        self.calls.append(("poll", handle.token))
        if self.poll_error:
            raise self.poll_error
        return self.poll_script.pop(0)

    async def report(self, items):
        self.calls.append(("report", tuple(items)))
        if self.report_error:
            raise self.report_error
        return self.report_text

    async def chat_turn(self, history, message):
        self.calls.append(("chat", tuple(history), message))
        if self.chat_gate is not None:
            await self.chat_gate.wait()
        if self.chat_error:
            raise self.chat_error
        return self.chat_reply


class StaticFrameSource(FrameSource):
    def __init__(self, size=(640, 480)):
        self.size = size
        self.fail = False

    def current_frame(self):
        if self.fail:
            raise RuntimeError("camera unplugged")
        return Image.new("RGB", self.size, color=(90, 90, 90))


class ManualClock:
    """Virtual time: ``sleep`` only returns once a test advances past its deadline."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []
        self._waiters: List[tuple] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((self.now + seconds, future))
        await future

    async def advance(self, seconds: float) -> None:
        self.now += seconds
        due = [(deadline, future) for deadline, future in self._waiters if deadline <= self.now]
        self._waiters = [entry for entry in self._waiters if entry not in due]
        for _, future in due:
            if not future.done():
                future.set_result(None)
        await settle()


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def instant_sleep(seconds: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def log():
    return logging.getLogger("factorybridge.tests")


@pytest.fixture
def client():
    return FakeInferenceClient()


@pytest.fixture
def frames():
    return StaticFrameSource()


@pytest.fixture
def store(log):
    return DatasetStore(log)


async def inline(func, *args):
    """Runs offloaded work on the loop so scanner tests stay deterministic."""
    return func(*args)
