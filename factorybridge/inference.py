from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .models import AnalysisResult, CapturedItem, ChatMessage, JobHandle, UNKNOWN_DEFECT

GUIDANCE_UNAVAILABLE = "Guidance unavailable"
REPORT_UNAVAILABLE = "Could not generate report at this time."
CHAT_UNAVAILABLE = "Connection to Central interrupted."

FALLBACK_ANALYSIS = AnalysisResult(
    defect_type=UNKNOWN_DEFECT,
    severity="Low",
    confidence=0.0,
    instructions="Analysis service unavailable. Please retry.",
    is_quality_sufficient=False,
    missing_angles=[],
)


class InferenceClient(ABC):
    """Inference capability the engine depends on.

    ``guidance``, ``analyze``, ``augment``, ``report`` and ``chat_turn`` are
    expected to fail soft and return the fallbacks above. The video job calls
    raise on failure.
    """

    @abstractmethod
    async def guidance(self, image: bytes) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    async def analyze(self, image: bytes, context: str) -> AnalysisResult:
        raise NotImplementedError

    @abstractmethod
    async def augment(self, image: bytes, prompt: str) -> Optional[bytes]:
        raise NotImplementedError

    @abstractmethod
    async def submit_video_job(self, image: bytes, prompt: str) -> JobHandle:
        raise NotImplementedError

    @abstractmethod
    async def poll_video_job(self, handle: JobHandle) -> JobHandle:
        raise NotImplementedError

    @abstractmethod
    async def report(self, items: Sequence[CapturedItem]) -> str:
        raise NotImplementedError

    @abstractmethod
    async def chat_turn(self, history: Sequence[ChatMessage], message: str) -> str:
        raise NotImplementedError
