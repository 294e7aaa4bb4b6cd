from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

SEVERITIES = ("Low", "Medium", "High", "Critical")

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"

GOAL_ACTIVE = "active"
GOAL_AT_RISK = "at-risk"
GOAL_COMPLETE = "complete"

SENDER_USER = "user"
SENDER_AI = "ai"

NO_DEFECT = "None"
UNKNOWN_DEFECT = "Unknown"


@dataclass(frozen=True)
class AnalysisResult:
    defect_type: str
    severity: str
    confidence: float
    instructions: str
    is_quality_sufficient: bool
    missing_angles: List[str] = field(default_factory=list)

    @property
    def has_defect(self) -> bool:
        return self.defect_type != NO_DEFECT

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AnalysisResult":
        """Build a result from a loosely-typed JSON payload.

        Unknown severities fall back to ``Low`` and confidence is clamped to
        the 0-100 range.
        """
        severity = str(payload.get("severity") or "Low").strip().capitalize()
        if severity not in SEVERITIES:
            severity = "Low"
        try:
            confidence = float(payload.get("confidence", 0))
        except (TypeError, ValueError):
            confidence = 0.0
        angles = payload.get("missingAngles") or []
        if isinstance(angles, str):
            angles = [angles]
        return cls(
            defect_type=str(payload.get("defectType") or UNKNOWN_DEFECT).strip() or UNKNOWN_DEFECT,
            severity=severity,
            confidence=min(100.0, max(0.0, confidence)),
            instructions=str(payload.get("instructions") or ""),
            is_quality_sufficient=_as_flag(payload.get("isQualitySufficient")),
            missing_angles=[str(angle) for angle in angles],
        )


@dataclass(frozen=True)
class ItemMetadata:
    component_class: str
    location: str
    machine_id: str = ""


@dataclass(frozen=True)
class CapturedItem:
    id: str
    timestamp: float
    image_bytes: bytes
    metadata: ItemMetadata
    status: str = STATUS_PENDING
    analysis: Optional[AnalysisResult] = None
    overlay_bytes: Optional[bytes] = None

    def __post_init__(self) -> None:
        if self.status not in (STATUS_PENDING, STATUS_APPROVED):
            raise ValueError(f"Unknown item status: {self.status!r}")
        if self.status == STATUS_APPROVED and (self.analysis is None or not self.analysis.is_quality_sufficient):
            raise ValueError("Approved items require an analysis that passed the quality check")

    @property
    def defect_type(self) -> str:
        return self.analysis.defect_type if self.analysis else UNKNOWN_DEFECT


@dataclass(frozen=True)
class ProjectGoal:
    id: str
    title: str
    target_count: int
    current_count: int
    deadline: str
    status: str = GOAL_ACTIVE
    description: str = ""

    @property
    def progress(self) -> int:
        if self.target_count <= 0:
            return 0
        return min(100, round_half_up(self.current_count / self.target_count * 100))


@dataclass(frozen=True)
class ChatMessage:
    id: str
    sender: str
    role: str
    text: str
    timestamp: float


@dataclass
class JobHandle:
    token: Any
    done: bool = False
    result_ref: Optional[str] = None


@dataclass(frozen=True)
class DatasetAggregate:
    total: int
    defect_histogram: Dict[str, int]
    quality_percentage: int
    pending_count: int
    component_counts: Dict[str, int] = field(default_factory=dict)


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; percentages round .5 upwards.
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def _as_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return False
