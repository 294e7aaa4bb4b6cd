from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Tuple

from .errors import UnknownGoal
from .models import (
    GOAL_ACTIVE,
    GOAL_AT_RISK,
    STATUS_APPROVED,
    STATUS_PENDING,
    CapturedItem,
    DatasetAggregate,
    ProjectGoal,
    round_half_up,
)

COMPONENT_PARTS = ("Fuselage", "Wing", "Engine", "Tail")


@dataclass(frozen=True)
class KeywordGoalRule:
    """Routes each committed item to exactly one goal.

    Items whose defect type contains ``keyword`` (case-insensitive) count
    towards ``matched_goal_id``; everything else, including items without an
    analysis, counts towards ``default_goal_id``.
    """

    keyword: str = "rust"
    matched_goal_id: str = "g2"
    default_goal_id: str = "g1"

    def goal_for(self, item: CapturedItem) -> str:
        defect = item.analysis.defect_type if item.analysis else ""
        if self.keyword.lower() in defect.lower():
            return self.matched_goal_id
        return self.default_goal_id


def default_goals() -> List[ProjectGoal]:
    return [
        ProjectGoal(
            id="g1",
            title="Belt Wear Analysis",
            target_count=50,
            current_count=12,
            deadline="2025-04-10",
            status=GOAL_ACTIVE,
            description="Collect diversified samples of belt fraying at >30% wear.",
        ),
        ProjectGoal(
            id="g2",
            title="Motor Mounting Rust",
            target_count=20,
            current_count=18,
            deadline="2025-04-05",
            status=GOAL_AT_RISK,
            description="High priority: Identifying corrosion on Unit A-4 mounts.",
        ),
    ]


class DatasetStore:
    """Shared, append-only dataset of captured items and the goals they feed.

    ``commit`` is the only mutation entry point. It appends the item and bumps
    one goal under a single lock, so readers never observe one without the
    other.
    """

    def __init__(self, log, goals: Optional[Iterable[ProjectGoal]] = None, rule: Optional[KeywordGoalRule] = None):
        self._logger = log
        self._rule = rule or KeywordGoalRule()
        self._items: List[CapturedItem] = []
        self._goals: List[ProjectGoal] = list(default_goals() if goals is None else goals)
        self._lock = threading.Lock()

        goal_ids = {goal.id for goal in self._goals}
        for goal_id in (self._rule.matched_goal_id, self._rule.default_goal_id):
            if goal_id not in goal_ids:
                raise UnknownGoal(f"Goal rule references unknown goal '{goal_id}'")

    def commit(self, item: CapturedItem) -> None:
        goal_id = self._rule.goal_for(item)
        with self._lock:
            self._goals = [
                replace(goal, current_count=goal.current_count + 1) if goal.id == goal_id else goal
                for goal in self._goals
            ]
            self._items.append(item)
            total = len(self._items)
        self._logger.info("Committed item %s (%s, %s) -> goal %s; dataset size=%s", item.id, item.defect_type, item.status, goal_id, total)

    def items(self) -> Tuple[CapturedItem, ...]:
        with self._lock:
            return tuple(self._items)

    def goals(self) -> Tuple[ProjectGoal, ...]:
        with self._lock:
            return tuple(self._goals)

    def goal(self, goal_id: str) -> ProjectGoal:
        for goal in self.goals():
            if goal.id == goal_id:
                return goal
        raise UnknownGoal(goal_id)

    def aggregate(self) -> DatasetAggregate:
        items = self.items()
        total = len(items)
        histogram = Counter(item.defect_type for item in items)
        approved = sum(1 for item in items if item.status == STATUS_APPROVED)
        pending = sum(1 for item in items if item.status == STATUS_PENDING)
        quality = round_half_up(approved / total * 100) if total else 0
        components = {part: sum(1 for item in items if part in item.metadata.component_class) for part in COMPONENT_PARTS}
        return DatasetAggregate(
            total=total,
            defect_histogram=dict(histogram),
            quality_percentage=quality,
            pending_count=pending,
            component_counts=components,
        )

    def items_for_component(self, part: str) -> List[CapturedItem]:
        return [item for item in self.items() if part in item.metadata.component_class]

    def video_target(self, part: Optional[str] = None) -> Optional[CapturedItem]:
        """Latest item for ``part``, or the latest item overall when none match."""
        items = self.items()
        if not items:
            return None
        if part:
            relevant = self.items_for_component(part)
            if relevant:
                return relevant[-1]
        return items[-1]

    def most_severe(self) -> Optional[CapturedItem]:
        """First Critical item, else first High item, else the latest item."""
        items = self.items()
        for severity in ("Critical", "High"):
            for item in items:
                if item.analysis and item.analysis.severity == severity:
                    return item
        return items[-1] if items else None
