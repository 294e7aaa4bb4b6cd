from __future__ import annotations

from typing import Optional

from .dataset import DatasetStore
from .errors import EmptyDataset, recovered
from .inference import REPORT_UNAVAILABLE, InferenceClient
from .jobs import JobOutcome, JobPoller
from .models import CapturedItem


class DataLab:
    """Analyst-side operations over the shared dataset.

    Reports degrade to a fixed apology. Video jobs do not: their errors reach
    the caller, which is expected to report the failure to the user.
    """

    def __init__(self, client: InferenceClient, store: DatasetStore, poller: JobPoller, log):
        self._client = client
        self._store = store
        self._poller = poller
        self._logger = log

    async def generate_report(self) -> str:
        items = self._store.items()
        if not items:
            raise EmptyDataset("No samples collected yet")
        self._logger.info("Generating dataset report over %s items", len(items))
        report = await recovered(lambda: self._client.report(items), REPORT_UNAVAILABLE, self._logger, "Report")
        return report or REPORT_UNAVAILABLE

    async def generate_component_video(self, part: Optional[str] = None) -> JobOutcome:
        target = self._store.video_target(part)
        if target is None:
            raise EmptyDataset("No samples collected yet")
        component = target.metadata.component_class or "industrial component"
        if target.analysis and target.analysis.has_defect:
            defect_context = f"showing {target.analysis.defect_type}"
        else:
            defect_context = "pristine condition"
        prompt = (
            f"Cinematic drone orbit shot of {component}, {defect_context}, highly detailed, 8k, photorealistic, "
            "manufacturing hangar background, slow smooth motion"
        )
        return await self._run_video(target, prompt)

    async def generate_dashboard_video(self) -> JobOutcome:
        target = self._store.most_severe()
        if target is None:
            raise EmptyDataset("No samples collected yet")
        prompt = (
            f"Cinematic flyover of industrial {target.metadata.component_class}, dramatic lighting, 4k, "
            "slow motion inspection view."
        )
        return await self._run_video(target, prompt)

    def cancel(self) -> None:
        self._poller.cancel()

    async def _run_video(self, target: CapturedItem, prompt: str) -> JobOutcome:
        self._logger.info("Starting video job for item %s (%s)", target.id, target.metadata.component_class)
        outcome = await self._poller.run(
            lambda: self._client.submit_video_job(target.image_bytes, prompt),
            self._client.poll_video_job,
        )
        self._logger.info("Video job for item %s ended: %s", target.id, outcome.status)
        return outcome
