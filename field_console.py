from __future__ import annotations

import argparse
import asyncio
import os
from datetime import datetime
from pathlib import Path

from factorybridge.chat import ROLE_DATA_SCIENTIST, ROLE_FIELD_ENGINEER, ChatCoordinator
from factorybridge.config import AppSettings, get_settings
from factorybridge.datalab import DataLab
from factorybridge.dataset import DatasetStore
from factorybridge.errors import FactoryBridgeError
from factorybridge.frames import FrameSource, ImageFileSource, ScreenFrameSource
from factorybridge.gemini_client import GeminiInferenceClient
from factorybridge.guidance import GuidanceScanner
from factorybridge.jobs import JobPoller
from factorybridge.logging_utils import component_logger, init_logger
from factorybridge.media import download_video, save_image
from factorybridge.session import CaptureSession

HELP = """Commands:
  guide            toggle AR guidance hints
  capture          freeze the current frame
  analyze          run defect analysis on the capture
  save | discard   upload the capture to the dataset, or drop it
  stats | goals    dataset aggregates and goal progress
  report           dataset health report (data lab)
  video [part]     orbit video for a component (Fuselage/Wing/Engine/Tail)
  flyover          flyover video of the most severe capture
  chat <text>      message Central
  quit"""


def main() -> None:
    parser = argparse.ArgumentParser(description="FactoryBridge field console")
    parser.add_argument("--image", default=None, help="Use an image file as the viewfinder instead of the screen")
    parser.add_argument("--context", default=None, help="Override MACHINE_CONTEXT (e.g. 'Left Wing - Flap Track')")
    parser.add_argument("--role", choices=["field", "lab"], default="field", help="Chat role of the operator")
    args = parser.parse_args()

    if args.context:
        os.environ["MACHINE_CONTEXT"] = args.context

    settings = get_settings()
    logger = init_logger("field_console", settings.logging.directory, settings.logging.level)
    try:
        asyncio.run(FieldConsole(settings, logger, args.image, args.role).run())
    except KeyboardInterrupt:
        logger.info("Interrupted; console closed")


class FieldConsole:
    def __init__(self, settings: AppSettings, logger, image_path: str | None, role: str):
        self.settings = settings
        self.logger = logger
        self.role = ROLE_DATA_SCIENTIST if role == "lab" else ROLE_FIELD_ENGINEER
        self.client = GeminiInferenceClient(settings.gemini, component_logger(logger, "gemini"))
        self.frames: FrameSource = (
            ImageFileSource(Path(image_path).resolve(), component_logger(logger, "frames"))
            if image_path
            else ScreenFrameSource(component_logger(logger, "frames"))
        )
        self.store = DatasetStore(component_logger(logger, "dataset"))
        self.chat = ChatCoordinator(self.client, component_logger(logger, "chat"))
        self.poller = JobPoller(component_logger(logger, "jobs"), interval_seconds=settings.jobs.poll_interval_seconds)
        self.lab = DataLab(self.client, self.store, self.poller, component_logger(logger, "datalab"))
        self.session = self._new_session()

    def _new_session(self) -> CaptureSession:
        guidance = self.settings.guidance
        scanner = GuidanceScanner(
            self.client,
            self.frames,
            component_logger(self.logger, "guidance"),
            interval_seconds=guidance.interval_seconds,
            frame_size=(guidance.frame_width, guidance.frame_height),
            jpeg_quality=guidance.jpeg_quality,
            max_hints=guidance.max_hints,
            drop_stale=guidance.drop_stale,
            on_hints=_print_hints,
        )
        site = self.settings.site
        return CaptureSession(
            self.client,
            self.store,
            self.frames,
            component_logger(self.logger, "session"),
            context=site.machine_context,
            location=site.location,
            machine_id=site.machine_id,
            scanner=scanner,
        )

    async def run(self) -> None:
        print(self.chat.messages[0].text)
        print(HELP)
        try:
            while True:
                line = (await asyncio.to_thread(input, f"[{self.session.state.value}]> ")).strip()
                if not line:
                    continue
                command, _, rest = line.partition(" ")
                if command in {"quit", "exit"}:
                    return
                try:
                    await self._dispatch(command.lower(), rest.strip())
                except FactoryBridgeError as exc:
                    print(f"! {exc}")
        finally:
            self.session.stop_guidance()
            self.lab.cancel()

    async def _dispatch(self, command: str, rest: str) -> None:
        if command == "guide":
            if self.session.guidance_active:
                self.session.stop_guidance()
                print("Guidance off")
            else:
                self.session.start_guidance()
        elif command == "capture":
            await self.session.capture()
            print("Captured. Run 'analyze'.")
        elif command == "analyze":
            result = await self.session.analyze()
            print(f"{result.defect_type} [{result.severity}] confidence {result.confidence:.0f}% "
                  f"quality {'PASS' if result.is_quality_sufficient else 'FAIL'}")
            print(f"Instructions: {result.instructions}")
            if result.missing_angles:
                print("Required next: " + ", ".join(result.missing_angles))
            if self.session.augmenting:
                overlay = await self.session.wait_for_overlay()
                if overlay:
                    path = save_image(overlay, self._media_path("overlay", ".png"))
                    print(f"AR overlay saved to {path}")
        elif command == "save":
            item = self.session.save()
            print(f"Uploaded {item.id} ({item.status})")
            self.session = self._new_session()
        elif command == "discard":
            self.session.discard()
            self.session = self._new_session()
        elif command == "stats":
            stats = self.store.aggregate()
            print(f"Total {stats.total} | quality {stats.quality_percentage}% | pending {stats.pending_count}")
            for defect, count in sorted(stats.defect_histogram.items()):
                print(f"  {defect}: {count}")
            print("  coverage: " + ", ".join(f"{part}={count}" for part, count in stats.component_counts.items()))
        elif command == "goals":
            for goal in self.store.goals():
                print(f"{goal.title}: {goal.current_count}/{goal.target_count} ({goal.progress}%) "
                      f"due {goal.deadline} [{goal.status}]")
        elif command == "report":
            print(await self.lab.generate_report())
        elif command in {"video", "flyover"}:
            await self._run_video(command, rest or None)
        elif command == "chat":
            reply = await self.chat.send(rest, role=self.role)
            if reply is not None:
                print(f"Central: {reply.text}")
        else:
            print(HELP)

    async def _run_video(self, command: str, part: str | None) -> None:
        print("Generating video; this can take a few minutes...")
        try:
            if command == "video":
                outcome = await self.lab.generate_component_video(part)
            else:
                outcome = await self.lab.generate_dashboard_video()
            if not outcome.produced:
                print(f"Video job ended without a video ({outcome.status})")
                return
            path = await asyncio.to_thread(
                download_video, outcome.result_ref, self.settings.gemini.api_key, self._media_path(command, ".mp4")
            )
        except FactoryBridgeError:
            raise
        except Exception as exc:
            self.logger.error("Video generation failed: %s", exc)
            print("Operation failed: video generation did not complete")
            return
        print(f"Video saved to {path}")

    def _media_path(self, kind: str, suffix: str) -> Path:
        slug = datetime.now().strftime("%Y%m%d-%H%M%S")
        return self.settings.output.media_dir / f"{kind}-{slug}{suffix}"


def _print_hints(hints: list[str]) -> None:
    print("  HUD: " + (" | ".join(hint.upper() for hint in hints) if hints else "SCENE CLEAR"))


if __name__ == "__main__":
    main()
