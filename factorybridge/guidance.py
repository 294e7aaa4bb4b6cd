from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, List, Optional, Set

from .frames import FrameSource, encode_jpeg
from .inference import GUIDANCE_UNAVAILABLE, InferenceClient

HintCallback = Callable[[List[str]], None]
Sleep = Callable[[float], Awaitable[None]]
Offload = Callable[..., Awaitable[Any]]


class GuidanceScanner:
    """Samples the viewfinder on a fixed cadence and publishes short HUD hints.

    The first scan is scheduled by ``start()`` itself; later scans follow every
    ``interval_seconds``. Scans are never coalesced: if one is still waiting on
    inference when the next tick fires, both run and whichever finishes last
    sets the hints. With ``drop_stale=True`` a result older than the last one
    published is dropped instead.

    Guidance is best-effort. Any failure publishes ``["Guidance unavailable"]``
    and the scanner keeps running.

    Frame grabs and JPEG encoding go through ``offload`` (a worker thread by
    default) so a slow camera or screenshot never stalls the event loop.
    """

    def __init__(
        self,
        client: InferenceClient,
        frames: FrameSource,
        log,
        *,
        interval_seconds: float = 3.0,
        frame_size: tuple[int, int] = (320, 240),
        jpeg_quality: int = 60,
        max_hints: int = 3,
        drop_stale: bool = False,
        on_hints: Optional[HintCallback] = None,
        sleep: Sleep = asyncio.sleep,
        offload: Offload = asyncio.to_thread,
    ):
        self._client = client
        self._frames = frames
        self._logger = log
        self._interval = interval_seconds
        self._frame_size = frame_size
        self._jpeg_quality = jpeg_quality
        self._max_hints = max_hints
        self._drop_stale = drop_stale
        self._on_hints = on_hints
        self._sleep = sleep
        self._offload = offload

        self._active = False
        self._generation = 0
        self._sequence = 0
        self._last_published_sequence = 0
        self._hints: List[str] = []
        self._ticker: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def hints(self) -> List[str]:
        return list(self._hints)

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        self._generation += 1
        generation = self._generation
        self._logger.info("Guidance scanning started (every %.1fs)", self._interval)
        self._launch_scan(generation)
        self._ticker = asyncio.ensure_future(self._tick(generation))

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        self._generation += 1
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        self._hints = []
        # In-flight inference calls are left to finish; _publish ignores them.
        self._logger.info("Guidance scanning stopped (%s scans still in flight)", len(self._in_flight))

    async def _tick(self, generation: int) -> None:
        while self._is_current(generation):
            await self._sleep(self._interval)
            if not self._is_current(generation):
                return
            self._launch_scan(generation)

    def _launch_scan(self, generation: int) -> None:
        self._sequence += 1
        task = asyncio.ensure_future(self._scan(generation, self._sequence))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _scan(self, generation: int, sequence: int) -> None:
        if not self._is_current(generation):
            self._logger.debug("Skipping guidance scan %s: scanner stopped", sequence)
            return
        try:
            frame = await self._offload(self._grab_frame)
            if not self._is_current(generation):
                self._logger.debug("Skipping guidance scan %s: stopped during frame grab", sequence)
                return
            hints = await self._client.guidance(frame)
        except Exception as exc:
            self._logger.warning("Guidance scan %s failed: %s", sequence, exc)
            hints = [GUIDANCE_UNAVAILABLE]
        self._publish(generation, sequence, hints or [])

    def _grab_frame(self) -> bytes:
        return encode_jpeg(self._frames.current_frame(), size=self._frame_size, quality=self._jpeg_quality)

    def _publish(self, generation: int, sequence: int, hints: List[str]) -> None:
        if not self._is_current(generation):
            self._logger.debug("Dropping guidance scan %s: scanner stopped", sequence)
            return
        if self._drop_stale and sequence < self._last_published_sequence:
            self._logger.debug("Dropping stale guidance scan %s (latest=%s)", sequence, self._last_published_sequence)
            return
        self._last_published_sequence = max(self._last_published_sequence, sequence)
        self._hints = [str(hint) for hint in hints][: self._max_hints]
        self._logger.debug("Guidance scan %s -> %s", sequence, self._hints)
        if self._on_hints is not None:
            self._on_hints(self.hints)

    def _is_current(self, generation: int) -> bool:
        return self._active and generation == self._generation
