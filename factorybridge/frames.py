from __future__ import annotations

import asyncio
import io
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image


def encode_jpeg(image: Image.Image, size: Optional[Tuple[int, int]] = None, quality: int = 90) -> bytes:
    if size is not None:
        image = image.resize(size)
    if image.mode != "RGB":
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()


class FrameSource(ABC):
    """Live viewfinder plus a still-capture primitive."""

    @abstractmethod
    def current_frame(self) -> Image.Image:
        raise NotImplementedError

    async def capture_still(self) -> bytes:
        frame = await asyncio.to_thread(self.current_frame)
        return encode_jpeg(frame)


class ImageFileSource(FrameSource):
    """Treats an image on disk as the viewfinder (re-read on every frame)."""

    def __init__(self, path: Path, log):
        self._path = path
        self._logger = log

    def current_frame(self) -> Image.Image:
        if not self._path.exists():
            raise FileNotFoundError(self._path)
        with Image.open(self._path) as image:
            image.load()
            return image.copy()

    async def capture_still(self) -> bytes:
        still = await super().capture_still()
        self._logger.info("Captured still from %s (%s bytes)", self._path.name, len(still))
        return still


class ScreenFrameSource(FrameSource):
    def __init__(self, log):
        import pyautogui

        pyautogui.FAILSAFE = False
        self._pyautogui = pyautogui
        self._logger = log

    def current_frame(self) -> Image.Image:
        return self._pyautogui.screenshot()

    async def capture_still(self) -> bytes:
        still = await super().capture_still()
        self._logger.info("Captured screen still (%s bytes)", len(still))
        return still
