from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class GeminiSettings:
    api_key: str
    guidance_model: str = "gemini-2.5-flash"
    analysis_model: str = "gemini-2.5-flash"
    image_model: str = "gemini-3-pro-image-preview"
    video_model: str = "veo-3.1-fast-generate-preview"
    report_model: str = "gemini-3-pro-preview"
    chat_model: str = "gemini-2.5-flash"
    max_retries: int = 5
    retry_buffer_seconds: float = 0.5


@dataclass(frozen=True)
class GuidanceSettings:
    interval_seconds: float = 3.0
    frame_width: int = 320
    frame_height: int = 240
    jpeg_quality: int = 60
    max_hints: int = 3
    drop_stale: bool = False


@dataclass(frozen=True)
class JobSettings:
    poll_interval_seconds: float = 5.0


@dataclass(frozen=True)
class SiteSettings:
    machine_context: str = "Fuselage - Section 4A"
    machine_id: str = "B787-X"
    location: str = "Hangar 1"


@dataclass(frozen=True)
class LoggingSettings:
    directory: Path
    level: str = "INFO"


@dataclass(frozen=True)
class OutputSettings:
    media_dir: Path


@dataclass(frozen=True)
class AppSettings:
    gemini: GeminiSettings
    guidance: GuidanceSettings
    jobs: JobSettings
    site: SiteSettings
    logging: LoggingSettings
    output: OutputSettings


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    dotenv_path = Path(__file__).resolve().parents[1] / ".env"
    load_dotenv(dotenv_path=dotenv_path, override=False, encoding="utf-8-sig")

    gemini = GeminiSettings(
        api_key=_require("GEMINI_API_KEY"),
        guidance_model=os.getenv("GEMINI_GUIDANCE_MODEL", GeminiSettings.guidance_model),
        analysis_model=os.getenv("GEMINI_ANALYSIS_MODEL", GeminiSettings.analysis_model),
        image_model=os.getenv("GEMINI_IMAGE_MODEL", GeminiSettings.image_model),
        video_model=os.getenv("GEMINI_VIDEO_MODEL", GeminiSettings.video_model),
        report_model=os.getenv("GEMINI_REPORT_MODEL", GeminiSettings.report_model),
        chat_model=os.getenv("GEMINI_CHAT_MODEL", GeminiSettings.chat_model),
        max_retries=int(os.getenv("GEMINI_MAX_RETRIES", "5")),
        retry_buffer_seconds=float(os.getenv("GEMINI_RETRY_BUFFER_SECONDS", "0.5")),
    )

    guidance = GuidanceSettings(
        interval_seconds=float(os.getenv("GUIDANCE_INTERVAL_SECONDS", "3")),
        frame_width=int(os.getenv("GUIDANCE_FRAME_WIDTH", "320")),
        frame_height=int(os.getenv("GUIDANCE_FRAME_HEIGHT", "240")),
        jpeg_quality=int(os.getenv("GUIDANCE_JPEG_QUALITY", "60")),
        max_hints=int(os.getenv("GUIDANCE_MAX_HINTS", "3")),
        drop_stale=_as_bool(os.getenv("GUIDANCE_DROP_STALE"), default=False),
    )

    jobs = JobSettings(
        poll_interval_seconds=float(os.getenv("JOB_POLL_INTERVAL_SECONDS", "5")),
    )

    site = SiteSettings(
        machine_context=os.getenv("MACHINE_CONTEXT", SiteSettings.machine_context),
        machine_id=os.getenv("MACHINE_ID", SiteSettings.machine_id),
        location=os.getenv("SITE_LOCATION", SiteSettings.location),
    )

    logging_settings = LoggingSettings(
        directory=Path(os.getenv("LOG_DIR", "logs")).resolve(),
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )

    output_settings = OutputSettings(
        media_dir=Path(os.getenv("MEDIA_OUTPUT_DIR", "media")).resolve(),
    )

    return AppSettings(
        gemini=gemini,
        guidance=guidance,
        jobs=jobs,
        site=site,
        logging=logging_settings,
        output=output_settings,
    )


def _require(key: str) -> str:
    value = os.getenv(key)
    if not value:
        raise RuntimeError(f"Environment variable '{key}' is required but missing")
    return value


def _as_bool(raw: str | None, default: bool | None = None) -> bool:
    if raw is None:
        if default is None:
            return False
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}
