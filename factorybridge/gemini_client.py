from __future__ import annotations

import asyncio
import json
import random
import re
from typing import Any, List, Optional, Sequence

from google import genai
from google.genai import errors, types

from .config import GeminiSettings
from .inference import (
    CHAT_UNAVAILABLE,
    FALLBACK_ANALYSIS,
    GUIDANCE_UNAVAILABLE,
    REPORT_UNAVAILABLE,
    InferenceClient,
)
from .models import SENDER_USER, AnalysisResult, CapturedItem, ChatMessage, JobHandle

GUIDANCE_PROMPT = """
You are an industrial camera assistant. Analyze this viewfinder frame.
Provide 1-3 very short, punchy HUD (Heads-Up Display) instructions to help the engineer get a better photo for dataset collection.
Examples: "Move Closer", "Too Dark", "Center the subject", "Avoid Glare", "Hold Steady".
Return ONLY a JSON array of strings.
""".strip()

ANALYSIS_PROMPT = "Analyze this industrial machinery image. Context: {context}. Provide structured feedback for the field engineer."

AUGMENT_PROMPT = (
    "Edit this image to visually highlight the following: {prompt}. "
    "Draw clear neon bounding boxes or heatmaps over the defects. Keep the rest of the image photorealistic."
)

REPORT_PROMPT = """
Act as a Lead Data Scientist. Analyze the following captured dataset entries for an industrial predictive maintenance model.

Dataset Entries:
{entries}

Provide a concise strategic report covering:
1. Class balance issues.
2. Recommendations for the field team on what to capture next.
3. Overall dataset health.
""".strip()

CHAT_SYSTEM_INSTRUCTION = (
    "You are 'Central', an advanced AI coordinator for an industrial factory. You bridge the gap between "
    "Field Engineers (on the floor) and Data Scientists (in the lab). Be concise, helpful, and professional. "
    "Focus on data quality, safety, and equipment context."
)

ANALYSIS_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "defectType": types.Schema(
            type=types.Type.STRING,
            description="Type of defect detected (e.g., Rust, Crack, Misalignment) or 'None'",
        ),
        "severity": types.Schema(type=types.Type.STRING, enum=["Low", "Medium", "High", "Critical"]),
        "confidence": types.Schema(type=types.Type.NUMBER, description="Confidence score 0-100"),
        "instructions": types.Schema(
            type=types.Type.STRING,
            description="Immediate guidance for the engineer (e.g., 'Move closer', 'Capture side view')",
        ),
        "isQualitySufficient": types.Schema(
            type=types.Type.BOOLEAN, description="Is the image clear enough for dataset inclusion?"
        ),
        "missingAngles": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(type=types.Type.STRING),
            description="List of other angles needed for a complete dataset",
        ),
    },
    required=["defectType", "severity", "confidence", "instructions", "isQualitySufficient"],
)

HINTS_SCHEMA = types.Schema(type=types.Type.ARRAY, items=types.Schema(type=types.Type.STRING))


class GeminiInferenceClient(InferenceClient):
    def __init__(self, settings: GeminiSettings, log, client: Optional[genai.Client] = None):
        self._settings = settings
        self._logger = log
        self._client = client or genai.Client(api_key=settings.api_key)

    async def guidance(self, image: bytes) -> List[str]:
        try:
            response = await self._generate_with_retry(
                model=self._settings.guidance_model,
                contents=[_jpeg_part(image), GUIDANCE_PROMPT],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=HINTS_SCHEMA,
                ),
            )
            payload = self._parse_payload(response.text or "[]")
            if not isinstance(payload, list):
                raise ValueError("Guidance response was not a JSON array")
            return [str(hint) for hint in payload]
        except Exception as exc:
            self._logger.warning("Guidance failed: %s", exc)
            return [GUIDANCE_UNAVAILABLE]

    async def analyze(self, image: bytes, context: str) -> AnalysisResult:
        try:
            response = await self._generate_with_retry(
                model=self._settings.analysis_model,
                contents=[_jpeg_part(image), ANALYSIS_PROMPT.format(context=context)],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=ANALYSIS_SCHEMA,
                ),
            )
            payload = self._parse_payload(response.text or "{}")
            if not isinstance(payload, dict) or not payload:
                raise ValueError("Analysis response was not a JSON object")
            return AnalysisResult.from_payload(payload)
        except Exception as exc:
            self._logger.exception("Analysis failed: %s", exc)
            return FALLBACK_ANALYSIS

    async def augment(self, image: bytes, prompt: str) -> Optional[bytes]:
        try:
            response = await self._generate_with_retry(
                model=self._settings.image_model,
                contents=[_jpeg_part(image), AUGMENT_PROMPT.format(prompt=prompt)],
                config=types.GenerateContentConfig(
                    image_config=types.ImageConfig(aspect_ratio="1:1"),
                ),
            )
        except Exception as exc:
            self._logger.exception("Augmentation failed: %s", exc)
            return None

        candidates = response.candidates or []
        parts = (candidates[0].content.parts if candidates and candidates[0].content else None) or []
        for part in parts:
            if part.inline_data and part.inline_data.data:
                return part.inline_data.data
        self._logger.warning("Augmentation response contained no image data")
        return None

    async def submit_video_job(self, image: bytes, prompt: str) -> JobHandle:
        operation = await self._client.aio.models.generate_videos(
            model=self._settings.video_model,
            prompt=prompt,
            image=types.Image(image_bytes=image, mime_type="image/jpeg"),
            config=types.GenerateVideosConfig(
                number_of_videos=1,
                resolution="720p",
                aspect_ratio="16:9",
            ),
        )
        self._logger.info("Video job submitted: %s", operation.name)
        return _to_handle(operation)

    async def poll_video_job(self, handle: JobHandle) -> JobHandle:
        operation = await self._client.aio.operations.get(handle.token)
        if operation.error:
            raise RuntimeError(f"Video job {operation.name} failed: {operation.error}")
        return _to_handle(operation)

    async def report(self, items: Sequence[CapturedItem]) -> str:
        entries = "\n".join(
            f"ID: {item.id}, Defect: {item.defect_type}, "
            f"Severity: {item.analysis.severity if item.analysis else None}, "
            f"Quality: {item.analysis.is_quality_sufficient if item.analysis else None}"
            for item in items
        )
        try:
            response = await self._generate_with_retry(
                model=self._settings.report_model,
                contents=REPORT_PROMPT.format(entries=entries),
                config=types.GenerateContentConfig(
                    thinking_config=types.ThinkingConfig(thinking_budget=1024),
                ),
            )
            return response.text or "No report generated."
        except Exception as exc:
            self._logger.exception("Report generation failed: %s", exc)
            return REPORT_UNAVAILABLE

    async def chat_turn(self, history: Sequence[ChatMessage], message: str) -> str:
        try:
            chat = self._client.aio.chats.create(
                model=self._settings.chat_model,
                config=types.GenerateContentConfig(system_instruction=CHAT_SYSTEM_INSTRUCTION),
                history=[
                    types.Content(
                        role="user" if entry.sender == SENDER_USER else "model",
                        parts=[types.Part(text=entry.text)],
                    )
                    for entry in history
                ],
            )
            response = await chat.send_message(message)
            return response.text or CHAT_UNAVAILABLE
        except Exception as exc:
            self._logger.exception("Chat error: %s", exc)
            return CHAT_UNAVAILABLE

    async def _generate_with_retry(self, *, model: str, contents: Any, config: types.GenerateContentConfig):
        max_retries = self._settings.max_retries
        for attempt in range(max_retries + 1):
            try:
                return await self._client.aio.models.generate_content(model=model, contents=contents, config=config)
            except Exception as exc:
                if not self._is_rate_limited(exc) or attempt >= max_retries:
                    raise

                wait_seconds = self._compute_retry_wait_seconds(exc, attempt)
                wait_seconds = max(0.0, wait_seconds + max(0.0, self._settings.retry_buffer_seconds))
                self._logger.warning(
                    "Gemini rate limit hit on %s (attempt %s/%s). Waiting %.1fs then retrying...",
                    model,
                    attempt + 1,
                    max_retries + 1,
                    wait_seconds,
                )
                await asyncio.sleep(wait_seconds)
        raise RuntimeError("Gemini generate_content failed unexpectedly")

    def _is_rate_limited(self, exc: Exception) -> bool:
        if isinstance(exc, errors.APIError) and exc.code == 429:
            return True
        message = str(exc)
        return "429" in message or "RESOURCE_EXHAUSTED" in message or "rate limit" in message.lower()

    def _compute_retry_wait_seconds(self, exc: Exception, attempt: int) -> float:
        # Prefer the server-suggested delay when the error carries one.
        message = str(exc)
        match = re.search(r"(?:Please retry in|retryDelay['\"]?:\s*['\"]?)\s*([0-9]+(?:\.[0-9]+)?)s", message)
        if match:
            return float(match.group(1))

        base = min(60.0, (2.0 ** attempt))
        return base + random.uniform(0.0, 1.0)

    def _parse_payload(self, text: str) -> Any:
        cleaned = text.strip()
        if cleaned.startswith("```"):
            cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
            if "```" in cleaned:
                cleaned = cleaned.split("```", 1)[0]
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError:
            self._logger.warning("Failed to parse Gemini JSON: %.200s", text)
            return None


def _jpeg_part(image: bytes) -> types.Part:
    return types.Part.from_bytes(data=image, mime_type="image/jpeg")


def _to_handle(operation) -> JobHandle:
    result_ref = None
    if operation.done and operation.response and operation.response.generated_videos:
        video = operation.response.generated_videos[0].video
        if video is not None and video.uri:
            result_ref = video.uri
    return JobHandle(token=operation, done=bool(operation.done), result_ref=result_ref)
