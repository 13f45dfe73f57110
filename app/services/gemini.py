"""Gemini-backed analyzer and generator."""

from __future__ import annotations

import logging
from typing import Any, Optional

import google.generativeai as genai

from app.analysis import ImageAnalysis, parse_analysis_text
from app.exceptions import AnalysisError, ConfigurationError, GenerationError
from app.imaging import decode_image, encode_image
from app.services.collaborators import (
    AnalysisRequest,
    BatchAnalyzer,
    BatchGenerator,
    GenerationRequest,
    GenerationResult,
)
from app.services.prompts import ANALYSIS_PROMPT, build_generation_prompt

logger = logging.getLogger(__name__)


def _configure(api_key: Optional[str]) -> None:
    if not api_key:
        raise ConfigurationError("APP_GEMINI_API_KEY is not configured")
    genai.configure(api_key=api_key)


def _image_part(image_base64: str, mime_type: str) -> dict:
    return {"mime_type": mime_type, "data": decode_image(image_base64)}


def response_text(response: Any) -> str:
    text = None
    try:
        text = response.text
    except ValueError:
        # raised by the SDK when the reply has no text part
        text = None
    if text:
        return text
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            if getattr(part, "text", None):
                return part.text
    return ""


def extract_inline_image(response: Any) -> Optional[tuple[bytes, str]]:
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and getattr(inline, "data", None):
                return inline.data, getattr(inline, "mime_type", None) or "image/png"
    return None


class GeminiAnalyzer(BatchAnalyzer):
    def __init__(self, api_key: Optional[str], model: str = "gemini-2.5-flash") -> None:
        _configure(api_key)
        self.model_name = model
        self._model = genai.GenerativeModel(model)

    async def analyze(self, request: AnalysisRequest) -> ImageAnalysis:
        try:
            response = await self._model.generate_content_async(
                [ANALYSIS_PROMPT, _image_part(request.image_base64, request.mime_type)]
            )
        except Exception as exc:
            raise AnalysisError(f"Gemini analysis request failed: {exc}") from exc
        analysis = parse_analysis_text(response_text(response))
        logger.debug("Photo %s detected as %s", request.photo_id, analysis.room_type.value)
        return analysis


class GeminiGenerator(BatchGenerator):
    def __init__(self, api_key: Optional[str], model: str = "gemini-2.5-flash-image-preview") -> None:
        _configure(api_key)
        self.model_name = model
        self._model = genai.GenerativeModel(model)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        prompt = build_generation_prompt(request.room_type, request.analysis)
        try:
            response = await self._model.generate_content_async(
                [prompt, _image_part(request.image_base64, request.mime_type)]
            )
        except Exception as exc:
            raise GenerationError(f"Gemini generation request failed: {exc}") from exc

        image = extract_inline_image(response)
        if image is None:
            return GenerationResult(photo_id=request.photo_id, error="No optimized image found in response")
        data, mime_type = image
        return GenerationResult(photo_id=request.photo_id, image_base64=encode_image(data), mime_type=mime_type)
