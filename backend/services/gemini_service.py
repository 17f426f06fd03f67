# ========================================
# services/gemini_service.py - Gemini integration (JSON responses)
# ========================================

import asyncio
import json
import re
from typing import Any, Optional

import google.generativeai as genai
from config import get_settings
from utils.logger import get_logger

logger = get_logger("GeminiService")


class LLMError(Exception):
    """The model could not be reached or did not return usable JSON."""


_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def parse_json_block(text: str) -> Any:
    """Decode a JSON payload, tolerating markdown code fences around it."""
    cleaned = _FENCE.sub("", text.strip()).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        # fall back to the outermost object
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise LLMError("Model response is not JSON")
        try:
            return json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e:
            raise LLMError(f"Model response is not valid JSON: {e}") from e


class GeminiService:
    def __init__(self, model: Optional[Any] = None):
        settings = get_settings()
        self.timeout = settings.llm_timeout_seconds
        if model is not None:
            self.model = model
        elif settings.llm_api_key:
            genai.configure(api_key=settings.llm_api_key)
            self.model = genai.GenerativeModel(settings.llm_model)
            logger.info("Gemini service initialized")
        else:
            logger.error("Gemini API key not configured")
            self.model = None

    async def generate_text(self, prompt: str, temperature: float = None, json_output: bool = False) -> str:
        """Generate a text response from Gemini. Raises LLMError on any failure."""
        if not self.model:
            raise LLMError("LLM service not configured")

        settings = get_settings()
        config = {
            "temperature": settings.llm_temperature if temperature is None else temperature,
            "max_output_tokens": settings.llm_max_tokens,
        }
        if json_output:
            config["response_mime_type"] = "application/json"

        try:
            response = await asyncio.wait_for(
                self.model.generate_content_async(prompt, generation_config=config),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise LLMError(f"Gemini timed out after {self.timeout}s") from e
        except Exception as e:
            logger.error(f"Gemini generation error: {e}", exc_info=True)
            raise LLMError(f"Gemini generation failed: {e}") from e

        try:
            text = response.text
        except Exception:
            finish = None
            candidates = getattr(response, "candidates", None) or []
            if candidates:
                finish = getattr(candidates[0], "finish_reason", None)
            logger.warning(f"Gemini returned no text. candidates={len(candidates)} finish_reason={finish}")
            raise LLMError("No response generated")

        if not text:
            raise LLMError("No response generated")
        return text

    async def generate_json(self, prompt: str, temperature: float = None) -> Any:
        text = await self.generate_text(prompt, temperature=temperature, json_output=True)
        return parse_json_block(text)
