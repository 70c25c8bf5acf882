"""Gemini text-generation client and model-output parsing helpers."""

import json
import logging
import os
import re

from google import genai
from google.genai import types as genai_types

from bookgen.services.errors import ParseError, ServiceError

logger = logging.getLogger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def full_prompt(system_prompt: str, user_prompt: str) -> str:
    """Return the prompt text recorded in the audit trail for one attempt."""
    return f"{system_prompt}\n\nUSER PROMPT:\n{user_prompt}"


def strip_code_fence(raw: str) -> str:
    """Remove an optional markdown code fence around the model output."""
    raw = raw.strip()
    if raw.startswith("```"):
        raw = raw.split("```", 2)[1]
        if raw.startswith("json"):
            raw = raw[4:]
        raw = raw.rsplit("```", 1)[0].strip()
    return raw


def extract_json_object(raw: str, prompt: str) -> dict[str, object]:
    """Return the first JSON object embedded in *raw*.

    Raises ParseError (carrying *prompt* and *raw*) if no JSON object can be decoded.
    """
    match = _JSON_OBJECT_RE.search(strip_code_fence(raw))
    if match is None:
        raise ParseError("No valid JSON object found in the AI response.", prompt, raw)
    try:
        data: object = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ParseError(f"Failed to decode JSON from AI response: {exc}", prompt, raw) from exc
    if not isinstance(data, dict):
        raise ParseError("AI response JSON is not an object.", prompt, raw)
    return data


class GeminiService:
    """Calls the Gemini API for plain text completions."""

    def __init__(self, client: genai.Client | None = None, model: str | None = None) -> None:
        self._client = client
        self._model = model

    @property
    def model(self) -> str:
        if self._model is None:
            model_name = os.environ.get("GEMINI_TEXT_MODEL", "").strip()
            if not model_name:
                raise ValueError("GEMINI_TEXT_MODEL environment variable is not set")
            self._model = model_name
        return self._model

    def _get_client(self) -> genai.Client:
        if self._client is None:
            api_key = os.environ.get("GEMINI_API_KEY", "").strip()
            if not api_key:
                raise ValueError("GEMINI_API_KEY environment variable is not set")
            self._client = genai.Client(api_key=api_key)
        return self._client

    def complete(self, system_prompt: str, user_prompt: str, model: str | None = None) -> str:
        """Return the model's text reply to *user_prompt* under *system_prompt*.

        Raises ServiceError on transport/auth failure or an empty reply. The text is
        returned verbatim; callers strip and parse it.
        """
        model_name = model or self.model
        client = self._get_client()
        logger.info("requesting Gemini completion with model %s (%d chars)", model_name, len(user_prompt))
        config = genai_types.GenerateContentConfig(system_instruction=system_prompt or None)
        try:
            response = client.models.generate_content(
                model=model_name,
                contents=user_prompt,
                config=config,
            )
        except Exception as exc:
            logger.error("Gemini completion failed: %s", exc)
            raise ServiceError(f"Failed to generate completion from Gemini: {exc}") from exc

        text = response.text
        if not text or not text.strip():
            raise ServiceError("No content in Gemini response.")
        logger.info("Gemini response received (%d chars)", len(text))
        return text
