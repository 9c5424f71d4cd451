"""Integration helpers for the Gemini generative-text API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import Settings
from ..exceptions import CredentialInvalidError, GenerationError, MissingCredentialError
from ..models import AuthorStyle, Language, MediaType

logger = logging.getLogger(__name__)

LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "zh-TW": "Traditional Chinese (繁體中文)",
    "zh-CN": "Simplified Chinese (简体中文)",
}

STYLE_PROMPTS: dict[str, str] = {
    "humorous": "funny, witty, and lighthearted with a touch of playful irony.",
    "toxic": (
        "extremely sarcastic, cynical, 'roast-style' and blunt. "
        "Point out every flaw with biting humor."
    ),
    "sentimental": (
        "emotional, poetic, and deep. Focus on the feelings and themes, "
        "slightly nostalgic and moving."
    ),
}

REVIEW_PROMPT_TEMPLATE = """Write a review for the {kind} "{title}".
Style: {style}
The review should be between 200 to 300 words.
Include a "The Good", "The Bad", and a final "The Verdict" section.
Keep it engaging like a modern blog post.
Language: {language}.

Context (Overview): {overview}"""

# Substrings of provider errors meaning the configured key must be re-entered.
CREDENTIAL_INVALID_MARKERS = ("entity was not found", "entity not found")


def build_prompt(
    title: str,
    media_type: MediaType,
    language: Language,
    overview: str,
    style: AuthorStyle = "humorous",
) -> str:
    """Compose the natural-language prompt for one review."""

    return REVIEW_PROMPT_TEMPLATE.format(
        kind="movie" if media_type == "movie" else "TV show",
        title=title,
        style=STYLE_PROMPTS[style],
        language=LANGUAGE_NAMES[language],
        overview=overview or "",
    )


class GeminiClient:
    """Client responsible for talking to the ``generateContent`` endpoint."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def generate_review(
        self,
        title: str,
        media_type: MediaType,
        language: Language,
        overview: str,
        style: AuthorStyle = "humorous",
        *,
        api_key: str | None = None,
        model: str | None = None,
    ) -> str:
        """Generate a stylized review and return its text."""

        resolved_key = api_key or self._settings.gemini_api_key
        if not resolved_key:
            raise MissingCredentialError(
                "Gemini API key must be set. Configure it in the admin site settings."
            )
        resolved_model = model or self._settings.gemini_model
        payload = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {
                            "text": build_prompt(
                                title, media_type, language, overview, style
                            )
                        }
                    ],
                }
            ],
            "generationConfig": {
                "temperature": self._settings.generation_temperature,
                "topP": self._settings.generation_top_p,
            },
        }
        headers = {
            "x-goog-api-key": resolved_key,
            "Content-Type": "application/json",
        }
        try:
            response = await self._client.post(
                f"/models/{resolved_model}:generateContent",
                json=payload,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("Gemini request for %s (%s) failed: %s", title, language, exc)
            raise GenerationError(f"AI generation failed: {exc}") from exc

        data = _response_json(response)
        if response.status_code >= 400:
            message = _error_message(data) or response.text or "AI generation failed"
            logger.warning(
                "Gemini rejected review for %s (%s): %s", title, language, message
            )
            if any(marker in message.lower() for marker in CREDENTIAL_INVALID_MARKERS):
                raise CredentialInvalidError(
                    "The Gemini API key is no longer valid. Please select a key again."
                )
            raise GenerationError(message)

        text = _extract_text(data)
        if not text:
            raise GenerationError("Gemini returned an empty response.")
        return text


def _response_json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    if isinstance(data, dict):
        return data
    return {}


def _error_message(data: dict[str, Any]) -> str:
    error = data.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or error.get("status") or "")
    if isinstance(error, str):
        return error
    return ""


def _extract_text(data: dict[str, Any]) -> str:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    chunks = [
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    ]
    return "".join(chunks).strip()
