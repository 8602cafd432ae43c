"""Clients for the external text generation service.

The service takes a channel tone, a character limit, an optional target
length and the source text, and answers with raw text. Every failure mode
(timeout, transport error, bad status, malformed or empty body) is raised as
``ChannelGenerationFailed`` so the caller can isolate it to one channel.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from src.shared.logging_utils import warning as log_warning
from src.specs.common.errors import ChannelGenerationFailed
from src.specs.models.domain import GenerationRequest


GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def build_prompt(request: GenerationRequest) -> str:
    lines = [
        f"Rewrite the content below as a post for {request.channelId}.",
        f"Tone: {request.toneDescriptor}.",
        f"Stay under {request.characterLimit} characters.",
    ]
    if request.targetLength:
        lines.append(f"Aim for roughly {request.targetLength} characters.")
    lines.append("Put any relevant hashtags at the end. Return only the post text, no markdown.")
    lines.append("")
    lines.append(request.sourceText)
    return "\n".join(lines)


class GenerationService(ABC):
    @abstractmethod
    def generate(self, request: GenerationRequest) -> str:
        """Return raw generated text or raise ChannelGenerationFailed."""


class GeminiGenerationService(GenerationService):
    """Gemini ``generateContent`` over plain HTTPS."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        timeout: float = 30.0,
        *,
        base_url: str = GEMINI_BASE_URL,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._url = f"{base_url.rstrip('/')}/models/{model}:generateContent"
        self._session = session or requests.Session()

    def generate(self, request: GenerationRequest) -> str:
        body = {"contents": [{"parts": [{"text": build_prompt(request)}]}]}
        try:
            response = self._session.post(
                self._url,
                json=body,
                headers={"x-goog-api-key": self._api_key},
                timeout=self._timeout,
            )
        except requests.Timeout as exc:
            raise ChannelGenerationFailed(request.channelId, "timeout") from exc
        except requests.RequestException as exc:
            raise ChannelGenerationFailed(request.channelId, "upstream_unavailable", {"error": str(exc)}) from exc

        if response.status_code >= 400:
            log_warning(None, "generate:upstream_status", channelId=request.channelId, status=response.status_code)
            raise ChannelGenerationFailed(
                request.channelId, "upstream_error", {"status": response.status_code}
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ChannelGenerationFailed(request.channelId, "malformed_response") from exc

        text = self._extract_text(payload)
        if text is None:
            raise ChannelGenerationFailed(request.channelId, "malformed_response")
        if not text.strip():
            raise ChannelGenerationFailed(request.channelId, "empty_response")
        return text

    @staticmethod
    def _extract_text(payload: Any) -> Optional[str]:
        if not isinstance(payload, dict):
            return None
        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            return None
        content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            return None
        texts = [p.get("text") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)]
        if not texts:
            return None
        return "".join(texts)


# Channel-flavoured canned copy used when no API key is configured.
_PLACEHOLDER_TEMPLATES: Dict[str, str] = {
    "instagram": "✨ {text}\n\nWhat do you think? Let us know in the comments! 👇\n\n#content #creator #instagood",
    "twitter": "{text} #thread #trending",
    "linkedin": "{text}\n\nWhat are your thoughts on this? I'd love to hear your perspective.\n\n#professional #leadership",
    "facebook": "{text}\n\nShare this with someone who needs to see it! ❤️\n\n#community",
}


class PlaceholderGenerationService(GenerationService):
    """Deterministic offline generator; output depends only on the request."""

    def generate(self, request: GenerationRequest) -> str:
        source = " ".join(request.sourceText.split())
        template = _PLACEHOLDER_TEMPLATES.get(request.channelId, "{text}")
        suffix_len = len(template.replace("{text}", ""))
        budget = request.characterLimit - suffix_len
        if request.targetLength:
            budget = min(budget, request.targetLength)
        if budget <= 0:
            return source[: request.characterLimit]
        if len(source) > budget:
            source = source[: max(budget - 1, 0)].rstrip() + "…"
        return template.format(text=source)


__all__ = [
    "GenerationService",
    "GeminiGenerationService",
    "PlaceholderGenerationService",
    "build_prompt",
]
