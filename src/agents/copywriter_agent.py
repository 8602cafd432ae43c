"""Channel copywriter: one brief plus one channel in, one cleaned variant out."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from .channels import ChannelAdapter
from .generation_service import GenerationService
from src.shared.logging_utils import debug as log_debug
from src.specs.common.enums import GenerationStatus
from src.specs.common.errors import ChannelGenerationFailed
from src.specs.models.domain import Brief, ChannelSpec, GenerationRequest, Variant


HASHTAG_PATTERN = re.compile(r"(?<![\w&/])#\w+")

_FENCE_LINE = re.compile(r"^[ \t]*(?:```|~~~)[^\n]*$", re.MULTILINE)
_HEADING = re.compile(r"^[ \t]{0,3}#{1,6}[ \t]+", re.MULTILINE)
_QUOTE = re.compile(r"^[ \t]*>[ \t]?", re.MULTILINE)
_BULLET = re.compile(r"^[ \t]*(?:[-*+•]|\d{1,2}[.)])[ \t]+", re.MULTILINE)
_LINK = re.compile(r"\[([^\]\n]+)\]\((\S+?)\)")
_BOLD = re.compile(r"(\*\*|__)(?=\S)(.+?)(?<=\S)\1", re.DOTALL)
_STRIKE = re.compile(r"~~(?=\S)(.+?)(?<=\S)~~", re.DOTALL)
_ITALIC = re.compile(r"(?<![\w*])([*_])(?=\S)([^\n]+?)(?<=\S)\1(?![\w*])")
_INLINE_CODE = re.compile(r"`([^`\n]*)`")
_LEFTOVER = re.compile(r"\*+|`+|~~|(?<!\w)__+|__+(?!\w)")
_SPACE_RUN = re.compile(r"[ \t]{2,}")
_SPACE_BEFORE_PUNCT = re.compile(r"[ \t]+([.,!?;:])")
_BLANK_RUN = re.compile(r"\n{3,}")


def strip_markup(text: str) -> str:
    """Remove fences, headings, quotes, bullets, emphasis and code markers."""
    out = _FENCE_LINE.sub("", text or "")
    out = _HEADING.sub("", out)
    out = _QUOTE.sub("", out)
    out = _BULLET.sub("", out)
    out = _LINK.sub(r"\1 \2", out)
    out = _BOLD.sub(r"\2", out)
    out = _STRIKE.sub(r"\1", out)
    out = _ITALIC.sub(r"\2", out)
    out = _INLINE_CODE.sub(r"\1", out)
    return _LEFTOVER.sub("", out)


def extract_tags(text: str) -> Tuple[str, List[str]]:
    """Pull hashtag tokens out of ``text`` in emission order, duplicates kept."""
    tags = HASHTAG_PATTERN.findall(text)
    return HASHTAG_PATTERN.sub("", text), tags


def tidy_whitespace(text: str) -> str:
    lines = []
    for line in text.replace("\r\n", "\n").split("\n"):
        line = _SPACE_BEFORE_PUNCT.sub(r"\1", _SPACE_RUN.sub(" ", line)).strip()
        lines.append(line)
    return _BLANK_RUN.sub("\n\n", "\n".join(lines)).strip()


def clean_generated_text(raw: str) -> Tuple[str, List[str]]:
    """Markup is stripped before tags are scanned; returns (body, tags)."""
    body, tags = extract_tags(strip_markup(raw))
    return tidy_whitespace(body), tags


class ContentGenerator:
    """Turns a brief into one channel's variant via the generation service."""

    def __init__(
        self,
        service: GenerationService,
        channels: Optional[ChannelAdapter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._service = service
        self._channels = channels or ChannelAdapter()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def channels(self) -> ChannelAdapter:
        return self._channels

    def build_request(self, brief: Brief, spec: ChannelSpec, target_length: Optional[int] = None) -> GenerationRequest:
        return GenerationRequest(
            channelId=spec.channelId,
            toneDescriptor=spec.toneDescriptor,
            characterLimit=spec.characterLimit,
            targetLength=target_length,
            sourceText=brief.sourceText,
        )

    def run(self, brief: Brief, channel_id: str, target_length: Optional[int] = None) -> Variant:
        spec = self._channels.get(channel_id)
        raw = self._service.generate(self.build_request(brief, spec, target_length))
        body, tags = clean_generated_text(raw)
        if not body:
            raise ChannelGenerationFailed(spec.channelId, "empty_response")
        log_debug(brief.ownerId, "generate:cleaned", channelId=spec.channelId, chars=len(body), tags=len(tags))
        return Variant(
            id=Variant.make_id(brief.id, spec.channelId),
            ownerId=brief.ownerId,
            briefId=brief.id,
            channelId=spec.channelId,
            body=body,
            tags=tags,
            charCount=len(body),
            characterLimit=spec.characterLimit,
            generationStatus=GenerationStatus.OK,
            generatedAt=self._clock(),
        )

    def failed(self, brief: Brief, spec: ChannelSpec, reason: str) -> Variant:
        """Placeholder variant so the result set stays total over channels."""
        return Variant(
            id=Variant.make_id(brief.id, spec.channelId),
            ownerId=brief.ownerId,
            briefId=brief.id,
            channelId=spec.channelId,
            characterLimit=spec.characterLimit,
            generationStatus=GenerationStatus.FAILED,
            failureReason=reason,
            generatedAt=self._clock(),
        )


__all__ = [
    "ContentGenerator",
    "HASHTAG_PATTERN",
    "clean_generated_text",
    "extract_tags",
    "strip_markup",
]
