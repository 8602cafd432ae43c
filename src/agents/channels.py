from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from src.specs.common.errors import InvalidRequest
from src.specs.models.domain import ChannelSpec, RelayPayload


DEFAULT_CHANNELS: List[ChannelSpec] = [
    ChannelSpec(
        channelId="instagram",
        displayName="Instagram",
        characterLimit=2200,
        toneDescriptor="Visual storytelling with engaging captions",
    ),
    ChannelSpec(
        channelId="twitter",
        displayName="Twitter/X",
        characterLimit=280,
        toneDescriptor="Concise, trending conversations",
    ),
    ChannelSpec(
        channelId="linkedin",
        displayName="LinkedIn",
        characterLimit=3000,
        toneDescriptor="Professional insights and thought leadership",
    ),
    ChannelSpec(
        channelId="facebook",
        displayName="Facebook",
        characterLimit=63206,
        toneDescriptor="Community-focused engagement",
    ),
]


def normalize_channel_id(channel_id: str) -> str:
    return (channel_id or "").strip().lower()


class ChannelAdapter:
    """Per-channel metadata and payload shaping."""

    def __init__(self, channels: Optional[Iterable[ChannelSpec]] = None) -> None:
        self._channels: Dict[str, ChannelSpec] = {
            c.channelId: c for c in (channels if channels is not None else DEFAULT_CHANNELS)
        }

    @property
    def channel_ids(self) -> List[str]:
        return list(self._channels)

    def get(self, channel_id: str) -> ChannelSpec:
        spec = self._channels.get(normalize_channel_id(channel_id))
        if spec is None:
            raise InvalidRequest(f"Unknown channel '{channel_id}'", details={"channelId": channel_id})
        return spec

    def resolve(self, channel_ids: Sequence[str]) -> List[ChannelSpec]:
        """Map requested ids to specs, dropping repeats; all must be known."""
        seen: List[str] = []
        for raw in channel_ids:
            cid = normalize_channel_id(raw)
            if cid not in seen:
                seen.append(cid)
        unknown = [cid for cid in seen if cid not in self._channels]
        if unknown:
            raise InvalidRequest(
                f"Unknown channel(s): {', '.join(unknown)}",
                details={"unknown": unknown, "known": self.channel_ids},
            )
        return [self._channels[cid] for cid in seen]

    @staticmethod
    def join_tags(spec: ChannelSpec, tags: Sequence[str]) -> str:
        return spec.tagSeparator.join(t if t.startswith("#") else f"#{t}" for t in tags if t)

    def build_payload(
        self,
        channel_id: str,
        body: str,
        tags: Sequence[str],
        *,
        scheduled_at: Optional[datetime] = None,
        media_refs: Optional[Sequence[str]] = None,
    ) -> RelayPayload:
        """Relay payload with tags re-joined by the channel's separator."""
        spec = self.get(channel_id)
        return RelayPayload(
            channelId=spec.channelId,
            body=body,
            tags=self.join_tags(spec, tags),
            scheduledAt=scheduled_at,
            mediaRefs=list(media_refs or []),
        )
