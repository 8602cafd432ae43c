"""Client for the external dispatch relay (a JSON webhook).

At most once: a payload is posted a single time and the synchronous answer
is the only delivery signal. Failures are raised, never retried here.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Optional

import requests

from src.shared.logging_utils import info as log_info, warning as log_warning
from src.specs.common.errors import RelayRejected, RelayUnavailable
from src.specs.models.domain import RelayPayload


DEFAULT_RELAY_CHANNELS = ("instagram", "facebook", "linkedin", "twitter")


class Relay(ABC):
    @abstractmethod
    def supports(self, channel_id: str) -> bool: ...

    @abstractmethod
    def send(self, payload: RelayPayload) -> None:
        """Deliver ``payload``; raise RelayRejected or RelayUnavailable on failure."""


class RelayClient(Relay):
    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout: float = 15.0,
        supported_channels: Optional[Iterable[str]] = None,
        *,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = webhook_url
        self._timeout = timeout
        self._channels = frozenset(
            c.strip().lower() for c in (supported_channels or DEFAULT_RELAY_CHANNELS) if c.strip()
        )
        self._session = session or requests.Session()

    @property
    def dry_run(self) -> bool:
        return not self._url

    def supports(self, channel_id: str) -> bool:
        return (channel_id or "").strip().lower() in self._channels

    def send(self, payload: RelayPayload) -> None:
        body = payload.model_dump(mode="json")
        if self.dry_run:
            log_info(None, "relay:dry_run", channelId=payload.channelId, chars=len(payload.body))
            return
        try:
            response = self._session.post(self._url, json=body, timeout=self._timeout)
        except requests.Timeout as exc:
            raise RelayUnavailable("Relay did not answer in time", {"channelId": payload.channelId}) from exc
        except requests.RequestException as exc:
            raise RelayUnavailable(f"Relay unreachable: {exc}", {"channelId": payload.channelId}) from exc

        if not 200 <= response.status_code < 300:
            log_warning(None, "relay:rejected", channelId=payload.channelId, status=response.status_code)
            raise RelayRejected(
                f"Relay answered {response.status_code}",
                {"channelId": payload.channelId, "status": response.status_code, "body": response.text[:500]},
            )
        try:
            answer = response.json()
        except ValueError:
            answer = None
        if isinstance(answer, dict) and answer.get("accepted") is False:
            raise RelayRejected("Relay did not accept the payload", {"channelId": payload.channelId, "answer": answer})
        log_info(None, "relay:accepted", channelId=payload.channelId)
