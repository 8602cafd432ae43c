"""Concurrent per-channel generation with failure isolation.

``generate`` validates the whole request up front, then starts one task per
channel and waits for every task to settle. A channel that times out, gets a
bad upstream answer or is refused by the credit ledger yields a Failed
variant; its siblings are unaffected.
"""
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Sequence

from .copywriter_agent import ContentGenerator
from src.shared.credit_ledger import CreditLedger
from src.shared.logging_utils import error as log_error, info as log_info, warning as log_warning
from src.shared.sync_store import SyncStore
from src.specs.common.errors import ChannelGenerationFailed, InvalidRequest
from src.specs.models.domain import Brief, ChannelSpec, Variant


INSUFFICIENT_CREDIT = "insufficient_credit"
TIMEOUT = "timeout"
INTERNAL_ERROR = "internal_error"


class GenerationOrchestrator:
    def __init__(
        self,
        generator: ContentGenerator,
        store: SyncStore,
        ledger: Optional[CreditLedger] = None,
        *,
        credit_cost: int = 0,
        timeout: float = 30.0,
    ) -> None:
        self._generator = generator
        self._store = store
        self._ledger = ledger
        self._credit_cost = credit_cost
        self._timeout = timeout

    @property
    def gated(self) -> bool:
        return self._ledger is not None and self._credit_cost > 0

    def validate_request(self, source_text: str, channel_ids: Sequence[str]) -> List[ChannelSpec]:
        """Fail fast on an empty brief, no channels or an unknown channel."""
        if not (source_text or "").strip():
            raise InvalidRequest("Brief source text must not be empty")
        if not channel_ids:
            raise InvalidRequest("At least one channel is required")
        return self._generator.channels.resolve(channel_ids)

    async def generate(
        self,
        brief: Brief,
        channel_ids: Sequence[str],
        *,
        target_length: Optional[int] = None,
    ) -> Dict[str, Variant]:
        if brief is None:
            raise InvalidRequest("A brief is required")
        specs = self.validate_request(brief.sourceText, channel_ids)
        log_info(brief.ownerId, "generate:start", briefId=brief.id, channels=[s.channelId for s in specs])

        settled = await asyncio.gather(
            *(self._run_channel(brief, spec, target_length) for spec in specs),
            return_exceptions=True,
        )

        results: Dict[str, Variant] = {}
        for spec, outcome in zip(specs, settled):
            if isinstance(outcome, BaseException):
                log_error(
                    brief.ownerId,
                    "generate:channel_crashed",
                    briefId=brief.id,
                    channelId=spec.channelId,
                    error=repr(outcome),
                )
                outcome = self._generator.failed(brief, spec, INTERNAL_ERROR)
                await asyncio.to_thread(self._store.write, outcome)
            results[spec.channelId] = outcome

        failed = [c for c, v in results.items() if not v.is_ok]
        log_info(
            brief.ownerId,
            "generate:done",
            briefId=brief.id,
            succeeded=len(results) - len(failed),
            failed=failed,
        )
        return results

    async def _run_channel(self, brief: Brief, spec: ChannelSpec, target_length: Optional[int]) -> Variant:
        if self.gated:
            charge = await asyncio.to_thread(
                self._ledger.deduct, brief.ownerId, self._credit_cost, f"generation:{brief.id}:{spec.channelId}"
            )
            if not charge.ok:
                variant = self._generator.failed(brief, spec, INSUFFICIENT_CREDIT)
                log_warning(brief.ownerId, "generate:channel_failed", channelId=spec.channelId, reason=INSUFFICIENT_CREDIT)
                await asyncio.to_thread(self._store.write, variant)
                return variant

        try:
            variant = await asyncio.wait_for(
                asyncio.to_thread(self._generator.run, brief, spec.channelId, target_length),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            variant = self._generator.failed(brief, spec, TIMEOUT)
        except ChannelGenerationFailed as exc:
            variant = self._generator.failed(brief, spec, exc.reason)

        if not variant.is_ok:
            log_warning(
                brief.ownerId,
                "generate:channel_failed",
                channelId=spec.channelId,
                reason=variant.failureReason,
            )
        await asyncio.to_thread(self._store.write, variant)
        return variant


__all__ = ["GenerationOrchestrator"]
