"""Immediate publishing, scheduling and due-dispatch of channel variants.

Occurrence lifecycle: ``scheduled -> dispatched`` on relay success or
``scheduled -> failed`` on relay failure. Both are terminal; a failed post
goes out again only through a new ``schedule`` call.
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Union

from .recurrence import iter_instances
from .relay_client import Relay
from src.agents.channels import ChannelAdapter
from src.shared.credit_ledger import CreditLedger
from src.shared.logging_utils import info as log_info, warning as log_warning
from src.shared.sync_store import SyncStore
from src.specs.common.datetime_utils import to_instant
from src.specs.common.enums import OccurrenceStatus, RecordKind
from src.specs.common.errors import (
    CrosspostError,
    InsufficientCredit,
    InvalidRequest,
    InvalidSchedule,
    NoEligibleChannels,
    RelayRejected,
    RelayUnavailable,
)
from src.specs.models.domain import (
    BatchResult,
    DispatchResult,
    Occurrence,
    RecurrenceRule,
    RelayPayload,
    Variant,
)
from src.specs.models.persistence import record_key


EXCEEDS_CHARACTER_LIMIT = "exceeds_character_limit"
MAX_INSTANCES_PER_SERIES = 10


class PublishDispatcher:
    def __init__(
        self,
        store: SyncStore,
        relay: Relay,
        channels: Optional[ChannelAdapter] = None,
        ledger: Optional[CreditLedger] = None,
        *,
        schedule_cost: int = 0,
        clock: Optional[Callable[[], datetime]] = None,
        max_instances_per_series: int = MAX_INSTANCES_PER_SERIES,
    ) -> None:
        self._store = store
        self._relay = relay
        self._channels = channels or ChannelAdapter()
        self._ledger = ledger
        self._schedule_cost = schedule_cost
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._max_instances = max_instances_per_series

    # ---- payloads ----

    def _payload_for(self, occurrence: Occurrence) -> RelayPayload:
        return self._channels.build_payload(
            occurrence.channelId,
            occurrence.body,
            occurrence.tags,
            scheduled_at=occurrence.scheduledAt,
            media_refs=occurrence.mediaRefs,
        )

    @staticmethod
    def _require_content(variant: Variant) -> None:
        if not variant.is_ok or not variant.body:
            raise InvalidRequest(
                f"Variant for {variant.channelId} has no publishable content",
                {"channelId": variant.channelId, "failureReason": variant.failureReason},
            )

    def _new_occurrence(
        self,
        variant: Variant,
        scheduled_at: datetime,
        *,
        tz_name: str = "UTC",
        rule_id: Optional[str] = None,
        media_refs: Optional[Sequence[str]] = None,
    ) -> Occurrence:
        return Occurrence(
            id=uuid.uuid4().hex,
            ownerId=variant.ownerId,
            briefId=variant.briefId,
            channelId=variant.channelId,
            variantRef=variant.id,
            scheduledAt=scheduled_at,
            timezone=tz_name,
            recurrenceRuleRef=rule_id,
            body=variant.body,
            tags=list(variant.tags),
            mediaRefs=list(media_refs or []),
            createdAt=self._clock(),
        )

    # ---- send ----

    def _send(self, occurrence: Occurrence) -> DispatchResult:
        """Relay one occurrence once and persist its terminal state."""
        spec = self._channels.get(occurrence.channelId)
        error: Optional[Dict] = None
        if len(occurrence.body) > spec.characterLimit:
            error = {
                "code": EXCEEDS_CHARACTER_LIMIT,
                "message": f"Body has {len(occurrence.body)} characters, limit is {spec.characterLimit}",
            }
        else:
            try:
                self._relay.send(self._payload_for(occurrence))
            except (RelayRejected, RelayUnavailable) as exc:
                error = exc.to_dict()

        status = OccurrenceStatus.FAILED if error else OccurrenceStatus.DISPATCHED
        final = occurrence.model_copy(
            update={
                "status": status,
                "error": error["code"] if error else None,
                "dispatchedAt": self._clock() if not error else None,
            }
        )
        self._store.write(final)
        if error:
            log_warning(final.ownerId, "publish:dispatch_failed", occurrenceId=final.id, channelId=final.channelId, error=error["code"])
        else:
            log_info(final.ownerId, "publish:dispatched", occurrenceId=final.id, channelId=final.channelId)
        return DispatchResult(channelId=final.channelId, ok=not error, occurrenceId=final.id, status=status, error=error)

    def publish_now(self, variant: Variant, media_refs: Optional[Sequence[str]] = None) -> DispatchResult:
        self._require_content(variant)
        occurrence = self._new_occurrence(variant, self._clock(), media_refs=media_refs)
        return self._send(occurrence)

    # ---- schedule ----

    def resolve_instant(self, when: Union[datetime, date], tz_name: str = "UTC") -> datetime:
        """Absolute instant for a caller-local time; past instants are rejected."""
        try:
            instant = to_instant(when, tz_name)
        except ValueError as exc:
            raise InvalidSchedule(str(exc), {"timezone": tz_name}) from exc
        now = self._clock()
        if instant < now:
            raise InvalidSchedule(
                "Scheduled time is in the past",
                {"scheduledAt": instant.isoformat(), "now": now.isoformat()},
            )
        return instant

    @staticmethod
    def _check_rule(rule: Optional[RecurrenceRule], instant: datetime) -> None:
        if rule is not None and rule.endAt is not None and rule.endAt < instant:
            raise InvalidSchedule("Recurrence ends before its first occurrence", {"endAt": rule.endAt.isoformat()})

    def schedule(
        self,
        variant: Variant,
        when: Union[datetime, date],
        recurrence: Optional[RecurrenceRule] = None,
        *,
        timezone: str = "UTC",
        media_refs: Optional[Sequence[str]] = None,
    ) -> Occurrence:
        """Record one occurrence; a recurrence rule is stored, never expanded here."""
        instant = self.resolve_instant(when, timezone)
        self._check_rule(recurrence, instant)
        return self._schedule_at(variant, instant, recurrence, timezone, media_refs)

    def _schedule_at(
        self,
        variant: Variant,
        instant: datetime,
        recurrence: Optional[RecurrenceRule],
        timezone: str,
        media_refs: Optional[Sequence[str]],
    ) -> Occurrence:
        self._require_content(variant)
        if self._ledger is not None and self._schedule_cost > 0:
            charge = self._ledger.deduct(variant.ownerId, self._schedule_cost, f"schedule:{variant.id}")
            if not charge.ok:
                raise InsufficientCredit(variant.ownerId, self._schedule_cost, charge.newBalance)

        rule_id = None
        if recurrence is not None:
            rule_id = uuid.uuid4().hex
            self._store.write(recurrence.model_copy(update={"id": rule_id, "ownerId": variant.ownerId}))
        occurrence = self._new_occurrence(variant, instant, tz_name=timezone, rule_id=rule_id, media_refs=media_refs)
        self._store.write(occurrence)
        log_info(
            variant.ownerId,
            "publish:scheduled",
            occurrenceId=occurrence.id,
            channelId=variant.channelId,
            scheduledAt=instant.isoformat(),
            recurring=rule_id is not None,
        )
        return occurrence

    # ---- batch ----

    async def publish_batch(
        self,
        variants: Sequence[Variant],
        *,
        when: Optional[Union[datetime, date]] = None,
        recurrence: Optional[RecurrenceRule] = None,
        timezone: str = "UTC",
        media_refs: Optional[Sequence[str]] = None,
    ) -> BatchResult:
        """Publish or schedule each channel independently; partial success is normal."""
        unique: Dict[str, Variant] = {}
        for variant in variants:
            unique.setdefault(variant.channelId, variant)
        eligible = [v for v in unique.values() if self._relay.supports(v.channelId)]
        if not eligible:
            raise NoEligibleChannels(list(unique))
        instant = None
        if when is not None:
            # Resolved once so every channel shares one instant, however long the batch takes
            instant = self.resolve_instant(when, timezone)
            self._check_rule(recurrence, instant)

        def _unit(variant: Variant) -> DispatchResult:
            if instant is None:
                return self.publish_now(variant, media_refs)
            occurrence = self._schedule_at(variant, instant, recurrence, timezone, media_refs)
            return DispatchResult(
                channelId=variant.channelId, ok=True, occurrenceId=occurrence.id, status=occurrence.status
            )

        settled = await asyncio.gather(*(asyncio.to_thread(_unit, v) for v in eligible), return_exceptions=True)

        batch = BatchResult()
        for variant in unique.values():
            if not self._relay.supports(variant.channelId):
                batch.results[variant.channelId] = DispatchResult(
                    channelId=variant.channelId,
                    ok=False,
                    error={"code": "UNSUPPORTED_CHANNEL", "message": f"Relay does not support {variant.channelId}"},
                )
        for variant, outcome in zip(eligible, settled):
            if isinstance(outcome, CrosspostError):
                outcome = DispatchResult(channelId=variant.channelId, ok=False, error=outcome.to_dict())
            elif isinstance(outcome, BaseException):
                outcome = DispatchResult(
                    channelId=variant.channelId, ok=False, error={"code": "INTERNAL_ERROR", "message": repr(outcome)}
                )
            batch.results[variant.channelId] = outcome
        batch.succeeded = sum(1 for r in batch.results.values() if r.ok)
        batch.failed = len(batch.results) - batch.succeeded
        log_info(
            eligible[0].ownerId,
            "publish:batch_done",
            succeeded=batch.succeeded,
            failed=batch.failed,
            scheduled=when is not None,
        )
        return batch

    # ---- due dispatch ----

    def dispatch_due(self, now: Optional[datetime] = None) -> List[DispatchResult]:
        """Send every scheduled occurrence, or series instance, that is due."""
        now = now or self._clock()
        results: List[DispatchResult] = []
        due = self._store.scan(
            RecordKind.OCCURRENCE,
            where=lambda o: o.status == OccurrenceStatus.SCHEDULED and o.seriesRef is None,
        )
        for occurrence in sorted(due, key=lambda o: (o.scheduledAt, o.id)):
            if occurrence.recurrenceRuleRef:
                results.extend(self._dispatch_series(occurrence, now))
            elif occurrence.scheduledAt <= now:
                results.append(self._send(occurrence))
        if results:
            log_info(None, "publish:due_dispatched", count=len(results), failed=sum(1 for r in results if not r.ok))
        return results

    def _dispatch_series(self, anchor: Occurrence, now: datetime) -> List[DispatchResult]:
        rule = self._store.read(record_key(RecordKind.RECURRENCE_RULE, anchor.recurrenceRuleRef))
        if not isinstance(rule, RecurrenceRule):
            log_warning(anchor.ownerId, "publish:series_rule_missing", occurrenceId=anchor.id)
            rule = None
        results: List[DispatchResult] = []
        for offset, instant in iter_instances(anchor.scheduledAt, anchor.timezone, rule):
            if instant > now or len(results) >= self._max_instances:
                break
            instance_id = f"{anchor.id}:{offset}"
            if self._store.read(record_key(RecordKind.OCCURRENCE, instance_id)) is not None:
                continue
            instance = anchor.model_copy(
                update={
                    "id": instance_id,
                    "scheduledAt": instant,
                    "recurrenceRuleRef": None,
                    "seriesRef": anchor.id,
                    "instanceOffset": offset,
                    "createdAt": self._clock(),
                }
            )
            results.append(self._send(instance))
        return results
