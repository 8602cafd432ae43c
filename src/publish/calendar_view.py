"""Projection of stored occurrences onto calendar days.

``entries_in_window`` is a pure read: the same stored state and window give
the same entries, with ids derived only from occurrence id and instance
offset. ``sync_window`` persists that projection.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from .recurrence import iter_instances
from src.shared.logging_utils import info as log_info
from src.shared.sync_store import SyncStore
from src.specs.common.datetime_utils import local_date
from src.specs.common.enums import OccurrenceStatus, RecordKind
from src.specs.common.errors import InvalidRequest
from src.specs.models.domain import CalendarEntry, Occurrence, RecurrenceRule
from src.specs.models.persistence import record_key


def entry_id(occurrence_id: str, offset: int) -> str:
    return f"{occurrence_id}:{offset}"


class CalendarMaterializer:
    def __init__(self, store: SyncStore, *, max_window_days: int = 366) -> None:
        self._store = store
        self._max_window_days = max_window_days

    def _check_window(self, start: date, end: date) -> None:
        if start >= end:
            raise InvalidRequest("Calendar window end must be after start", {"start": str(start), "end": str(end)})
        if (end - start).days > self._max_window_days:
            raise InvalidRequest(
                f"Calendar window may span at most {self._max_window_days} days",
                {"start": str(start), "end": str(end)},
            )

    def _rule_for(self, occurrence: Occurrence) -> Optional[RecurrenceRule]:
        if not occurrence.recurrenceRuleRef:
            return None
        rule = self._store.read(record_key(RecordKind.RECURRENCE_RULE, occurrence.recurrenceRuleRef))
        return rule if isinstance(rule, RecurrenceRule) else None

    def entries_in_window(self, start: date, end: date, owner_id: Optional[str] = None) -> List[CalendarEntry]:
        """Entries whose local date falls in ``[start, end)``."""
        self._check_window(start, end)
        occurrences = self._store.scan(RecordKind.OCCURRENCE, owner_id)

        # Concrete instances already dispatched from a series, by (series, offset)
        instances: Dict[Tuple[str, int], Occurrence] = {
            (o.seriesRef, o.instanceOffset): o for o in occurrences if o.seriesRef
        }

        entries: List[CalendarEntry] = []
        for occurrence in occurrences:
            if occurrence.seriesRef:
                entries.extend(self._single(occurrence, start, end, entry_id(occurrence.seriesRef, occurrence.instanceOffset)))
                continue
            rule = self._rule_for(occurrence)
            if rule is None:
                entries.extend(self._single(occurrence, start, end, entry_id(occurrence.id, 0)))
                continue
            for offset, instant in iter_instances(occurrence.scheduledAt, occurrence.timezone, rule):
                day = local_date(instant, occurrence.timezone)
                if day >= end:
                    break
                if day < start or (occurrence.id, offset) in instances:
                    continue
                entries.append(
                    CalendarEntry(
                        id=entry_id(occurrence.id, offset),
                        ownerId=occurrence.ownerId,
                        date=day,
                        scheduledAt=instant,
                        channelIds=[occurrence.channelId],
                        body=occurrence.body,
                        status=OccurrenceStatus.SCHEDULED,
                        occurrenceId=occurrence.id,
                        instanceOffset=offset,
                    )
                )
        entries.sort(key=lambda e: (e.scheduledAt, e.id))
        return entries

    @staticmethod
    def _single(occurrence: Occurrence, start: date, end: date, eid: str) -> List[CalendarEntry]:
        day = local_date(occurrence.scheduledAt, occurrence.timezone)
        if not start <= day < end:
            return []
        return [
            CalendarEntry(
                id=eid,
                ownerId=occurrence.ownerId,
                date=day,
                scheduledAt=occurrence.scheduledAt,
                channelIds=[occurrence.channelId],
                body=occurrence.body,
                status=occurrence.status,
                occurrenceId=occurrence.seriesRef or occurrence.id,
                instanceOffset=occurrence.instanceOffset,
            )
        ]

    def sync_window(self, start: date, end: date, owner_id: Optional[str] = None) -> int:
        """Upsert the window's entries; unchanged entries are not rewritten."""
        written = 0
        for entry in self.entries_in_window(start, end, owner_id):
            current = self._store.read(record_key(RecordKind.CALENDAR_ENTRY, entry.id))
            if current == entry:
                continue
            self._store.write(entry)
            written += 1
        log_info(owner_id, "calendar:window_synced", start=str(start), end=str(end), written=written)
        return written


def month_window(day: date) -> Tuple[date, date]:
    first = day.replace(day=1)
    following = (first + timedelta(days=32)).replace(day=1)
    return first, following
