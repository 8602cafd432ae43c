"""Briefs and their lifecycle: creation, status, cascade delete and export."""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from src.publish.calendar_view import entry_id
from src.shared.blob_store import AssetStore
from src.shared.logging_utils import info as log_info, warning as log_warning
from src.shared.sync_store import SyncStore
from src.specs.common.enums import BriefStatus, OccurrenceStatus, RecordKind
from src.specs.common.errors import InvalidRequest, ResourceNotFoundError
from src.specs.models.domain import AssetRef, Brief, Variant
from src.specs.models.persistence import key_for, record_key


class ContentLibrary:
    def __init__(
        self,
        store: SyncStore,
        assets: Optional[AssetStore] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        history_retention_days: int = 30,
    ) -> None:
        self._store = store
        self._assets = assets
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._retention = timedelta(days=history_retention_days)

    def create_brief(self, owner_id: str, source_text: str, media_refs: Optional[Sequence[AssetRef]] = None) -> Brief:
        if not owner_id:
            raise InvalidRequest("ownerId is required")
        if not (source_text or "").strip():
            raise InvalidRequest("Brief source text must not be empty")
        brief = Brief(
            id=uuid.uuid4().hex,
            ownerId=owner_id,
            sourceText=source_text,
            createdAt=self._clock(),
            mediaRefs=list(media_refs or []),
        )
        self._store.write(brief)
        log_info(owner_id, "library:brief_created", briefId=brief.id, mediaCount=len(brief.mediaRefs))
        return brief

    def get_brief(self, brief_id: str) -> Brief:
        brief = self._store.read(record_key(RecordKind.BRIEF, brief_id))
        if not isinstance(brief, Brief):
            raise ResourceNotFoundError("Brief", brief_id)
        return brief

    def list_briefs(self, owner_id: str) -> List[Brief]:
        return sorted(self._store.scan(RecordKind.BRIEF, owner_id), key=lambda b: b.createdAt, reverse=True)

    def variants(self, brief_id: str) -> Dict[str, Variant]:
        found = self._store.scan(RecordKind.VARIANT, where=lambda v: v.briefId == brief_id)
        return {v.channelId: v for v in found}

    def mark_status(self, brief_id: str, status: BriefStatus) -> Brief:
        brief = self.get_brief(brief_id)
        if brief.status == status:
            return brief
        updated = brief.model_copy(update={"status": status})
        self._store.write(updated)
        log_info(brief.ownerId, "library:brief_status", briefId=brief_id, status=status.value)
        return updated

    def delete_brief(self, brief_id: str) -> Dict[str, int]:
        """Cascade to variants and pending occurrences; sent ones stay as history."""
        brief = self.get_brief(brief_id)
        summary = {"variants": 0, "occurrences": 0, "rules": 0, "calendarEntries": 0, "assets": 0}

        for variant in self._store.scan(RecordKind.VARIANT, where=lambda v: v.briefId == brief_id):
            self._store.delete(key_for(variant))
            summary["variants"] += 1

        pending = self._store.scan(
            RecordKind.OCCURRENCE,
            where=lambda o: o.briefId == brief_id and o.status == OccurrenceStatus.SCHEDULED,
        )
        removed_ids = set()
        for occurrence in pending:
            if occurrence.recurrenceRuleRef:
                if self._store.delete(record_key(RecordKind.RECURRENCE_RULE, occurrence.recurrenceRuleRef)):
                    summary["rules"] += 1
            self._store.delete(key_for(occurrence))
            removed_ids.add(occurrence.id)
            summary["occurrences"] += 1

        for entry in self._store.scan(
            RecordKind.CALENDAR_ENTRY,
            where=lambda e: e.occurrenceId in removed_ids and e.status == OccurrenceStatus.SCHEDULED,
        ):
            self._store.delete(key_for(entry))
            summary["calendarEntries"] += 1

        for ref in brief.mediaRefs:
            if self._delete_asset(brief.ownerId, ref):
                summary["assets"] += 1

        self._store.delete(key_for(brief))
        log_info(brief.ownerId, "library:brief_deleted", briefId=brief_id, **summary)
        return summary

    def _delete_asset(self, owner_id: str, ref: AssetRef) -> bool:
        if self._assets is None:
            return False
        try:
            self._assets.delete(ref.id)
        except Exception as exc:
            # Asset cleanup is best effort; the brief is gone either way.
            log_warning(owner_id, "library:asset_delete_failed", assetId=ref.id, error=str(exc))
            return False
        return True

    def export_snapshot(self, owner_id: str) -> Dict[str, Any]:
        def dump(kind: RecordKind) -> List[Dict[str, Any]]:
            return [r.model_dump(mode="json") for r in self._store.scan(kind, owner_id)]

        return {
            "ownerId": owner_id,
            "exportedAt": self._clock().isoformat(),
            "briefs": dump(RecordKind.BRIEF),
            "variants": dump(RecordKind.VARIANT),
            "occurrences": dump(RecordKind.OCCURRENCE),
            "recurrenceRules": dump(RecordKind.RECURRENCE_RULE),
            "calendarEntries": dump(RecordKind.CALENDAR_ENTRY),
            "creditTransactions": sorted(dump(RecordKind.CREDIT_TRANSACTION), key=lambda t: t["sequence"]),
        }

    def prune_history(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Delete terminal occurrences older than the retention window, with their calendar entries."""
        cutoff = (now or self._clock()) - self._retention
        stale = self._store.scan(
            RecordKind.OCCURRENCE,
            where=lambda o: o.status != OccurrenceStatus.SCHEDULED and (o.dispatchedAt or o.scheduledAt) < cutoff,
        )
        pruned_entries = {entry_id(o.seriesRef or o.id, o.instanceOffset) for o in stale}
        for occurrence in stale:
            self._store.delete(key_for(occurrence))

        entries = self._store.scan(
            RecordKind.CALENDAR_ENTRY,
            where=lambda e: e.id in pruned_entries
            or (e.status != OccurrenceStatus.SCHEDULED and e.scheduledAt < cutoff),
        )
        for entry in entries:
            self._store.delete(key_for(entry))

        summary = {"occurrences": len(stale), "calendarEntries": len(entries)}
        if stale or entries:
            log_info(None, "library:history_pruned", cutoff=cutoff.isoformat(), **summary)
        return summary
