"""Local-first record store mirrored to a remote backend.

Every write commits to the local store first and reports success from that
commit alone. The remote mirror is attempted right after; the recognized
transient conflict class gets exactly one retry after a short fixed delay,
anything else (or a second conflict) leaves the record flagged
``remoteSynced=False`` for ``reconcile``.
"""
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from src.shared.cosmos_client import RemoteStore
from src.shared.local_store import LocalStore
from src.shared.logging_utils import info as log_info, warning as log_warning
from src.shared.retry_utils import retry_with_fixed_delay
from src.specs.common.enums import RecordKind
from src.specs.common.errors import RemoteStoreError, TransientStoreConflict
from src.specs.models.domain import ReconcileReport
from src.specs.models.persistence import StoredRecord, SyncRecord, key_for


class SyncStore:
    """Dual-write cache; safe for concurrent use from threads."""

    def __init__(
        self,
        local: Optional[LocalStore] = None,
        remote: Optional[RemoteStore] = None,
        *,
        retry_delay: float = 0.25,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._local = local if local is not None else LocalStore()
        self._remote = remote
        self._retry_delay = retry_delay
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        # Serializes local commits so per-key versions follow caller order
        self._lock = threading.RLock()
        # One lock per key keeps remote pushes for that key in version order
        self._push_locks: Dict[str, threading.Lock] = {}

    # ---- writes ----

    def write(self, record: StoredRecord) -> bool:
        key = key_for(record)
        with self._lock:
            current = self._local.get(key)
            envelope = SyncRecord(
                key=key,
                kind=record.kind,
                ownerId=record.ownerId,
                localVersion=(current.localVersion if current else 0) + 1,
                remoteSynced=False,
                updatedAt=self._clock(),
                data=record,
            )
            self._local.put(envelope)
        if self._remote is not None:
            self._push(key)
        return True

    def delete(self, key: str) -> bool:
        """Delete locally now; the remote delete follows like a write.

        Returns whether a live record existed locally.
        """
        with self._lock:
            current = self._local.get(key)
            existed = current is not None and not current.deleted
            if self._remote is None:
                self._local.remove(key)
                return existed
            tombstone = SyncRecord(
                key=key,
                kind=current.kind if current else RecordKind(key.split(":", 1)[0]),
                ownerId=current.ownerId if current else "",
                localVersion=(current.localVersion if current else 0) + 1,
                remoteSynced=False,
                deleted=True,
                updatedAt=self._clock(),
                data=None,
            )
            self._local.put(tombstone)
        self._push(key)
        return existed

    # ---- reads ----

    def read(self, key: str, *, strict: bool = False) -> Optional[StoredRecord]:
        envelope = self.read_envelope(key, strict=strict)
        return envelope.data if envelope else None

    def read_envelope(self, key: str, *, strict: bool = False) -> Optional[SyncRecord]:
        """Serve from local storage; fall back to remote on a local miss.

        A remote hit populates local storage. Remote failures read as absent
        unless ``strict``, in which case the ``RemoteStoreError`` propagates so
        callers can tell "absent" from "unknown".
        """
        envelope = self._local.get(key)
        if envelope is not None:
            return None if envelope.deleted else envelope
        if self._remote is None:
            return None
        try:
            document = self._remote.get(key)
        except RemoteStoreError as exc:
            log_warning(None, "sync:remote_read_failed", key=key, code=exc.code, error=str(exc))
            if strict:
                raise
            return None
        if document is None:
            return None
        fetched = self._from_document(key, document)
        if fetched is None:
            return None
        with self._lock:
            current = self._local.get(key)
            if current is not None:
                # A local write landed while we were reading remote; it wins.
                return None if current.deleted else current
            self._local.put(fetched)
        log_info(fetched.ownerId, "sync:hydrated_from_remote", key=key)
        return fetched

    def scan(
        self,
        kind: Union[RecordKind, str],
        owner_id: Optional[str] = None,
        where: Optional[Callable[[StoredRecord], bool]] = None,
    ) -> List[StoredRecord]:
        """List live local records of ``kind``, optionally for one owner."""
        kind_value = kind.value if isinstance(kind, RecordKind) else kind
        out: List[StoredRecord] = []
        for envelope in self._local.values():
            if envelope.deleted or envelope.data is None:
                continue
            if envelope.kind.value != kind_value:
                continue
            if owner_id is not None and envelope.ownerId != owner_id:
                continue
            if where is not None and not where(envelope.data):
                continue
            out.append(envelope.data)
        return out

    def hydrate(self, owner_id: str, *, strict: bool = False) -> int:
        """Pull an owner's remote records that are missing locally (new client).

        With ``strict`` a remote failure is raised instead of logged.
        """
        if self._remote is None:
            return 0
        try:
            documents = self._remote.list_owner(owner_id)
        except RemoteStoreError as exc:
            log_warning(owner_id, "sync:hydrate_failed", code=exc.code, error=str(exc))
            if strict:
                raise
            return 0
        added = 0
        for document in documents:
            key = document.get("key")
            if not key:
                continue
            fetched = self._from_document(key, document)
            if fetched is None:
                continue
            with self._lock:
                if self._local.get(key) is None:
                    self._local.put(fetched)
                    added += 1
        log_info(owner_id, "sync:hydrated_owner", added=added)
        return added

    # ---- reconciliation ----

    def pending(self) -> List[SyncRecord]:
        return [r for r in self._local.values() if not r.remoteSynced]

    def reconcile(self) -> ReconcileReport:
        """Best-effort flush of every unsynced local change to remote."""
        report = ReconcileReport()
        if self._remote is None:
            report.pending = len(self.pending())
            return report
        for envelope in self.pending():
            if not self._push(envelope.key):
                continue
            if envelope.deleted:
                report.deleted += 1
            else:
                report.synced += 1
        report.pending = len(self.pending())
        log_info(None, "sync:reconciled", synced=report.synced, deleted=report.deleted, pending=report.pending)
        return report

    # ---- internals ----

    def _with_one_retry(self, operation: Callable[[], None], key: str, action: str) -> bool:
        def _on_retry(details: dict) -> None:
            log_warning(None, "sync:remote_conflict_retry", key=key, action=action, waitSeconds=details.get("wait"))

        try:
            retry_with_fixed_delay(
                operation,
                attempts=2,
                delay=self._retry_delay,
                exceptions=(TransientStoreConflict,),
                on_retry=_on_retry,
            )
        except TransientStoreConflict as exc:
            log_warning(None, "sync:remote_conflict_gave_up", key=key, action=action, error=str(exc))
            return False
        except RemoteStoreError as exc:
            log_warning(None, "sync:remote_failed", key=key, action=action, code=exc.code, error=str(exc))
            return False
        return True

    def _push_lock(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._push_locks.get(key)
            if lock is None:
                lock = self._push_locks[key] = threading.Lock()
            return lock

    def _push(self, key: str) -> bool:
        """Mirror the latest local state of ``key`` (upsert or delete) to remote.

        Pushes for one key are serialized and always send the newest local
        version, so an older version can never land on remote after a newer one.
        """
        with self._push_lock(key):
            pushed = self._local.get(key)
            if pushed is None or pushed.remoteSynced:
                return True
            if pushed.deleted:
                ok = self._with_one_retry(lambda: self._remote.delete(key), key, "delete")
            else:
                document = pushed.model_dump(mode="json", exclude={"remoteSynced"})
                ok = self._with_one_retry(lambda: self._remote.upsert(key, document), key, "upsert")
            if not ok:
                return False
            with self._lock:
                current = self._local.get(key)
                # A write committed during the push stays pending for its own push.
                if current is None or current.localVersion != pushed.localVersion:
                    return True
                if current.deleted:
                    self._local.remove(key)
                else:
                    self._local.put(current.model_copy(update={"remoteSynced": True}))
            return True

    def _from_document(self, key: str, document: dict) -> Optional[SyncRecord]:
        try:
            return SyncRecord.model_validate({**document, "key": key, "remoteSynced": True, "deleted": False})
        except ValidationError as exc:
            log_warning(None, "sync:remote_document_invalid", key=key, error=str(exc))
            return None
