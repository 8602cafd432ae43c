import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from src.specs.models.persistence import SyncRecord
from src.shared.logging_utils import warning as log_warning

# Temp-based directory by default so a Functions host does not restart on
# local state writes. Override with RUNTIME_STATE_DIR.
_DEFAULT_STATE_BASE = Path(tempfile.gettempdir()) / "crosspost-runtime"


def default_state_file() -> Path:
    return Path(os.getenv("RUNTIME_STATE_DIR", str(_DEFAULT_STATE_BASE))) / "records.json"


class LocalStore:
    """Always-available local record cache.

    Keeps every SyncRecord in memory and, when ``path`` is given, mirrors the
    whole map to a JSON file after each change (write to temp, then replace).
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path
        self._lock = threading.RLock()
        self._records: Dict[str, SyncRecord] = {}
        if path and path.exists():
            self._load()

    def _load(self) -> None:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log_warning(None, "local_store:load_failed", path=str(self._path), error=str(exc))
            return
        for key, doc in (raw.get("records") or {}).items():
            try:
                self._records[key] = SyncRecord.model_validate(doc)
            except ValidationError as exc:
                log_warning(None, "local_store:skip_invalid", key=key, error=str(exc))

    def _save(self) -> None:
        if not self._path:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {"records": {k: r.model_dump(mode="json") for k, r in self._records.items()}}
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        os.replace(str(tmp), str(self._path))

    def get(self, key: str) -> Optional[SyncRecord]:
        with self._lock:
            return self._records.get(key)

    def put(self, record: SyncRecord) -> None:
        with self._lock:
            self._records[record.key] = record
            self._save()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._records.pop(key, None) is not None:
                self._save()

    def values(self) -> List[SyncRecord]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
