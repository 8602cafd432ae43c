"""Owner-partitioned credit balances with an append-only transaction log.

All operations for one owner run under that owner's lock, so a check and
the deduction that follows it are one indivisible step. Different owners
never contend. The invariant ``balance == sum(delta)`` holds for every
observation made through this class. The first operation for an owner
pulls that owner's remote records in, and an account that cannot be read
from remote is never replaced by a fresh one.
"""
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from src.shared.logging_utils import info as log_info, warning as log_warning
from src.shared.sync_store import SyncStore
from src.specs.common.enums import RecordKind
from src.specs.common.errors import InvalidRequest, RemoteStoreError
from src.specs.models.domain import CreditAccount, CreditTransaction, DeductResult
from src.specs.models.persistence import record_key


class CreditLedger:
    def __init__(self, store: SyncStore, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._hydrated: Set[str] = set()

    def _owner_lock(self, owner_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(owner_id)
            if lock is None:
                lock = self._locks[owner_id] = threading.Lock()
            return lock

    def _hydrate(self, owner_id: str) -> None:
        if owner_id in self._hydrated:
            return
        try:
            self._store.hydrate(owner_id, strict=True)
        except RemoteStoreError as exc:
            # Retried on the next operation; _load still refuses to guess.
            log_warning(owner_id, "credits:hydrate_failed", code=exc.code, error=str(exc))
            return
        self._hydrated.add(owner_id)

    def _load(self, owner_id: str) -> CreditAccount:
        """Current account, or a zero one only when remote confirms none exists."""
        self._hydrate(owner_id)
        account = self._store.read(record_key(RecordKind.CREDIT_ACCOUNT, owner_id), strict=True)
        if isinstance(account, CreditAccount):
            return account
        return CreditAccount(id=owner_id, ownerId=owner_id, balance=0, updatedAt=self._clock())

    def _apply(self, account: CreditAccount, delta: int, reason: str) -> CreditAccount:
        now = self._clock()
        sequence = account.lastSequence + 1
        self._store.write(
            CreditTransaction(
                id=uuid.uuid4().hex,
                ownerId=account.ownerId,
                delta=delta,
                reason=reason,
                timestamp=now,
                sequence=sequence,
            )
        )
        updated = account.model_copy(
            update={"balance": account.balance + delta, "lastSequence": sequence, "updatedAt": now}
        )
        self._store.write(updated)
        return updated

    @staticmethod
    def _check_amount(owner_id: str, amount: int) -> None:
        if not owner_id:
            raise InvalidRequest("ownerId is required")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidRequest("amount must be a positive integer", details={"amount": amount})

    def balance(self, owner_id: str) -> int:
        with self._owner_lock(owner_id):
            return self._load(owner_id).balance

    def deduct(self, owner_id: str, amount: int, reason: str = "deduct") -> DeductResult:
        """Take ``amount`` credits; rejected without any state change if short."""
        self._check_amount(owner_id, amount)
        with self._owner_lock(owner_id):
            account = self._load(owner_id)
            if amount > account.balance:
                log_info(owner_id, "credits:deduct_rejected", amount=amount, balance=account.balance, reason=reason)
                return DeductResult(account.balance, False)
            updated = self._apply(account, -amount, reason)
        log_info(owner_id, "credits:deducted", amount=amount, balance=updated.balance, reason=reason)
        return DeductResult(updated.balance, True)

    def credit(self, owner_id: str, amount: int, reason: str = "credit") -> int:
        self._check_amount(owner_id, amount)
        with self._owner_lock(owner_id):
            updated = self._apply(self._load(owner_id), amount, reason)
        log_info(owner_id, "credits:credited", amount=amount, balance=updated.balance, reason=reason)
        return updated.balance

    def open_account(self, owner_id: str, opening_balance: int = 0) -> int:
        """Create the owner's account once; the opening grant is a logged credit."""
        with self._owner_lock(owner_id):
            self._hydrate(owner_id)
            existing = self._store.read(record_key(RecordKind.CREDIT_ACCOUNT, owner_id), strict=True)
            if isinstance(existing, CreditAccount):
                return existing.balance
            account = self._load(owner_id)
            if opening_balance > 0:
                account = self._apply(account, opening_balance, "opening_balance")
            else:
                self._store.write(account)
            return account.balance

    def transactions(self, owner_id: str) -> List[CreditTransaction]:
        with self._owner_lock(owner_id):
            self._hydrate(owner_id)
            return self._transactions(owner_id)

    def _transactions(self, owner_id: str) -> List[CreditTransaction]:
        items = self._store.scan(RecordKind.CREDIT_TRANSACTION, owner_id)
        return sorted(items, key=lambda t: t.sequence)

    def audit(self, owner_id: str) -> bool:
        """True when the stored balance equals the sum of logged deltas."""
        with self._owner_lock(owner_id):
            balance = self._load(owner_id).balance
            return balance == sum(t.delta for t in self._transactions(owner_id))
