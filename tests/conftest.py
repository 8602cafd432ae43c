import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from src.agents.channels import ChannelAdapter
from src.agents.copywriter_agent import ContentGenerator
from src.agents.generation_service import GenerationService
from src.agents.orchestrator import GenerationOrchestrator
from src.publish.calendar_view import CalendarMaterializer
from src.publish.dispatcher import PublishDispatcher
from src.publish.relay_client import Relay
from src.shared.blob_store import AssetStore
from src.shared.content_library import ContentLibrary
from src.shared.cosmos_client import RemoteStore
from src.shared.credit_ledger import CreditLedger
from src.shared.local_store import LocalStore
from src.shared.settings import Settings
from src.shared.sync_store import SyncStore
from src.shared.wiring import Services
from src.specs.common.errors import (
    RelayRejected,
    RelayUnavailable,
    RemoteStoreError,
    TransientStoreConflict,
)
from src.specs.models.domain import AssetRef, GenerationRequest, RelayPayload


NOW = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeRemoteStore(RemoteStore):
    """In-memory remote; ``fail_next`` queues exceptions for upcoming calls."""

    def __init__(self) -> None:
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.fail_next: List[Exception] = []
        self.calls: List[str] = []
        self.read_error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None

    def _maybe_fail(self, op: str) -> None:
        self.calls.append(op)
        if self.fail_next:
            raise self.fail_next.pop(0)

    def upsert(self, key: str, document: Dict[str, Any]) -> None:
        self._maybe_fail("upsert")
        self.docs[key] = dict(document)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        if self.read_error is not None:
            raise self.read_error
        doc = self.docs.get(key)
        return dict(doc) if doc is not None else None

    def delete(self, key: str) -> None:
        self._maybe_fail("delete")
        self.docs.pop(key, None)

    def list_owner(self, owner_id: str) -> List[Dict[str, Any]]:
        if self.list_error is not None:
            raise self.list_error
        return [dict(d) for d in self.docs.values() if d.get("ownerId") == owner_id]


class FakeGenerationService(GenerationService):
    """Per-channel canned text; ``"timeout"`` blocks, an exception is raised."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None, default: str = "Fresh post #news") -> None:
        self.responses = responses or {}
        self.default = default
        self.requests: List[GenerationRequest] = []
        self.release = threading.Event()
        self._lock = threading.Lock()

    def generate(self, request: GenerationRequest) -> str:
        with self._lock:
            self.requests.append(request)
        outcome = self.responses.get(request.channelId, self.default)
        if outcome == "timeout":
            self.release.wait(2.0)
            return "too late #late"
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeRelay(Relay):
    def __init__(self, supported=("instagram", "facebook", "linkedin", "twitter"), fail: Optional[Dict[str, Exception]] = None):
        self.supported = set(supported)
        self.fail = fail or {}
        self.sent: List[RelayPayload] = []
        self._lock = threading.Lock()

    def supports(self, channel_id: str) -> bool:
        return channel_id in self.supported

    def send(self, payload: RelayPayload) -> None:
        if payload.channelId in self.fail:
            raise self.fail[payload.channelId]
        with self._lock:
            self.sent.append(payload)


class FakeAssetStore(AssetStore):
    def __init__(self, fail_delete: bool = False) -> None:
        self.assets: Dict[str, bytes] = {}
        self.content_types: Dict[str, Optional[str]] = {}
        self.deleted: List[str] = []
        self.fail_delete = fail_delete

    def upload(self, data: bytes, *, content_type=None, owner_id=None) -> AssetRef:
        asset_id = f"asset-{len(self.assets) + 1}"
        if owner_id:
            asset_id = f"{owner_id}/{asset_id}"
        self.content_types[asset_id] = content_type
        self.assets[asset_id] = data
        return AssetRef(id=asset_id, url=f"https://assets.example/{asset_id}")

    def delete(self, asset_id: str) -> None:
        if self.fail_delete:
            raise RemoteStoreError("blob service down")
        self.deleted.append(asset_id)
        self.assets.pop(asset_id, None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
def store(remote, clock) -> SyncStore:
    return SyncStore(LocalStore(), remote, retry_delay=0, clock=clock)


@pytest.fixture
def ledger(store, clock) -> CreditLedger:
    return CreditLedger(store, clock=clock)


@pytest.fixture
def channels() -> ChannelAdapter:
    return ChannelAdapter()


@pytest.fixture
def generation_service() -> FakeGenerationService:
    service = FakeGenerationService()
    yield service
    service.release.set()


@pytest.fixture
def generator(generation_service, channels, clock) -> ContentGenerator:
    return ContentGenerator(generation_service, channels, clock=clock)


@pytest.fixture
def relay() -> FakeRelay:
    return FakeRelay()


@pytest.fixture
def assets() -> FakeAssetStore:
    return FakeAssetStore()


@pytest.fixture
def library(store, assets, clock) -> ContentLibrary:
    return ContentLibrary(store, assets, clock=clock)


@pytest.fixture
def dispatcher(store, relay, channels, clock) -> PublishDispatcher:
    return PublishDispatcher(store, relay, channels, clock=clock)


@pytest.fixture
def calendar(store) -> CalendarMaterializer:
    return CalendarMaterializer(store, max_window_days=366)


@pytest.fixture
def services(store, ledger, library, generator, dispatcher, calendar, assets, tmp_path) -> Services:
    settings = Settings(state_file=tmp_path / "records.json", credit_cost_generation=0, credit_opening_balance=0)
    return Services(
        settings=settings,
        store=store,
        ledger=ledger,
        library=library,
        orchestrator=GenerationOrchestrator(generator, store, timeout=1.0),
        dispatcher=dispatcher,
        calendar=calendar,
        assets=assets,
    )


def transient(message: str = "prepared statement already exists") -> TransientStoreConflict:
    return TransientStoreConflict(message)
