"""Builds the service graph once per worker from ``Settings``."""
from functools import lru_cache
from typing import NamedTuple, Optional

from src.agents.channels import ChannelAdapter
from src.agents.copywriter_agent import ContentGenerator
from src.agents.generation_service import GeminiGenerationService, GenerationService, PlaceholderGenerationService
from src.agents.orchestrator import GenerationOrchestrator
from src.publish.calendar_view import CalendarMaterializer
from src.publish.dispatcher import PublishDispatcher
from src.publish.relay_client import RelayClient
from src.shared.blob_store import AssetStore, BlobAssetStore
from src.shared.content_library import ContentLibrary
from src.shared.cosmos_client import build_remote_store
from src.shared.credit_ledger import CreditLedger
from src.shared.local_store import LocalStore
from src.shared.logging_utils import info as log_info
from src.shared.settings import Settings, get_settings
from src.shared.sync_store import SyncStore


class Services(NamedTuple):
    settings: Settings
    store: SyncStore
    ledger: CreditLedger
    library: ContentLibrary
    orchestrator: GenerationOrchestrator
    dispatcher: PublishDispatcher
    calendar: CalendarMaterializer
    assets: Optional[AssetStore] = None


def build_services(settings: Settings) -> Services:
    remote = build_remote_store(
        settings.cosmos_connection_string,
        settings.cosmos_database,
        settings.cosmos_records_container,
    )
    store = SyncStore(LocalStore(settings.state_file), remote, retry_delay=settings.sync_retry_delay)
    ledger = CreditLedger(store)
    channels = ChannelAdapter()

    service: GenerationService
    if settings.gemini_api_key:
        service = GeminiGenerationService(
            settings.gemini_api_key, settings.generation_model, settings.generation_timeout
        )
    else:
        service = PlaceholderGenerationService()

    assets: Optional[AssetStore] = None
    if settings.blob_connection_string:
        assets = BlobAssetStore.from_connection_string(settings.blob_connection_string, settings.asset_container)

    relay = RelayClient(settings.relay_webhook_url, settings.relay_timeout, settings.relay_channels)
    log_info(
        None,
        "wiring:services_built",
        remote=remote is not None,
        generator=type(service).__name__,
        relayDryRun=relay.dry_run,
        assets=assets is not None,
    )
    return Services(
        settings=settings,
        store=store,
        ledger=ledger,
        library=ContentLibrary(store, assets, history_retention_days=settings.history_retention_days),
        orchestrator=GenerationOrchestrator(
            ContentGenerator(service, channels),
            store,
            ledger,
            credit_cost=settings.credit_cost_generation,
            timeout=settings.generation_timeout,
        ),
        dispatcher=PublishDispatcher(store, relay, channels, ledger, schedule_cost=settings.credit_cost_schedule),
        calendar=CalendarMaterializer(store, max_window_days=settings.calendar_max_window_days),
        assets=assets,
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(get_settings())
