from __future__ import annotations

from typing import Dict, Type

from pydantic import BaseModel

from .http import (
    GenerateRequest,
    GenerateResponse,
    PublishRequest,
    CreditRequest,
    CreditBalanceResponse,
    ErrorResponse,
    UploadAssetsRequest,
    UploadAssetsResponse,
    DeleteAssetsRequest,
)
from .domain import (
    Brief,
    Variant,
    Occurrence,
    RecurrenceRule,
    CalendarEntry,
    CreditTransaction,
    RelayPayload,
    BatchResult,
)
from .persistence import SyncRecord


# Registry mapping output schema filenames to models for generation
SCHEMA_MODELS: Dict[str, Type[BaseModel]] = {
    "generate.request.schema.json": GenerateRequest,
    "generate.response.schema.json": GenerateResponse,
    "publish.request.schema.json": PublishRequest,
    "credit.request.schema.json": CreditRequest,
    "credit.balance.schema.json": CreditBalanceResponse,
    "error.response.schema.json": ErrorResponse,
    "assets.upload.request.schema.json": UploadAssetsRequest,
    "assets.upload.response.schema.json": UploadAssetsResponse,
    "assets.delete.request.schema.json": DeleteAssetsRequest,
    "brief.document.schema.json": Brief,
    "variant.document.schema.json": Variant,
    "occurrence.document.schema.json": Occurrence,
    "recurrence.rule.schema.json": RecurrenceRule,
    "calendar.entry.schema.json": CalendarEntry,
    "credit.transaction.schema.json": CreditTransaction,
    "relay.payload.schema.json": RelayPayload,
    "batch.result.schema.json": BatchResult,
    "sync.record.schema.json": SyncRecord,
}

__all__ = [
    "GenerateRequest",
    "GenerateResponse",
    "PublishRequest",
    "CreditRequest",
    "CreditBalanceResponse",
    "ErrorResponse",
    "UploadAssetsRequest",
    "UploadAssetsResponse",
    "DeleteAssetsRequest",
    "Brief",
    "Variant",
    "Occurrence",
    "RecurrenceRule",
    "CalendarEntry",
    "CreditTransaction",
    "RelayPayload",
    "BatchResult",
    "SyncRecord",
    "SCHEMA_MODELS",
]
