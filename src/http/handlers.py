"""Plain request handlers behind the HTTP blueprints.

Each handler takes the wired ``Services`` and the already-decoded request
data and returns ``(status_code, json_body)``. Expected failures come back
as an ``ErrorResponse`` body; nothing here touches the Functions host.
"""
from __future__ import annotations

import base64
import binascii
from datetime import date, datetime, time
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError

from src.publish.calendar_view import month_window
from src.shared.logging_utils import error as log_error, info as log_info
from src.shared.wiring import Services
from src.specs.common.datetime_utils import to_instant, utc_now
from src.specs.common.enums import BriefStatus
from src.specs.common.errors import (
    ConfigurationError,
    CrosspostError,
    InsufficientCredit,
    InvalidRequest,
    NoEligibleChannels,
    RemoteStoreError,
    ResourceNotFoundError,
)
from src.specs.models.domain import DispatchResult, RecurrenceRule
from src.specs.models.http import (
    CreditBalanceResponse,
    CreditRequest,
    DeleteAssetsRequest,
    ErrorResponse,
    GenerateRequest,
    GenerateResponse,
    PublishRequest,
    ScheduleInput,
    UploadAssetsRequest,
    UploadAssetsResponse,
)


Result = Tuple[int, Any]


def status_for(exc: CrosspostError) -> int:
    if isinstance(exc, (InvalidRequest, NoEligibleChannels)):
        return 400
    if isinstance(exc, InsufficientCredit):
        return 402
    if isinstance(exc, ResourceNotFoundError):
        return 404
    if isinstance(exc, RemoteStoreError):
        return 502
    return 500


def error_result(exc: Exception) -> Result:
    if isinstance(exc, ValidationError):
        body = ErrorResponse(
            message="Invalid request",
            errorCode="INVALID_REQUEST",
            details={"errors": exc.errors(include_url=False, include_input=False, include_context=False)},
        )
        return 400, body.model_dump(mode="json")
    if isinstance(exc, CrosspostError):
        body = ErrorResponse(message=str(exc), errorCode=exc.code, details=exc.details or None)
        return status_for(exc), body.model_dump(mode="json")
    log_error(None, "http:unhandled", error=repr(exc))
    return 500, ErrorResponse(message="Internal error", errorCode="INTERNAL_ERROR").model_dump(mode="json")


def _require_owner(params: Mapping[str, Any]) -> str:
    owner_id = (params.get("ownerId") or "").strip()
    if not owner_id:
        raise InvalidRequest("ownerId is required")
    return owner_id


def _parse_date(value: Optional[str], field: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidRequest(f"{field} must be YYYY-MM-DD", {field: value}) from exc


def _first_contact(services: Services, owner_id: str) -> None:
    """Open the owner's credit account with the configured grant if it has none."""
    services.ledger.open_account(owner_id, services.settings.credit_opening_balance)


# ---- content ----


async def handle_generate(services: Services, payload: Mapping[str, Any]) -> Result:
    try:
        parsed = GenerateRequest(**payload)
        # Validate before the brief exists so a bad request leaves nothing behind
        services.orchestrator.validate_request(parsed.sourceText, parsed.channels)
        _first_contact(services, parsed.ownerId)
        brief = services.library.create_brief(parsed.ownerId, parsed.sourceText, parsed.mediaRefs)
        variants = await services.orchestrator.generate(brief, parsed.channels, target_length=parsed.targetLength)
    except (ValidationError, CrosspostError) as exc:
        return error_result(exc)
    body = GenerateResponse(
        briefId=brief.id,
        variants=variants,
        remaining={c: v.remaining for c, v in variants.items()},
    )
    return 200, body.model_dump(mode="json")


def _recurrence(schedule: ScheduleInput) -> Optional[RecurrenceRule]:
    if schedule.recurrence is None:
        return None
    end_at = None
    if schedule.recurrence.endDate is not None:
        try:
            end_at = to_instant(schedule.recurrence.endDate, schedule.timezone, time(23, 59, 59))
        except ValueError as exc:
            raise InvalidRequest(str(exc), {"timezone": schedule.timezone}) from exc
    return RecurrenceRule(
        frequency=schedule.recurrence.frequency,
        interval=schedule.recurrence.interval,
        endAt=end_at,
    )


async def handle_publish(services: Services, payload: Mapping[str, Any]) -> Result:
    try:
        parsed = PublishRequest(**payload)
        if not parsed.channels:
            raise InvalidRequest("At least one channel is required")
        brief = services.library.get_brief(parsed.briefId)
        if brief.ownerId != parsed.ownerId:
            raise ResourceNotFoundError("Brief", parsed.briefId)
        _first_contact(services, parsed.ownerId)

        stored = services.library.variants(brief.id)
        requested = [c.strip().lower() for c in parsed.channels]
        selected = [stored[c] for c in requested if c in stored]
        missing = [c for c in requested if c not in stored]
        if not selected:
            raise InvalidRequest("No generated variants for the requested channels", {"channels": requested})

        media = [ref.url for ref in brief.mediaRefs]
        if parsed.schedule is None:
            batch = await services.dispatcher.publish_batch(selected, media_refs=media)
        else:
            schedule = parsed.schedule
            batch = await services.dispatcher.publish_batch(
                selected,
                when=datetime.combine(schedule.date, schedule.time),
                recurrence=_recurrence(schedule),
                timezone=schedule.timezone,
                media_refs=media,
            )
        for channel_id in missing:
            batch.results[channel_id] = DispatchResult(
                channelId=channel_id,
                ok=False,
                error={"code": "NO_VARIANT", "message": f"No generated variant for {channel_id}"},
            )
            batch.failed += 1
        if batch.succeeded:
            services.library.mark_status(
                brief.id, BriefStatus.SCHEDULED if parsed.schedule else BriefStatus.PUBLISHED
            )
    except (ValidationError, CrosspostError) as exc:
        return error_result(exc)
    return 200, batch.model_dump(mode="json")


def handle_delete_brief(services: Services, brief_id: str, params: Mapping[str, Any]) -> Result:
    try:
        owner_id = _require_owner(params)
        brief = services.library.get_brief(brief_id)
        if brief.ownerId != owner_id:
            raise ResourceNotFoundError("Brief", brief_id)
        summary = services.library.delete_brief(brief_id)
    except CrosspostError as exc:
        return error_result(exc)
    return 200, {"briefId": brief_id, "deleted": summary}


def handle_export(services: Services, params: Mapping[str, Any]) -> Result:
    try:
        owner_id = _require_owner(params)
    except CrosspostError as exc:
        return error_result(exc)
    return 200, services.library.export_snapshot(owner_id)


def handle_list_briefs(services: Services, params: Mapping[str, Any]) -> Result:
    try:
        owner_id = _require_owner(params)
    except CrosspostError as exc:
        return error_result(exc)
    briefs = services.library.list_briefs(owner_id)
    return 200, {"ownerId": owner_id, "briefs": [b.model_dump(mode="json") for b in briefs]}


# ---- assets ----


def _asset_store(services: Services):
    if services.assets is None:
        raise ConfigurationError("Asset uploads are not configured")
    return services.assets


def handle_upload_assets(services: Services, payload: Mapping[str, Any]) -> Result:
    """Store each base64 image and return references usable as ``mediaRefs``."""
    try:
        parsed = UploadAssetsRequest(**payload)
        assets = _asset_store(services)
        blobs = []
        for index, item in enumerate(parsed.files):
            try:
                blobs.append((base64.b64decode(item.data, validate=True), item.contentType))
            except (binascii.Error, ValueError) as exc:
                raise InvalidRequest("File data must be base64", {"index": index}) from exc
        refs = [assets.upload(data, content_type=ctype, owner_id=parsed.ownerId) for data, ctype in blobs]
    except (ValidationError, CrosspostError) as exc:
        return error_result(exc)
    log_info(parsed.ownerId, "assets:uploaded", count=len(refs))
    return 200, UploadAssetsResponse(assets=refs).model_dump(mode="json")


def handle_delete_assets(services: Services, payload: Mapping[str, Any]) -> Result:
    try:
        parsed = DeleteAssetsRequest(**payload)
        assets = _asset_store(services)
        foreign = [a for a in parsed.assetIds if not a.startswith(f"{parsed.ownerId}/")]
        if foreign:
            raise ResourceNotFoundError("Asset", foreign[0])
        for asset_id in parsed.assetIds:
            assets.delete(asset_id)
    except (ValidationError, CrosspostError) as exc:
        return error_result(exc)
    log_info(parsed.ownerId, "assets:deleted", count=len(parsed.assetIds))
    return 200, {"deleted": parsed.assetIds}


# ---- calendar & credits ----


def handle_calendar(services: Services, params: Mapping[str, Any]) -> Result:
    try:
        owner_id = _require_owner(params)
        start = _parse_date(params.get("start"), "start")
        end = _parse_date(params.get("end"), "end")
        if start is None or end is None:
            default_start, default_end = month_window(utc_now().date())
            start, end = start or default_start, end or default_end
        entries = services.calendar.entries_in_window(start, end, owner_id)
    except CrosspostError as exc:
        return error_result(exc)
    return 200, {
        "ownerId": owner_id,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "entries": [e.model_dump(mode="json") for e in entries],
    }


def handle_get_credits(services: Services, params: Mapping[str, Any]) -> Result:
    try:
        owner_id = _require_owner(params)
        _first_contact(services, owner_id)
        balance = services.ledger.balance(owner_id)
    except CrosspostError as exc:
        return error_result(exc)
    return 200, CreditBalanceResponse(ownerId=owner_id, balance=balance).model_dump(mode="json")


def handle_add_credits(services: Services, payload: Mapping[str, Any]) -> Result:
    try:
        parsed = CreditRequest(**payload)
        _first_contact(services, parsed.ownerId)
        balance = services.ledger.credit(parsed.ownerId, parsed.amount, parsed.reason)
    except (ValidationError, CrosspostError) as exc:
        return error_result(exc)
    log_info(parsed.ownerId, "credits:top_up", amount=parsed.amount)
    return 200, CreditBalanceResponse(ownerId=parsed.ownerId, balance=balance).model_dump(mode="json")


# ---- timers ----


def run_dispatch_due(services: Services, now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or utc_now()
    results = services.dispatcher.dispatch_due(now)
    start, end = month_window(now.date())
    synced = services.calendar.sync_window(start, end)
    return {
        "dispatched": sum(1 for r in results if r.ok),
        "failed": sum(1 for r in results if not r.ok),
        "calendarEntries": synced,
    }


def run_reconcile(services: Services, now: Optional[datetime] = None) -> Dict[str, int]:
    report = services.store.reconcile()
    pruned = services.library.prune_history(now or utc_now())
    return {
        **report.model_dump(),
        "pruned": pruned["occurrences"],
        "prunedCalendarEntries": pruned["calendarEntries"],
    }
