from datetime import date, datetime, timedelta, timezone

import pytest

from src.publish.recurrence import iter_instances, nth_instance
from src.specs.common.enums import Frequency, GenerationStatus, OccurrenceStatus, RecordKind
from src.specs.common.errors import InvalidRequest
from src.specs.models.domain import RecurrenceRule, Variant

from conftest import NOW


def variant(channel, body="Launch day!"):
    return Variant(
        id=Variant.make_id("b1", channel),
        ownerId="owner-1",
        briefId="b1",
        channelId=channel,
        body=body,
        tags=["#launch"],
        charCount=len(body),
        characterLimit=2200,
        generationStatus=GenerationStatus.OK,
        generatedAt=NOW,
    )


def schedule_weekly(dispatcher, channels=("instagram", "linkedin"), end_at=None):
    rule = RecurrenceRule(frequency=Frequency.WEEKLY, interval=1, endAt=end_at)
    return [dispatcher.schedule(variant(c), datetime(2024, 1, 1, 10, 0), rule) for c in channels]


def test_weekly_series_expands_per_channel_with_exclusive_end(dispatcher, calendar):
    schedule_weekly(dispatcher)

    entries = calendar.entries_in_window(date(2024, 1, 1), date(2024, 1, 22))

    assert len(entries) == 6
    by_channel = {}
    for entry in entries:
        by_channel.setdefault(entry.channelIds[0], []).append(entry.date)
    expected = [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)]
    assert by_channel == {"instagram": expected, "linkedin": expected}
    assert all(e.status == OccurrenceStatus.SCHEDULED for e in entries)
    assert all(e.body == "Launch day!" for e in entries)


def test_entries_are_idempotent(dispatcher, calendar):
    schedule_weekly(dispatcher)
    first = calendar.entries_in_window(date(2024, 1, 1), date(2024, 1, 22))
    second = calendar.entries_in_window(date(2024, 1, 1), date(2024, 1, 22))
    assert [e.model_dump_json() for e in first] == [e.model_dump_json() for e in second]


def test_entry_ids_derive_from_occurrence_and_offset(dispatcher, calendar):
    (occurrence,) = schedule_weekly(dispatcher, channels=("instagram",))
    entries = calendar.entries_in_window(date(2024, 1, 8), date(2024, 1, 22))
    assert [e.id for e in entries] == [f"{occurrence.id}:1", f"{occurrence.id}:2"]
    assert [e.instanceOffset for e in entries] == [1, 2]


def test_end_at_bounds_expansion(dispatcher, calendar):
    schedule_weekly(dispatcher, channels=("instagram",), end_at=datetime(2024, 1, 9, tzinfo=timezone.utc))
    entries = calendar.entries_in_window(date(2024, 1, 1), date(2024, 2, 1))
    assert [e.date for e in entries] == [date(2024, 1, 1), date(2024, 1, 8)]


def test_one_off_occurrence_yields_at_most_one_entry(dispatcher, calendar):
    dispatcher.schedule(variant("twitter"), datetime(2024, 1, 3, 12, 0))
    assert len(calendar.entries_in_window(date(2024, 1, 1), date(2024, 2, 1))) == 1
    assert calendar.entries_in_window(date(2024, 1, 4), date(2024, 2, 1)) == []


def test_entry_date_uses_occurrence_timezone(dispatcher, calendar):
    # 23:30 in Los Angeles on Jan 3 is already Jan 4 in UTC
    dispatcher.schedule(variant("twitter"), datetime(2024, 1, 3, 23, 30), timezone="America/Los_Angeles")
    (entry,) = calendar.entries_in_window(date(2024, 1, 1), date(2024, 2, 1))
    assert entry.date == date(2024, 1, 3)


def test_dispatched_instances_show_their_outcome(dispatcher, calendar):
    (occurrence,) = schedule_weekly(dispatcher, channels=("instagram",))
    dispatcher.dispatch_due(datetime(2024, 1, 2, tzinfo=timezone.utc))

    entries = calendar.entries_in_window(date(2024, 1, 1), date(2024, 1, 15))

    assert [(e.id, e.status) for e in entries] == [
        (f"{occurrence.id}:0", OccurrenceStatus.DISPATCHED),
        (f"{occurrence.id}:1", OccurrenceStatus.SCHEDULED),
    ]


def test_window_is_validated(calendar):
    with pytest.raises(InvalidRequest):
        calendar.entries_in_window(date(2024, 1, 2), date(2024, 1, 1))
    with pytest.raises(InvalidRequest):
        calendar.entries_in_window(date(2024, 1, 1), date(2025, 6, 1))


def test_sync_window_persists_only_changes(dispatcher, calendar, store):
    schedule_weekly(dispatcher)
    assert calendar.sync_window(date(2024, 1, 1), date(2024, 1, 22)) == 6
    assert len(store.scan(RecordKind.CALENDAR_ENTRY)) == 6
    assert calendar.sync_window(date(2024, 1, 1), date(2024, 1, 22)) == 0


def test_monthly_recurrence_clamps_to_month_end():
    anchor = datetime(2024, 1, 31, 9, 0, tzinfo=timezone.utc)
    rule = RecurrenceRule(frequency=Frequency.MONTHLY, interval=1)
    assert nth_instance(anchor, "UTC", rule, 1) == datetime(2024, 2, 29, 9, 0, tzinfo=timezone.utc)
    assert nth_instance(anchor, "UTC", rule, 2) == datetime(2024, 3, 31, 9, 0, tzinfo=timezone.utc)


def test_daily_recurrence_keeps_local_time_across_dst():
    # Berlin switches to summer time on 2024-03-31
    anchor = datetime(2024, 3, 30, 8, 0, tzinfo=timezone.utc)  # 09:00 local
    rule = RecurrenceRule(frequency=Frequency.DAILY, interval=1)
    assert nth_instance(anchor, "Europe/Berlin", rule, 1) == datetime(2024, 3, 31, 7, 0, tzinfo=timezone.utc)


def test_iter_instances_respects_interval():
    anchor = datetime(2024, 1, 1, tzinfo=timezone.utc)
    rule = RecurrenceRule(frequency=Frequency.DAILY, interval=3, endAt=anchor + timedelta(days=7))
    assert [i.day for _, i in iter_instances(anchor, "UTC", rule)] == [1, 4, 7]
