"""Tests for slot parsing and the per-clinic slot catalogue."""

import asyncio
import json
from datetime import date, datetime

import pytest

from ooh_booking.constants.workflows import RequestType, WorkflowType
from ooh_booking.core.exceptions import GatewayError, MalformedResponse
from ooh_booking.services.booking.slots import (
    SlotCatalog,
    available_dates,
    default_date,
    format_local_iso,
    parse_slot_time,
    process_raw_slots,
    slots_on,
)

ROWS = [
    {
        "AvailableStartTime": "2030-03-14T18:00:00",
        "AvailableEndTime": "2030-03-14T18:15:00",
        "TrCenterID": 7,
        "TrCentreName": "Galway OOH",
    },
    {
        "AvailableStartTime": "2030-03-15T09:30:00",
        "AvailableEndTime": "2030-03-15T09:45:00",
        "TrCenterID": 7,
    },
    {"AvailableStartTime": "2030-03-14T19:00:00", "AvailableEndTime": "2030-03-14T19:15:00"},
]


def test_process_raw_slots():
    slots = process_raw_slots(ROWS)

    assert [slot.display for slot in slots] == ["18:00 - 18:15", "09:30 - 09:45", "19:00 - 19:15"]
    assert slots[0].start_time == "2030-03-14T18:00:00"
    assert slots[0].centre_id == 7
    assert slots[0].centre_name == "Galway OOH"
    assert slots[1].date == date(2030, 3, 15)


def test_process_raw_slots_skips_bad_rows():
    rows = [
        {"AvailableStartTime": "2030-03-14T18:00:00"},
        {"AvailableStartTime": "soon", "AvailableEndTime": "later"},
        "not a row",
        ROWS[0],
    ]

    assert [slot.display for slot in process_raw_slots(rows)] == ["18:00 - 18:15"]


def test_zoned_slot_keeps_calendar_date_of_string():
    slot = process_raw_slots(
        [{"AvailableStartTime": "2030-03-14T23:45:00Z", "AvailableEndTime": "2030-03-14T23:59:00Z"}]
    )[0]

    assert slot.date_iso == "2030-03-14"


def test_dates_and_filtering():
    slots = process_raw_slots(ROWS)

    assert available_dates(slots) == ["2030-03-14", "2030-03-15"]
    assert [slot.display for slot in slots_on(slots, date(2030, 3, 14))] == [
        "18:00 - 18:15",
        "19:00 - 19:15",
    ]


def test_default_date():
    dates = ["2030-03-14", "2030-03-15"]

    assert default_date(dates, today=date(2030, 3, 15)) == date(2030, 3, 15)
    assert default_date(dates, today=date(2030, 3, 1)) == date(2030, 3, 14)
    assert default_date([]) is None


# ──────────────────────────────────────────────────────────────
# Slot labels
# ──────────────────────────────────────────────────────────────


def test_parse_slot_time():
    assert parse_slot_time("18:00 - 18:15", date(2030, 3, 14)) == (
        "2030-03-14T18:00:00.000Z",
        "2030-03-14T18:15:00.000Z",
    )


def test_parse_slot_time_without_spaces():
    start, end = parse_slot_time("09:05-09:20", date(2030, 1, 2))

    assert start == "2030-01-02T09:05:00.000Z"
    assert end == "2030-01-02T09:20:00.000Z"


def test_parse_slot_time_past_midnight():
    assert parse_slot_time("23:45 - 00:00", date(2030, 12, 31)) == (
        "2030-12-31T23:45:00.000Z",
        "2031-01-01T00:00:00.000Z",
    )


@pytest.mark.parametrize("label", ["", "18:00", "6pm - 7pm", "18:00 - 18:15 - 18:30"])
def test_parse_slot_time_rejects_bad_labels(label):
    with pytest.raises(ValueError):
        parse_slot_time(label, date(2030, 3, 14))


def test_format_local_iso_has_no_zone_shift():
    assert format_local_iso(datetime(2030, 3, 14, 23, 30)) == "2030-03-14T23:30:00.000Z"


# ──────────────────────────────────────────────────────────────
# Catalogue
# ──────────────────────────────────────────────────────────────


@pytest.fixture
def catalog(fake_gateway):
    return SlotCatalog(fake_gateway, {}, retry_attempts=1)


class TestSlotCatalog:
    """Tests for loading and caching slots."""

    @pytest.mark.asyncio
    async def test_loads_and_caches(self, catalog, fake_gateway):
        fake_gateway.respond(WorkflowType.APPOINTMENT_SLOTS, ROWS, type_=RequestType.GET_SLOTS)

        first = await catalog.get_slots(7, 501)
        second = await catalog.get_slots(7, 501)

        assert first is second
        assert len(first) == 3
        calls = fake_gateway.calls_for(WorkflowType.APPOINTMENT_SLOTS, RequestType.GET_SLOTS)
        assert len(calls) == 1
        assert calls[0]["trCentreID"] == 7
        assert calls[0]["PatientID"] == 501
        assert catalog.cached(7) is first

    @pytest.mark.asyncio
    async def test_nested_string_rows(self, catalog, fake_gateway):
        nested = {"data": json.dumps(ROWS[:1])}
        fake_gateway.respond(WorkflowType.APPOINTMENT_SLOTS, nested)

        slots = await catalog.get_slots(7, 501)

        assert [slot.display for slot in slots] == ["18:00 - 18:15"]

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_request(self, catalog, fake_gateway):
        fake_gateway.respond(WorkflowType.APPOINTMENT_SLOTS, ROWS, type_=RequestType.GET_SLOTS)
        gate = fake_gateway.block(WorkflowType.APPOINTMENT_SLOTS, RequestType.GET_SLOTS)

        first = asyncio.ensure_future(catalog.get_slots(7, 501))
        second = asyncio.ensure_future(catalog.get_slots(7, 501))
        await asyncio.sleep(0)
        assert catalog.is_loading(7)
        gate.set()

        assert await first == await second
        assert len(fake_gateway.calls_for(WorkflowType.APPOINTMENT_SLOTS)) == 1
        assert not catalog.is_loading(7)

    @pytest.mark.asyncio
    async def test_empty_body_is_no_slots(self, catalog):
        assert await catalog.get_slots(7, 501) == []

    @pytest.mark.asyncio
    async def test_error_status_raises(self, catalog, fake_gateway):
        fake_gateway.respond(
            WorkflowType.APPOINTMENT_SLOTS, {"status": "error", "message": "Clinic closed"}
        )

        with pytest.raises(GatewayError, match="Clinic closed"):
            await catalog.get_slots(7, 501)
        assert catalog.cached(7) is None

    @pytest.mark.asyncio
    async def test_object_without_rows_raises(self, catalog, fake_gateway):
        fake_gateway.respond(WorkflowType.APPOINTMENT_SLOTS, {"status": "ok"})

        with pytest.raises(MalformedResponse):
            await catalog.get_slots(7, 501)

    @pytest.mark.asyncio
    async def test_clear_forgets_cache(self, catalog, fake_gateway):
        fake_gateway.respond(WorkflowType.APPOINTMENT_SLOTS, ROWS)
        await catalog.get_slots(7, 501)

        catalog.clear()
        await catalog.get_slots(7, 501)

        assert len(fake_gateway.calls_for(WorkflowType.APPOINTMENT_SLOTS)) == 2
