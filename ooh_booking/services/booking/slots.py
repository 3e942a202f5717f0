"""Appointment slot catalogue with a per-clinic cache."""

import asyncio
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from ...constants.workflows import RequestType, WorkflowType
from ...core.exceptions import GatewayError, MalformedResponse
from ...core.retry import get_gateway_read_retry
from ...gateway.normalizer import normalize_list
from .models import AppointmentSlot

SLOT_SEPARATOR = " - "


def _parse_gateway_datetime(value: str) -> datetime:
    """Parse an ISO timestamp, shown in local wall-clock time if it carries a zone."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return parsed


def process_raw_slots(raw_slots: List[Dict[str, Any]]) -> List[AppointmentSlot]:
    """
    Convert gateway slot rows into AppointmentSlot objects.

    Rows without a parseable AvailableStartTime/AvailableEndTime are skipped.
    """
    slots: List[AppointmentSlot] = []
    for raw in raw_slots or []:
        start_raw = raw.get("AvailableStartTime") if isinstance(raw, dict) else None
        end_raw = raw.get("AvailableEndTime") if isinstance(raw, dict) else None
        if not start_raw or not end_raw:
            logger.warning(f"Skipping slot without start/end time: {raw!r}")
            continue
        try:
            start = _parse_gateway_datetime(start_raw)
            end = _parse_gateway_datetime(end_raw)
        except ValueError:
            logger.warning(f"Skipping slot with unparseable time: {start_raw!r} / {end_raw!r}")
            continue

        slots.append(
            AppointmentSlot(
                display=f"{start:%H:%M}{SLOT_SEPARATOR}{end:%H:%M}",
                start_time=start_raw,
                end_time=end_raw,
                # The calendar date is taken from the string itself, never shifted
                date_iso=start_raw.split("T")[0],
                centre_id=raw.get("TrCenterID"),
                centre_name=raw.get("TrCentreName") or "",
            )
        )
    return slots


def format_local_iso(moment: datetime) -> str:
    """
    Serialize a wall-clock time as ``YYYY-MM-DDTHH:MM:SS.000Z``.

    The gateway expects the clinic's local time even though the suffix says
    UTC, so no zone conversion happens here.
    """
    return f"{moment:%Y-%m-%dT%H:%M:%S}.000Z"


def parse_slot_time(display: str, on_date: date) -> Tuple[str, str]:
    """
    Turn an ``"HH:MM - HH:MM"`` slot label into start/end timestamps.

    Args:
        display: Slot label in 24-hour time
        on_date: Appointment date

    Returns:
        (StartTime, EndTime) as sent in the reservation request; an end at or before
        the start falls on the following day

    Raises:
        ValueError: If the label is not in ``HH:MM - HH:MM`` form
    """
    try:
        start_text, end_text = (part.strip() for part in display.split(SLOT_SEPARATOR.strip()))
        start_hour, start_minute = (int(part) for part in start_text.split(":"))
        end_hour, end_minute = (int(part) for part in end_text.split(":"))
    except ValueError as e:
        raise ValueError(f"Invalid slot label {display!r}, expected 'HH:MM - HH:MM'") from e

    start = datetime(on_date.year, on_date.month, on_date.day, start_hour, start_minute)
    end = datetime(on_date.year, on_date.month, on_date.day, end_hour, end_minute)
    if end <= start:
        # Slot runs past midnight
        end += timedelta(days=1)
    return format_local_iso(start), format_local_iso(end)


def available_dates(slots: List[AppointmentSlot]) -> List[str]:
    """Sorted unique ISO dates that have at least one slot."""
    return sorted({slot.date_iso for slot in slots})


def default_date(dates: List[str], today: Optional[date] = None) -> Optional[date]:
    """Today when it has slots, otherwise the first available date."""
    if not dates:
        return None
    today_iso = (today or date.today()).isoformat()
    return date.fromisoformat(today_iso if today_iso in dates else dates[0])


def slots_on(slots: List[AppointmentSlot], on_date: date) -> List[AppointmentSlot]:
    """Slots falling on one calendar date."""
    target = on_date.isoformat()
    return [slot for slot in slots if slot.date_iso == target]


class SlotCatalog:
    """Loads slot lists per clinic and caches them until the session resets."""

    def __init__(self, gateway, cache: Dict[int, List[AppointmentSlot]], retry_attempts: int = 3):
        """
        Initialize slot catalogue.

        Args:
            gateway: WorkflowGatewayClient (or anything with ``post_json``)
            cache: Per-clinic slot cache owned by the booking session
            retry_attempts: Attempts for the idempotent slot read
        """
        self.gateway = gateway
        self.cache = cache
        self.retry_attempts = retry_attempts
        self._loading: Dict[int, "asyncio.Task[List[AppointmentSlot]]"] = {}

    def cached(self, centre_id: int) -> Optional[List[AppointmentSlot]]:
        return self.cache.get(centre_id)

    def is_loading(self, centre_id: int) -> bool:
        task = self._loading.get(centre_id)
        return task is not None and not task.done()

    async def get_slots(self, centre_id: int, patient_id: int) -> List[AppointmentSlot]:
        """
        Return the clinic's slots, fetching them on first use.

        Concurrent callers for the same clinic share one request.

        Raises:
            GatewayError: If the gateway reported an error or was unreachable
            MalformedResponse: If the slot list could not be decoded
        """
        if centre_id in self.cache:
            return self.cache[centre_id]

        task = self._loading.get(centre_id)
        if task is None or task.done():
            task = asyncio.ensure_future(self._load(centre_id, patient_id))
            self._loading[centre_id] = task
        try:
            return await asyncio.shield(task)
        finally:
            if task.done():
                self._loading.pop(centre_id, None)

    async def _load(self, centre_id: int, patient_id: int) -> List[AppointmentSlot]:
        retrying = get_gateway_read_retry(attempts=self.retry_attempts)
        slots = await retrying(self._fetch)(centre_id, patient_id)
        self.cache[centre_id] = slots
        logger.info(
            f"Loaded {len(slots)} slots for clinic {centre_id} "
            f"across {len(available_dates(slots))} dates"
        )
        return slots

    async def _fetch(self, centre_id: int, patient_id: int) -> List[AppointmentSlot]:
        payload = await self.gateway.post_json(
            {
                "workflowtype": WorkflowType.APPOINTMENT_SLOTS,
                "type": RequestType.GET_SLOTS,
                "trCentreID": centre_id,
                "PatientID": patient_id,
            }
        )
        if isinstance(payload, dict) and payload.get("status") == "error":
            raise GatewayError(
                f"Slot workflow error: {payload.get('message') or 'Unknown error'}",
                workflow_type=WorkflowType.APPOINTMENT_SLOTS,
            )
        if payload is None:
            return []
        try:
            rows = normalize_list(payload)
        except MalformedResponse:
            logger.warning(f"Slot response for clinic {centre_id} had no slot list")
            raise
        return process_raw_slots(rows)

    def clear(self) -> None:
        """Forget cached slots and abandon in-flight loads."""
        for task in self._loading.values():
            task.cancel()
        self._loading.clear()
        self.cache.clear()
