"""Dropdown reference data (genders, GPs, surgeries, appointment types, complaints)."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from ...constants.workflows import WorkflowType
from ...core.retry import get_gateway_read_retry
from ...gateway.normalizer import normalize

LOOKUP_KEYS = ("Gender", "Doctors", "AppointmentTypes")

Row = Dict[str, Any]


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


@dataclass
class LookupData:
    """Cleaned dropdown data."""

    genders: List[Row] = field(default_factory=list)
    doctors: List[Row] = field(default_factory=list)
    surgeries: List[Row] = field(default_factory=list)
    appointment_types: List[Row] = field(default_factory=list)
    complaints: List[Row] = field(default_factory=list)

    def appointment_type(self, case_type_id: Union[int, str, None]) -> Optional[Row]:
        for row in self.appointment_types:
            if str(row.get("CaseTypeID")) == str(case_type_id):
                return row
        return None

    def is_virtual(self, case_type_id: Union[int, str, None]) -> bool:
        """Video and phone consults need no clinic visit."""
        return is_virtual_appointment(case_type_id, self.appointment_types)

    def complaint(self, complaint_id: Union[int, str]) -> Optional[Row]:
        for row in self.complaints:
            if str(row.get("ComplaintID")) == str(complaint_id):
                return row
        return None


def is_virtual_appointment(case_type_id: Union[int, str, None], appointment_types: List[Row]) -> bool:
    """
    Check whether an appointment type is a remote consult.

    Falls back to the legacy ``vc``/``pc`` codes when the id is not in the
    lookup table.
    """
    for row in appointment_types:
        if str(row.get("CaseTypeID")) == str(case_type_id):
            case_type = _text(row.get("CaseType")).lower()
            return "video" in case_type or "phone" in case_type
    return str(case_type_id) in ("vc", "pc")


def clean_lookups(record: Dict[str, Any]) -> LookupData:
    """Drop placeholder rows and derive surgeries from GPs when none are listed."""
    genders = [
        row
        for row in record.get("Gender") or []
        if row.get("Id") and _text(row.get("GenderName"))
    ]

    doctors = [
        {
            "GPID": row["GPID"],
            "GPName": row["GPName"],
            "SurgeryID": row.get("SurgeryID"),
            "RegisterationType": row.get("RegisterationType"),
        }
        for row in record.get("Doctors") or []
        if row.get("GPID") and _text(row.get("GPName"))
    ]

    appointment_types = [
        row
        for row in record.get("AppointmentTypes") or []
        if row.get("CaseTypeID") and _text(row.get("CaseType"))
    ]

    surgeries_raw = record.get("Surgeries")
    if isinstance(surgeries_raw, list):
        surgeries = [
            row
            for row in surgeries_raw
            if row.get("SurgeryID") and _text(row.get("SurgeryName"))
        ]
    else:
        seen: Dict[Any, Row] = {}
        for doctor in doctors:
            surgery_id = doctor.get("SurgeryID")
            if surgery_id and surgery_id not in seen:
                # Surgery names are not published alongside GPs
                seen[surgery_id] = {"SurgeryID": surgery_id, "SurgeryName": f"Surgery {surgery_id}"}
        surgeries = list(seen.values())

    complaints = clean_complaints(record.get("Complaints"))

    return LookupData(
        genders=genders,
        doctors=doctors,
        surgeries=surgeries,
        appointment_types=appointment_types,
        complaints=complaints,
    )


def clean_complaints(rows: Any) -> List[Row]:
    if not isinstance(rows, list):
        return []
    return [
        row
        for row in rows
        if isinstance(row, dict) and row.get("ComplaintID") and _text(row.get("Complaint"))
    ]


class LookupService:
    """Loads dropdown data from the ``lookups`` workflow."""

    def __init__(self, gateway, retry_attempts: int = 3):
        self.gateway = gateway
        self.retry_attempts = retry_attempts

    async def fetch(self) -> LookupData:
        """
        Raises:
            GatewayError: If the gateway is unreachable after retries
            MalformedResponse: If the response cannot be decoded
        """
        retrying = get_gateway_read_retry(attempts=self.retry_attempts)
        payload = await retrying(self._request)({"workflowtype": WorkflowType.LOOKUPS})
        if payload is None:
            logger.warning("Empty lookups response, dropdowns will be empty")
            return LookupData()

        data = clean_lookups(normalize(payload, expected_keys=LOOKUP_KEYS))
        logger.info(
            f"Lookups loaded: {len(data.genders)} genders, {len(data.doctors)} GPs, "
            f"{len(data.surgeries)} surgeries, {len(data.appointment_types)} appointment types, "
            f"{len(data.complaints)} complaints"
        )
        return data

    async def _request(self, payload: Dict[str, Any]) -> Any:
        return await self.gateway.post_json(payload)
