"""Data types shared by the booking components."""

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from ...constants.workflows import STATUS_RESERVED


class HoldState(str, Enum):
    """Lifecycle of the current booking."""

    NO_RESERVATION = "no_reservation"
    PATIENT_REGISTERED = "patient_registered"
    SLOT_HELD = "slot_held"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class PatientRecord:
    """Registered patient. Server ids are set once and never change."""

    patient_id: int
    visit_id: int
    first_name: str
    last_name: str
    contact_number: str
    email: str = ""
    case_no: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class TreatmentCentre:
    """Clinic the patient can attend."""

    id: int
    name: str
    address: str = ""
    distance_km: Optional[float] = None
    direction: str = ""
    advance_payment: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(frozen=True)
class AppointmentSlot:
    """Bookable slot as offered by the gateway."""

    display: str
    start_time: str
    end_time: str
    date_iso: str
    centre_id: Optional[int] = None
    centre_name: str = ""

    @property
    def date(self) -> date:
        return date.fromisoformat(self.date_iso)


@dataclass
class Reservation:
    """
    The slot currently held for the patient.

    ``appointment_id_synthesized`` is set when the gateway answered without an
    AppointmentID and a local placeholder was generated instead.
    """

    patient_id: int
    visit_id: int
    treatment_centre_id: int
    appointment_id: int
    start_time: str
    end_time: str
    status: str = STATUS_RESERVED
    case_number: Optional[str] = None
    treatment_centre_name: str = ""
    treatment_centre_address: str = ""
    appointment_type: str = ""
    price: str = ""
    patient_name: str = ""
    contact_no: str = ""
    email: str = ""
    appointment_id_synthesized: bool = False
    slot: Optional[AppointmentSlot] = None

    def copy(self, **changes: Any) -> "Reservation":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Wire-style representation used in logs and confirmations."""
        return {
            "PatientID": self.patient_id,
            "VisitID": self.visit_id,
            "AppointmentID": self.appointment_id,
            "TrCentreID": self.treatment_centre_id,
            "TrCentreName": self.treatment_centre_name,
            "TrCentreAddress": self.treatment_centre_address,
            "StartTime": self.start_time,
            "EndTime": self.end_time,
            "Status": self.status,
            "CaseNo": self.case_number,
            "AppointmentType": self.appointment_type,
            "Price": self.price,
            "PatientName": self.patient_name,
            "ContactNo": self.contact_no,
            "Email": self.email,
        }


@dataclass(frozen=True)
class PaymentIntent:
    """Processor handles returned by the payment setup workflow."""

    client_secret: str
    ephemeral_key: str
    customer: str
    amount_minor: int
    currency: str


@dataclass(frozen=True)
class PaymentOutcome:
    """Result of one payment attempt. Never persisted."""

    succeeded: bool
    processor_reference: str
    amount: float
    currency: str
    status: str = ""


@dataclass(frozen=True)
class BookingConfirmation:
    """What the caller gets back after a successful payment."""

    reservation: Reservation
    payment: PaymentOutcome
    booking_reference: str
    confirmed_by_server: bool = True
