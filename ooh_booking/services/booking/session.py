"""Per-booking context shared by the booking components."""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from .intake import PatientIntake
from .lookups import LookupData
from .models import AppointmentSlot, HoldState, PatientRecord, Reservation, TreatmentCentre


@dataclass
class BookingSession:
    """
    Everything one patient's booking flow knows.

    Components read the reservation through this object at the moment they
    need it, so a handler that runs late still sees the latest hold.
    """

    default_amount: float = 35.0
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    state: HoldState = HoldState.NO_RESERVATION
    intake: Optional[PatientIntake] = None
    patient: Optional[PatientRecord] = None
    reservation: Optional[Reservation] = None

    selected_centre: Optional[TreatmentCentre] = None
    selected_date: Optional[date] = None
    payment_amount: float = 0.0
    card_touched_generation: Optional[int] = None

    lookups: Optional[LookupData] = None
    slot_cache: Dict[int, List[AppointmentSlot]] = field(default_factory=dict)
    reason_selection: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.payment_amount:
            self.payment_amount = self.default_amount

    @property
    def patient_id(self) -> Optional[int]:
        return self.patient.patient_id if self.patient else None

    @property
    def visit_id(self) -> Optional[int]:
        return self.patient.visit_id if self.patient else None

    def clear_hold(self) -> None:
        """Forget the held slot but keep the registered patient."""
        self.reservation = None
        self.card_touched_generation = None
        if self.state is not HoldState.CONFIRMED:
            self.state = (
                HoldState.PATIENT_REGISTERED if self.patient else HoldState.NO_RESERVATION
            )

    def reset(self) -> None:
        """Start over: no patient, no hold, no cached slots."""
        self.state = HoldState.NO_RESERVATION
        self.intake = None
        self.patient = None
        self.reservation = None
        self.selected_centre = None
        self.selected_date = None
        self.payment_amount = self.default_amount
        self.card_touched_generation = None
        self.lookups = None
        self.slot_cache.clear()
        self.reason_selection = []
