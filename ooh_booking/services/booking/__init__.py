"""Out-of-hours booking flow - modular structure.

Registration, clinic and slot selection, the slot hold and payment are split
into specialized components coordinated by BookingOrchestrator.
"""

from .booking_orchestrator import BookingOrchestrator
from .clinics import CentreListing, TreatmentCentreDirectory, parse_advance_payment
from .hold_timer import HoldTimer, TimerPhase, format_remaining
from .intake import PatientIntake, build_registration_payload, validate_intake
from .lookups import LookupData, LookupService
from .models import (
    AppointmentSlot,
    BookingConfirmation,
    HoldState,
    PatientRecord,
    PaymentIntent,
    PaymentOutcome,
    Reservation,
    TreatmentCentre,
)
from .notification import ConfirmationNotifier, build_confirmation_summary
from .payment import PaymentCoordinator, PaymentProcessor
from .phone import format_irish_mobile, format_phone_for_display, validate_irish_mobile
from .reason_search import ReasonSearch, merge_selections
from .release import ReleaseDispatcher
from .reservation import ReservationStateMachine
from .session import BookingSession
from .slots import SlotCatalog, parse_slot_time, process_raw_slots

__all__ = [
    # Main service
    "BookingOrchestrator",
    # Components
    "ReservationStateMachine",
    "PaymentCoordinator",
    "PaymentProcessor",
    "HoldTimer",
    "TimerPhase",
    "ReleaseDispatcher",
    "ConfirmationNotifier",
    "SlotCatalog",
    "TreatmentCentreDirectory",
    "CentreListing",
    "LookupService",
    "LookupData",
    "ReasonSearch",
    "BookingSession",
    # Models
    "HoldState",
    "PatientRecord",
    "TreatmentCentre",
    "AppointmentSlot",
    "Reservation",
    "PaymentIntent",
    "PaymentOutcome",
    "BookingConfirmation",
    "PatientIntake",
    # Helpers
    "validate_intake",
    "build_registration_payload",
    "build_confirmation_summary",
    "validate_irish_mobile",
    "format_irish_mobile",
    "format_phone_for_display",
    "parse_slot_time",
    "process_raw_slots",
    "parse_advance_payment",
    "format_remaining",
    "merge_selections",
]
