"""Reservation state machine: registration, clinic choice and slot holds."""

import asyncio
import random
from datetime import date
from typing import Any, Dict, Mapping, Optional, Union

from loguru import logger

from ...constants.timing import Timeouts
from ...constants.workflows import STATUS_RESERVED, WorkflowType
from ...core.config.settings import BookingSettings, get_settings
from ...core.exceptions import (
    GatewayError,
    MalformedResponse,
    RegistrationError,
    ReservationError,
)
from ...gateway.normalizer import normalize, parse_body, require_fields
from .hold_timer import HoldTimer
from .intake import PatientIntake, build_registration_payload, validate_intake
from .models import AppointmentSlot, HoldState, PatientRecord, Reservation, TreatmentCentre
from .release import ReleaseDispatcher
from .session import BookingSession
from .slots import SlotCatalog, available_dates, default_date, parse_slot_time

PLACEHOLDER_ID_BASE = 100000
PLACEHOLDER_ID_SPAN = 100000


def synthesize_appointment_id() -> int:
    """Local stand-in for an AppointmentID the gateway did not return."""
    return random.randrange(PLACEHOLDER_ID_SPAN) + PLACEHOLDER_ID_BASE


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ReservationStateMachine:
    """
    Drives one booking from registration to a held slot.

    The hold timer is owned by this class: it starts or resets the countdown
    when a slot is held, stops it when the hold is dropped, and handles its
    expiry by releasing the slot on the server.
    """

    def __init__(
        self,
        gateway,
        session: BookingSession,
        timer: HoldTimer,
        release_dispatcher: ReleaseDispatcher,
        slot_catalog: SlotCatalog,
        settings: Optional[BookingSettings] = None,
        expiry_settle_seconds: float = Timeouts.EXPIRY_SETTLE_SECONDS,
    ):
        """
        Initialize reservation state machine.

        Args:
            gateway: WorkflowGatewayClient (or anything with ``post``)
            session: Booking session shared with the payment coordinator
            timer: Hold timer for this session
            release_dispatcher: Used to free expired holds
            slot_catalog: Per-clinic slot lists
            settings: Booking settings
            expiry_settle_seconds: Grace period before an expired hold is released
        """
        self.gateway = gateway
        self.session = session
        self.timer = timer
        self.release_dispatcher = release_dispatcher
        self.slot_catalog = slot_catalog
        self.settings = settings or get_settings()
        self.expiry_settle_seconds = expiry_settle_seconds

        self._reserving = False
        self.timer.on_expire = self.on_hold_expired

    @property
    def state(self) -> HoldState:
        return self.session.state

    @property
    def is_reserving(self) -> bool:
        return self._reserving

    # ──────────────────────────────────────────────────────────────
    # Registration
    # ──────────────────────────────────────────────────────────────

    async def register_patient(
        self, form_data: Union[Mapping[str, Any], PatientIntake]
    ) -> PatientRecord:
        """
        Validate the intake form and register the patient.

        Args:
            form_data: Raw form fields or a PatientIntake

        Returns:
            The registered patient with server PatientID and VisitID

        Raises:
            ValidationError: Form is invalid; nothing was sent
            RegistrationError: Gateway failed or did not return both ids
        """
        if self.session.patient is not None:
            raise RegistrationError(
                "Patient is already registered for this booking",
                details={"PatientID": self.session.patient_id},
            )

        intake = validate_intake(form_data)
        lookups = self.session.lookups
        payload = build_registration_payload(
            intake,
            genders=lookups.genders if lookups else None,
            doctors=lookups.doctors if lookups else None,
        )
        logger.info("Registering patient")

        try:
            body = parse_body(await self.gateway.post(payload))
        except (GatewayError, MalformedResponse) as e:
            raise RegistrationError(
                f"Failed to save patient details: {e.message}", details=e.details
            ) from e

        if body is None:
            raise RegistrationError("Empty response from server")

        try:
            record = normalize(body, expected_keys=("PatientID", "VisitID"))
        except MalformedResponse as e:
            raise RegistrationError(f"Failed to save patient details: {e.message}") from e

        missing = require_fields(record, "PatientID", "VisitID")
        if missing:
            raise RegistrationError(
                f"Registration response missing {', '.join(missing)}",
                details={"missing_fields": missing},
            )

        patient_id = _as_int(record["PatientID"])
        visit_id = _as_int(record["VisitID"])
        invalid = [
            name for name, value in (("PatientID", patient_id), ("VisitID", visit_id)) if value is None
        ]
        if invalid:
            raise RegistrationError(
                f"Registration response has invalid {', '.join(invalid)}",
                details={"invalid_fields": invalid},
            )

        patient = PatientRecord(
            patient_id=patient_id,
            visit_id=visit_id,
            first_name=intake.first_name,
            last_name=intake.last_name,
            contact_number=payload["ContactNumber"],
            email=intake.email or "",
            case_no=record.get("CaseNo"),
        )
        self.session.intake = intake
        self.session.patient = patient
        self.session.state = HoldState.PATIENT_REGISTERED
        logger.info(f"Patient registered: PatientID {patient.patient_id}, VisitID {patient.visit_id}")
        return patient

    # ──────────────────────────────────────────────────────────────
    # Clinic selection
    # ──────────────────────────────────────────────────────────────

    def _appointment_is_virtual(self) -> bool:
        intake = self.session.intake
        lookups = self.session.lookups
        if intake is None or lookups is None:
            return False
        return lookups.is_virtual(intake.appointment_type)

    def _drop_hold(self) -> None:
        """Forget the held slot locally. No release call is made."""
        if self.session.reservation is not None:
            logger.info(
                f"Dropping hold on appointment {self.session.reservation.appointment_id}"
            )
        self.timer.stop()
        self.session.clear_hold()

    async def select_clinic(self, centre: TreatmentCentre) -> Optional[TreatmentCentre]:
        """
        Toggle the selected clinic.

        Selecting the current clinic again deselects it. Any held slot is
        dropped either way.

        Returns:
            The clinic now selected, or None after a deselect
        """
        session = self.session
        if session.selected_centre is not None and session.selected_centre.id == centre.id:
            logger.info(f"Clinic {centre.id} deselected")
            session.selected_centre = None
            session.selected_date = None
            self._drop_hold()
            return None

        session.selected_centre = centre
        session.selected_date = None
        self._drop_hold()

        if not self._appointment_is_virtual():
            session.payment_amount = (
                centre.advance_payment
                if centre.advance_payment is not None
                else session.default_amount
            )
        logger.info(f"Clinic {centre.id} ({centre.name}) selected, amount {session.payment_amount}")

        if session.patient is not None:
            slots = await self.slot_catalog.get_slots(centre.id, session.patient.patient_id)
            session.selected_date = default_date(available_dates(slots))
        return centre

    # ──────────────────────────────────────────────────────────────
    # Slot holds
    # ──────────────────────────────────────────────────────────────

    async def reserve_slot(
        self, slot: Union[AppointmentSlot, str], on_date: Optional[date] = None
    ) -> Optional[Reservation]:
        """
        Hold a slot for the registered patient.

        Args:
            slot: AppointmentSlot or its ``"HH:MM - HH:MM"`` label
            on_date: Appointment date; defaults to the selected date

        Returns:
            The new Reservation, or None if another reservation is in flight
            or the clinic changed before the gateway answered

        Raises:
            ReservationError: Missing context or gateway failure; the previous
                hold (if any) is kept
        """
        if self._reserving:
            logger.warning("Slot reservation already in progress, request ignored")
            return None

        if self.timer.is_expired:
            logger.info("Previous hold expired, reserving a new slot")

        session = self.session
        patient = session.patient
        centre = session.selected_centre
        if patient is None or not patient.visit_id or centre is None:
            raise ReservationError("Missing required booking information. Please try again.")

        display = slot.display if isinstance(slot, AppointmentSlot) else slot
        if on_date is None:
            on_date = session.selected_date
        if on_date is None and isinstance(slot, AppointmentSlot):
            on_date = slot.date
        if on_date is None:
            raise ReservationError("Please select an appointment date.")

        try:
            start_time, end_time = parse_slot_time(display, on_date)
        except ValueError as e:
            raise ReservationError(str(e)) from e

        intake = session.intake
        payload: Dict[str, Any] = {
            "workflowtype": WorkflowType.BOOK_APPOINTMENT,
            "PatientID": patient.patient_id,
            "VisitID": patient.visit_id,
            "CaseType": _as_int(intake.appointment_type) if intake else None,
            "TrCentreID": centre.id,
            "AppointmentID": 0,
            "StartTime": start_time,
            "EndTime": end_time,
            "Status": False,
        }
        logger.info(f"Reserving slot {display} on {on_date.isoformat()} at clinic {centre.id}")

        self._reserving = True
        try:
            body = parse_body(await self.gateway.post(payload))
            record = {} if body is None else normalize(body, expected_keys=("AppointmentID",))
        except (GatewayError, MalformedResponse) as e:
            raise ReservationError(
                f"Failed to reserve slot: {e.message}", details=e.details
            ) from e
        finally:
            self._reserving = False

        if body is None:
            logger.info("Empty reservation response, treating as success")

        reservation = self._merge(
            record,
            patient=patient,
            centre=centre,
            start_time=start_time,
            end_time=end_time,
            slot=slot if isinstance(slot, AppointmentSlot) else None,
        )

        if session.selected_centre is not centre or session.patient is not patient:
            logger.warning(
                f"Clinic changed while reserving at clinic {centre.id}, "
                f"giving back appointment {reservation.appointment_id}"
            )
            if not reservation.appointment_id_synthesized:
                self.release_dispatcher.dispatch(reservation.visit_id, reservation.appointment_id)
            return None

        replacing = session.reservation is not None and self.timer.is_active
        session.reservation = reservation
        session.card_touched_generation = None
        session.state = HoldState.SLOT_HELD
        if replacing:
            self.timer.reset()
        else:
            self.timer.start()

        logger.info(
            f"Slot held: appointment {reservation.appointment_id}, "
            f"{reservation.start_time} - {reservation.end_time}"
        )
        return reservation

    def _merge(
        self,
        record: Dict[str, Any],
        patient: PatientRecord,
        centre: TreatmentCentre,
        start_time: str,
        end_time: str,
        slot: Optional[AppointmentSlot],
    ) -> Reservation:
        """Combine the gateway record with what is known locally, server first."""
        appointment_id = _as_int(record.get("AppointmentID"))
        synthesized = not appointment_id
        if synthesized:
            appointment_id = synthesize_appointment_id()
            logger.warning(
                f"Reservation response had no AppointmentID, "
                f"using local placeholder {appointment_id}"
            )

        status = record.get("Status")
        if not isinstance(status, str) or not status:
            status = STATUS_RESERVED

        intake = self.session.intake
        return Reservation(
            patient_id=_as_int(record.get("PatientID")) or patient.patient_id,
            visit_id=_as_int(record.get("VisitID")) or patient.visit_id,
            treatment_centre_id=_as_int(record.get("TrCentreID")) or centre.id,
            appointment_id=appointment_id,
            start_time=record.get("StartTime") or start_time,
            end_time=record.get("EndTime") or end_time,
            status=status,
            case_number=record.get("CaseNo") or patient.case_no,
            treatment_centre_name=record.get("TrCentreName") or centre.name,
            treatment_centre_address=record.get("TrCentreAddress") or centre.address,
            appointment_type=str(
                record.get("AppointmentType") or (intake.appointment_type if intake else "")
            ),
            price=str(record.get("Price") or self.session.payment_amount),
            patient_name=record.get("PatientName") or patient.full_name,
            contact_no=record.get("ContactNo") or patient.contact_number,
            email=record.get("Email") or patient.email,
            appointment_id_synthesized=synthesized,
            slot=slot,
        )

    async def on_hold_expired(self, generation: int) -> None:
        """
        Release the held slot after the countdown ran out.

        The reservation is read from the session when this runs, so the ids
        released are those of the latest hold.
        """
        if generation != self.timer.generation:
            logger.debug(f"Ignoring expiry of superseded hold cycle {generation}")
            return

        if self.expiry_settle_seconds:
            await asyncio.sleep(self.expiry_settle_seconds)
            if generation != self.timer.generation:
                logger.debug(f"Hold cycle {generation} replaced while settling")
                return

        session = self.session
        if session.state is HoldState.CONFIRMED:
            logger.info("Hold expired after confirmation, nothing to release")
            return

        reservation = session.reservation
        if reservation is None or not reservation.visit_id or not reservation.appointment_id:
            logger.info("Hold expired without a complete reservation, no release sent")
            return

        if reservation.appointment_id_synthesized:
            logger.warning(
                f"Releasing placeholder AppointmentID {reservation.appointment_id}; "
                f"the gateway never confirmed it"
            )
        await self.release_dispatcher.release(reservation.visit_id, reservation.appointment_id)

        if session.reservation is reservation and session.state is not HoldState.CONFIRMED:
            session.clear_hold()
            if generation == self.timer.generation:
                self.timer.stop()
            logger.info("Expired hold cleared, a new slot can be selected")

    def reset_session(self) -> None:
        """Tear the booking down completely."""
        self.timer.stop()
        self.slot_catalog.clear()
        self.session.reset()
        self._reserving = False
        logger.info("Booking session reset")
