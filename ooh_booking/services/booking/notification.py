"""Confirmation e-mails sent after a booking is finalized."""

from typing import Any, Dict, Optional

from loguru import logger

from ...constants.workflows import WorkflowType
from ...core.config.settings import BookingSettings, get_settings
from ...core.exceptions import BookingFlowError
from ...core.tasks import BackgroundTasks
from .models import PatientRecord, Reservation, TreatmentCentre

VIDEO_CONSULT = "Video Consult"
FACE_TO_FACE = "Face 2 Face"
VIDEO_CASE_TYPE = "1"


def room_name(appointment_id: Any) -> str:
    return f"room-visit-{appointment_id}"


def video_urls(base_url: str, appointment_id: Any, patient_id: Any, practice_id: Any = None):
    """
    Build the patient and practice links for a video consultation.

    Returns:
        (patient_url, practice_url)
    """
    room = room_name(appointment_id)
    base = base_url.rstrip("/")
    patient_url = f"{base}/video-call/{room}?identity=patient_{patient_id}"
    practice_url = f"{base}/practice-call/{room}?identity=practice_{practice_id or '0'}"
    return patient_url, practice_url


def build_confirmation_summary(
    booking: Dict[str, Any],
    reservation: Reservation,
    patient: Optional[PatientRecord] = None,
    centre: Optional[TreatmentCentre] = None,
    amount: Optional[float] = None,
    public_base_url: str = "",
) -> Dict[str, Any]:
    """
    Build the ``send_confirmation_emails`` request.

    Args:
        booking: Finalization response record; its values win
        reservation: The confirmed reservation
        patient: Registered patient
        centre: Selected clinic
        amount: Amount paid
        public_base_url: Base of the video call pages

    Returns:
        Request payload
    """
    appointment_id = booking.get("AppointmentID") or reservation.appointment_id or 0
    patient_id = (patient.patient_id if patient else None) or booking.get("PatientID") or 0
    patient_url, practice_url = video_urls(
        public_base_url, appointment_id, patient_id, booking.get("PracticeID")
    )

    appointment_type = booking.get("AppointmentType")
    if not appointment_type:
        appointment_type = (
            VIDEO_CONSULT if str(reservation.appointment_type) == VIDEO_CASE_TYPE else FACE_TO_FACE
        )

    return {
        "workflowtype": WorkflowType.SEND_CONFIRMATION_EMAILS,
        "TrCentreName": booking.get("TrCentreName")
        or reservation.treatment_centre_name
        or (centre.name if centre else ""),
        "PatientName": booking.get("PatientName")
        or reservation.patient_name
        or (patient.full_name if patient else ""),
        "ContactNo": booking.get("ContactNo") or reservation.contact_no,
        "Email": booking.get("Email") or reservation.email,
        "CaseNo": booking.get("CaseNo") or reservation.case_number or "",
        "AppointmentID": appointment_id,
        "PatientID": patient_id,
        "AppointmentType": appointment_type,
        "Price": booking.get("Price") or amount or 0,
        "practiceVideoURL": practice_url,
        "TrCentreAddress": booking.get("TrCentreAddress")
        or reservation.treatment_centre_address
        or (centre.address if centre else ""),
        "TrCentreLatitude": booking.get("TrCentreLatitude")
        or (centre.latitude if centre and centre.latitude is not None else ""),
        "TrCentreLongitude": booking.get("TrCentreLongitude")
        or (centre.longitude if centre and centre.longitude is not None else ""),
        "StartTime": booking.get("StartTime") or reservation.start_time,
        "EndTime": booking.get("EndTime") or reservation.end_time,
        "patientVideoURL": patient_url,
        "roomName": room_name(appointment_id),
    }


class ConfirmationNotifier:
    """Posts confirmation e-mail requests. Failures never reach the patient."""

    def __init__(
        self,
        gateway,
        settings: Optional[BookingSettings] = None,
        tasks: Optional[BackgroundTasks] = None,
    ):
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.tasks = tasks or BackgroundTasks()

    async def send(self, summary: Dict[str, Any]) -> bool:
        """
        Send one confirmation request.

        Returns:
            True if the gateway accepted it. Never raises.
        """
        appointment_id = summary.get("AppointmentID")
        try:
            text = await self.gateway.post(summary)
        except BookingFlowError as e:
            logger.warning(f"Confirmation e-mails for appointment {appointment_id} failed: {e}")
            return False
        except Exception as e:
            logger.error(
                f"Unexpected error sending confirmation e-mails for {appointment_id}: {e}",
                exc_info=True,
            )
            return False

        logger.info(
            f"Confirmation e-mails requested for appointment {appointment_id}"
            + (f": {text[:200]}" if text and text.strip() else "")
        )
        return True

    def dispatch(
        self,
        booking: Dict[str, Any],
        reservation: Reservation,
        patient: Optional[PatientRecord] = None,
        centre: Optional[TreatmentCentre] = None,
        amount: Optional[float] = None,
    ):
        """Build the summary and send it in the background."""
        summary = build_confirmation_summary(
            booking,
            reservation,
            patient=patient,
            centre=centre,
            amount=amount,
            public_base_url=self.settings.public_base_url,
        )
        return self.tasks.spawn(
            self.send(summary), name=f"confirmation-emails-{summary['AppointmentID']}"
        )
