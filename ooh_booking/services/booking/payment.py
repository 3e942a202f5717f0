"""Payment confirmation: intent setup, card payment and booking finalization."""

import secrets
import string
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from loguru import logger

from ...constants.workflows import STATUS_CONFIRMED, RequestType, WorkflowType
from ...core.config.settings import BookingSettings, get_settings
from ...core.exceptions import (
    GatewayError,
    HoldExpiredError,
    MalformedResponse,
    PaymentFailed,
    PaymentSetupError,
    ProcessorError,
)
from ...core.sensitive import SensitiveDict
from ...gateway.normalizer import decode, normalize
from .hold_timer import HoldTimer
from .models import (
    BookingConfirmation,
    HoldState,
    PaymentIntent,
    PaymentOutcome,
    Reservation,
)
from .notification import ConfirmationNotifier
from .session import BookingSession

INTENT_FIELDS = ("paymentIntent", "ephemeralKey", "customer")
PAYMENT_SUCCEEDED = "succeeded"
DEFAULT_CASE_TYPE = 3
REFERENCE_PREFIX = "SIR"
REFERENCE_LENGTH = 9
_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


class PaymentProcessor(Protocol):
    """Card processor boundary. Implementations raise ProcessorError."""

    async def create_payment_method(
        self, card: SensitiveDict, billing: Dict[str, Any]
    ) -> str:
        """Register the card and return a payment method id."""
        ...

    async def confirm_card_payment(
        self, client_secret: str, payment_method_id: str
    ) -> Dict[str, Any]:
        """Confirm the intent; the result carries ``id`` and ``status``."""
        ...


def to_minor_units(amount: float) -> int:
    """Euros to cents."""
    return int(round(amount * 100))


def generate_booking_reference() -> str:
    """Reference shown to the patient, e.g. ``SIR4K7Q2ZP9X``."""
    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH))
    return f"{REFERENCE_PREFIX}{suffix}"


def _case_type(value: Any) -> int:
    try:
        return int(value) or DEFAULT_CASE_TYPE
    except (TypeError, ValueError):
        return DEFAULT_CASE_TYPE


class PaymentCoordinator:
    """
    Takes payment for the held slot and confirms the booking.

    Payment is only accepted while the hold is live. Once the processor has
    taken the money, the booking is finalized and marked confirmed even if
    the hold timer runs out in the meantime.
    """

    def __init__(
        self,
        gateway,
        session: BookingSession,
        timer: HoldTimer,
        processor: PaymentProcessor,
        notifier: ConfirmationNotifier,
        settings: Optional[BookingSettings] = None,
    ):
        """
        Initialize payment coordinator.

        Args:
            gateway: WorkflowGatewayClient (or anything with ``post``)
            session: Booking session shared with the reservation state machine
            timer: Hold timer of the session
            processor: Card payment processor
            notifier: Sends confirmation e-mails after finalization
            settings: Booking settings
        """
        self.gateway = gateway
        self.session = session
        self.timer = timer
        self.processor = processor
        self.notifier = notifier
        self.settings = settings or get_settings()
        self._submitting = False

    @property
    def is_submitting(self) -> bool:
        return self._submitting

    async def initiate(
        self, amount: Optional[float] = None, email: Optional[str] = None
    ) -> PaymentIntent:
        """
        Create a payment intent for the booking fee.

        Args:
            amount: Amount in euros; defaults to the session amount
            email: Receipt e-mail; defaults to the configured fallback

        Returns:
            PaymentIntent with client secret, ephemeral key and customer

        Raises:
            PaymentSetupError: Gateway failed or the response lacked a handle
        """
        amount = self.session.payment_amount if amount is None else amount
        payload = {
            "workflowtype": WorkflowType.STRIPE,
            "type": RequestType.CREATE_PAYMENT_INTENT,
            "stripe_amount": to_minor_units(amount),
            "stripe_currency": self.settings.currency,
            "stripe_payment_method_type": "card",
            "stripe_email": email or self.settings.default_payment_email,
        }
        logger.info(f"Creating payment intent for {amount:.2f} {self.settings.currency}")

        try:
            body = await self.gateway.post_json(payload)
        except (GatewayError, MalformedResponse) as e:
            raise PaymentSetupError(f"Payment setup failed: {e.message}") from e

        if body is None:
            raise PaymentSetupError("Empty response from payment setup")

        try:
            body = normalize(body, expected_keys=INTENT_FIELDS)
        except MalformedResponse as e:
            raise PaymentSetupError(
                f"Unexpected response format from payment intent API: {e.message}"
            ) from e

        missing = [name for name in INTENT_FIELDS if not body.get(name)]
        if missing:
            raise PaymentSetupError(
                "Invalid payment intent response. "
                f"Missing required fields: {', '.join(missing)}",
                missing=missing,
            )

        return PaymentIntent(
            client_secret=body["paymentIntent"],
            ephemeral_key=body["ephemeralKey"],
            customer=body["customer"],
            amount_minor=to_minor_units(amount),
            currency=self.settings.currency,
        )

    def on_card_interaction(self) -> bool:
        """
        Note that the patient started entering card details.

        The first interaction in a hold restarts the countdown so the patient
        gets the full window to pay. The timer is never started from here.

        Returns:
            True if the timer was reset

        Raises:
            HoldExpiredError: The hold has already run out
        """
        if self.timer.is_expired:
            raise HoldExpiredError()
        if not self.timer.is_active:
            return False
        if self.session.card_touched_generation == self.timer.generation:
            return False

        self.timer.reset()
        self.session.card_touched_generation = self.timer.generation
        logger.info("Card entry started, hold timer reset")
        return True

    async def submit(
        self,
        card: Union[Mapping[str, Any], SensitiveDict],
        intent: Optional[PaymentIntent] = None,
    ) -> BookingConfirmation:
        """
        Pay for the held slot and finalize the booking.

        Args:
            card: Card details, passed straight to the processor
            intent: Previously created intent; created here when omitted

        Returns:
            BookingConfirmation for the confirmed reservation

        Raises:
            HoldExpiredError: The hold ran out before submission
            PaymentSetupError: No hold to pay for, or intent setup failed
            PaymentFailed: Declined, not succeeded, or processor error. The
                reservation and timer are left as they were.
        """
        if self.timer.is_expired:
            raise HoldExpiredError()

        session = self.session
        reservation = session.reservation
        if reservation is None or session.state is not HoldState.SLOT_HELD:
            raise PaymentSetupError("No reserved slot to pay for. Please select a time slot.")
        if self._submitting:
            raise PaymentFailed("A payment is already being processed")

        card_data = card if isinstance(card, SensitiveDict) else SensitiveDict(dict(card))
        amount = session.payment_amount
        patient = session.patient

        self._submitting = True
        try:
            if intent is None:
                intent = await self.initiate(amount, patient.email if patient else None)

            billing = {
                "name": patient.full_name if patient else reservation.patient_name,
                "email": patient.email if patient else reservation.email,
                "phone": patient.contact_number if patient else reservation.contact_no,
            }
            try:
                method_id = await self.processor.create_payment_method(card_data, billing)
                result = await self.processor.confirm_card_payment(
                    intent.client_secret, method_id
                )
            except ProcessorError as e:
                logger.warning(f"Payment processor error: {e.message}")
                raise PaymentFailed(e.message) from e

            status = (result or {}).get("status")
            if status != PAYMENT_SUCCEEDED:
                logger.warning(f"Payment not completed, status {status}")
                raise PaymentFailed(f"Payment failed with status: {status}", status=status)
        finally:
            card_data.wipe()
            self._submitting = False

        outcome = PaymentOutcome(
            succeeded=True,
            processor_reference=str(result.get("id") or ""),
            amount=amount,
            currency=intent.currency,
            status=status,
        )
        logger.info(f"Payment succeeded ({outcome.processor_reference})")
        return await self.finalize(reservation, outcome)

    async def finalize(self, reservation: Reservation, outcome: PaymentOutcome) -> BookingConfirmation:
        """
        Confirm the held appointment after payment.

        The payment has already been taken, so a failed confirmation call is
        logged and reported through ``confirmed_by_server`` rather than raised.
        """
        session = self.session
        intake = session.intake
        payload = {
            "workflowtype": WorkflowType.BOOK_APPOINTMENT,
            "PatientID": reservation.patient_id,
            "VisitID": reservation.visit_id,
            "CaseType": _case_type(intake.appointment_type if intake else None),
            "TrCentreID": reservation.treatment_centre_id,
            "AppointmentID": reservation.appointment_id,
            "StartTime": reservation.start_time,
            "EndTime": reservation.end_time,
            "Status": True,
            "Email": intake.email if intake and intake.email else "",
            "VideoURL": "",
        }
        if reservation.appointment_id_synthesized:
            logger.warning(
                f"Finalizing placeholder AppointmentID {reservation.appointment_id}"
            )

        record: Dict[str, Any] = {}
        confirmed_by_server = True
        try:
            body = await self.gateway.post_json(payload)
            if body is not None:
                record = self._decode(body)
        except (GatewayError, MalformedResponse) as e:
            confirmed_by_server = False
            logger.error(f"Booking confirmation failed after successful payment: {e}")

        status = record.get("Status")
        confirmed = reservation.copy(
            status=status if isinstance(status, str) and status else STATUS_CONFIRMED,
            appointment_id=record.get("AppointmentID") or reservation.appointment_id,
            case_number=record.get("CaseNo") or reservation.case_number,
            treatment_centre_name=record.get("TrCentreName") or reservation.treatment_centre_name,
            treatment_centre_address=record.get("TrCentreAddress")
            or reservation.treatment_centre_address,
            patient_name=record.get("PatientName") or reservation.patient_name,
            contact_no=record.get("ContactNo") or reservation.contact_no,
            email=record.get("Email") or reservation.email,
        )

        self.timer.stop()
        session.reservation = confirmed
        session.state = HoldState.CONFIRMED
        reference = generate_booking_reference()
        logger.info(
            f"Booking confirmed: appointment {confirmed.appointment_id}, "
            f"case {confirmed.case_number or '-'}, reference {reference}"
        )

        if record.get("AppointmentID"):
            self.notifier.dispatch(
                record,
                confirmed,
                patient=session.patient,
                centre=session.selected_centre,
                amount=outcome.amount,
            )

        return BookingConfirmation(
            reservation=confirmed,
            payment=outcome,
            booking_reference=reference,
            confirmed_by_server=confirmed_by_server,
        )

    @staticmethod
    def _decode(body: Any) -> Dict[str, Any]:
        """Finalization replies are best effort; anything undecodable is ignored."""
        result = decode(body, expected_keys=("AppointmentID", "CaseNo", "Status"))
        if result.is_failure():
            logger.info(f"Booking confirmation response not decoded: {result}")
            return {}
        return result.unwrap()
