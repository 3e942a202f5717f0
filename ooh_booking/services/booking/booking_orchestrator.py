"""Booking orchestrator - wires the booking components around one session."""

from datetime import date
from typing import Any, List, Mapping, Optional, Union

from loguru import logger

from ...core.config.settings import BookingSettings, get_settings
from ...core.logger import booking_session_ctx
from ...core.sensitive import SensitiveDict
from ...core.tasks import BackgroundTasks
from ...gateway.client import WorkflowGatewayClient
from .clinics import CentreListing, TreatmentCentreDirectory
from .hold_timer import HoldTimer
from .intake import PatientIntake
from .lookups import LookupData, LookupService
from .models import (
    AppointmentSlot,
    BookingConfirmation,
    HoldState,
    PatientRecord,
    Reservation,
    TreatmentCentre,
)
from .notification import ConfirmationNotifier
from .payment import PaymentCoordinator, PaymentProcessor
from .reason_search import ReasonSearch, merge_selections
from .release import ReleaseDispatcher
from .reservation import ReservationStateMachine
from .session import BookingSession
from .slots import SlotCatalog, available_dates, slots_on


class BookingOrchestrator:
    """
    Out-of-hours booking flow for one patient.

    Owns the gateway client, the hold timer and the background task registry,
    and exposes the steps of the booking screen as coroutines. Use it as an
    async context manager so the HTTP session and pending background work are
    cleaned up::

        async with BookingOrchestrator(processor=stripe_processor) as booking:
            await booking.load_lookups()
            await booking.register_patient(form)
            ...
    """

    def __init__(
        self,
        processor: PaymentProcessor,
        settings: Optional[BookingSettings] = None,
        gateway: Any = None,
        expiry_settle_seconds: Optional[float] = None,
    ):
        """
        Initialize booking orchestrator.

        Args:
            processor: Card payment processor
            settings: Booking settings (defaults to the process-wide singleton)
            gateway: Gateway client; a WorkflowGatewayClient is created when omitted
            expiry_settle_seconds: Override of the expiry grace period
        """
        self.settings = settings or get_settings()
        self._owns_gateway = gateway is None
        self.gateway = gateway or WorkflowGatewayClient(self.settings)
        self.tasks = BackgroundTasks()

        self.session = BookingSession(default_amount=self.settings.default_consultation_fee)
        self.timer = HoldTimer(
            duration_seconds=self.settings.hold_seconds,
            tick_seconds=self.settings.hold_tick_seconds,
            tasks=self.tasks,
        )
        self.release_dispatcher = ReleaseDispatcher(self.gateway, tasks=self.tasks)
        self.slot_catalog = SlotCatalog(self.gateway, self.session.slot_cache)
        self.centres = TreatmentCentreDirectory(self.gateway, settings=self.settings)
        self.lookup_service = LookupService(self.gateway)
        self.reason_search = ReasonSearch(self.gateway)
        self.notifier = ConfirmationNotifier(self.gateway, settings=self.settings, tasks=self.tasks)

        reservation_kwargs = {}
        if expiry_settle_seconds is not None:
            reservation_kwargs["expiry_settle_seconds"] = expiry_settle_seconds
        self.reservations = ReservationStateMachine(
            self.gateway,
            self.session,
            self.timer,
            self.release_dispatcher,
            self.slot_catalog,
            settings=self.settings,
            **reservation_kwargs,
        )
        self.payments = PaymentCoordinator(
            self.gateway,
            self.session,
            self.timer,
            processor,
            self.notifier,
            settings=self.settings,
        )
        self.centre_listing: Optional[CentreListing] = None

        booking_session_ctx.set(self.session.session_id)
        logger.info(f"BookingOrchestrator initialized (session {self.session.session_id})")

    async def __aenter__(self):
        """Async context manager entry."""
        if self._owns_gateway:
            await self.gateway._init_http_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Stop the timer, wait for background work, close the gateway."""
        self.timer.stop()
        self.reason_search.cancel()
        await self.tasks.drain()
        if self._owns_gateway:
            await self.gateway.close()
        logger.info(f"BookingOrchestrator closed (session {self.session.session_id})")

    # ──────────────────────────────────────────────────────────────
    # Read-only state
    # ──────────────────────────────────────────────────────────────

    @property
    def state(self) -> HoldState:
        return self.session.state

    @property
    def reservation(self) -> Optional[Reservation]:
        return self.session.reservation

    @property
    def time_remaining(self) -> Optional[str]:
        """Countdown as ``M:SS`` while the timer is shown, else None."""
        return self.timer.display if self.timer.is_visible else None

    # ──────────────────────────────────────────────────────────────
    # Reference data
    # ──────────────────────────────────────────────────────────────

    async def load_lookups(self) -> LookupData:
        lookups = await self.lookup_service.fetch()
        self.session.lookups = lookups
        return lookups

    async def find_clinics(self, latitude: float, longitude: float) -> List[TreatmentCentre]:
        """Load the clinics near the patient and adopt their advance payment."""
        listing = await self.centres.fetch(latitude, longitude)
        self.centre_listing = listing
        self.session.default_amount = listing.advance_payment
        if self.session.selected_centre is None:
            self.session.payment_amount = listing.advance_payment
        return listing.centres

    async def suggest_reasons(self, text: str) -> List[str]:
        """
        Add complaints matching free text to the current selection.

        Returns:
            The selection after merging; unchanged if the search was superseded
        """
        suggested = await self.reason_search.suggest(text)
        if suggested:
            self.session.reason_selection = merge_selections(
                self.session.reason_selection, suggested
            )
        return list(self.session.reason_selection)

    # ──────────────────────────────────────────────────────────────
    # Booking steps
    # ──────────────────────────────────────────────────────────────

    async def register_patient(
        self, form_data: Union[Mapping[str, Any], PatientIntake]
    ) -> PatientRecord:
        return await self.reservations.register_patient(form_data)

    async def select_clinic(self, centre: Union[TreatmentCentre, int]) -> Optional[TreatmentCentre]:
        if not isinstance(centre, TreatmentCentre):
            found = self.centre_listing.find(centre) if self.centre_listing else None
            if found is None:
                raise ValueError(f"Unknown treatment centre {centre}")
            centre = found
        return await self.reservations.select_clinic(centre)

    async def available_dates(self) -> List[str]:
        slots = await self._current_slots()
        return available_dates(slots)

    async def slots_for(self, on_date: Optional[date] = None) -> List[AppointmentSlot]:
        """Slots of the selected clinic on a date (the selected date by default)."""
        if on_date is not None:
            self.session.selected_date = on_date
        target = self.session.selected_date
        if target is None:
            return []
        return slots_on(await self._current_slots(), target)

    async def _current_slots(self) -> List[AppointmentSlot]:
        centre = self.session.selected_centre
        patient = self.session.patient
        if centre is None or patient is None:
            return []
        return await self.slot_catalog.get_slots(centre.id, patient.patient_id)

    async def reserve_slot(
        self, slot: Union[AppointmentSlot, str], on_date: Optional[date] = None
    ) -> Optional[Reservation]:
        return await self.reservations.reserve_slot(slot, on_date)

    def on_card_interaction(self) -> bool:
        return self.payments.on_card_interaction()

    async def pay(self, card: Union[Mapping[str, Any], SensitiveDict]) -> BookingConfirmation:
        return await self.payments.submit(card)

    def reset(self) -> None:
        """Start the booking again from an empty form."""
        self.reason_search.cancel()
        self.reservations.reset_session()
        self.session.default_amount = self.settings.default_consultation_fee
        self.session.payment_amount = self.session.default_amount
        self.centre_listing = None
