"""Tests for BookingOrchestrator - the booking flow end to end."""

import asyncio

import pytest
import pytest_asyncio

from ooh_booking.constants.workflows import RequestType, WorkflowType
from ooh_booking.core.config.settings import BookingSettings
from ooh_booking.services.booking.booking_orchestrator import BookingOrchestrator
from ooh_booking.services.booking.models import HoldState

LOOKUPS = {
    "Gender": [{"Id": 1, "GenderName": "Male"}, {"Id": 2, "GenderName": "Female"}],
    "Doctors": [{"GPID": 4, "GPName": "Dr Walsh", "SurgeryID": 8, "RegisterationType": 1}],
    "AppointmentTypes": [
        {"CaseTypeID": 1, "CaseType": "Video Consult"},
        {"CaseTypeID": 2, "CaseType": "Face 2 Face"},
    ],
}
CENTRES = {
    "TrCentres": [
        {"TrCenterID": 7, "TrCentreName": "Galway OOH", "Address": "Merlin Park", "AdvPayment": "€ 20"},
        {"TrCenterID": 9, "TrCentreName": "Tuam OOH"},
    ],
    "AdvPayment": {"AdvPayment": "€ 45"},
}
SLOTS = [
    {"AvailableStartTime": "2030-03-14T18:00:00", "AvailableEndTime": "2030-03-14T18:15:00"},
    {"AvailableStartTime": "2030-03-14T18:15:00", "AvailableEndTime": "2030-03-14T18:30:00"},
    {"AvailableStartTime": "2030-03-15T09:00:00", "AvailableEndTime": "2030-03-15T09:15:00"},
]
REGISTERED = [{"data": '{"PatientID": 501, "VisitID": 9001, "CaseNo": "C-77"}'}]
RESERVED = {"data": '{"AppointmentID": 3301, "VisitID": 9001, "Status": "Reserved"}'}
CONFIRMED = {"data": '{"AppointmentID": 3301, "CaseNo": "OOH-2211", "Status": "Confirmed"}'}
INTENT = {"paymentIntent": "pi_1_secret_abc", "ephemeralKey": "ek_test_1", "customer": "cus_1"}
CARD = {"number": "4242424242424242", "exp_month": 12, "exp_year": 2031, "cvc": "123"}


@pytest.fixture
def fast_settings():
    return BookingSettings(hold_seconds=3, hold_tick_seconds=0.01)


@pytest_asyncio.fixture
async def booking(fake_gateway, processor, fast_settings):
    fake_gateway.respond(WorkflowType.LOOKUPS, LOOKUPS)
    fake_gateway.respond(WorkflowType.TREATMENT_CENTRES, CENTRES)
    fake_gateway.respond(WorkflowType.SAVE_PATIENT_DETAILS, REGISTERED)
    fake_gateway.respond(WorkflowType.APPOINTMENT_SLOTS, SLOTS, type_=RequestType.GET_SLOTS)
    fake_gateway.respond(WorkflowType.STRIPE, INTENT)

    orchestrator = BookingOrchestrator(
        processor, settings=fast_settings, gateway=fake_gateway, expiry_settle_seconds=0
    )
    async with orchestrator:
        yield orchestrator


async def _reach_hold(booking, fake_gateway, valid_form):
    await booking.load_lookups()
    await booking.find_clinics(53.27, -9.05)
    await booking.register_patient(valid_form)
    await booking.select_clinic(7)
    fake_gateway.respond(WorkflowType.BOOK_APPOINTMENT, RESERVED)
    slots = await booking.slots_for()
    return await booking.reserve_slot(slots[0])


class TestBookingFlow:
    """From an empty form to a confirmed appointment."""

    @pytest.mark.asyncio
    async def test_full_booking(self, booking, fake_gateway, processor, valid_form):
        await booking.load_lookups()
        centres = await booking.find_clinics(53.27, -9.05)
        assert [centre.id for centre in centres] == [7, 9]
        assert booking.session.payment_amount == 45.0

        patient = await booking.register_patient(valid_form)
        assert patient.patient_id == 501
        assert booking.state is HoldState.PATIENT_REGISTERED

        await booking.select_clinic(7)
        assert booking.session.payment_amount == 20.0
        assert await booking.available_dates() == ["2030-03-14", "2030-03-15"]
        slots = await booking.slots_for()
        assert [slot.display for slot in slots] == ["18:00 - 18:15", "18:15 - 18:30"]

        fake_gateway.respond(WorkflowType.BOOK_APPOINTMENT, RESERVED)
        reservation = await booking.reserve_slot(slots[0])
        assert reservation.appointment_id == 3301
        assert booking.state is HoldState.SLOT_HELD
        assert booking.time_remaining == "0:03"

        assert booking.on_card_interaction() is True
        fake_gateway.clear(WorkflowType.BOOK_APPOINTMENT)
        fake_gateway.respond(WorkflowType.BOOK_APPOINTMENT, CONFIRMED)
        confirmation = await booking.pay(CARD)

        assert confirmation.reservation.case_number == "OOH-2211"
        assert confirmation.payment.amount == 20.0
        assert booking.state is HoldState.CONFIRMED
        assert booking.time_remaining is None
        assert fake_gateway.calls_for(WorkflowType.STRIPE)[0]["stripe_amount"] == 2000

        await booking.tasks.drain()
        assert len(fake_gateway.calls_for(WorkflowType.SEND_CONFIRMATION_EMAILS)) == 1

    @pytest.mark.asyncio
    async def test_expired_hold_is_released(self, booking, fake_gateway, valid_form, fast_settings):
        await _reach_hold(booking, fake_gateway, valid_form)

        await asyncio.sleep(fast_settings.hold_tick_seconds * (fast_settings.hold_seconds + 4))
        await booking.tasks.drain()

        releases = fake_gateway.calls_for(WorkflowType.APPOINTMENT_SLOTS, RequestType.RELEASE_SLOT)
        assert [(call["visitID"], call["appointmentID"]) for call in releases] == [(9001, 3301)]
        assert booking.reservation is None
        assert booking.state is HoldState.PATIENT_REGISTERED
        assert booking.time_remaining is None

    @pytest.mark.asyncio
    async def test_suggest_reasons_merges(self, booking, fake_gateway):
        booking.session.reason_selection = ["14"]
        fake_gateway.clear(WorkflowType.LOOKUPS)
        fake_gateway.respond(
            WorkflowType.LOOKUPS, {"Complaints": [{"ComplaintID": 11}, {"ComplaintID": 14}]}
        )

        assert await booking.suggest_reasons("earache") == ["14", "11"]
        assert await booking.suggest_reasons("ea") == ["14", "11"]

    @pytest.mark.asyncio
    async def test_unknown_clinic(self, booking, valid_form):
        await booking.find_clinics(53.27, -9.05)

        with pytest.raises(ValueError):
            await booking.select_clinic(99)

    @pytest.mark.asyncio
    async def test_reset(self, booking, fake_gateway, valid_form):
        await _reach_hold(booking, fake_gateway, valid_form)

        booking.reset()

        assert booking.state is HoldState.NO_RESERVATION
        assert booking.reservation is None
        assert booking.session.patient is None
        assert booking.session.payment_amount == 35.0
        assert booking.time_remaining is None
        assert booking.centre_listing is None


@pytest.mark.asyncio
async def test_owned_gateway_session_lifecycle(processor, settings):
    orchestrator = BookingOrchestrator(processor, settings=settings)

    async with orchestrator as booking:
        assert booking.gateway._http_session is not None

    assert orchestrator.gateway._http_session is None
