"""Tests for PaymentCoordinator."""

import asyncio
from datetime import date

import pytest
import pytest_asyncio

from ooh_booking.constants.workflows import RequestType, WorkflowType
from ooh_booking.core.exceptions import (
    GatewayError,
    HoldExpiredError,
    PaymentFailed,
    PaymentSetupError,
    ProcessorError,
)
from ooh_booking.core.sensitive import SensitiveDict
from ooh_booking.services.booking.hold_timer import TimerPhase
from ooh_booking.services.booking.models import HoldState
from ooh_booking.services.booking.notification import ConfirmationNotifier
from ooh_booking.services.booking.payment import (
    PaymentCoordinator,
    generate_booking_reference,
    to_minor_units,
)

SLOT_DAY = date(2030, 3, 14)
CARD = {"number": "4242424242424242", "exp_month": 12, "exp_year": 2031, "cvc": "123"}
INTENT = [{"paymentIntent": "pi_1_secret_abc", "ephemeralKey": "ek_test_1", "customer": "cus_1"}]
RESERVED = {"data": '{"AppointmentID": 3301, "VisitID": 9001, "Status": "Reserved"}'}
CONFIRMED = {"data": '{"AppointmentID": 3301, "CaseNo": "OOH-2211", "Status": "Confirmed"}'}


async def run_out_hold(timer) -> None:
    await asyncio.sleep(timer.tick_seconds * (timer.duration_seconds + 4))
    await timer.tasks.drain()


@pytest.fixture
def coordinator(fake_gateway, session, timer, processor, tasks, settings):
    notifier = ConfirmationNotifier(fake_gateway, settings=settings, tasks=tasks)
    return PaymentCoordinator(fake_gateway, session, timer, processor, notifier, settings=settings)


@pytest_asyncio.fixture
async def held(registered, fake_gateway):
    """A live hold on appointment 3301 with intent and confirmation queued."""
    fake_gateway.respond(WorkflowType.BOOK_APPOINTMENT, RESERVED)
    fake_gateway.respond(WorkflowType.STRIPE, INTENT, type_=RequestType.CREATE_PAYMENT_INTENT)
    await registered.reserve_slot("18:00 - 18:15", SLOT_DAY)
    fake_gateway.clear(WorkflowType.BOOK_APPOINTMENT)
    fake_gateway.respond(WorkflowType.BOOK_APPOINTMENT, CONFIRMED)
    yield registered
    registered.timer.stop()
    await registered.timer.tasks.drain()


def test_to_minor_units():
    assert to_minor_units(35) == 3500
    assert to_minor_units(20.5) == 2050
    assert to_minor_units(0.1 + 0.2) == 30


def test_booking_reference_format():
    reference = generate_booking_reference()

    assert reference.startswith("SIR")
    assert len(reference) == 12
    assert reference[3:].isalnum() and reference[3:].upper() == reference[3:]


# ──────────────────────────────────────────────────────────────
# Payment intent
# ──────────────────────────────────────────────────────────────


class TestInitiate:
    """Tests for payment intent setup."""

    @pytest.mark.asyncio
    async def test_intent_request_and_result(self, coordinator, fake_gateway):
        fake_gateway.respond(WorkflowType.STRIPE, INTENT, type_=RequestType.CREATE_PAYMENT_INTENT)

        intent = await coordinator.initiate(20.0, "aoife@example.ie")

        assert intent.client_secret == "pi_1_secret_abc"
        assert intent.amount_minor == 2000
        sent = fake_gateway.calls_for(WorkflowType.STRIPE)[0]
        assert sent["type"] == "create_payment_intent"
        assert sent["stripe_amount"] == 2000
        assert sent["stripe_currency"] == "EUR"
        assert sent["stripe_payment_method_type"] == "card"
        assert sent["stripe_email"] == "aoife@example.ie"

    @pytest.mark.asyncio
    async def test_fallback_email(self, coordinator, fake_gateway):
        fake_gateway.respond(WorkflowType.STRIPE, INTENT[0])

        await coordinator.initiate(35.0)

        assert fake_gateway.calls_for(WorkflowType.STRIPE)[0]["stripe_email"] == "teststripe@gpooh.ie"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            {"data": '{"paymentIntent": "pi_x", "ephemeralKey": "ek_x", "customer": "cus_x"}'},
            {"data": {"paymentIntent": "pi_x", "ephemeralKey": "ek_x", "customer": "cus_x"}},
            [{"data": '{"paymentIntent": "pi_x", "ephemeralKey": "ek_x", "customer": "cus_x"}'}],
        ],
    )
    async def test_wrapped_intent_responses(self, coordinator, fake_gateway, response):
        fake_gateway.respond(WorkflowType.STRIPE, response)

        intent = await coordinator.initiate(35.0)

        assert intent.client_secret == "pi_x"
        assert intent.ephemeral_key == "ek_x"
        assert intent.customer == "cus_x"

    @pytest.mark.asyncio
    async def test_unrecognized_shape(self, coordinator, fake_gateway):
        fake_gateway.respond(WorkflowType.STRIPE, ["pi_x"])

        with pytest.raises(PaymentSetupError, match="Unexpected response format"):
            await coordinator.initiate(35.0)

    @pytest.mark.asyncio
    async def test_missing_fields_named(self, coordinator, fake_gateway):
        fake_gateway.respond(WorkflowType.STRIPE, {"paymentIntent": "pi_1_secret_abc"})

        with pytest.raises(PaymentSetupError) as exc_info:
            await coordinator.initiate(35.0)

        assert exc_info.value.missing == ["ephemeralKey", "customer"]
        assert exc_info.value.message == (
            "Invalid payment intent response. Missing required fields: ephemeralKey, customer"
        )

    @pytest.mark.asyncio
    async def test_gateway_failure(self, coordinator, fake_gateway):
        fake_gateway.respond(WorkflowType.STRIPE, GatewayError("Webhook request failed: 500", status=500))

        with pytest.raises(PaymentSetupError):
            await coordinator.initiate(35.0)


# ──────────────────────────────────────────────────────────────
# Card interaction
# ──────────────────────────────────────────────────────────────


class TestCardInteraction:
    """The first card interaction of a hold resets the timer."""

    @pytest.mark.asyncio
    async def test_first_interaction_resets_once(self, held, coordinator):
        generation = held.timer.generation

        assert coordinator.on_card_interaction() is True
        assert coordinator.on_card_interaction() is False
        assert held.timer.generation == generation + 1

    @pytest.mark.asyncio
    async def test_never_starts_timer(self, coordinator, timer):
        assert coordinator.on_card_interaction() is False
        assert timer.phase is TimerPhase.IDLE


# ──────────────────────────────────────────────────────────────
# Submission
# ──────────────────────────────────────────────────────────────


class TestSubmit:
    """Tests for paying and finalizing."""

    @pytest.mark.asyncio
    async def test_success_confirms_booking(self, held, coordinator, fake_gateway, processor):
        card = SensitiveDict(CARD)

        confirmation = await coordinator.submit(card)

        assert confirmation.reservation.status == "Confirmed"
        assert confirmation.reservation.case_number == "OOH-2211"
        assert confirmation.payment.succeeded
        assert confirmation.payment.amount == 20.0
        assert confirmation.confirmed_by_server
        assert confirmation.booking_reference.startswith("SIR")
        assert held.state is HoldState.CONFIRMED
        assert held.session.reservation is confirmation.reservation

        assert processor.cards == [CARD]
        assert processor.confirmed == [("pi_1_secret_abc", "pm_card_1")]
        assert processor.billing[0]["name"] == "Aoife Byrne"
        assert len(card) == 0

        final = fake_gateway.calls_for(WorkflowType.BOOK_APPOINTMENT)[-1]
        assert final["Status"] is True
        assert final["AppointmentID"] == 3301
        assert final["Email"] == "aoife@example.ie"
        assert final["VideoURL"] == ""

    @pytest.mark.asyncio
    async def test_success_stops_timer_for_good(self, held, coordinator, fake_gateway):
        await coordinator.submit(CARD)

        assert held.timer.phase is TimerPhase.IDLE
        await run_out_hold(held.timer)
        assert held.timer.phase is TimerPhase.IDLE
        assert fake_gateway.calls_for(WorkflowType.APPOINTMENT_SLOTS, RequestType.RELEASE_SLOT) == []

    @pytest.mark.asyncio
    async def test_success_sends_confirmation_emails(self, held, coordinator, fake_gateway, tasks):
        await coordinator.submit(CARD)
        await tasks.drain()

        emails = fake_gateway.calls_for(WorkflowType.SEND_CONFIRMATION_EMAILS)
        assert len(emails) == 1
        assert emails[0]["AppointmentID"] == 3301
        assert emails[0]["CaseNo"] == "OOH-2211"
        assert emails[0]["roomName"] == "room-visit-3301"

    @pytest.mark.asyncio
    async def test_declined_status_leaves_hold(self, held, coordinator, processor):
        processor.status = "requires_payment_method"
        generation = held.timer.generation
        reservation = held.session.reservation

        with pytest.raises(PaymentFailed, match="Payment failed with status: requires_payment_method"):
            await coordinator.submit(CARD)

        assert held.session.reservation is reservation
        assert held.state is HoldState.SLOT_HELD
        assert held.timer.is_active
        assert held.timer.generation == generation
        assert not coordinator.is_submitting

    @pytest.mark.asyncio
    async def test_processor_error_becomes_payment_failed(self, held, coordinator, processor):
        processor.error = ProcessorError("Your card was declined.", code="card_declined")

        with pytest.raises(PaymentFailed, match="Your card was declined."):
            await coordinator.submit(CARD)

        assert held.state is HoldState.SLOT_HELD

    @pytest.mark.asyncio
    async def test_finalization_failure_still_confirms(self, held, coordinator, fake_gateway):
        fake_gateway.clear(WorkflowType.BOOK_APPOINTMENT)
        fake_gateway.respond(WorkflowType.BOOK_APPOINTMENT, GatewayError("down", status=502))

        confirmation = await coordinator.submit(CARD)

        assert not confirmation.confirmed_by_server
        assert held.state is HoldState.CONFIRMED
        assert fake_gateway.calls_for(WorkflowType.SEND_CONFIRMATION_EMAILS) == []

    @pytest.mark.asyncio
    async def test_no_hold_rejected(self, coordinator, processor):
        with pytest.raises(PaymentSetupError):
            await coordinator.submit(CARD)

        assert processor.cards == []


class TestExpiredHold:
    """Payment and expiry racing each other."""

    @pytest.mark.asyncio
    async def test_expired_hold_blocks_payment(self, held, coordinator, fake_gateway, processor):
        gate = fake_gateway.block(WorkflowType.APPOINTMENT_SLOTS, RequestType.RELEASE_SLOT)
        await asyncio.sleep(held.timer.tick_seconds * (held.timer.duration_seconds + 4))

        assert held.timer.is_expired
        with pytest.raises(HoldExpiredError):
            await coordinator.submit(CARD)
        with pytest.raises(HoldExpiredError):
            coordinator.on_card_interaction()
        assert processor.cards == []

        gate.set()
        await held.timer.tasks.drain()
        assert held.session.reservation is None

    @pytest.mark.asyncio
    async def test_confirmation_after_expiry_is_honoured(self, held, coordinator, fake_gateway, processor):
        processor.gate = asyncio.Event()
        payment = asyncio.ensure_future(coordinator.submit(CARD))
        await asyncio.sleep(0)

        await run_out_hold(held.timer)
        releases = fake_gateway.calls_for(WorkflowType.APPOINTMENT_SLOTS, RequestType.RELEASE_SLOT)
        assert [call["appointmentID"] for call in releases] == [3301]

        processor.gate.set()
        confirmation = await payment

        assert confirmation.reservation.status == "Confirmed"
        assert held.state is HoldState.CONFIRMED
        assert held.session.reservation.appointment_id == 3301
        assert not held.timer.is_visible
