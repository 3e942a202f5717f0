"""Pytest configuration and common fixtures."""

import asyncio
import json
import os
import sys
import warnings
from datetime import date, timedelta
from pathlib import Path

from dotenv import load_dotenv

# Try to load test-specific environment file if it exists
test_env_file = Path(__file__).parent / ".env.test"
if test_env_file.exists():
    load_dotenv(test_env_file)

# CRITICAL: Set environment variables BEFORE any ooh_booking imports
# pydantic-settings reads them when the settings singleton is first built.
# Actual test isolation is provided by the setup_test_environment fixture using monkeypatch.
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("GATEWAY_AUTH_TOKEN", "test-gateway-token")

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from typing import Any, Dict, List, Optional, Tuple, Union

# NOW it's safe to import from ooh_booking
import pytest
import pytest_asyncio

from ooh_booking.constants.workflows import WorkflowType
from ooh_booking.core.config.settings import BookingSettings, reset_settings
from ooh_booking.core.tasks import BackgroundTasks
from ooh_booking.gateway.normalizer import parse_body
from ooh_booking.services.booking.hold_timer import HoldTimer
from ooh_booking.services.booking.models import TreatmentCentre
from ooh_booking.services.booking.release import ReleaseDispatcher
from ooh_booking.services.booking.reservation import ReservationStateMachine
from ooh_booking.services.booking.session import BookingSession
from ooh_booking.services.booking.slots import SlotCatalog

TICK = 0.01

Response = Union[str, Dict[str, Any], List[Any], BaseException]


def pytest_configure(config):
    """Configure pytest environment before tests run."""
    # Suppress async mock warnings
    warnings.filterwarnings("ignore", message="coroutine.*was never awaited")
    warnings.filterwarnings("ignore", category=pytest.PytestUnraisableExceptionWarning)


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Automatically set up test environment for all tests."""
    monkeypatch.setenv("ENV", "testing")
    monkeypatch.setenv("GATEWAY_AUTH_TOKEN", "test-gateway-token")
    monkeypatch.setenv("GATEWAY_BASE_URL", "http://gateway.test")
    monkeypatch.setenv("GATEWAY_WEBHOOK_PATH", "/webhook/booking")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://book.test")
    monkeypatch.delenv("HOLD_SECONDS", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> BookingSettings:
    """Settings built from the test environment."""
    return BookingSettings()


class FakeGateway:
    """
    In-memory workflow gateway.

    Responses are queued per ``(workflowtype, type)``; the last queued
    response repeats. Unqueued requests get an empty body. A request key can
    be held open with ``block()`` to simulate a slow gateway.
    """

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self._responses: Dict[Tuple[str, Optional[str]], List[Response]] = {}
        self._blocks: Dict[Tuple[str, Optional[str]], asyncio.Event] = {}

    def respond(self, workflowtype: str, response: Response, type_: Optional[str] = None) -> None:
        self._responses.setdefault((workflowtype, type_), []).append(response)

    def clear(self, workflowtype: str, type_: Optional[str] = None) -> None:
        self._responses.pop((workflowtype, type_), None)

    def block(self, workflowtype: str, type_: Optional[str] = None) -> asyncio.Event:
        event = asyncio.Event()
        self._blocks[(workflowtype, type_)] = event
        return event

    def calls_for(self, workflowtype: str, type_: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            call
            for call in self.calls
            if call.get("workflowtype") == workflowtype
            and (type_ is None or call.get("type") == type_)
        ]

    def _key(self, payload: Dict[str, Any]) -> Tuple[str, Optional[str]]:
        specific = (payload.get("workflowtype"), payload.get("type"))
        if specific in self._responses or specific in self._blocks:
            return specific
        return (payload.get("workflowtype"), None)

    async def post(self, payload: Dict[str, Any]) -> str:
        self.calls.append(dict(payload))
        key = self._key(payload)

        block = self._blocks.get(key)
        if block is not None:
            await block.wait()

        queue = self._responses.get(key)
        if not queue:
            return ""
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        if isinstance(response, str):
            return response
        return json.dumps(response)

    async def post_json(self, payload: Dict[str, Any]) -> Any:
        return parse_body(await self.post(payload))


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def valid_form() -> Dict[str, Any]:
    """Intake form that passes every validation rule."""
    return {
        "first_name": "Aoife",
        "last_name": "Byrne",
        "date_of_birth": "1990-04-12",
        "gender": "2",
        "phone_number": "087 123 4567",
        "email": "aoife@example.ie",
        "appointment_type": "2",
        "reason_for_contact": "11,14",
        "reason_comments": "",
        "unknown_gp": True,
        "home_building": "12",
        "home_street": "Main Street",
        "home_city": "Galway",
        "current_building": "12",
        "current_street": "Main Street",
        "current_city": "Galway",
    }


# ──────────────────────────────────────────────────────────────
# Booking component fixtures
# ──────────────────────────────────────────────────────────────


@pytest.fixture
def tasks() -> BackgroundTasks:
    return BackgroundTasks()


@pytest.fixture
def session() -> BookingSession:
    return BookingSession(default_amount=35.0)


@pytest.fixture
def timer(tasks) -> HoldTimer:
    """Three-tick hold so expiry happens within a few hundredths of a second."""
    return HoldTimer(duration_seconds=3, tick_seconds=TICK, tasks=tasks)


@pytest.fixture
def clinic() -> TreatmentCentre:
    return TreatmentCentre(id=7, name="Galway OOH", address="Merlin Park", advance_payment=20.0)


@pytest.fixture
def other_clinic() -> TreatmentCentre:
    return TreatmentCentre(id=9, name="Tuam OOH", address="Vicar Street")


@pytest.fixture
def slot_day() -> date:
    return date.today() + timedelta(days=1)


@pytest.fixture
def registration_response() -> Dict[str, Any]:
    return {"data": '{"PatientID": 501, "VisitID": 9001, "CaseNo": "C-77"}'}


@pytest.fixture
def machine(fake_gateway, session, timer, tasks, settings) -> ReservationStateMachine:
    """State machine wired to the fake gateway, with no expiry settle delay."""
    return ReservationStateMachine(
        fake_gateway,
        session,
        timer,
        ReleaseDispatcher(fake_gateway, tasks=tasks),
        SlotCatalog(fake_gateway, session.slot_cache, retry_attempts=1),
        settings=settings,
        expiry_settle_seconds=0,
    )


@pytest_asyncio.fixture
async def registered(machine, fake_gateway, valid_form, registration_response, clinic):
    """Machine with a registered patient and a selected clinic."""
    fake_gateway.respond(WorkflowType.SAVE_PATIENT_DETAILS, registration_response)
    await machine.register_patient(valid_form)
    await machine.select_clinic(clinic)
    return machine


class FakeProcessor:
    """Card processor double recording what it was asked to do."""

    def __init__(self, status: str = "succeeded", error: Exception = None):
        self.status = status
        self.error = error
        self.cards = []
        self.billing = []
        self.confirmed = []
        self.gate = None

    async def create_payment_method(self, card, billing):
        self.cards.append(card.to_dict())
        self.billing.append(billing)
        if self.error is not None:
            raise self.error
        return "pm_card_1"

    async def confirm_card_payment(self, client_secret, payment_method_id):
        self.confirmed.append((client_secret, payment_method_id))
        if self.gate is not None:
            await self.gate.wait()
        return {"id": "pi_1", "status": self.status}


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()
